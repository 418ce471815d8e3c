from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .diagnostics import DiagnosticReport, DiagnosticResult


class ContainerError(RuntimeError):
    """Base class for all container failures."""


class ActivationError(ContainerError):
    """
    Raised when a producer is unable to build an instance.

    ``chain`` lists the requested service types from the outermost request
    down to the producer that failed.
    """

    def __init__(
        self,
        message: str,
        *,
        service_type: Any = None,
        implementation_type: Any = None,
        chain: tuple[Any, ...] = (),
    ) -> None:
        super().__init__(message)
        self.service_type = service_type
        self.implementation_type = implementation_type
        self.chain = chain


class CyclicDependencyError(ActivationError):
    pass


class ContainerLockedError(ContainerError):
    pass


class VerificationError(ContainerError):
    """Raised when the build phase of ``Container.verify()`` fails."""

    def __init__(
        self,
        message: str,
        *,
        service_type: Any = None,
        chain: tuple[Any, ...] = (),
    ) -> None:
        super().__init__(message)
        self.service_type = service_type
        self.chain = chain


class DiagnosticVerificationError(VerificationError):
    """Raised when diagnostic warnings are escalated by ``verify()``."""

    def __init__(self, message: str, report: DiagnosticReport) -> None:
        super().__init__(message)
        self.report = report

    @property
    def errors(self) -> tuple[DiagnosticResult, ...]:
        return self.report.warnings
