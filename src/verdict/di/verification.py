from __future__ import annotations

from enum import IntEnum
from typing import TYPE_CHECKING, Any

from loguru import logger

from .analyzers import run_analyzers
from .diagnostics import DiagnosticReport
from .errors import ActivationError, DiagnosticVerificationError, VerificationError
from .lifestyles import Scope
from .names import friendly_name
from .producers import (
    _VERIFICATION_TRACKER,
    CollectionProducer,
    InstanceProducer,
    VerificationTracker,
)

if TYPE_CHECKING:
    from .container import Container


class VerificationOption(IntEnum):
    VERIFY_ONLY = 0
    VERIFY_AND_DIAGNOSE = 1
    VERIFY_AND_REPORT = 2


def normalize_verification_option(option: object) -> VerificationOption:
    """
    Accept a ``VerificationOption``, its integer value or its name.

    Anything else raises ``ValueError`` before the container is touched.
    """
    if isinstance(option, VerificationOption):
        return option
    if isinstance(option, str):
        try:
            return VerificationOption[option.strip().upper()]
        except KeyError:
            pass
    elif isinstance(option, int) and not isinstance(option, bool):
        try:
            return VerificationOption(option)
        except ValueError:
            pass

    valid = ", ".join(f"{o.name} ({o.value})" for o in VerificationOption)
    msg = (
        f"The value of argument 'option' ({option!r}) is invalid for enum type "
        f"'VerificationOption'. Valid values are: {valid}."
    )
    logger.error(msg)
    raise ValueError(msg)


class EagerBuildPipeline:
    """
    Builds every root producer once, failing on the first error.

    Phase 1 prepares the construction strategies of all roots. Phase 2
    creates one instance per root inside a dedicated scope; producers already
    instantiated as a dependency of an earlier root are not built again, and
    a collection is iterated once no matter how many consumers it has.
    Producers discovered while building (unregistered type resolution) are
    verified in follow-up rounds until none are left.
    """

    def __init__(self, container: Container) -> None:
        self.container = container
        self._verified: set[tuple[Any, Any]] = set()
        self._tracker = VerificationTracker()

    def run(self) -> None:
        roots = self.container._root_producers()
        logger.debug(f"Verifying {len(roots)} root registration(s)")

        for producer in roots:
            self._prepare(producer)

        token = _VERIFICATION_TRACKER.set(self._tracker)
        try:
            with Scope():
                pending = roots
                while pending:
                    for producer in pending:
                        self._verify(producer)
                    pending = [
                        p
                        for p in self.container.get_current_registrations()
                        if self._needs_verification(p)
                    ]
                    if pending:
                        logger.debug(f"Verifying {len(pending)} discovered registration(s)")
        finally:
            _VERIFICATION_TRACKER.reset(token)

    def _is_done(self, producer: InstanceProducer) -> bool:
        return (
            producer.identity in self._verified
            or producer.identity in self._tracker.instantiated
        )

    def _needs_verification(self, producer: InstanceProducer) -> bool:
        return (
            not self._is_done(producer)
            or producer.identity not in self._tracker.decoratees_verified
        )

    def _prepare(self, producer: InstanceProducer) -> None:
        try:
            producer.build_strategy()
        except ActivationError as exc:
            raise self._failure(producer, exc) from exc

    def _verify(self, producer: InstanceProducer) -> None:
        try:
            if not self._is_done(producer):
                self._verified.add(producer.identity)
                # Collections are built through the pass-wide cache.
                producer.get_instance()
            producer.verify_decoratee_factories()
            if isinstance(producer, CollectionProducer):
                for element in producer.elements:
                    element.verify_decoratee_factories()
        except ActivationError as exc:
            raise self._failure(producer, exc) from exc

    @staticmethod
    def _failure(producer: InstanceProducer, exc: ActivationError) -> VerificationError:
        msg = (
            "The configuration is invalid. Creating the instance for type "
            f"{friendly_name(producer.service_type)} failed. {exc}"
        )
        logger.error(msg)
        return VerificationError(
            msg,
            service_type=producer.service_type,
            chain=exc.chain or (producer.service_type,),
        )


def verify_container(container: Container, option: object) -> DiagnosticReport:
    verification_option = normalize_verification_option(option)
    container._freeze()
    logger.debug(f"Verifying container ({verification_option.name})")

    EagerBuildPipeline(container).run()

    if verification_option is VerificationOption.VERIFY_ONLY:
        return DiagnosticReport()

    report = run_analyzers(container.get_current_registrations())
    if verification_option is VerificationOption.VERIFY_AND_DIAGNOSE and report.has_warnings:
        msg = report.render_warnings(container.options.diagnostics_docs_url)
        logger.error(msg)
        raise DiagnosticVerificationError(msg, report)

    logger.debug(f"Container verified with {len(report)} diagnostic result(s)")
    return report


def diagnose_container(container: Container) -> DiagnosticReport:
    """
    Prepare every strategy and run the analyzers, creating no instances.

    Producers whose strategy can't be built are skipped with a warning.
    Unbuilt singletons count as distinct instances for the torn lifestyle
    analyzer.
    """
    container._freeze()
    attempted: set[tuple[Any, Any]] = set()
    pending = container._root_producers()
    while pending:
        for producer in pending:
            attempted.add(producer.identity)
            try:
                producer.build_strategy()
            except ActivationError as exc:
                logger.warning(
                    f"Skipping {friendly_name(producer.service_type)} during analysis: {exc}"
                )
        pending = [
            p for p in container.get_current_registrations() if p.identity not in attempted
        ]
    return run_analyzers(container.get_current_registrations())
