from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from .producers import InstanceProducer

DIAGNOSTICS_DOCS_URL = "https://verdict-di.readthedocs.io/en/latest/diagnostics.html"


class DiagnosticType(Enum):
    """Kinds of findings; the value is the name used in reports."""

    CONTAINER_REGISTERED_COMPONENT = "Container-registered Component"
    LIFESTYLE_MISMATCH = "Lifestyle Mismatch"
    SHORT_CIRCUITED_DEPENDENCY = "Short-circuited Dependency"
    DISPOSABLE_TRANSIENT_COMPONENT = "Disposable Transient Component"
    TORN_LIFESTYLE = "Torn Lifestyle"
    AMBIGUOUS_LIFESTYLES = "Ambiguous Lifestyles"
    CONTAINER_REGISTERED_COLLECTION = "Container-registered Collection"


class DiagnosticSeverity(IntEnum):
    INFORMATION = 0
    WARNING = 1


@dataclass(frozen=True)
class DiagnosticResult:
    kind: DiagnosticType
    severity: DiagnosticSeverity
    service_type: Any
    description: str
    diagnosed_producer: InstanceProducer
    affected_producers: tuple[InstanceProducer, ...]

    @property
    def name(self) -> str:
        return self.kind.value

    def __str__(self) -> str:
        return f"-[{self.name}] {self.description}"


class ContainerAnalyzer(ABC):
    """
    Contract shared by every analyzer.

    Analyzers are stateless and must not create instances: they only read
    the producer snapshot handed to them (cached singletons may be inspected
    through ``InstanceProducer.peek_instance``).
    """

    diagnostic_type: ClassVar[DiagnosticType]
    severity: ClassVar[DiagnosticSeverity] = DiagnosticSeverity.WARNING

    @property
    def name(self) -> str:
        return self.diagnostic_type.value

    @abstractmethod
    def analyze(self, producers: Sequence[InstanceProducer]) -> list[DiagnosticResult]:
        """Return the findings for ``producers`` in a stable order."""

    @abstractmethod
    def root_description(self, results: Sequence[DiagnosticResult]) -> str:
        ...

    @abstractmethod
    def group_description(self, results: Sequence[DiagnosticResult]) -> str:
        ...

    def _result(
        self,
        diagnosed_producer: InstanceProducer,
        affected_producers: Sequence[InstanceProducer],
        description: str,
    ) -> DiagnosticResult:
        return DiagnosticResult(
            kind=self.diagnostic_type,
            severity=self.severity,
            service_type=diagnosed_producer.service_type,
            description=description,
            diagnosed_producer=diagnosed_producer,
            affected_producers=tuple(affected_producers),
        )


def plural(count: int, singular: str, plural_form: str | None = None) -> str:
    if count == 1:
        return singular
    return plural_form if plural_form is not None else f"{singular}s"


@dataclass(frozen=True)
class DiagnosticGroup:
    kind: DiagnosticType
    description: str
    results: tuple[DiagnosticResult, ...]

    @property
    def name(self) -> str:
        return self.kind.value


def group_results(
    analyzer: ContainerAnalyzer,
    results: Sequence[DiagnosticResult],
) -> list[DiagnosticGroup]:
    """Merge results whose affected producer sets overlap into one group."""
    groups: list[tuple[set[tuple[Any, Any]], list[DiagnosticResult]]] = []
    for result in results:
        identities = {p.identity for p in result.affected_producers}
        identities.add(result.diagnosed_producer.identity)
        overlapping = [i for i, group in enumerate(groups) if group[0] & identities]
        if not overlapping:
            groups.append((identities, [result]))
            continue
        target = groups[overlapping[0]]
        for index in reversed(overlapping[1:]):
            other = groups.pop(index)
            target[0].update(other[0])
            target[1].extend(other[1])
        target[0].update(identities)
        target[1].append(result)

    return [
        DiagnosticGroup(
            kind=analyzer.diagnostic_type,
            description=analyzer.group_description(members),
            results=tuple(members),
        )
        for _, members in groups
    ]


@dataclass(frozen=True)
class DiagnosticReport:
    """
    Findings of one diagnosis pass.

    ``results`` keeps analyzer order; ``groups`` and ``summaries`` are the
    same results partitioned by kind for rendering.
    """

    results: tuple[DiagnosticResult, ...] = ()
    groups: tuple[DiagnosticGroup, ...] = ()
    summaries: tuple[tuple[DiagnosticType, str], ...] = field(default=())

    @property
    def warnings(self) -> tuple[DiagnosticResult, ...]:
        return tuple(r for r in self.results if r.severity is DiagnosticSeverity.WARNING)

    @property
    def information(self) -> tuple[DiagnosticResult, ...]:
        return tuple(r for r in self.results if r.severity is DiagnosticSeverity.INFORMATION)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def by_kind(self, kind: DiagnosticType) -> tuple[DiagnosticResult, ...]:
        return tuple(r for r in self.results if r.kind is kind)

    def __iter__(self) -> Iterator[DiagnosticResult]:
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)

    def summary(self) -> str:
        if not self.results:
            return "No diagnostic warnings or messages were reported."
        return "\n".join(f"{kind.value}: {text}" for kind, text in self.summaries)

    def render(self) -> str:
        if not self.results:
            return self.summary()
        lines: list[str] = []
        for kind, text in self.summaries:
            lines.append(f"{kind.value}: {text}")
            for group in self.groups:
                if group.kind is not kind:
                    continue
                lines.append(f"  {group.description}")
                lines.extend(f"    {result}" for result in group.results)
        return "\n".join(lines)

    def render_warnings(self, docs_url: str = DIAGNOSTICS_DOCS_URL) -> str:
        lines = [
            "The configuration is invalid. "
            "The following diagnostic warnings were reported:"
        ]
        lines.extend(str(result) for result in self.warnings)
        lines.append(
            "See the errors property for detailed information about the warnings. "
            f"Please see {docs_url} how to fix problems and how to suppress "
            "individual warnings."
        )
        return "\n".join(lines)
