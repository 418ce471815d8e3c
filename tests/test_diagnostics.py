from __future__ import annotations

from collections.abc import Sequence

from tests.di_test_services.services import (
    ConsoleLogger,
    DbConnection,
    ILogger,
    MessageBus,
    RequestClock,
)
from verdict.di import (
    Container,
    ContainerAnalyzer,
    DiagnosticReport,
    DiagnosticSeverity,
    DiagnosticType,
)
from verdict.di.diagnostics import group_results, plural


class PairAnalyzer(ContainerAnalyzer):
    diagnostic_type = DiagnosticType.AMBIGUOUS_LIFESTYLES

    def __init__(self, pairs):
        self.pairs = pairs

    def analyze(self, producers):
        return [
            self._result(a, [a, b], f"{a.service_type.__name__}/{b.service_type.__name__}")
            for a, b in self.pairs
        ]

    def root_description(self, results: Sequence) -> str:
        return f"{len(results)} {plural(len(results), 'pair')}."

    def group_description(self, results: Sequence) -> str:
        return f"{len(results)} linked."


def _producers():
    container = Container()
    return (
        container,
        container.register(ILogger, ConsoleLogger),
        container.register(DbConnection),
        container.register(MessageBus),
        container.register(RequestClock),
    )


def test_plural() -> None:
    assert plural(1, "registration") == "registration"
    assert plural(2, "registration") == "registrations"
    assert plural(3, "dependency", "dependencies") == "dependencies"


def test_group_results_merges_overlapping_results() -> None:
    _container, logger, connection, bus, clock = _producers()
    analyzer = PairAnalyzer([(logger, connection), (bus, clock), (connection, bus)])

    groups = group_results(analyzer, analyzer.analyze([]))

    assert len(groups) == 1
    assert groups[0].description == "3 linked."
    assert [r.description for r in groups[0].results] == [
        "ILogger/DbConnection",
        "MessageBus/RequestClock",
        "DbConnection/MessageBus",
    ]


def test_group_results_keeps_disjoint_results_apart() -> None:
    _container, logger, connection, bus, clock = _producers()
    analyzer = PairAnalyzer([(logger, connection), (bus, clock)])

    groups = group_results(analyzer, analyzer.analyze([]))

    assert [g.description for g in groups] == ["1 linked.", "1 linked."]
    assert all(g.kind is DiagnosticType.AMBIGUOUS_LIFESTYLES for g in groups)


def test_result_defaults_to_warning_severity() -> None:
    _container, logger, connection, _bus, _clock = _producers()

    result = PairAnalyzer([(logger, connection)]).analyze([])[0]

    assert result.severity is DiagnosticSeverity.WARNING
    assert result.service_type is ILogger
    assert result.name == "Ambiguous Lifestyles"
    assert str(result) == "-[Ambiguous Lifestyles] ILogger/DbConnection"


def test_empty_report_renders_summary() -> None:
    report = DiagnosticReport()

    assert not report.has_warnings
    assert list(report) == []
    assert report.render() == "No diagnostic warnings or messages were reported."


def test_render_warnings_lists_each_warning_and_docs_url() -> None:
    _container, logger, connection, _bus, _clock = _producers()
    result = PairAnalyzer([(logger, connection)]).analyze([])[0]
    report = DiagnosticReport(results=(result,))

    rendered = report.render_warnings("https://example.invalid/docs")

    assert rendered.splitlines() == [
        "The configuration is invalid. The following diagnostic warnings were reported:",
        "-[Ambiguous Lifestyles] ILogger/DbConnection",
        "See the errors property for detailed information about the warnings. "
        "Please see https://example.invalid/docs how to fix problems and how to suppress "
        "individual warnings.",
    ]
