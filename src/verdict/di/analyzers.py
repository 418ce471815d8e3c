from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterator, Sequence
from typing import Any

from loguru import logger

from .collections import unregistered_abstract_element_message
from .diagnostics import (
    ContainerAnalyzer,
    DiagnosticReport,
    DiagnosticResult,
    DiagnosticSeverity,
    DiagnosticType,
    group_results,
    plural,
)
from .lifestyles import Lifestyle, disposal_method
from .names import comma_separated, friendly_name
from .producers import CollectionProducer, InstanceProducer
from .registration import KnownRelationship, Registration, construction_type


def lifestyle_mismatch_description(relationship: KnownRelationship) -> str:
    dependency = relationship.dependency
    implemented_by = ""
    if dependency.implementation_type != dependency.service_type:
        implemented_by = f" implemented by {friendly_name(dependency.implementation_type)}"
    return (
        f"{friendly_name(relationship.implementation_type)} ({relationship.lifestyle.name}) "
        f"depends on {friendly_name(dependency.service_type)}{implemented_by} "
        f"({dependency.lifestyle.name})."
    )


def _is_plain_registration(producer: InstanceProducer) -> bool:
    registration = producer.registration
    return not (
        isinstance(producer, CollectionProducer)
        or registration.is_instance_registration
        or registration.wraps_instance_creation_delegate
    )


class TornLifestyleAnalyzer(ContainerAnalyzer):
    """
    Finds one logical component tracked as several instances.

    Producers of separate registrations that share implementation type and
    lifestyle each cache their own instance; consumers of the different
    service types then observe different "singletons".
    """

    diagnostic_type = DiagnosticType.TORN_LIFESTYLE

    def root_description(self, results: Sequence[DiagnosticResult]) -> str:
        count = len(results)
        return f"{count} possible {plural(count, 'registration')} found with a torn lifestyle."

    def group_description(self, results: Sequence[DiagnosticResult]) -> str:
        count = len(results)
        return f"{count} torn {plural(count, 'registration')}."

    def analyze(self, producers: Sequence[InstanceProducer]) -> list[DiagnosticResult]:
        return [
            self._result(producer, group, self._describe(producer, group))
            for group in self._torn_groups(producers)
            for producer in group
        ]

    @staticmethod
    def _torn_groups(
        producers: Sequence[InstanceProducer],
    ) -> Iterator[tuple[InstanceProducer, ...]]:
        by_registration: dict[Registration, list[InstanceProducer]] = defaultdict(list)
        for producer in producers:
            if (
                not _is_plain_registration(producer)
                or producer.is_decorated
                or producer.lifestyle is Lifestyle.TRANSIENT
            ):
                continue
            by_registration[producer.registration].append(producer)

        by_component: dict[tuple[Any, Lifestyle], list[Registration]] = defaultdict(list)
        for registration in by_registration:
            by_component[(registration.implementation_type, registration.lifestyle)].append(
                registration
            )

        for registrations in by_component.values():
            if len(registrations) < 2:
                continue
            members = tuple(p for r in registrations for p in by_registration[r])
            if TornLifestyleAnalyzer._has_conflict(members):
                yield members

    @staticmethod
    def _has_conflict(members: Sequence[InstanceProducer]) -> bool:
        if any(p.lifestyle is not Lifestyle.SINGLETON for p in members):
            return True
        # Separate singleton registrations that already resolved to one
        # shared instance are not torn.
        instances = [p.peek_instance() for p in members]
        if any(instance is None for instance in instances):
            return True
        return len({id(instance) for instance in instances}) > 1

    @staticmethod
    def _describe(
        diagnosed: InstanceProducer,
        affected: Sequence[InstanceProducer],
    ) -> str:
        lifestyle = diagnosed.lifestyle
        torn = [p for p in affected if p.registration is not diagnosed.registration]
        single = len(torn) == 1
        during = "" if lifestyle is Lifestyle.SINGLETON else f" during a single {lifestyle.name}"
        return (
            f"The registration for {friendly_name(diagnosed.service_type)} maps to the same "
            f"implementation and lifestyle as the {'registration' if single else 'registrations'} "
            f"for {comma_separated(friendly_name(p.service_type) for p in torn)} "
            f"{'does' if single else 'do'}. They {'both' if single else 'all'} map to "
            f"{friendly_name(diagnosed.implementation_type)} ({lifestyle.name}). This will cause "
            "each registration to resolve to a different instance: each registration will "
            f"have its own instance{during}."
        )


class LifestyleMismatchAnalyzer(ContainerAnalyzer):
    diagnostic_type = DiagnosticType.LIFESTYLE_MISMATCH

    def root_description(self, results: Sequence[DiagnosticResult]) -> str:
        count = len(results)
        return f"{count} possible lifestyle {plural(count, 'mismatch', 'mismatches')} found."

    def group_description(self, results: Sequence[DiagnosticResult]) -> str:
        count = len(results)
        return f"{count} lifestyle {plural(count, 'mismatch', 'mismatches')}."

    def analyze(self, producers: Sequence[InstanceProducer]) -> list[DiagnosticResult]:
        results: list[DiagnosticResult] = []
        # Producers sharing a registration share its relationships.
        seen: set[tuple[Registration, KnownRelationship]] = set()
        for producer in producers:
            for relationship in producer.relationships:
                key = (producer.registration, relationship)
                if key in seen:
                    continue
                seen.add(key)
                if relationship.lifestyle.width > relationship.dependency.lifestyle.width:
                    results.append(
                        self._result(
                            producer,
                            (producer, relationship.dependency),
                            lifestyle_mismatch_description(relationship),
                        )
                    )
        return results


class ShortCircuitedDependencyAnalyzer(ContainerAnalyzer):
    """
    Finds consumers of auto-resolved concrete types that bypass a registration.

    Two shapes are reported: the auto-resolved type is the implementation of
    an explicitly registered abstraction, or it in turn depends on further
    auto-resolved concrete types.
    """

    diagnostic_type = DiagnosticType.SHORT_CIRCUITED_DEPENDENCY

    def root_description(self, results: Sequence[DiagnosticResult]) -> str:
        count = len(results)
        return (
            f"{count} possible short circuited "
            f"{plural(count, 'dependency', 'dependencies')} found."
        )

    def group_description(self, results: Sequence[DiagnosticResult]) -> str:
        count = len(results)
        return f"{count} short circuited {plural(count, 'component')}."

    def analyze(self, producers: Sequence[InstanceProducer]) -> list[DiagnosticResult]:
        by_implementation: dict[Any, list[InstanceProducer]] = defaultdict(list)
        for producer in producers:
            if producer.is_container_registered or not _is_plain_registration(producer):
                continue
            if producer.key is None and producer.service_type != producer.implementation_type:
                by_implementation[producer.implementation_type].append(producer)

        results: list[DiagnosticResult] = []
        for producer in producers:
            for dependency in producer.dependencies:
                if not dependency.is_container_registered:
                    continue
                description = self._describe(
                    producer,
                    dependency,
                    by_implementation.get(dependency.implementation_type, []),
                )
                if description is not None:
                    results.append(self._result(producer, (producer, dependency), description))
        return results

    @staticmethod
    def _describe(
        consumer: InstanceProducer,
        dependency: InstanceProducer,
        registered_abstractions: Sequence[InstanceProducer],
    ) -> str | None:
        consumer_name = friendly_name(consumer.implementation_type)
        dependency_name = friendly_name(dependency.service_type)
        if registered_abstractions:
            abstractions = comma_separated(
                f"{friendly_name(p.service_type)} ({p.lifestyle.name})"
                for p in registered_abstractions
            )
            return (
                f"{consumer_name} might incorrectly depend on unregistered type "
                f"{dependency_name} ({dependency.lifestyle.name}) instead of {abstractions}."
            )

        nested = [d for d in dependency.dependencies if d.is_container_registered]
        if not nested:
            return None
        return (
            f"{consumer_name} depends on the unregistered type {dependency_name}, which "
            f"itself depends on the unregistered {plural(len(nested), 'type')} "
            f"{comma_separated(friendly_name(d.service_type) for d in nested)}. "
            f"An explicit registration for {dependency_name} might be missing."
        )


class DisposableTransientComponentAnalyzer(ContainerAnalyzer):
    diagnostic_type = DiagnosticType.DISPOSABLE_TRANSIENT_COMPONENT

    def root_description(self, results: Sequence[DiagnosticResult]) -> str:
        count = len(results)
        return (
            f"{count} disposable transient {plural(count, 'component')} found. "
            "Transient instances are not tracked for disposal."
        )

    def group_description(self, results: Sequence[DiagnosticResult]) -> str:
        count = len(results)
        return f"{count} disposable transient {plural(count, 'component')}."

    def analyze(self, producers: Sequence[InstanceProducer]) -> list[DiagnosticResult]:
        results: list[DiagnosticResult] = []
        for producer in producers:
            if isinstance(producer, CollectionProducer):
                continue
            if producer.lifestyle is not Lifestyle.TRANSIENT:
                continue
            method = disposal_method(construction_type(producer.implementation_type))
            if method is None:
                continue
            results.append(
                self._result(
                    producer,
                    (producer,),
                    f"{friendly_name(producer.implementation_type)} is registered as transient, "
                    f"but implements {method}(). Transient instances are not tracked for "
                    "disposal by the container.",
                )
            )
        return results


class AmbiguousLifestylesAnalyzer(ContainerAnalyzer):
    diagnostic_type = DiagnosticType.AMBIGUOUS_LIFESTYLES

    def root_description(self, results: Sequence[DiagnosticResult]) -> str:
        count = len(results)
        return f"{count} possible {plural(count, 'registration')} found with ambiguous lifestyles."

    def group_description(self, results: Sequence[DiagnosticResult]) -> str:
        count = len(results)
        return f"{count} {plural(count, 'registration')} with ambiguous lifestyles."

    def analyze(self, producers: Sequence[InstanceProducer]) -> list[DiagnosticResult]:
        by_implementation: dict[Any, list[InstanceProducer]] = defaultdict(list)
        for producer in producers:
            if _is_plain_registration(producer):
                by_implementation[producer.implementation_type].append(producer)

        results: list[DiagnosticResult] = []
        for group in by_implementation.values():
            lifestyles = {p.lifestyle for p in group}
            if len(lifestyles) < 2:
                continue
            for producer in group:
                conflicting = [p for p in group if p.lifestyle is not producer.lifestyle]
                results.append(
                    self._result(producer, tuple(group), self._describe(producer, conflicting))
                )
        return results

    @staticmethod
    def _describe(
        diagnosed: InstanceProducer,
        conflicting: Sequence[InstanceProducer],
    ) -> str:
        single = len(conflicting) == 1
        others = comma_separated(
            f"{friendly_name(p.service_type)} ({p.lifestyle.name})" for p in conflicting
        )
        if single:
            tail = "registration for {0} does, but the registration maps to a different lifestyle"
        else:
            tail = "registrations for {0} do, but the registrations map to different lifestyles"
        return (
            f"The registration for {friendly_name(diagnosed.service_type)} "
            f"({diagnosed.lifestyle.name}) maps to the same implementation "
            f"({friendly_name(diagnosed.implementation_type)}) as the "
            f"{tail.format(others)}. "
            "This will cause each registration to resolve to a different instance."
        )


class ContainerRegisteredCollectionAnalyzer(ContainerAnalyzer):
    diagnostic_type = DiagnosticType.CONTAINER_REGISTERED_COLLECTION

    def root_description(self, results: Sequence[DiagnosticResult]) -> str:
        count = len(results)
        return f"{count} collection {plural(count, 'element')} found that can't be resolved."

    def group_description(self, results: Sequence[DiagnosticResult]) -> str:
        count = len(results)
        return f"{count} unresolvable collection {plural(count, 'element')}."

    def analyze(self, producers: Sequence[InstanceProducer]) -> list[DiagnosticResult]:
        results: list[DiagnosticResult] = []
        for producer in producers:
            if not isinstance(producer, CollectionProducer):
                continue
            element_type = producer.element_service_type
            for supplied, closed in producer.collection.unresolvable_elements(element_type):
                results.append(
                    self._result(
                        producer,
                        (producer,),
                        unregistered_abstract_element_message(element_type, supplied, closed),
                    )
                )
        return results


class ContainerRegisteredComponentAnalyzer(ContainerAnalyzer):
    diagnostic_type = DiagnosticType.CONTAINER_REGISTERED_COMPONENT
    severity = DiagnosticSeverity.INFORMATION

    def root_description(self, results: Sequence[DiagnosticResult]) -> str:
        count = len(results)
        return f"{count} container-registered {plural(count, 'type')} found."

    def group_description(self, results: Sequence[DiagnosticResult]) -> str:
        count = len(results)
        return f"{count} container-registered {plural(count, 'type')}."

    def analyze(self, producers: Sequence[InstanceProducer]) -> list[DiagnosticResult]:
        return [
            self._result(
                producer,
                (producer,),
                f"{friendly_name(producer.service_type)} ({producer.lifestyle.name}) is not "
                "registered explicitly; it was resolved using unregistered concrete type "
                "resolution.",
            )
            for producer in producers
            if producer.is_container_registered
        ]


DEFAULT_ANALYZERS: tuple[ContainerAnalyzer, ...] = (
    ContainerRegisteredComponentAnalyzer(),
    LifestyleMismatchAnalyzer(),
    ShortCircuitedDependencyAnalyzer(),
    DisposableTransientComponentAnalyzer(),
    TornLifestyleAnalyzer(),
    AmbiguousLifestylesAnalyzer(),
    ContainerRegisteredCollectionAnalyzer(),
)


def run_analyzers(
    producers: Sequence[InstanceProducer],
    analyzers: Sequence[ContainerAnalyzer] = DEFAULT_ANALYZERS,
) -> DiagnosticReport:
    """
    Run ``analyzers`` in order over one producer snapshot.

    Results diagnosing a registration that suppresses their kind are dropped.
    """
    snapshot = tuple(producers)
    results: list[DiagnosticResult] = []
    groups = []
    summaries = []
    for analyzer in analyzers:
        found = [
            result
            for result in analyzer.analyze(snapshot)
            if result.diagnosed_producer.registration.should_not_be_suppressed(result.kind)
        ]
        if not found:
            continue
        results.extend(found)
        groups.extend(group_results(analyzer, found))
        summaries.append((analyzer.diagnostic_type, analyzer.root_description(found)))
        logger.debug(f"Analyzer '{analyzer.name}' reported {len(found)} result(s)")

    return DiagnosticReport(
        results=tuple(results),
        groups=tuple(groups),
        summaries=tuple(summaries),
    )
