from __future__ import annotations

import collections.abc
import inspect
import threading
import weakref
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar, get_args, get_origin, get_type_hints

from loguru import logger

from .errors import ActivationError
from .lifestyles import Lifestyle, normalize_lifestyle
from .names import friendly_name

if TYPE_CHECKING:
    from .container import Container
    from .diagnostics import DiagnosticType
    from .producers import InstanceProducer

Strategy = Callable[[], object]

_VALUE_TYPES = (bool, int, float, complex, str, bytes)


@dataclass(frozen=True)
class Decoratee:
    """The component a decorator registration wraps."""

    service_type: Any
    strategy: Strategy
    producer: InstanceProducer


@dataclass(frozen=True)
class KnownRelationship:
    """Edge of the object graph: ``implementation_type`` consumes ``dependency``."""

    implementation_type: Any
    lifestyle: Lifestyle
    dependency: InstanceProducer


@dataclass(frozen=True)
class _ParameterSpec:
    name: str
    annotation: Any


def construction_type(implementation_type: Any) -> type[object]:
    """Return the class that is actually called for ``implementation_type``."""
    return get_origin(implementation_type) or implementation_type


def substitute_type_vars(annotation: Any, mapping: dict[Any, Any]) -> Any:
    if not mapping:
        return annotation
    if isinstance(annotation, TypeVar):
        return mapping.get(annotation, annotation)
    params = getattr(annotation, "__parameters__", ())
    if not params or get_origin(annotation) is None:
        return annotation
    return annotation[tuple(mapping.get(p, p) for p in params)]


def _is_decoratee_factory(annotation: Any, service_type: Any) -> bool:
    if get_origin(annotation) is not collections.abc.Callable:
        return False
    args = get_args(annotation)
    return len(args) == 2 and args[0] == [] and args[1] == service_type


class Registration:
    """
    Describes how one implementation is constructed.

    A registration pairs an implementation type with a lifestyle and one of
    three construction strategies: constructor injection, a user-supplied
    factory delegate, or a fixed instance. Several producers may share one
    registration; for cached lifestyles they then share the instance.
    """

    def __init__(
        self,
        implementation_type: Any,
        lifestyle: Lifestyle | str,
        container: Container,
        *,
        factory: Callable[[], object] | None = None,
        instance: object | None = None,
    ) -> None:
        self.implementation_type = implementation_type
        self._lifestyle = normalize_lifestyle(lifestyle)
        self._container_ref: weakref.ReferenceType[Container] = weakref.ref(container)
        self.factory = factory
        self.wraps_instance_creation_delegate = factory is not None
        self.is_instance_registration = instance is not None

        if factory is not None and not callable(factory):
            raise TypeError(
                f"Invalid factory for {friendly_name(implementation_type)}: "
                f"expected a callable, got {type(factory)!r}."
            )
        if self.is_instance_registration and self._lifestyle is not Lifestyle.SINGLETON:
            raise ValueError("Instance registrations always use the Singleton lifestyle.")

        self._lock = threading.RLock()
        self._singleton_instance: object | None = instance
        self._strategy: Strategy | None = None
        self._relationships: tuple[KnownRelationship, ...] = ()
        self._suppressions: dict[DiagnosticType, str] = {}
        self.uses_decoratee_factory = False

    @property
    def lifestyle(self) -> Lifestyle:
        return self._lifestyle

    @property
    def container(self) -> Container | None:
        return self._container_ref()

    @property
    def relationships(self) -> tuple[KnownRelationship, ...]:
        return self._relationships

    def suppress_diagnostic_warning(self, kind: DiagnosticType, justification: str) -> None:
        if not justification or not justification.strip():
            raise ValueError(
                "A justification is required when suppressing a diagnostic warning."
            )
        container = self.container
        if container is not None:
            container._ensure_not_frozen()
        self._suppressions[kind] = justification

    def should_not_be_suppressed(self, kind: DiagnosticType) -> bool:
        return kind not in self._suppressions

    def build_strategy(self, decoratee: Decoratee | None = None) -> Strategy:
        """
        Build (once) the callable that creates a fresh, undecorated instance.

        ``decoratee`` is only supplied for decorator registrations: a
        parameter annotated with the decorated service type receives the
        decoratee, a ``Callable[[], Service]`` parameter receives its factory.
        """
        with self._lock:
            if self._strategy is None:
                self._strategy = self._create_strategy(decoratee)
            return self._strategy

    def _create_strategy(self, decoratee: Decoratee | None) -> Strategy:
        container = self._require_container()

        if self.is_instance_registration:
            instance = self._singleton_instance
            return lambda: instance

        initializers = container._initializers_for(construction_type(self.implementation_type))

        if self.factory is not None:
            factory = self.factory

            def _delegate_strategy() -> object:
                instance = factory()
                if instance is not None:
                    for initializer in initializers:
                        initializer(instance)
                return instance

            return _delegate_strategy

        ctor = construction_type(self.implementation_type)
        resolved: list[tuple[str, Strategy]] = []
        relationships: list[KnownRelationship] = []
        for spec in self._parameter_specs():
            if decoratee is not None and spec.annotation == decoratee.service_type:
                container._check_lifestyle_mismatch(self, decoratee.producer)
                relationships.append(
                    KnownRelationship(self.implementation_type, self.lifestyle, decoratee.producer)
                )
                resolved.append((spec.name, decoratee.strategy))
                continue
            # A decoratee factory creates a new decoratee per call; no mismatch.
            if decoratee is not None and _is_decoratee_factory(
                spec.annotation, decoratee.service_type
            ):
                decoratee_factory = decoratee.strategy
                self.uses_decoratee_factory = True
                resolved.append((spec.name, lambda f=decoratee_factory: f))
                continue

            producer = container._get_dependency_producer(spec.annotation, self, spec.name)
            container._check_lifestyle_mismatch(self, producer)
            relationships.append(KnownRelationship(self.implementation_type, self.lifestyle, producer))
            resolved.append((spec.name, producer.get_instance))

        self._relationships = tuple(relationships)

        def _constructor_strategy() -> object:
            kwargs = {name: getter() for name, getter in resolved}
            instance = ctor(**kwargs)
            for initializer in initializers:
                initializer(instance)
            return instance

        return _constructor_strategy

    def _parameter_specs(self) -> list[_ParameterSpec]:
        ctor = construction_type(self.implementation_type)
        init = ctor.__init__
        if init is object.__init__:
            return []

        type_name = friendly_name(self.implementation_type)
        try:
            signature = inspect.signature(init)
            hints = get_type_hints(init)
        except Exception as exc:
            msg = f"The constructor of type {type_name} could not be inspected: {exc}"
            logger.error(msg)
            raise ActivationError(msg, implementation_type=self.implementation_type) from exc

        mapping: dict[Any, Any] = {}
        if get_origin(self.implementation_type) is not None:
            mapping = dict(
                zip(
                    getattr(ctor, "__parameters__", ()),
                    get_args(self.implementation_type),
                    strict=False,
                )
            )

        specs: list[_ParameterSpec] = []
        for name, parameter in list(signature.parameters.items())[1:]:
            if parameter.kind in (
                inspect.Parameter.VAR_POSITIONAL,
                inspect.Parameter.VAR_KEYWORD,
            ):
                continue
            if parameter.default is not inspect.Parameter.empty:
                continue
            annotation = hints.get(name, inspect.Parameter.empty)
            if annotation is inspect.Parameter.empty:
                msg = (
                    f"The constructor of type {type_name} contains parameter '{name}' "
                    "without a type annotation, which can not be used for constructor injection."
                )
                logger.error(msg)
                raise ActivationError(msg, implementation_type=self.implementation_type)
            annotation = substitute_type_vars(annotation, mapping)
            if annotation in _VALUE_TYPES:
                msg = (
                    f"The constructor of type {type_name} contains parameter '{name}' "
                    f"of type {friendly_name(annotation)}, which can not be used for constructor "
                    "injection because it is a value type."
                )
                logger.error(msg)
                raise ActivationError(msg, implementation_type=self.implementation_type)
            if isinstance(annotation, TypeVar):
                msg = (
                    f"The constructor of type {type_name} contains parameter '{name}' "
                    f"of the unbound generic type {annotation.__name__}."
                )
                logger.error(msg)
                raise ActivationError(msg, implementation_type=self.implementation_type)
            specs.append(_ParameterSpec(name, annotation))
        return specs

    def _require_container(self) -> Container:
        container = self.container
        if container is None:
            msg = "Building a registration of a destroyed container."
            logger.error(msg)
            raise RuntimeError(msg)
        return container

    def __repr__(self) -> str:
        return (
            f"<Registration {friendly_name(self.implementation_type)} "
            f"({self.lifestyle.name})>"
        )
