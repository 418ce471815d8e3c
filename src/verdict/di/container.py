from __future__ import annotations

import threading
import weakref
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from .analyzers import lifestyle_mismatch_description
from .collections import (
    CollectionRegistrator,
    ContainerControlledCollection,
    collection_element_type,
    is_abstract,
    is_open_generic,
    sequence_of,
)
from .diagnostics import DIAGNOSTICS_DOCS_URL, DiagnosticReport
from .errors import ActivationError, ContainerLockedError
from .lifestyles import Lifestyle, Scope, dispose_instance, normalize_lifestyle
from .names import friendly_name
from .producers import CollectionProducer, CollectionRegistration, InstanceProducer
from .registration import (
    _VALUE_TYPES,
    KnownRelationship,
    Registration,
    Strategy,
    construction_type,
)
from .verification import VerificationOption, diagnose_container, verify_container

Initializer = Callable[[Any], None]
UnregisteredTypeHandler = Callable[["UnregisteredTypeEventArgs"], None]
StrategyBuiltHandler = Callable[[InstanceProducer, Strategy], "Strategy | None"]


class ContainerState(Enum):
    OPEN = "open"
    FROZEN = "frozen"


@dataclass
class ContainerOptions:
    """
    Container-wide configuration, available as ``container.options``.

    Options are writable until the owning container is frozen.
    """

    default_lifestyle: Lifestyle = field(default_factory=lambda: Lifestyle.TRANSIENT)
    resolve_unregistered_concrete_types: bool = True
    suppress_lifestyle_mismatch_verification: bool = False
    diagnostics_docs_url: str = DIAGNOSTICS_DOCS_URL
    _owner: weakref.ReferenceType[Container] | None = field(
        default=None,
        init=False,
        repr=False,
        compare=False,
    )

    def __setattr__(self, name: str, value: Any) -> None:
        owner_ref = self.__dict__.get("_owner")
        owner = owner_ref() if owner_ref is not None else None
        if owner is not None and not name.startswith("_"):
            owner._ensure_not_frozen()
        if name == "default_lifestyle":
            value = normalize_lifestyle(value)
        object.__setattr__(self, name, value)


@dataclass(frozen=True)
class DecoratorSpec:
    service_type: Any
    decorator_type: type[object]
    lifestyle: Lifestyle
    predicate: Callable[[InstanceProducer], bool] | None = None

    def applies_to(self, producer: InstanceProducer) -> bool:
        return self.predicate is None or bool(self.predicate(producer))


class UnregisteredTypeEventArgs:
    """Passed to ``on_resolve_unregistered_type`` handlers."""

    def __init__(self, service_type: Any, container: Container) -> None:
        self.service_type = service_type
        self._container = container
        self.registration: Registration | None = None

    @property
    def handled(self) -> bool:
        return self.registration is not None

    def register(
        self,
        target: Registration | type[object] | Callable[[], object],
        lifestyle: Lifestyle | str | None = None,
    ) -> None:
        if self.registration is not None:
            msg = (
                f"Multiple handlers tried to register type {friendly_name(self.service_type)} "
                "during unregistered type resolution."
            )
            logger.error(msg)
            raise ActivationError(msg, service_type=self.service_type)

        container = self._container
        resolved_lifestyle = (
            container.options.default_lifestyle
            if lifestyle is None
            else normalize_lifestyle(lifestyle)
        )
        if isinstance(target, Registration):
            self.registration = target
        elif isinstance(target, type):
            self.registration = Registration(target, resolved_lifestyle, container)
        elif callable(target):
            self.registration = Registration(
                self.service_type,
                resolved_lifestyle,
                container,
                factory=target,
            )
        else:
            raise TypeError(
                "register() expects a Registration, a concrete type or a factory, "
                f"got {type(target)!r}."
            )


class Container:
    """
    Registration and resolution entry point.

    Lifecycle
    ---------
    * While ``OPEN`` the container accepts registrations, decorators,
      initializers, hooks and option changes.
    * The first ``get_instance()``, ``get_all_instances()``, ``verify()`` or
      ``analyze()`` call moves it to ``FROZEN``; any later mutation raises
      ``ContainerLockedError`` and leaves the graph untouched.

    Concurrency model
    -----------------
    * All mutations are serialized by ``self._lock``.
    * Resolution is thread-safe: producers and registrations carry their own
      locks; the container lock is only taken for short registry updates.
    * The active scope and the resolution path are context-local, so
      concurrent threads and asyncio tasks do not observe each other.
    """

    def __init__(self, options: ContainerOptions | None = None) -> None:
        self._lock = threading.RLock()
        self._state = ContainerState.OPEN
        self._producers: dict[tuple[Any, Any], InstanceProducer] = {}
        self._explicit: list[tuple[Any, Any]] = []
        self._collections: dict[Any, ContainerControlledCollection] = {}
        self._decorators: list[DecoratorSpec] = []
        self._initializers: list[tuple[type[object], Initializer]] = []
        self._unregistered_type_handlers: list[UnregisteredTypeHandler] = []
        self._strategy_built_handlers: list[StrategyBuiltHandler] = []
        self._singletons: list[object] = []
        self.disposed = False

        self.options = options if options is not None else ContainerOptions()
        self.options._owner = weakref.ref(self)
        self.collection = CollectionRegistrator(self)

    # --------------------------------------------------------------------- #
    # State                                                                 #
    # --------------------------------------------------------------------- #

    @property
    def state(self) -> ContainerState:
        return self._state

    @property
    def is_frozen(self) -> bool:
        return self._state is ContainerState.FROZEN

    def _freeze(self) -> None:
        with self._lock:
            if self._state is ContainerState.OPEN:
                self._state = ContainerState.FROZEN
                logger.debug("Container frozen; registrations are now locked.")

    def _ensure_not_frozen(self) -> None:
        if self._state is ContainerState.FROZEN:
            msg = (
                "The container can't be changed after the first call to get_instance(), "
                "get_all_instances(), verify() or analyze(). Make all registrations "
                "before the container is used."
            )
            logger.error(msg)
            raise ContainerLockedError(msg)

    # --------------------------------------------------------------------- #
    # Registration API                                                      #
    # --------------------------------------------------------------------- #

    def register(
        self,
        service_type: Any,
        implementation: Any = None,
        *,
        lifestyle: Lifestyle | str | None = None,
        factory: Callable[[], object] | None = None,
    ) -> InstanceProducer:
        """
        Register a one-to-one mapping for ``service_type``.

        Parameters
        ----------
        service_type:
            The type consumers depend on.
        implementation:
            Concrete type built by constructor injection. Defaults to
            ``service_type``. Mutually exclusive with ``factory``.
        lifestyle:
            ``Lifestyle`` instance or its name; defaults to
            ``options.default_lifestyle``.
        factory:
            Zero-argument delegate returning the instance.
        """
        if factory is not None and implementation is not None:
            msg = (
                f"Registration for {friendly_name(service_type)} supplies both an "
                "implementation type and a factory; supply only one."
            )
            logger.error(msg)
            raise ValueError(msg)

        resolved_lifestyle = self._lifestyle_or_default(lifestyle)
        if factory is not None:
            registration = Registration(service_type, resolved_lifestyle, self, factory=factory)
        else:
            implementation = service_type if implementation is None else implementation
            self._validate_implementation(service_type, implementation)
            registration = Registration(implementation, resolved_lifestyle, self)
        return self.add_registration(service_type, registration)

    def register_instance(self, service_type: Any, instance: object) -> InstanceProducer:
        if instance is None:
            msg = f"The instance registered for {friendly_name(service_type)} can not be None."
            logger.error(msg)
            raise ValueError(msg)
        registration = Registration(type(instance), Lifestyle.SINGLETON, self, instance=instance)
        return self.add_registration(service_type, registration)

    def add_registration(self, service_type: Any, registration: Registration) -> InstanceProducer:
        """
        Map ``service_type`` onto an existing ``registration``.

        Service types sharing one registration share its cached instance.
        """
        if registration.container is not self:
            msg = "The supplied registration belongs to a different container."
            logger.error(msg)
            raise ValueError(msg)

        with self._lock:
            self._ensure_not_frozen()
            identity = (service_type, None)
            if identity in self._producers:
                msg = (
                    f"Type {friendly_name(service_type)} has already been registered. "
                    "Each service type can only be registered once."
                )
                logger.error(msg)
                raise ValueError(msg)
            producer = InstanceProducer(service_type, registration, self)
            self._producers[identity] = producer
            self._explicit.append(identity)

        logger.debug(
            f"Registered {friendly_name(service_type)} -> "
            f"{friendly_name(registration.implementation_type)} ({registration.lifestyle.name})"
        )
        return producer

    def register_decorator(
        self,
        service_type: Any,
        decorator_type: type[object],
        lifestyle: Lifestyle | str | None = None,
        predicate: Callable[[InstanceProducer], bool] | None = None,
    ) -> None:
        """
        Wrap every producer of ``service_type`` with ``decorator_type``.

        Decorators apply in registration order: the last registered decorator
        is the outermost one.
        """
        if not isinstance(decorator_type, type):
            raise TypeError(
                f"Invalid decorator for {friendly_name(service_type)}: "
                f"expected a class, got {decorator_type!r}."
            )
        spec = DecoratorSpec(
            service_type,
            decorator_type,
            self._lifestyle_or_default(lifestyle),
            predicate,
        )
        with self._lock:
            self._ensure_not_frozen()
            self._decorators.append(spec)
        logger.debug(
            f"Decorator registered: {friendly_name(decorator_type)} for "
            f"{friendly_name(service_type)}"
        )

    def register_initializer(self, service_type: type[object], callback: Initializer) -> None:
        if not callable(callback):
            raise TypeError(f"Invalid initializer: expected a callable, got {type(callback)!r}.")
        with self._lock:
            self._ensure_not_frozen()
            self._initializers.append((service_type, callback))

    def on_resolve_unregistered_type(self, handler: UnregisteredTypeHandler) -> None:
        with self._lock:
            self._ensure_not_frozen()
            self._unregistered_type_handlers.append(handler)

    def on_strategy_built(self, handler: StrategyBuiltHandler) -> None:
        """
        Observe (and optionally replace) each construction strategy once built.

        A handler returning a callable replaces the strategy.
        """
        with self._lock:
            self._ensure_not_frozen()
            self._strategy_built_handlers.append(handler)

    # --------------------------------------------------------------------- #
    # Resolution API                                                        #
    # --------------------------------------------------------------------- #

    def get_instance(self, service_type: Any) -> Any:
        self._freeze()
        producer = self._get_producer(service_type)
        if producer is None:
            msg = f"No registration for type {friendly_name(service_type)} could be found."
            logger.error(msg)
            raise ActivationError(msg, service_type=service_type)
        return producer.get_instance()

    def get_all_instances(self, service_type: Any) -> tuple[Any, ...]:
        self._freeze()
        producer = self._get_collection_producer(service_type)
        if producer is None:
            msg = (
                f"No registration for type {friendly_name(sequence_of(service_type))} could be "
                f"found. Use container.collection.register({friendly_name(service_type)}, ...) "
                "to register a collection."
            )
            logger.error(msg)
            raise ActivationError(msg, service_type=sequence_of(service_type))
        return producer.get_instance()  # type: ignore[return-value]

    def get_registration(self, service_type: Any) -> InstanceProducer | None:
        """Return the producer already known for ``service_type``, never creating one."""
        return self._get_registered_producer((service_type, None))

    def get_current_registrations(self) -> tuple[InstanceProducer, ...]:
        with self._lock:
            return tuple(self._producers.values())

    def begin_scope(self) -> Scope:
        return Scope()

    def verify(
        self,
        option: VerificationOption | int | str = VerificationOption.VERIFY_AND_DIAGNOSE,
    ) -> DiagnosticReport:
        """
        Build every root once and run the diagnostic analyzers.

        The container is frozen first, even when verification then fails.
        Raises ``VerificationError`` on the first construction failure and,
        with ``VERIFY_AND_DIAGNOSE``, ``DiagnosticVerificationError`` when
        warnings were found.
        """
        return verify_container(self, option)

    def analyze(self) -> DiagnosticReport:
        """
        Run the analyzers on prepared strategies without creating instances.

        Singletons not built yet can't be compared, so separate singleton
        registrations of one implementation are reported as torn here even
        when constructing them would yield one shared object. ``verify()``
        builds them first and only reports groups whose instances differ.
        """
        return diagnose_container(self)

    def dispose(self) -> None:
        """
        Dispose all singleton instances in reverse creation order.

        Teardown failures are logged and do not stop the remaining disposals.
        Calling this more than once is a no-op.
        """
        with self._lock:
            if self.disposed:
                return
            self.disposed = True
            singletons = list(reversed(self._singletons))
            self._singletons.clear()
            registrations = {p.registration for p in self._producers.values()}

        logger.debug("Starting disposal of all singleton instances...")
        for instance in singletons:
            try:
                dispose_instance(instance)
            except Exception:
                logger.exception(f"Error disposing singleton instance: {type(instance).__name__}")
        for registration in registrations:
            if not registration.is_instance_registration:
                registration._singleton_instance = None
        logger.debug("Finished disposal of all singleton instances.")

    # --------------------------------------------------------------------- #
    # Producer registry                                                     #
    # --------------------------------------------------------------------- #

    def _add_producer(self, producer: InstanceProducer) -> InstanceProducer:
        with self._lock:
            return self._producers.setdefault(producer.identity, producer)

    def _get_registered_producer(self, identity: tuple[Any, Any]) -> InstanceProducer | None:
        return self._producers.get(identity)

    def _find_explicit_producer(self, service_type: Any) -> InstanceProducer | None:
        producer = self._producers.get((service_type, None))
        if isinstance(producer, CollectionProducer):
            return None
        return producer

    def _root_producers(self) -> list[InstanceProducer]:
        with self._lock:
            roots = [self._producers[identity] for identity in self._explicit]
            collections = list(self._collections.values())
        for collection in collections:
            for element_service_type in collection.closed_service_types():
                producer = self._get_collection_producer(element_service_type)
                if producer is not None:
                    roots.append(producer)
        return roots

    def _get_producer(self, service_type: Any) -> InstanceProducer | None:
        producer = self._producers.get((service_type, None))
        if producer is not None:
            return producer
        element_type = collection_element_type(service_type)
        if element_type is not None:
            return self._get_collection_producer(element_type)
        return self._resolve_unregistered_type(service_type)

    def _collection_for(self, element_service_type: Any) -> ContainerControlledCollection | None:
        collection = self._collections.get(element_service_type)
        if collection is None:
            origin = getattr(element_service_type, "__origin__", None)
            collection = self._collections.get(origin) if origin is not None else None
        return collection

    def _get_collection_producer(self, element_service_type: Any) -> CollectionProducer | None:
        identity = (sequence_of(element_service_type), None)
        existing = self._producers.get(identity)
        if isinstance(existing, CollectionProducer):
            return existing

        collection = self._collection_for(element_service_type)
        if collection is None:
            return None
        registration = CollectionRegistration(collection, element_service_type, self)
        producer = self._add_producer(CollectionProducer(registration, self))
        return producer  # type: ignore[return-value]

    def _resolve_unregistered_type(self, service_type: Any) -> InstanceProducer | None:
        """
        Fallback for types without explicit registration.

        Handlers registered through ``on_resolve_unregistered_type`` run first;
        otherwise a constructible concrete type gets a container-registered
        producer using the default lifestyle.
        """
        existing = self._producers.get((service_type, None))
        if existing is not None:
            return existing

        for handler in list(self._unregistered_type_handlers):
            args = UnregisteredTypeEventArgs(service_type, self)
            handler(args)
            if args.registration is not None:
                logger.debug(
                    f"Unregistered type {friendly_name(service_type)} resolved by handler"
                )
                return self._add_producer(InstanceProducer(service_type, args.registration, self))

        if not self._is_auto_constructible(service_type):
            return None
        registration = Registration(service_type, self.options.default_lifestyle, self)
        producer = InstanceProducer(
            service_type,
            registration,
            self,
            is_container_registered=True,
        )
        logger.debug(f"Unregistered concrete type {friendly_name(service_type)} resolved")
        return self._add_producer(producer)

    def _is_auto_constructible(self, service_type: Any) -> bool:
        if not self.options.resolve_unregistered_concrete_types:
            return False
        cls = construction_type(service_type)
        if not isinstance(cls, type) or cls in _VALUE_TYPES:
            return False
        if is_open_generic(service_type) or is_abstract(service_type):
            return False
        return cls.__module__ != "builtins"

    def _get_dependency_producer(
        self,
        service_type: Any,
        consumer: Registration,
        parameter_name: str,
    ) -> InstanceProducer:
        producer = self._get_producer(service_type)
        if producer is None:
            consumer_name = friendly_name(consumer.implementation_type)
            dependency_name = friendly_name(service_type)
            msg = (
                f"The constructor of type {consumer_name} contains the parameter with name "
                f"'{parameter_name}' and type {dependency_name}, which is not registered. "
                f"Please ensure {dependency_name} is registered, or change the constructor "
                f"of {consumer_name}."
            )
            logger.error(msg)
            raise ActivationError(
                msg,
                service_type=service_type,
                implementation_type=consumer.implementation_type,
            )
        return producer

    def _check_lifestyle_mismatch(self, consumer: Registration, dependency: InstanceProducer) -> None:
        if self.options.suppress_lifestyle_mismatch_verification:
            return
        if consumer.lifestyle.width <= dependency.lifestyle.width:
            return
        relationship = KnownRelationship(consumer.implementation_type, consumer.lifestyle, dependency)
        msg = (
            "A lifestyle mismatch has been detected. "
            f"{lifestyle_mismatch_description(relationship)} Components should only depend on "
            "other components with an equal or longer lifestyle. Set "
            "options.suppress_lifestyle_mismatch_verification to allow this."
        )
        logger.error(msg)
        raise ActivationError(
            msg,
            service_type=dependency.service_type,
            implementation_type=consumer.implementation_type,
        )

    # --------------------------------------------------------------------- #
    # Hooks used by producers and registrations                            #
    # --------------------------------------------------------------------- #

    def _decorators_for(self, producer: InstanceProducer) -> list[DecoratorSpec]:
        return [
            spec
            for spec in self._decorators
            if spec.service_type == producer.service_type and spec.applies_to(producer)
        ]

    def _decorators_for_type(self, service_type: Any) -> list[DecoratorSpec]:
        return [spec for spec in self._decorators if spec.service_type == service_type]

    def _initializers_for(self, cls: Any) -> list[Initializer]:
        callbacks: list[Initializer] = []
        for initialized_type, callback in self._initializers:
            try:
                if issubclass(cls, initialized_type):
                    callbacks.append(callback)
            except TypeError:
                continue
        return callbacks

    def _notify_strategy_built(self, producer: InstanceProducer, strategy: Strategy) -> Strategy:
        for handler in list(self._strategy_built_handlers):
            replacement = handler(producer, strategy)
            if replacement is not None:
                strategy = replacement
        return strategy

    def _track_singleton(self, instance: object) -> None:
        with self._lock:
            self._singletons.append(instance)

    # --------------------------------------------------------------------- #
    # Helpers                                                               #
    # --------------------------------------------------------------------- #

    def _lifestyle_or_default(self, lifestyle: Lifestyle | str | None) -> Lifestyle:
        if lifestyle is None:
            return self.options.default_lifestyle
        return normalize_lifestyle(lifestyle)

    @staticmethod
    def _validate_implementation(service_type: Any, implementation: Any) -> None:
        impl_cls = construction_type(implementation)
        if not isinstance(impl_cls, type):
            msg = (
                f"Invalid implementation for {friendly_name(service_type)}: "
                f"expected a class, got {implementation!r}."
            )
            logger.error(msg)
            raise TypeError(msg)
        if is_abstract(implementation):
            msg = (
                f"The given type {friendly_name(implementation)} is abstract and can not be "
                f"used as implementation for {friendly_name(service_type)}."
            )
            logger.error(msg)
            raise TypeError(msg)
        service_cls = construction_type(service_type)
        if not isinstance(service_cls, type):
            return
        try:
            compatible = issubclass(impl_cls, service_cls)
        except TypeError:
            return
        if not compatible:
            msg = (
                f"The supplied type {friendly_name(implementation)} does not inherit from "
                f"{friendly_name(service_type)}."
            )
            logger.error(msg)
            raise TypeError(msg)

    def __enter__(self) -> Container:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()
