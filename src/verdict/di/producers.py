from __future__ import annotations

import contextvars
import threading
import weakref
from typing import TYPE_CHECKING, Any

from loguru import logger

from .errors import ActivationError, ContainerLockedError, CyclicDependencyError
from .lifestyles import Lifestyle
from .names import friendly_name
from .registration import Decoratee, KnownRelationship, Registration, Strategy

if TYPE_CHECKING:
    from .collections import ContainerControlledCollection
    from .container import Container

_RESOLUTION_PATH: contextvars.ContextVar[tuple[InstanceProducer, ...]] = (
    contextvars.ContextVar("_verdict_resolution_path", default=())
)


class VerificationTracker:
    """
    State of one verification pass.

    Records which producers were instantiated and which collections were
    already built, so a collection shared by several consumers is iterated
    once per pass.
    """

    def __init__(self) -> None:
        self.instantiated: set[tuple[Any, Any]] = set()
        self.collections: dict[Registration, object] = {}
        self.decoratees_verified: set[tuple[Any, Any]] = set()


_VERIFICATION_TRACKER: contextvars.ContextVar[VerificationTracker | None] = (
    contextvars.ContextVar("_verdict_verification_tracker", default=None)
)


def resolution_chain() -> tuple[Any, ...]:
    return tuple(p.service_type for p in _RESOLUTION_PATH.get())


class InstanceProducer:
    """
    Graph node binding one service type to one registration.

    The construction strategy is built lazily and at most once; decorators
    registered for the service type wrap the registration's output.
    """

    def __init__(
        self,
        service_type: Any,
        registration: Registration,
        container: Container,
        *,
        key: object | None = None,
        is_container_registered: bool = False,
        collection_service_type: Any = None,
    ) -> None:
        self.service_type = service_type
        self.registration = registration
        self.key = key
        self.is_container_registered = is_container_registered
        self.collection_service_type = collection_service_type
        self._container_ref: weakref.ReferenceType[Container] = weakref.ref(container)
        self._lock = threading.RLock()
        self._strategy: Strategy | None = None
        self._decorator_registrations: tuple[Registration, ...] = ()
        # Decoratees handed to decorators as factories; only called by verification.
        self._deferred_strategies: tuple[Strategy, ...] = ()
        self.instantiated = False

    @property
    def identity(self) -> tuple[Any, Any]:
        return (self.service_type, self.key)

    @property
    def lifestyle(self) -> Lifestyle:
        return self.registration.lifestyle

    @property
    def implementation_type(self) -> Any:
        return self.registration.implementation_type

    @property
    def container(self) -> Container:
        container = self._container_ref()
        if container is None:
            msg = "Requesting an instance from a destroyed container."
            logger.error(msg)
            raise RuntimeError(msg)
        return container

    @property
    def is_decorated(self) -> bool:
        return bool(self.container._decorators_for(self))

    @property
    def strategy_built(self) -> bool:
        return self._strategy is not None

    @property
    def decorator_registrations(self) -> tuple[Registration, ...]:
        return self._decorator_registrations

    @property
    def relationships(self) -> tuple[KnownRelationship, ...]:
        relationships = list(self.registration.relationships)
        for decorator in self._decorator_registrations:
            relationships.extend(decorator.relationships)
        return tuple(relationships)

    @property
    def dependencies(self) -> tuple[InstanceProducer, ...]:
        seen: dict[tuple[Any, Any], InstanceProducer] = {}
        for relationship in self.relationships:
            if relationship.dependency is self:
                continue
            seen.setdefault(relationship.dependency.identity, relationship.dependency)
        return tuple(seen.values())

    def build_strategy(self) -> Strategy:
        """
        Prepare the construction strategy without creating an instance.

        Preparing a strategy does not count as verification: the producer is
        still instantiated by the next ``verify()`` pass.
        """
        strategy = self._strategy
        if strategy is not None:
            return strategy

        with self._lock:
            if self._strategy is not None:
                return self._strategy
            token = _RESOLUTION_PATH.set(_RESOLUTION_PATH.get() + (self,))
            try:
                strategy = self._create_strategy()
            except (ActivationError, ContainerLockedError):
                raise
            except Exception as exc:
                raise self._wrap_failure(exc) from exc
            finally:
                _RESOLUTION_PATH.reset(token)
            strategy = self.container._notify_strategy_built(self, strategy)
            self._strategy = strategy
            logger.debug(f"Construction strategy built for {friendly_name(self.service_type)}")
            return strategy

    def _create_strategy(self) -> Strategy:
        registration = self.registration
        lifestyle = registration.lifestyle
        base = registration.build_strategy()

        def _registration_strategy() -> object:
            return lifestyle.get_instance(registration, base)

        strategy: Strategy = _registration_strategy
        decorators: list[Registration] = []
        deferred: list[Strategy] = []
        for decorator in self.container._decorators_for(self):
            decorator_registration = Registration(
                decorator.decorator_type,
                decorator.lifestyle,
                self.container,
            )
            decorated_type = self.collection_service_type or self.service_type
            decorator_base = decorator_registration.build_strategy(
                decoratee=Decoratee(decorated_type, strategy, self)
            )
            if decorator_registration.uses_decoratee_factory:
                deferred.append(strategy)
            strategy = _lifestyle_strategy(decorator_registration, decorator_base)
            decorators.append(decorator_registration)
        self._decorator_registrations = tuple(decorators)
        self._deferred_strategies = tuple(deferred)
        return strategy

    def get_instance(self) -> object:
        path = _RESOLUTION_PATH.get()
        if self in path:
            cycle = " -> ".join(friendly_name(p.service_type) for p in (*path, self))
            msg = (
                f"The configuration is invalid. The type {friendly_name(self.implementation_type)} "
                f"is directly or indirectly depending on itself. The cyclic graph contains: {cycle}."
            )
            logger.error(msg)
            raise CyclicDependencyError(
                msg,
                service_type=self.service_type,
                implementation_type=self.implementation_type,
                chain=resolution_chain() + (self.service_type,),
            )

        strategy = self.build_strategy()
        token = _RESOLUTION_PATH.set(path + (self,))
        try:
            instance = strategy()
        except (ActivationError, ContainerLockedError):
            raise
        except Exception as exc:
            raise self._wrap_failure(exc) from exc
        finally:
            _RESOLUTION_PATH.reset(token)

        if instance is None:
            raise self._null_failure()

        self.instantiated = True
        tracker = _VERIFICATION_TRACKER.get()
        if tracker is not None:
            tracker.instantiated.add(self.identity)
        return instance

    def verify_instance_creation(self) -> object:
        """Create an instance and also run every decoratee factory once."""
        instance = self.get_instance()
        self.verify_decoratee_factories()
        return instance

    def verify_decoratee_factories(self) -> None:
        """
        Build each decoratee handed to a decorator as a factory.

        Decorators receiving ``Callable[[], Service]`` may never call it while
        being constructed, so those decoratees are built here explicitly, at
        most once per verification pass.
        """
        tracker = _VERIFICATION_TRACKER.get()
        if tracker is not None:
            if self.identity in tracker.decoratees_verified:
                return
            tracker.decoratees_verified.add(self.identity)
        for deferred in self._deferred_strategies:
            token = _RESOLUTION_PATH.set(_RESOLUTION_PATH.get() + (self,))
            try:
                decoratee = deferred()
            except (ActivationError, ContainerLockedError):
                raise
            except Exception as exc:
                raise self._wrap_failure(exc) from exc
            finally:
                _RESOLUTION_PATH.reset(token)
            if decoratee is None:
                raise self._null_failure()

    def peek_instance(self) -> object | None:
        """Return the cached instance for cached lifestyles, never creating one."""
        return self.lifestyle.peek(self.registration)

    def _failure_chain(self) -> tuple[Any, ...]:
        path = _RESOLUTION_PATH.get()
        if not path or path[-1] is not self:
            path = path + (self,)
        return tuple(p.service_type for p in path)

    def _wrap_failure(self, exc: Exception) -> ActivationError:
        msg = (
            f"Creating the instance for type {friendly_name(self.implementation_type)} "
            f"failed. {type(exc).__name__}: {exc}"
        )
        logger.error(msg)
        return ActivationError(
            msg,
            service_type=self.service_type,
            implementation_type=self.implementation_type,
            chain=self._failure_chain(),
        )

    def _null_failure(self) -> ActivationError:
        if self.collection_service_type is not None:
            msg = (
                "One of the items in the collection for type "
                f"{friendly_name(self.collection_service_type)} is a null reference."
            )
        else:
            msg = (
                f"The registered delegate for type {friendly_name(self.service_type)} "
                "returned None."
            )
        logger.error(msg)
        return ActivationError(
            msg,
            service_type=self.service_type,
            implementation_type=self.implementation_type,
            chain=self._failure_chain(),
        )

    def __repr__(self) -> str:
        return (
            f"<InstanceProducer {friendly_name(self.service_type)} -> "
            f"{friendly_name(self.implementation_type)} ({self.lifestyle.name})>"
        )


def _lifestyle_strategy(registration: Registration, base: Strategy) -> Strategy:
    lifestyle = registration.lifestyle

    def _strategy() -> object:
        return lifestyle.get_instance(registration, base)

    return _strategy


class CollectionRegistration(Registration):
    """
    Registration backing a container-controlled collection.

    The element producers are resolved when the strategy is built; the
    collection lifestyle is the shortest lifestyle among its elements.
    """

    def __init__(
        self,
        collection: ContainerControlledCollection,
        element_service_type: Any,
        container: Container,
    ) -> None:
        from .collections import sequence_of

        super().__init__(sequence_of(element_service_type), Lifestyle.TRANSIENT, container)
        self.collection = collection
        self.element_service_type = element_service_type
        self._elements: tuple[InstanceProducer, ...] | None = None

    @property
    def lifestyle(self) -> Lifestyle:
        elements = self.elements
        if not elements:
            return Lifestyle.SINGLETON
        return min((e.lifestyle for e in elements), key=lambda ls: ls.width)

    @property
    def elements(self) -> tuple[InstanceProducer, ...]:
        with self._lock:
            if self._elements is None:
                self._elements = self.collection.element_producers(self.element_service_type)
            return self._elements

    def _create_strategy(self, decoratee: Any) -> Strategy:
        elements = self.elements
        self._relationships = tuple(
            KnownRelationship(self.implementation_type, self.lifestyle, element)
            for element in elements
        )

        def _collection_strategy() -> object:
            tracker = _VERIFICATION_TRACKER.get()
            if tracker is None:
                return tuple(element.get_instance() for element in elements)
            instances = tracker.collections.get(self)
            if instances is None:
                instances = tuple(element.get_instance() for element in elements)
                tracker.collections[self] = instances
            return instances

        return _collection_strategy


class CollectionProducer(InstanceProducer):
    """Producer for ``Sequence[T]`` backed by a container-controlled collection."""

    registration: CollectionRegistration

    def __init__(self, registration: CollectionRegistration, container: Container) -> None:
        super().__init__(registration.implementation_type, registration, container)

    @property
    def element_service_type(self) -> Any:
        return self.registration.element_service_type

    @property
    def collection(self) -> ContainerControlledCollection:
        return self.registration.collection

    @property
    def elements(self) -> tuple[InstanceProducer, ...]:
        return self.registration.elements

    @property
    def is_decorated(self) -> bool:
        return False

    def _create_strategy(self) -> Strategy:
        base = self.registration.build_strategy()
        self._decorator_registrations = ()
        return base
