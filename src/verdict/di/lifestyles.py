from __future__ import annotations

import contextvars
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, ClassVar

from loguru import logger

from .errors import ActivationError
from .names import friendly_name

if TYPE_CHECKING:
    from .container import Container
    from .registration import Registration

_CURRENT_SCOPE: contextvars.ContextVar[Scope | None] = contextvars.ContextVar(
    "_verdict_current_scope",
    default=None,
)

_DISPOSE_METHODS = ("__exit__", "__aexit__", "close", "dispose")


def disposal_method(tp: Any) -> str | None:
    """Return the name of the first teardown hook ``tp`` defines, if any."""
    for name in _DISPOSE_METHODS:
        if callable(getattr(tp, name, None)):
            return name
    return None


def dispose_instance(instance: object) -> None:
    method = disposal_method(type(instance))
    if method is None:
        return
    if method == "__exit__":
        instance.__exit__(None, None, None)  # type: ignore[attr-defined]
    elif method == "__aexit__":
        logger.warning(
            f"Instance of {type(instance).__name__} only supports async disposal; "
            "it must be closed by its owner."
        )
    else:
        getattr(instance, method)()


class Lifestyle(ABC):
    """
    Policy governing instance reuse.

    Lifestyles are totally ordered by ``width``: a wider lifestyle keeps its
    instances alive longer. Custom lifestyles subclass this and choose a width
    relative to the built-ins (transient=1, scoped=500, singleton=1000).
    """

    TRANSIENT: ClassVar[Lifestyle]
    SCOPED: ClassVar[Lifestyle]
    SINGLETON: ClassVar[Lifestyle]

    def __init__(self, name: str, width: int) -> None:
        if not name:
            raise ValueError("Lifestyle name must be a non-empty string.")
        self.name = name
        self.width = width

    @abstractmethod
    def get_instance(
        self,
        registration: Registration,
        create: Callable[[], object],
    ) -> object:
        """Return an instance for ``registration``, calling ``create`` when needed."""

    def peek(self, registration: Registration) -> object | None:
        """Return an already cached instance without creating one."""
        return None

    def create_registration(
        self,
        implementation_type: type[object],
        container: Container,
    ) -> Registration:
        from .registration import Registration

        return Registration(implementation_type, self, container)

    def __lt__(self, other: Lifestyle) -> bool:
        return self.width < other.width

    def __le__(self, other: Lifestyle) -> bool:
        return self.width <= other.width

    def __gt__(self, other: Lifestyle) -> bool:
        return self.width > other.width

    def __ge__(self, other: Lifestyle) -> bool:
        return self.width >= other.width

    def __repr__(self) -> str:
        return f"<Lifestyle {self.name} width={self.width}>"


class TransientLifestyle(Lifestyle):
    def __init__(self) -> None:
        super().__init__("Transient", 1)

    def get_instance(
        self,
        registration: Registration,
        create: Callable[[], object],
    ) -> object:
        return create()


class SingletonLifestyle(Lifestyle):
    def __init__(self) -> None:
        super().__init__("Singleton", 1000)

    def get_instance(
        self,
        registration: Registration,
        create: Callable[[], object],
    ) -> object:
        instance = registration._singleton_instance
        if instance is not None:
            return instance

        with registration._lock:
            if registration._singleton_instance is None:
                created = create()
                if created is None:
                    return None
                registration._singleton_instance = created
                container = registration.container
                if container is not None:
                    container._track_singleton(created)
                logger.debug(
                    f"Singleton instance created: {friendly_name(registration.implementation_type)}"
                )
            return registration._singleton_instance

    def peek(self, registration: Registration) -> object | None:
        return registration._singleton_instance


class ScopedLifestyle(Lifestyle):
    def __init__(self) -> None:
        super().__init__("Scoped", 500)

    def get_instance(
        self,
        registration: Registration,
        create: Callable[[], object],
    ) -> object:
        scope = _CURRENT_SCOPE.get()
        if scope is None:
            msg = (
                f"{friendly_name(registration.implementation_type)} is registered using the "
                f"'{self.name}' lifestyle, but the instance is requested outside the context "
                "of an active scope. Use container.begin_scope()."
            )
            logger.error(msg)
            raise ActivationError(msg, implementation_type=registration.implementation_type)
        return scope.get_or_create(registration, create)


Lifestyle.TRANSIENT = TransientLifestyle()
Lifestyle.SCOPED = ScopedLifestyle()
Lifestyle.SINGLETON = SingletonLifestyle()

_BUILTIN_LIFESTYLES = {
    "transient": Lifestyle.TRANSIENT,
    "scoped": Lifestyle.SCOPED,
    "singleton": Lifestyle.SINGLETON,
}


def normalize_lifestyle(lifestyle: Lifestyle | str) -> Lifestyle:
    if isinstance(lifestyle, Lifestyle):
        return lifestyle
    if isinstance(lifestyle, str):
        resolved = _BUILTIN_LIFESTYLES.get(lifestyle.strip().lower())
        if resolved is None:
            raise ValueError(
                f"Unsupported lifestyle string: {lifestyle!r}. "
                "Use 'Transient', 'Scoped' or 'Singleton'."
            )
        return resolved
    raise TypeError(
        "Invalid lifestyle type: "
        f"{type(lifestyle)!r}. Use a Lifestyle instance or 'Transient'/'Scoped'/'Singleton'."
    )


class Scope:
    """
    Unit of work for ``Lifestyle.SCOPED`` registrations.

    Entering a scope makes it the active scope of the current context
    (thread or asyncio task); leaving it disposes every scoped instance it
    created, in reverse creation order.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._instances: dict[Registration, object] = {}
        self._order: list[object] = []
        self._token: contextvars.Token[Scope | None] | None = None
        self.disposed = False

    def get_or_create(
        self,
        registration: Registration,
        create: Callable[[], object],
    ) -> object:
        with self._lock:
            if self.disposed:
                msg = "Requesting a scoped instance from a disposed scope."
                logger.error(msg)
                raise ActivationError(msg, implementation_type=registration.implementation_type)
            instance = self._instances.get(registration)
            if instance is not None:
                return instance
            instance = create()
            if instance is not None:
                self._instances[registration] = instance
                self._order.append(instance)
            return instance

    def dispose(self) -> None:
        with self._lock:
            if self.disposed:
                return
            self.disposed = True
            instances = list(reversed(self._order))
            self._instances.clear()
            self._order.clear()

        for instance in instances:
            try:
                dispose_instance(instance)
            except Exception:
                logger.exception(
                    f"Error disposing scoped instance: {type(instance).__name__}"
                )

    def __enter__(self) -> Scope:
        self._token = _CURRENT_SCOPE.set(self)
        return self

    def __exit__(self, *exc_info: object) -> None:
        try:
            self.dispose()
        finally:
            if self._token is not None:
                _CURRENT_SCOPE.reset(self._token)
                self._token = None


def current_scope() -> Scope | None:
    return _CURRENT_SCOPE.get()
