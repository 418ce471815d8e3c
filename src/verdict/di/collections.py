from __future__ import annotations

import collections.abc
import inspect
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar, get_args, get_origin

from loguru import logger

from .errors import ActivationError
from .lifestyles import Lifestyle
from .names import friendly_name
from .registration import Registration, construction_type

if TYPE_CHECKING:
    from .container import Container
    from .producers import InstanceProducer

_COLLECTION_ORIGINS = (
    collections.abc.Sequence,
    collections.abc.Collection,
    collections.abc.Iterable,
)


def sequence_of(element_type: Any) -> Any:
    return collections.abc.Sequence[element_type]


def collection_element_type(annotation: Any) -> Any | None:
    """Return ``T`` for ``Sequence[T]``-like annotations, else ``None``."""
    origin = get_origin(annotation)
    args = get_args(annotation)
    if origin in _COLLECTION_ORIGINS and len(args) == 1:
        return args[0]
    if origin is tuple and len(args) == 2 and args[1] is Ellipsis:
        return args[0]
    return None


def is_open_generic(tp: Any) -> bool:
    return isinstance(tp, type) and bool(getattr(tp, "__parameters__", ()))


def is_abstract(tp: Any) -> bool:
    cls = construction_type(tp)
    if not isinstance(cls, type):
        return False
    return inspect.isabstract(cls) or bool(getattr(cls, "_is_protocol", False))


def closing_arguments(cls: Any, open_type: type[object]) -> Iterator[tuple[Any, ...]]:
    """Yield the argument tuples with which ``cls`` closes ``open_type``."""
    if not isinstance(cls, type):
        return
    for klass in cls.__mro__:
        for base in getattr(klass, "__orig_bases__", ()):
            if get_origin(base) is not open_type:
                continue
            args = get_args(base)
            if not any(getattr(a, "__parameters__", ()) or isinstance(a, TypeVar) for a in args):
                yield args


def unregistered_abstract_element_message(
    element_service_type: Any,
    supplied_type: Any,
    closed_type: Any,
) -> str:
    element = friendly_name(element_service_type)
    supplied = friendly_name(supplied_type)
    closed = friendly_name(closed_type)
    if closed != supplied:
        supplied_text = f"the abstract type {supplied} (closed as {closed})"
    else:
        supplied_text = f"the abstract type {supplied}"
    return (
        f"The registration for the collection of {element} "
        f"(i.e. {friendly_name(sequence_of(element_service_type))}) is supplied with "
        f"{supplied_text}, which hasn't been registered explicitly, and wasn't resolved "
        "using unregistered type resolution. For the container to be able to resolve "
        "this collection, an explicit one-to-one registration is required, e.g. "
        f"container.register({closed}, MyImpl). Otherwise, in case {supplied} was "
        "supplied by accident, make sure it is removed."
    )


@dataclass(frozen=True)
class _CollectionItem:
    kind: str  # "type" | "registration" | "instance"
    value: Any

    @property
    def element_class(self) -> Any:
        if self.kind == "type":
            return self.value
        if self.kind == "registration":
            return self.value.implementation_type
        return type(self.value)


@dataclass(frozen=True)
class _ClosedItem:
    item: _CollectionItem
    closed_type: Any


class ContainerControlledCollection:
    """
    Ordered set of items registered for one (possibly open generic) service.

    Items are types, ``Registration`` objects or instances. Element producers
    are created per closed element service type when a collection producer
    builds its strategy.
    """

    def __init__(self, service_type: Any, container: Container) -> None:
        self.service_type = service_type
        self._container = container
        self._items: list[_CollectionItem] = []
        self._lock = threading.Lock()

    @property
    def is_open_generic(self) -> bool:
        return is_open_generic(self.service_type)

    def add(self, item: object) -> None:
        with self._lock:
            self._items.append(self._to_item(item))

    def _to_item(self, item: object) -> _CollectionItem:
        if isinstance(item, Registration):
            return _CollectionItem("registration", item)
        if isinstance(item, type) or get_origin(item) is not None:
            self._validate_type(item)
            return _CollectionItem("type", item)
        if item is None:
            raise TypeError(
                f"Collection items for {friendly_name(self.service_type)} must not be None."
            )
        return _CollectionItem("instance", item)

    def _validate_type(self, item: Any) -> None:
        if self.is_open_generic:
            return
        service_cls = construction_type(self.service_type)
        try:
            compatible = issubclass(construction_type(item), service_cls)
        except TypeError:
            return
        if not compatible:
            msg = (
                f"The supplied type {friendly_name(item)} does not implement "
                f"{friendly_name(self.service_type)}."
            )
            logger.error(msg)
            raise TypeError(msg)

    def items(self) -> tuple[_CollectionItem, ...]:
        with self._lock:
            return tuple(self._items)

    def closed_service_types(self) -> list[Any]:
        """
        Element service types that verification should build.

        For an open generic collection these are the closures implied by its
        non-generic members.
        """
        if not self.is_open_generic:
            return [self.service_type]
        closed: list[Any] = []
        for item in self.items():
            element_class = item.element_class
            if is_open_generic(element_class):
                continue
            for args in closing_arguments(element_class, self.service_type):
                alias = self.service_type[args]
                if alias not in closed:
                    closed.append(alias)
        return closed

    def _close(self, element_service_type: Any) -> list[_ClosedItem]:
        if not self.is_open_generic:
            return [_ClosedItem(item, item.element_class) for item in self.items()]

        args = get_args(element_service_type)
        closed: list[_ClosedItem] = []
        for item in self.items():
            element_class = item.element_class
            if is_open_generic(element_class):
                if item.kind != "type":
                    continue
                if len(element_class.__parameters__) != len(args):
                    continue
                closed.append(_ClosedItem(item, element_class[args]))
            elif args in closing_arguments(element_class, self.service_type):
                closed.append(_ClosedItem(item, element_class))
        return closed

    def unresolvable_elements(self, element_service_type: Any) -> list[tuple[Any, Any]]:
        """
        Side-effect free check for abstract members that nothing can build.

        Returns ``(supplied_type, closed_type)`` pairs.
        """
        container = self._container
        unresolvable: list[tuple[Any, Any]] = []
        for closed in self._close(element_service_type):
            if closed.item.kind != "type" or not is_abstract(closed.closed_type):
                continue
            if container._find_explicit_producer(closed.closed_type) is not None:
                continue
            unresolvable.append((closed.item.value, closed.closed_type))
        return unresolvable

    def element_producers(self, element_service_type: Any) -> tuple[InstanceProducer, ...]:
        from .producers import InstanceProducer

        container = self._container
        decorated = bool(container._decorators_for_type(element_service_type))
        producers: list[InstanceProducer] = []
        for index, closed in enumerate(self._close(element_service_type)):
            key = ("collection", index)
            existing = container._get_registered_producer((element_service_type, key))
            if existing is not None:
                producers.append(existing)
                continue

            item = closed.item
            if item.kind == "instance":
                registration = Registration(
                    type(item.value),
                    Lifestyle.SINGLETON,
                    container,
                    instance=item.value,
                )
            elif item.kind == "registration":
                registration = item.value
            else:
                explicit = container._find_explicit_producer(closed.closed_type)
                if explicit is None and is_abstract(closed.closed_type):
                    explicit = container._resolve_unregistered_type(closed.closed_type)
                    if explicit is None:
                        msg = unregistered_abstract_element_message(
                            element_service_type,
                            item.value,
                            closed.closed_type,
                        )
                        logger.error(msg)
                        raise ActivationError(
                            msg,
                            service_type=sequence_of(element_service_type),
                            implementation_type=closed.closed_type,
                        )
                if explicit is not None and not decorated:
                    producers.append(explicit)
                    continue
                if explicit is not None:
                    registration = explicit.registration
                else:
                    registration = Registration(
                        closed.closed_type,
                        container.options.default_lifestyle,
                        container,
                    )

            producer = InstanceProducer(
                element_service_type,
                registration,
                container,
                key=key,
                collection_service_type=element_service_type,
            )
            producers.append(container._add_producer(producer))
        return tuple(producers)


class CollectionRegistrator:
    """Registration API for collections, exposed as ``container.collection``."""

    def __init__(self, container: Container) -> None:
        self._container = container

    def register(self, service_type: Any, items: Iterable[object]) -> None:
        container = self._container
        with container._lock:
            container._ensure_not_frozen()
            if service_type in container._collections:
                msg = (
                    f"A collection for {friendly_name(service_type)} has already been "
                    "registered. Use container.collection.append() to add items."
                )
                logger.error(msg)
                raise ValueError(msg)
            collection = ContainerControlledCollection(service_type, container)
            for item in items:
                collection.add(item)
            container._collections[service_type] = collection
        logger.debug(
            f"Collection registered: {friendly_name(service_type)} items={len(collection.items())}"
        )

    def append(self, service_type: Any, item: object) -> None:
        container = self._container
        with container._lock:
            container._ensure_not_frozen()
            collection = container._collections.get(service_type)
            if collection is None:
                collection = ContainerControlledCollection(service_type, container)
                container._collections[service_type] = collection
            collection.add(item)
