from __future__ import annotations

import types
from collections.abc import Iterable
from typing import Any, TypeVar, get_args, get_origin


def friendly_name(tp: Any) -> str:
    """
    Render a type for diagnostics.

    Generic aliases keep their arguments (``EventHandler[AuditableEvent]``),
    type variables render as their bare name and plain classes use
    ``__name__``.
    """
    if isinstance(tp, TypeVar):
        return tp.__name__
    if tp is Ellipsis:
        return "..."
    if tp is None or tp is type(None):
        return "None"
    origin = get_origin(tp)
    if origin is not None:
        args = get_args(tp)
        if origin is types.UnionType:
            return " | ".join(friendly_name(a) for a in args)
        origin_name = getattr(origin, "__name__", None) or repr(origin)
        if not args:
            return origin_name
        return f"{origin_name}[{', '.join(friendly_name(a) for a in args)}]"
    params = getattr(tp, "__parameters__", ())
    name = getattr(tp, "__name__", None)
    if name is None:
        return repr(tp)
    if params and isinstance(tp, type):
        # Open generic class, e.g. EventHandler[TEvent].
        return f"{name}[{', '.join(friendly_name(p) for p in params)}]"
    return name


def comma_separated(names: Iterable[str]) -> str:
    items = list(names)
    if len(items) <= 1:
        return "".join(items)
    return f"{', '.join(items[:-1])} and {items[-1]}"
