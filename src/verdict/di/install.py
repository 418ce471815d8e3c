from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI
from fastapi.params import Depends
from starlette.requests import HTTPConnection
from starlette.types import ASGIApp, Receive, Scope, Send

from .container import Container
from .diagnostics import DiagnosticReport
from .lifestyles import Scope as LifestyleScope
from .names import friendly_name
from .verification import VerificationOption, normalize_verification_option

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationSettings:
    option: VerificationOption = VerificationOption.VERIFY_AND_DIAGNOSE
    strict: bool = True
    auto_add_scope_middleware: bool = True
    dispose_on_shutdown: bool = True


def _has_middleware(app: FastAPI, middleware_cls: type[object]) -> bool:
    for middleware in app.user_middleware:
        if getattr(middleware, "cls", None) is middleware_cls:
            return True
    return False


def resolve_container(app_state: object) -> Container | None:
    if app_state is None:
        return None
    container = getattr(app_state, "di_container", None)
    return container if isinstance(container, Container) else None


def install_container(
    app: FastAPI,
    container: Container,
    *,
    option: VerificationOption | int | str = VerificationOption.VERIFY_AND_DIAGNOSE,
    strict: bool = True,
    auto_add_scope_middleware: bool = True,
    dispose_on_shutdown: bool = True,
) -> VerificationSettings:
    """
    Attach ``container`` to a FastAPI app and verify it on startup.

    Startup runs ``container.verify(option)`` before the app's own lifespan;
    with ``strict=False`` a failing verification is logged and the app starts
    anyway. Shutdown disposes the container's singletons.
    """
    if isinstance(getattr(app.state, "verification_settings", None), VerificationSettings):
        raise RuntimeError("install_container() has already been called for this FastAPI app.")

    settings = VerificationSettings(
        option=normalize_verification_option(option),
        strict=strict,
        auto_add_scope_middleware=auto_add_scope_middleware,
        dispose_on_shutdown=dispose_on_shutdown,
    )

    if settings.auto_add_scope_middleware and not _has_middleware(app, ScopedLifestyleMiddleware):
        # Register early so user middlewares run inside the request scope.
        app.add_middleware(ScopedLifestyleMiddleware)

    previous_lifespan = app.router.lifespan_context

    @asynccontextmanager
    async def _combined_lifespan(inner_app: FastAPI) -> AsyncIterator[None]:
        try:
            try:
                report: DiagnosticReport = await asyncio.to_thread(
                    container.verify,
                    settings.option,
                )
                inner_app.state.diagnostic_report = report
                logger.info("Container verified: %s", report.summary())
            except Exception:
                if settings.strict:
                    raise
                logger.exception(
                    "Container verification failed; continuing because strict=False"
                )

            async with previous_lifespan(inner_app):
                yield

        finally:
            if settings.dispose_on_shutdown:
                container.dispose()

    app.router.lifespan_context = _combined_lifespan
    app.state.verification_settings = settings
    app.state.di_container = container
    app.state.diagnostic_report = None
    return settings


def Inject(service_type: Any) -> Depends:
    """
    Create a FastAPI dependency marker resolving ``service_type``.

        @router.get("/items")
        def endpoint(repo: ItemRepository = Inject(ItemRepository)):
            ...

    Scoped registrations resolve within the request scope opened by
    ``ScopedLifestyleMiddleware``.
    """
    if service_type is None or isinstance(service_type, str):
        raise TypeError("Inject() expects a service type.")

    def _dependency_callable(request: HTTPConnection) -> object:
        container = resolve_container(getattr(request.app, "state", None))
        if container is None:
            msg = "Container not installed on FastAPI app state (di_container)."
            logger.error(msg)
            raise RuntimeError(msg)
        return container.get_instance(service_type)

    _dependency_callable.__name__ = f"inject_{friendly_name(service_type)}"
    _dependency_callable.__qualname__ = _dependency_callable.__name__
    return Depends(_dependency_callable)


class ScopedLifestyleMiddleware:
    """
    ASGI middleware opening one lifestyle scope per HTTP request or
    WebSocket connection.

    Scoped instances are disposed in reverse creation order once the
    response (including background tasks) has completed.

    Usage:

        app.add_middleware(ScopedLifestyleMiddleware)
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        with LifestyleScope():
            await self.app(scope, receive, send)
