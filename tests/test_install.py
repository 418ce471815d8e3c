from __future__ import annotations

from contextlib import asynccontextmanager

import anyio
import pytest
from fastapi import FastAPI, WebSocket
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from tests.di_test_services.services import (
    BrokenMailer,
    ConsoleLogger,
    DbConnection,
    ILogger,
    IMailer,
    IUserRepository,
    MessageBus,
    SqlUserRepository,
    UnitOfWork,
    UserService,
    recorded,
    reset_records,
)
from verdict.di import (
    Container,
    ContainerLockedError,
    DiagnosticReport,
    DiagnosticVerificationError,
    Inject,
    ScopedLifestyleMiddleware,
    VerificationError,
    VerificationOption,
    VerificationSettings,
    install_container,
    resolve_container,
)


def _user_container() -> Container:
    container = Container()
    container.register(ILogger, ConsoleLogger, lifestyle="singleton")
    container.register(IUserRepository, SqlUserRepository)
    container.register(UserService)
    return container


def test_install_container_verifies_on_startup_and_injects() -> None:
    container = _user_container()
    app = FastAPI()
    settings = install_container(app, container)

    @app.get("/users/{user_id}")
    def get_user(user_id: int, service: UserService = Inject(UserService)):
        return {"user": service.repo.get(user_id)}

    assert isinstance(settings, VerificationSettings)
    assert resolve_container(app.state) is container
    assert not container.is_frozen

    with TestClient(app) as client:
        assert container.is_frozen
        report = app.state.diagnostic_report
        assert isinstance(report, DiagnosticReport)
        assert not report.has_warnings

        response = client.get("/users/7")
        assert response.status_code == 200
        assert response.json() == {"user": "user-7"}


def test_scoped_instances_are_shared_per_request_and_disposed() -> None:
    reset_records()
    container = Container()
    container.register(UnitOfWork, lifestyle="scoped")
    app = FastAPI()
    install_container(app, container)

    @app.get("/uow")
    def uow(
        first: UnitOfWork = Inject(UnitOfWork),
        second: UnitOfWork = Inject(UnitOfWork),
    ):
        assert not first.closed
        return {"same": first is second, "id": id(first)}

    with TestClient(app) as client:
        first_response = client.get("/uow").json()
        assert first_response["same"] is True
        assert recorded() == ["close:UnitOfWork"]

        second_response = client.get("/uow").json()
        assert second_response["same"] is True
        assert recorded() == ["close:UnitOfWork", "close:UnitOfWork"]


def test_websocket_connection_gets_its_own_scope() -> None:
    reset_records()
    container = Container()
    container.register(UnitOfWork, lifestyle="scoped")
    app = FastAPI()
    install_container(app, container)

    @app.websocket("/ws")
    async def ws_endpoint(websocket: WebSocket, uow: UnitOfWork = Inject(UnitOfWork)) -> None:
        await websocket.accept()
        await websocket.send_text("closed" if uow.closed else "open")
        await websocket.close()

    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_text() == "open"

    assert "close:UnitOfWork" in recorded()


def test_websocket_scope_is_disposed_on_server_exception() -> None:
    reset_records()
    container = Container()
    container.register(UnitOfWork, lifestyle="scoped")
    app = FastAPI()
    install_container(app, container)

    @app.websocket("/ws-error")
    async def ws_endpoint(websocket: WebSocket, uow: UnitOfWork = Inject(UnitOfWork)) -> None:
        await websocket.accept()
        raise RuntimeError("ws boom")

    with TestClient(app, raise_server_exceptions=False) as client:
        try:
            with client.websocket_connect("/ws-error") as ws:
                ws.receive_text()
        except (RuntimeError, WebSocketDisconnect, anyio.ClosedResourceError):
            pass

    assert recorded() == ["close:UnitOfWork"]


def test_scope_middleware_is_added_once() -> None:
    app = FastAPI()
    app.add_middleware(ScopedLifestyleMiddleware)
    install_container(app, Container())

    assert [m.cls for m in app.user_middleware].count(ScopedLifestyleMiddleware) == 1


def test_scope_middleware_can_be_skipped() -> None:
    app = FastAPI()
    settings = install_container(app, Container(), auto_add_scope_middleware=False)

    assert not settings.auto_add_scope_middleware
    assert ScopedLifestyleMiddleware not in [m.cls for m in app.user_middleware]


def test_strict_true_fails_startup_on_invalid_configuration() -> None:
    container = Container()
    container.register(IMailer, BrokenMailer)
    app = FastAPI()
    install_container(app, container)

    with pytest.raises(VerificationError, match="smtp unreachable"):
        with TestClient(app):
            pass


def test_strict_false_allows_startup_on_invalid_configuration() -> None:
    container = Container()
    container.register(IMailer, BrokenMailer)
    app = FastAPI()
    install_container(app, container, strict=False)

    @app.get("/health")
    def health():
        return {"ok": True}

    with TestClient(app) as client:
        response = client.get("/health")
        assert response.status_code == 200
        assert app.state.diagnostic_report is None


def test_diagnostic_warnings_fail_startup_by_default() -> None:
    container = Container()
    container.register(DbConnection)
    app = FastAPI()
    install_container(app, container)

    with pytest.raises(DiagnosticVerificationError, match="Disposable Transient Component"):
        with TestClient(app):
            pass


def test_report_option_exposes_warnings_on_app_state() -> None:
    container = Container()
    container.register(DbConnection)
    app = FastAPI()
    settings = install_container(app, container, option="verify_and_report")

    assert settings.option is VerificationOption.VERIFY_AND_REPORT
    with TestClient(app):
        report = app.state.diagnostic_report
        assert report.has_warnings
        assert report.warnings[0].service_type is DbConnection


def test_invalid_option_is_rejected_at_install_time() -> None:
    app = FastAPI()

    with pytest.raises(ValueError, match="is invalid for enum type 'VerificationOption'"):
        install_container(app, Container(), option=9)


def test_registrations_are_locked_after_startup() -> None:
    container = _user_container()
    app = FastAPI()
    install_container(app, container)

    with TestClient(app):
        with pytest.raises(ContainerLockedError):
            container.register(MessageBus)


def test_singletons_are_disposed_on_shutdown() -> None:
    reset_records()
    container = Container()
    container.register(MessageBus, lifestyle="singleton")
    app = FastAPI()
    install_container(app, container)

    with TestClient(app):
        assert recorded() == []

    assert recorded() == ["close:MessageBus"]
    assert container.disposed


def test_dispose_on_shutdown_can_be_disabled() -> None:
    reset_records()
    container = Container()
    container.register(MessageBus, lifestyle="singleton")
    app = FastAPI()
    install_container(app, container, dispose_on_shutdown=False)

    with TestClient(app):
        pass

    assert recorded() == []
    assert not container.disposed


def test_app_lifespan_runs_after_verification() -> None:
    order: list[str] = []
    container = _user_container()

    def _record_verified(producer, strategy):
        if "verified" not in order:
            order.append("verified")

    container.on_strategy_built(_record_verified)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        order.append("startup")
        yield
        order.append("shutdown")

    app = FastAPI(lifespan=lifespan)
    install_container(app, container)

    with TestClient(app):
        pass

    assert order == ["verified", "startup", "shutdown"]


def test_inject_rejects_non_type_arguments() -> None:
    with pytest.raises(TypeError, match="expects a service type"):
        Inject("user_service")


def test_install_container_rejects_double_install() -> None:
    app = FastAPI()
    install_container(app, Container())

    with pytest.raises(RuntimeError, match="already been called"):
        install_container(app, Container())
