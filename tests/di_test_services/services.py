from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Callable, Sequence
from typing import Generic, TypeVar

_EVENTS: list[str] = []
CREATIONS: Counter[str] = Counter()


def record(event: str) -> None:
    _EVENTS.append(event)


def recorded() -> list[str]:
    return list(_EVENTS)


def reset_records() -> None:
    _EVENTS.clear()
    CREATIONS.clear()


# Loggers and repositories


class ILogger(ABC):
    @abstractmethod
    def log(self, message: str) -> None: ...


class ConsoleLogger(ILogger):
    def log(self, message: str) -> None:
        record(f"log:{message}")


class IUserRepository(ABC):
    @abstractmethod
    def get(self, user_id: int) -> str: ...


class SqlUserRepository(IUserRepository):
    def __init__(self, logger: ILogger) -> None:
        self.logger = logger

    def get(self, user_id: int) -> str:
        return f"user-{user_id}"


class UserService:
    def __init__(self, repo: IUserRepository) -> None:
        self.repo = repo


class Dashboard:
    def __init__(self, repo: SqlUserRepository) -> None:
        self.repo = repo


class ReportFormatter:
    pass


class ReportBuilder:
    def __init__(self, formatter: ReportFormatter) -> None:
        self.formatter = formatter


class ReportPage:
    def __init__(self, builder: ReportBuilder) -> None:
        self.builder = builder


# Mailers and decorators


class IMailer(ABC):
    @abstractmethod
    def send(self, to: str) -> str: ...


class SmtpMailer(IMailer):
    def send(self, to: str) -> str:
        return f"smtp:{to}"


class BrokenMailer(IMailer):
    def __init__(self) -> None:
        raise RuntimeError("smtp unreachable")

    def send(self, to: str) -> str:
        raise NotImplementedError


class MailerDecorator(IMailer):
    def __init__(self, decoratee: IMailer) -> None:
        self.decoratee = decoratee

    def send(self, to: str) -> str:
        return self.decoratee.send(to)


class RetryingMailerDecorator(IMailer):
    def __init__(self, decoratee: IMailer) -> None:
        self.decoratee = decoratee

    def send(self, to: str) -> str:
        return self.decoratee.send(to)


class FailingMailerDecorator(IMailer):
    def __init__(self, decoratee: IMailer) -> None:
        raise RuntimeError("decorator boom")

    def send(self, to: str) -> str:
        raise NotImplementedError


class LazyMailerProxy(IMailer):
    def __init__(self, factory: Callable[[], IMailer]) -> None:
        self.factory = factory

    def send(self, to: str) -> str:
        return self.factory().send(to)


# Lifestyle related components


class RequestClock:
    def __init__(self) -> None:
        self.started = time.monotonic()


class DbConnection:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True
        record("close:DbConnection")


class MessageBus:
    def close(self) -> None:
        record("close:MessageBus")


class UnitOfWork:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True
        record("close:UnitOfWork")


class SlowSingleton:
    created = 0
    _lock = threading.Lock()

    def __init__(self) -> None:
        time.sleep(0.01)
        with SlowSingleton._lock:
            SlowSingleton.created += 1


class CachedRepository:
    def __init__(self, connection: DbConnection) -> None:
        self.connection = connection


class ServiceA:
    def __init__(self, b: ServiceB) -> None:
        self.b = b


class ServiceB:
    def __init__(self, a: ServiceA) -> None:
        self.a = a


class NeedsPort:
    def __init__(self, port: int) -> None:
        self.port = port


class HasDefaultPort:
    def __init__(self, port: int = 8080) -> None:
        self.port = port


# Torn lifestyle candidates


class IReader(ABC):
    @abstractmethod
    def read(self) -> str: ...


class IWriter(ABC):
    @abstractmethod
    def write(self, data: str) -> None: ...


class IAuditor(ABC):
    @abstractmethod
    def audit(self) -> None: ...


class FileStore(IReader, IWriter, IAuditor):
    def read(self) -> str:
        return ""

    def write(self, data: str) -> None:
        pass

    def audit(self) -> None:
        pass


class SharedFileStore(IReader, IWriter):
    """Always constructs to the same object."""

    _instance: SharedFileStore | None = None

    def __new__(cls) -> SharedFileStore:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def read(self) -> str:
        return ""

    def write(self, data: str) -> None:
        pass


# Collections


class IPlugin(ABC):
    @abstractmethod
    def name(self) -> str: ...


class AuditPlugin(IPlugin):
    def __init__(self) -> None:
        CREATIONS["AuditPlugin"] += 1

    def name(self) -> str:
        return "audit"


class MetricsPlugin(IPlugin):
    def __init__(self) -> None:
        CREATIONS["MetricsPlugin"] += 1

    def name(self) -> str:
        return "metrics"


class IAbstractPlugin(IPlugin):
    pass


class PluginHost:
    def __init__(self, plugins: Sequence[IPlugin]) -> None:
        self.plugins = plugins


class PluginReport:
    def __init__(self, plugins: Sequence[IPlugin]) -> None:
        self.plugins = plugins


TEvent = TypeVar("TEvent")


class AuditableEvent:
    pass


class EventHandler(ABC, Generic[TEvent]):
    @abstractmethod
    def handle(self, event: TEvent) -> None: ...


class AuditTrailHandler(EventHandler[AuditableEvent]):
    def handle(self, event: AuditableEvent) -> None:
        record("handled:AuditableEvent")
