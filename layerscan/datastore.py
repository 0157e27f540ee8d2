"""Datastore interface, driver registry and the errors stores raise."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, Callable, Optional


class DatabaseError(Exception):
    """Base class for every error a datastore raises."""


class BackendError(DatabaseError):
    """The database backend does not work properly (e.g. it is unreachable)."""

    def __init__(self, message: str = "database: an error occurred when querying the backend") -> None:
        super().__init__(message)


class InconsistentError(DatabaseError):
    """A consistency check failed, e.g. a unique entity was found twice."""

    def __init__(self, message: str = "database: inconsistent database") -> None:
        super().__init__(message)


class BadRequestError(DatabaseError):
    """The request given to the datastore is invalid."""


class NotFoundError(DatabaseError):
    """The requested entity is not in the datastore."""

    def __init__(self, message: str = "the resource cannot be found") -> None:
        super().__init__(message)


@dataclass
class ComponentConfig:
    """Selects a registered component by type and passes it its options."""

    type: str = ""
    options: dict[str, Any] = field(default_factory=dict)


class Session(ABC):
    """A unit of work against a datastore, ended by commit or rollback.

    Besides ``commit`` and ``rollback``, no operation may be used once the
    session has ended. A session also offers the datastore operations on
    ancestries, layers, features, namespaces, vulnerabilities,
    notifications, key/value pairs and locks.

    Used as a context manager, the session is rolled back on exit; a
    rollback after a commit does nothing.
    """

    @abstractmethod
    def commit(self) -> None:
        """Commit the changes made in this session."""

    @abstractmethod
    def rollback(self) -> None:
        """Drop the changes made in this session."""

    def __enter__(self) -> "Session":
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.rollback()


class Datastore(ABC):
    """A persistent data store; closed on exit when used as a context manager."""

    @abstractmethod
    def begin(self) -> Session:
        """Start a session."""

    @abstractmethod
    def ping(self) -> bool:
        """Return whether the database is healthy."""

    @abstractmethod
    def close(self) -> None:
        """Close the database and free its resources."""

    def __enter__(self) -> "Datastore":
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.close()


Driver = Callable[[ComponentConfig], Datastore]
"""Opens a datastore from its configuration."""

_drivers: dict[str, Driver] = {}


def register(name: str, driver: Optional[Driver]) -> None:
    """Make a driver available under ``name``.

    Raises ``ValueError`` if the driver is ``None`` or the name is taken.
    """
    if driver is None:
        raise ValueError("database: could not register nil Driver")
    if name in _drivers:
        raise ValueError(f"database: could not register duplicate Driver: {name}")
    _drivers[name] = driver


def open_datastore(config: ComponentConfig) -> Datastore:
    """Open the datastore whose driver is named by ``config.type``."""
    try:
        driver = _drivers[config.type]
    except KeyError:
        raise DatabaseError(
            f'database: unknown Driver "{config.type}" (forgotten configuration or import?)'
        ) from None
    return driver(config)