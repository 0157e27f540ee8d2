"""SQLite session operations on namespaces, key/value pairs and locks."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, NamedTuple, Optional, Sequence

from layerscan.datastore import BackendError, BadRequestError, DatabaseError, NotFoundError, Session
from layerscan.models import Namespace

log = logging.getLogger(__name__)


class LockResult(NamedTuple):
    """Whether a lock was acquired or renewed, and when it expires."""

    acquired: bool
    expiration: datetime


class LockInfo(NamedTuple):
    """The owner of a lock and when it expires."""

    owner: str
    expiration: datetime


def _to_db(moment: datetime) -> float:
    return moment.timestamp()


def _from_db(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


class SessionCore(Session):
    """A session on one SQLite connection, ended by commit or rollback."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection
        self._ended = False

    def commit(self) -> None:
        """Commit the session; does nothing once the session has ended."""
        if self._ended:
            return
        self._ended = True
        try:
            self._conn.commit()
        except sqlite3.Error as err:
            raise BackendError(f"database: commit failed: {err}") from err

    def rollback(self) -> None:
        """Drop the session's changes; does nothing once the session has ended."""
        if self._ended:
            return
        self._ended = True
        try:
            self._conn.rollback()
        except sqlite3.Error as err:
            raise BackendError(f"database: rollback failed: {err}") from err

    def _check_open(self) -> None:
        if self._ended:
            raise DatabaseError("database: session has already ended")

    def _execute(self, query_name: str, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        self._check_open()
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as err:
            log.error("query %s failed: %s", query_name, err)
            raise BackendError(f"database: {query_name} failed: {err}") from err

    def _executemany(self, query_name: str, sql: str, rows: Iterable[Sequence[Any]]) -> sqlite3.Cursor:
        self._check_open()
        try:
            return self._conn.executemany(sql, rows)
        except sqlite3.Error as err:
            log.error("query %s failed: %s", query_name, err)
            raise BackendError(f"database: {query_name} failed: {err}") from err

    # Namespaces

    def persist_namespaces(self, namespaces: Sequence[Namespace]) -> None:
        """Insert the namespaces that are not already stored."""
        if not namespaces:
            return
        if any(not ns.name or not ns.version_format for ns in namespaces):
            raise BadRequestError("Empty namespace name or version format is not allowed")
        # Insert in a fixed order to avoid lock-order conflicts between writers.
        ordered = sorted(set(namespaces), key=lambda ns: (ns.name, ns.version_format))
        self._executemany(
            "persistNamespace",
            "INSERT OR IGNORE INTO namespace (name, version_format) VALUES (?, ?)",
            [(ns.name, ns.version_format) for ns in ordered],
        )

    def _find_namespace_ids(self, namespaces: Sequence[Namespace]) -> list[Optional[int]]:
        """Return the id of each namespace in order, ``None`` where it is not stored."""
        found: dict[Namespace, Optional[int]] = {}
        for ns in namespaces:
            if ns in found:
                continue
            row = self._execute(
                "searchNamespace",
                "SELECT id FROM namespace WHERE name = ? AND version_format = ?",
                (ns.name, ns.version_format),
            ).fetchone()
            found[ns] = row[0] if row else None
        return [found[ns] for ns in namespaces]

    # Key/value pairs

    def update_key_value(self, key: str, value: str) -> None:
        """Store or replace the value of a key."""
        if not key or not value:
            log.warning("could not insert a flag which has an empty name or value")
            raise BadRequestError("could not insert a flag which has an empty name or value")
        self._execute(
            "upsertKeyValue",
            'INSERT INTO keyvalue ("key", "value") VALUES (?, ?) '
            'ON CONFLICT("key") DO UPDATE SET "value" = excluded."value"',
            (key, value),
        )

    def find_key_value(self, key: str) -> Optional[str]:
        """Return the value stored for a key, or ``None`` if there is none."""
        row = self._execute(
            "searchKeyValue", 'SELECT "value" FROM keyvalue WHERE "key" = ?', (key,)
        ).fetchone()
        return row[0] if row else None

    # Locks

    def lock(self, name: str, owner: str, duration: timedelta, renew: bool) -> LockResult:
        """Try to take, or with ``renew`` extend, a named lock without blocking."""
        if not name or not owner or duration == timedelta(0):
            log.warning("could not create an invalid lock")
            raise BadRequestError("Invalid Lock Parameters")

        until = datetime.now(timezone.utc) + duration
        if renew:
            cursor = self._execute(
                "updateLock",
                'UPDATE "lock" SET until = ? WHERE name = ? AND owner = ?',
                (_to_db(until), name, owner),
            )
            return LockResult(cursor.rowcount > 0, until)

        self._prune_locks()
        self._check_open()
        try:
            self._conn.execute(
                'INSERT INTO "lock" (name, owner, until) VALUES (?, ?, ?)',
                (name, owner, _to_db(until)),
            )
        except sqlite3.IntegrityError:
            return LockResult(False, until)
        except sqlite3.Error as err:
            raise BackendError(f"database: insertLock failed: {err}") from err
        return LockResult(True, until)

    def unlock(self, name: str, owner: str) -> None:
        """Release a lock held by ``owner``."""
        if not name or not owner:
            raise BadRequestError("Invalid Lock Parameters")
        self._execute(
            "removeLock", 'DELETE FROM "lock" WHERE name = ? AND owner = ?', (name, owner)
        )

    def find_lock(self, name: str) -> LockInfo:
        """Return the owner and expiration of a lock; raise ``NotFoundError`` if absent."""
        if not name:
            raise BadRequestError("could not find an invalid lock")
        row = self._execute(
            "searchLock", 'SELECT owner, until FROM "lock" WHERE name = ?', (name,)
        ).fetchone()
        if row is None:
            raise NotFoundError(f"lock {name!r} is not in database")
        return LockInfo(row[0], _from_db(row[1]))

    def _prune_locks(self) -> None:
        cursor = self._execute(
            "removeLockExpired",
            'DELETE FROM "lock" WHERE until < ?',
            (_to_db(datetime.now(timezone.utc)),),
        )
        log.debug("Pruned %d Locks", cursor.rowcount)