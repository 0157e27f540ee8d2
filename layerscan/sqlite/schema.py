"""Schema migrations for the SQLite datastore."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass

SEVERITIES = ("Unknown", "Negligible", "Low", "Medium", "High", "Critical", "Defcon1")
"""Severity levels a vulnerability may carry, from least to most severe."""


@dataclass(frozen=True)
class Migration:
    """A numbered schema change: statements to apply it and to revert it."""

    id: int
    up: tuple[str, ...]
    down: tuple[str, ...] = ()


_migrations: list[Migration] = []


def register_migration(migration: Migration) -> None:
    """Add a migration to those applied by ``apply_migrations``.

    Raises ``ValueError`` if a migration with the same id is registered.
    """
    if any(existing.id == migration.id for existing in _migrations):
        raise ValueError(f"migration {migration.id} is already registered")
    _migrations.append(migration)


def apply_migrations(connection: sqlite3.Connection) -> list[int]:
    """Apply every registered migration not yet applied; return their ids in order."""
    if connection.in_transaction:
        connection.commit()
    connection.execute("CREATE TABLE IF NOT EXISTS schema_migrations (id INTEGER PRIMARY KEY)")
    connection.commit()

    done = {row[0] for row in connection.execute("SELECT id FROM schema_migrations")}
    applied: list[int] = []
    for migration in sorted(_migrations, key=lambda m: m.id):
        if migration.id in done:
            continue
        connection.execute("BEGIN")
        try:
            for statement in migration.up:
                connection.execute(statement)
            connection.execute("INSERT INTO schema_migrations (id) VALUES (?)", (migration.id,))
        except BaseException:
            connection.rollback()
            raise
        connection.commit()
        applied.append(migration.id)
    return applied


@dataclass(frozen=True)
class _Table:
    name: str
    columns: tuple[str, ...]
    unique: tuple[str, ...] = ()
    indexes: tuple[tuple[str, tuple[str, ...]], ...] = ()

    def statements(self) -> list[str]:
        body = ["id INTEGER PRIMARY KEY AUTOINCREMENT", *self.columns]
        if self.unique:
            body.append(f"UNIQUE ({', '.join(self.unique)})")
        result = [f'CREATE TABLE IF NOT EXISTS "{self.name}" ({", ".join(body)})']
        result.extend(
            f'CREATE INDEX IF NOT EXISTS {index} ON "{self.name}"({", ".join(cols)})'
            for index, cols in self.indexes
        )
        return result


def _ref(table: str, on_delete: str = "", not_null: bool = False) -> str:
    clause = f"INT{' NOT NULL' if not_null else ''} REFERENCES {table}"
    return f"{clause} ON DELETE {on_delete}" if on_delete else clause


def _link(name: str, owner: str, column: str, column_type: str, indexed: bool = True) -> _Table:
    """A table joining an owner row to one value, unique per owner."""
    owner_id = f"{owner}_id"
    indexes = ((f"{name}_{owner}_idx", (owner_id,)),) if indexed else ()
    return _Table(
        name,
        (f"{owner_id} {_ref(owner, 'CASCADE')}", f"{column} {column_type}"),
        (owner_id, column),
        indexes,
    )


_SEVERITY_CHECK = ", ".join(f"'{s}'" for s in SEVERITIES)

_TABLES = (
    _Table(
        "namespace",
        ("name TEXT NULL", "version_format TEXT"),
        ("name", "version_format"),
        (("namespace_name_idx", ("name",)),),
    ),
    _Table(
        "feature",
        ("name TEXT NOT NULL", "version TEXT NOT NULL", "version_format TEXT NOT NULL"),
        ("name", "version", "version_format"),
        (("feature_name_idx", ("name",)),),
    ),
    _Table(
        "namespaced_feature",
        (f"namespace_id {_ref('namespace')}", f"feature_id {_ref('feature')}"),
        ("namespace_id", "feature_id"),
    ),
    _Table("layer", ("hash TEXT NOT NULL UNIQUE",)),
    _link("layer_feature", "layer", "feature_id", _ref("feature", "CASCADE")),
    _link("layer_lister", "layer", "lister", "TEXT NOT NULL"),
    _link("layer_detector", "layer", "detector", "TEXT"),
    _link("layer_namespace", "layer", "namespace_id", _ref("namespace", "CASCADE")),
    _Table("ancestry", ("name TEXT NOT NULL UNIQUE",)),
    _Table(
        "ancestry_layer",
        (
            f"ancestry_id {_ref('ancestry', 'CASCADE')}",
            "ancestry_index INT NOT NULL",
            f"layer_id {_ref('layer', 'RESTRICT')}",
        ),
        ("ancestry_id", "ancestry_index"),
        (("ancestry_layer_ancestry_idx", ("ancestry_id",)),),
    ),
    _link(
        "ancestry_feature",
        "ancestry",
        "namespaced_feature_id",
        _ref("namespaced_feature", "CASCADE"),
        indexed=False,
    ),
    _link("ancestry_lister", "ancestry", "lister", "TEXT"),
    _link("ancestry_detector", "ancestry", "detector", "TEXT"),
    _Table(
        "vulnerability",
        (
            f"namespace_id {_ref('namespace', not_null=True)}",
            "name TEXT NOT NULL",
            "description TEXT NULL",
            "link TEXT NULL",
            f"severity TEXT NOT NULL CHECK (severity IN ({_SEVERITY_CHECK}))",
            "metadata TEXT NULL",
            "created_at REAL",
            "deleted_at REAL NULL",
        ),
        indexes=(
            ("vulnerability_ns_name_idx", ("namespace_id", "name")),
            ("vulnerability_ns_idx", ("namespace_id",)),
        ),
    ),
    _Table(
        "vulnerability_affected_feature",
        (
            f"vulnerability_id {_ref('vulnerability', 'CASCADE', True)}",
            "feature_name TEXT NOT NULL",
            "affected_version TEXT",
            "fixedin TEXT",
        ),
        indexes=(("vulnerability_affected_feature_idx", ("vulnerability_id", "feature_name")),),
    ),
    _Table(
        "vulnerability_affected_namespaced_feature",
        (
            f"vulnerability_id {_ref('vulnerability', 'CASCADE', True)}",
            f"namespaced_feature_id {_ref('namespaced_feature', 'CASCADE', True)}",
            f"added_by {_ref('vulnerability_affected_feature', 'CASCADE', True)}",
        ),
        ("vulnerability_id", "namespaced_feature_id"),
        (("vulnerability_affected_namespaced_feature_idx", ("namespaced_feature_id",)),),
    ),
    _Table("keyvalue", ('"key" TEXT NOT NULL UNIQUE', '"value" TEXT')),
    _Table(
        "lock",
        ("name VARCHAR(64) NOT NULL UNIQUE", "owner VARCHAR(64) NOT NULL", "until REAL"),
        indexes=(("lock_owner_idx", ("owner",)),),
    ),
    _Table(
        "vulnerability_notification",
        (
            "name VARCHAR(64) NOT NULL UNIQUE",
            "created_at REAL",
            "notified_at REAL NULL",
            "deleted_at REAL NULL",
            f"old_vulnerability_id INT NULL REFERENCES vulnerability ON DELETE CASCADE",
            f"new_vulnerability_id INT NULL REFERENCES vulnerability ON DELETE CASCADE",
        ),
        indexes=(("vulnerability_notification_notified_idx", ("notified_at",)),),
    ),
)

_INITIAL_UP = tuple(statement for table in _TABLES for statement in table.statements())
_INITIAL_DOWN = tuple(f'DROP TABLE IF EXISTS "{table.name}"' for table in reversed(_TABLES))

register_migration(Migration(id=1, up=_INITIAL_UP, down=_INITIAL_DOWN))