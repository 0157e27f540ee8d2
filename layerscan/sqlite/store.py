"""SQLite datastore: sessions over ancestries and the datastore that opens them."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, NamedTuple, Optional, Sequence

from layerscan.datastore import (
    BadRequestError,
    ComponentConfig,
    DatabaseError,
    Datastore,
    NotFoundError,
    register,
)
from layerscan.models import (
    Ancestry,
    AncestryWithFeatures,
    Feature,
    Layer,
    Namespace,
    NamespacedFeature,
    Processors,
)
from layerscan.sqlite.content import ContentSession
from layerscan.sqlite.schema import apply_migrations

log = logging.getLogger(__name__)

_SAVEPOINT = "upsert_ancestry"


class AncestryRecord(NamedTuple):
    """A stored ancestry and the processors that scanned it."""

    ancestry: Ancestry
    processed_by: Processors


class SQLiteSession(ContentSession):
    """A session offering every SQLite datastore operation, ancestries included."""

    @contextmanager
    def _atomic(self) -> Iterator[None]:
        """Run a block so that it either takes effect whole or not at all."""
        self._check_open()
        if not self._conn.in_transaction:
            self._execute("begin", "BEGIN")
        self._execute("savepoint", f"SAVEPOINT {_SAVEPOINT}")
        try:
            yield
        except BaseException:
            self._conn.execute(f"ROLLBACK TO {_SAVEPOINT}")
            self._conn.execute(f"RELEASE {_SAVEPOINT}")
            raise
        self._execute("release", f"RELEASE {_SAVEPOINT}")

    def upsert_ancestry(
        self,
        ancestry: Ancestry,
        features: Optional[Sequence[NamespacedFeature]],
        processed_by: Processors,
    ) -> None:
        """Insert or replace an ancestry with its namespaced features and processors.

        The layers and namespaced features must already be stored, otherwise
        ``NotFoundError`` is raised and nothing changes.
        """
        if not ancestry.name:
            log.warning("Empty ancestry name is not allowed")
            raise BadRequestError("could not insert an ancestry with empty name")
        if not ancestry.layers:
            log.warning("Empty ancestry is not allowed")
            raise BadRequestError("could not insert an ancestry with 0 layers")

        with self._atomic():
            self._execute("removeAncestry", "DELETE FROM ancestry WHERE name = ?", (ancestry.name,))
            ancestry_id = self._execute(
                "insertAncestry", "INSERT INTO ancestry (name) VALUES (?)", (ancestry.name,)
            ).lastrowid
            self._insert_ancestry_layers(ancestry_id, ancestry.layers)
            self._insert_ancestry_features(ancestry_id, features or ())
            self._persist_processors("ancestry", ancestry_id, processed_by)

    def _insert_ancestry_layers(self, ancestry_id: int, layers: Sequence[Layer]) -> None:
        layer_ids = {layer.hash: self._layer_id(layer.hash) for layer in layers}
        missing = sorted(h for h, layer_id in layer_ids.items() if layer_id is None)
        if missing:
            raise NotFoundError(f"Layer {','.join(missing)} is not found in database")
        self._executemany(
            "insertAncestryLayer",
            "INSERT INTO ancestry_layer (ancestry_id, ancestry_index, layer_id) VALUES (?, ?, ?)",
            [(ancestry_id, index, layer_ids[layer.hash]) for index, layer in enumerate(layers)],
        )

    def _insert_ancestry_features(
        self, ancestry_id: int, features: Sequence[NamespacedFeature]
    ) -> None:
        if not features:
            return
        ids = self._find_namespaced_feature_ids(features)
        if any(feature_id is None for feature_id in ids):
            raise NotFoundError("requested namespaced feature is not in database")
        self._executemany(
            "insertAncestryFeature",
            "INSERT OR IGNORE INTO ancestry_feature (ancestry_id, namespaced_feature_id) "
            "VALUES (?, ?)",
            [(ancestry_id, feature_id) for feature_id in sorted(set(ids))],
        )

    def _ancestry_id(self, name: str) -> Optional[int]:
        row = self._execute(
            "searchAncestry", "SELECT id FROM ancestry WHERE name = ?", (name,)
        ).fetchone()
        return row[0] if row else None

    def _find_ancestry(self, name: str) -> Optional[tuple[AncestryRecord, int]]:
        ancestry_id = self._ancestry_id(name)
        if ancestry_id is None:
            return None
        layers = [
            Layer(hash=row[0])
            for row in self._execute(
                "searchAncestryLayer",
                "SELECT l.hash FROM ancestry_layer AS al JOIN layer AS l ON al.layer_id = l.id "
                "WHERE al.ancestry_id = ? ORDER BY al.ancestry_index",
                (ancestry_id,),
            )
        ]
        record = AncestryRecord(
            Ancestry(name=name, layers=layers), self._find_processors("ancestry", ancestry_id)
        )
        return record, ancestry_id

    def find_ancestry(self, name: str) -> Optional[AncestryRecord]:
        """Return an ancestry and the processors that scanned it, or ``None`` if not stored."""
        found = self._find_ancestry(name)
        return found[0] if found else None

    def find_ancestry_features(self, name: str) -> Optional[AncestryWithFeatures]:
        """Return an ancestry with its namespaced features, or ``None`` if not stored."""
        found = self._find_ancestry(name)
        if found is None:
            return None
        record, ancestry_id = found
        features = [
            NamespacedFeature(
                feature=Feature(name=row[2], version=row[3], version_format=row[4]),
                namespace=Namespace(name=row[0], version_format=row[1]),
            )
            for row in self._execute(
                "searchAncestryFeatures",
                "SELECT n.name, n.version_format, f.name, f.version, f.version_format "
                "FROM ancestry_feature AS af "
                "JOIN namespaced_feature AS nf ON af.namespaced_feature_id = nf.id "
                "JOIN namespace AS n ON nf.namespace_id = n.id "
                "JOIN feature AS f ON nf.feature_id = f.id "
                "WHERE af.ancestry_id = ? ORDER BY af.id",
                (ancestry_id,),
            )
        ]
        return AncestryWithFeatures(
            name=record.ancestry.name,
            layers=record.ancestry.layers,
            processed_by=record.processed_by,
            features=features,
        )


class SQLiteDatastore(Datastore):
    """A datastore kept in one SQLite database.

    Sessions share the datastore's connection, so only one session should be
    in use at a time; a session left open is rolled back when the next begins.
    """

    def __init__(self, path: str) -> None:
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._closed = False
        self._conn.execute("PRAGMA foreign_keys = ON")
        apply_migrations(self._conn)

    def begin(self) -> SQLiteSession:
        """Start a session."""
        if self._closed:
            raise DatabaseError("database: datastore is closed")
        if self._conn.in_transaction:
            self._conn.rollback()
        return SQLiteSession(self._conn)

    def ping(self) -> bool:
        """Return whether the database answers a trivial query."""
        if self._closed:
            return False
        try:
            self._conn.execute("SELECT 1").fetchone()
        except sqlite3.Error:
            return False
        return True

    def close(self) -> None:
        """Close the database; closing twice does nothing."""
        if self._closed:
            return
        self._closed = True
        self._conn.close()


def open_sqlite(config: ComponentConfig) -> SQLiteDatastore:
    """Open the SQLite datastore named by the ``source`` option, in memory by default."""
    source = config.options.get("source") or ":memory:"
    return SQLiteDatastore(str(source))


register("sqlite", open_sqlite)