"""SQLite session operations on features, namespaced features and layers."""

from __future__ import annotations

import logging
from typing import NamedTuple, Optional, Sequence

from layerscan.datastore import BadRequestError, NotFoundError
from layerscan.models import (
    Feature,
    Layer,
    LayerWithContent,
    Namespace,
    NamespacedFeature,
    Processors,
)
from layerscan.sqlite.core import SessionCore

log = logging.getLogger(__name__)

_FEATURE_NOT_FOUND = "Feature not found"
_NAMESPACE_NOT_FOUND = "Requested Namespace is not in database"

# Tables holding the processors used on a layer or an ancestry:
# owner kind -> ((lister table, lister column), (detector table, detector column), owner column)
_PROCESSOR_TABLES = {
    "layer": (("layer_lister", "lister"), ("layer_detector", "detector"), "layer_id"),
    "ancestry": (("ancestry_lister", "lister"), ("ancestry_detector", "detector"), "ancestry_id"),
}


class LayerRecord(NamedTuple):
    """A stored layer and the processors that scanned it."""

    layer: Layer
    processed_by: Processors


def _feature_key(feature: Feature) -> tuple[str, str, str]:
    return (feature.name, feature.version, feature.version_format)


class ContentSession(SessionCore):
    """A session that also stores features, namespaced features and layers."""

    # Features

    def persist_features(self, features: Sequence[Feature]) -> None:
        """Insert the features that are not already stored."""
        if not features:
            return
        if any(not f.name or not f.version or not f.version_format for f in features):
            raise BadRequestError("Empty feature name, version or version format is not allowed")
        # Insert in a fixed order to avoid lock-order conflicts between writers.
        ordered = sorted(set(features), key=_feature_key)
        self._executemany(
            "persistFeature",
            "INSERT OR IGNORE INTO feature (name, version, version_format) VALUES (?, ?, ?)",
            [_feature_key(f) for f in ordered],
        )

    def _find_feature_ids(self, features: Sequence[Feature]) -> list[Optional[int]]:
        """Return the id of each feature in order, ``None`` where it is not stored."""
        found: dict[Feature, Optional[int]] = {}
        for feature in features:
            if feature in found:
                continue
            row = self._execute(
                "searchFeatureID",
                "SELECT id FROM feature WHERE name = ? AND version = ? AND version_format = ?",
                _feature_key(feature),
            ).fetchone()
            found[feature] = row[0] if row else None
        return [found[f] for f in features]

    def _find_namespaced_feature_ids(
        self, features: Sequence[NamespacedFeature]
    ) -> list[Optional[int]]:
        """Return the id of each namespaced feature in order, ``None`` where it is not stored."""
        found: dict[NamespacedFeature, Optional[int]] = {}
        for nf in features:
            if nf in found:
                continue
            row = self._execute(
                "searchNamespacedFeature",
                "SELECT nf.id FROM namespaced_feature AS nf "
                "JOIN feature AS f ON nf.feature_id = f.id "
                "JOIN namespace AS n ON nf.namespace_id = n.id "
                "WHERE f.name = ? AND f.version = ? AND f.version_format = ? "
                "AND n.name = ? AND n.version_format = ?",
                (
                    nf.feature.name,
                    nf.feature.version,
                    nf.feature.version_format,
                    nf.namespace.name,
                    nf.namespace.version_format,
                ),
            ).fetchone()
            found[nf] = row[0] if row else None
        return [found[nf] for nf in features]

    def persist_namespaced_features(self, features: Sequence[NamespacedFeature]) -> None:
        """Relate stored features with stored namespaces.

        Raises ``NotFoundError`` if a feature or a namespace is not stored.
        """
        if not features:
            return

        unique_features = sorted({nf.feature for nf in features}, key=_feature_key)
        feature_ids: dict[Feature, int] = {}
        for feature, feature_id in zip(unique_features, self._find_feature_ids(unique_features)):
            if feature_id is None:
                raise NotFoundError(_FEATURE_NOT_FOUND)
            feature_ids[feature] = feature_id

        unique_namespaces = sorted(
            {nf.namespace for nf in features}, key=lambda ns: (ns.name, ns.version_format)
        )
        namespace_ids: dict[Namespace, int] = {}
        for ns, ns_id in zip(unique_namespaces, self._find_namespace_ids(unique_namespaces)):
            if ns_id is None:
                raise NotFoundError(_NAMESPACE_NOT_FOUND)
            namespace_ids[ns] = ns_id

        pairs = sorted({(feature_ids[nf.feature], namespace_ids[nf.namespace]) for nf in features})
        self._executemany(
            "persistNamespacedFeature",
            "INSERT OR IGNORE INTO namespaced_feature (feature_id, namespace_id) VALUES (?, ?)",
            pairs,
        )

    # Layers

    def persist_layer(self, layer: Layer) -> None:
        """Insert a layer if it is not already stored."""
        if not layer.hash:
            raise BadRequestError("Empty Layer Hash is not allowed")
        self._execute(
            "persistLayer", "INSERT OR IGNORE INTO layer (hash) VALUES (?)", (layer.hash,)
        )

    def _layer_id(self, layer_hash: str) -> Optional[int]:
        row = self._execute(
            "searchLayer", "SELECT id FROM layer WHERE hash = ?", (layer_hash,)
        ).fetchone()
        return row[0] if row else None

    def persist_layer_content(
        self,
        layer_hash: str,
        namespaces: Sequence[Namespace],
        features: Sequence[Feature],
        processed_by: Processors,
    ) -> None:
        """Relate a stored layer with stored namespaces, features and processors.

        Raises ``NotFoundError`` if the layer, a namespace or a feature is not stored.
        """
        if not layer_hash:
            raise BadRequestError("Empty layer hash is not allowed")
        layer_id = self._layer_id(layer_hash)
        if layer_id is None:
            raise NotFoundError(f"layer {layer_hash!r} is not in database")

        self._persist_layer_namespaces(layer_id, namespaces)
        self._persist_layer_features(layer_id, features)
        self._persist_processors("layer", layer_id, processed_by)

    def _persist_layer_namespaces(self, layer_id: int, namespaces: Sequence[Namespace]) -> None:
        if not namespaces:
            return
        ids = self._find_namespace_ids(namespaces)
        if any(ns_id is None for ns_id in ids):
            raise NotFoundError(_NAMESPACE_NOT_FOUND)
        self._executemany(
            "persistLayerNamespace",
            "INSERT OR IGNORE INTO layer_namespace (layer_id, namespace_id) VALUES (?, ?)",
            [(layer_id, ns_id) for ns_id in sorted(set(ids))],
        )

    def _persist_layer_features(self, layer_id: int, features: Sequence[Feature]) -> None:
        if not features:
            return
        ids = self._find_feature_ids(features)
        if any(f_id is None for f_id in ids):
            raise NotFoundError(_FEATURE_NOT_FOUND)
        self._executemany(
            "persistLayerFeature",
            "INSERT OR IGNORE INTO layer_feature (layer_id, feature_id) VALUES (?, ?)",
            [(layer_id, f_id) for f_id in sorted(set(ids))],
        )

    def _persist_processors(self, kind: str, owner_id: int, processors: Processors) -> None:
        """Record the listers and detectors used on a layer or an ancestry."""
        (lister_table, lister_col), (detector_table, detector_col), owner_col = _PROCESSOR_TABLES[kind]
        for table, column, names in (
            (lister_table, lister_col, processors.listers),
            (detector_table, detector_col, processors.detectors),
        ):
            if not names:
                continue
            self._executemany(
                f"persist_{table}",
                f"INSERT OR IGNORE INTO {table} ({owner_col}, {column}) VALUES (?, ?)",
                [(owner_id, name) for name in sorted(set(names))],
            )

    def _find_processors(self, kind: str, owner_id: int) -> Processors:
        """Return the listers and detectors used on a layer or an ancestry."""
        (lister_table, lister_col), (detector_table, detector_col), owner_col = _PROCESSOR_TABLES[kind]

        def names(table: str, column: str) -> list[str]:
            rows = self._execute(
                f"search_{table}",
                f"SELECT {column} FROM {table} WHERE {owner_col} = ? ORDER BY id",
                (owner_id,),
            ).fetchall()
            if not rows:
                log.debug("No %s are used", column)
            return [row[0] for row in rows]

        return Processors(
            listers=names(lister_table, lister_col),
            detectors=names(detector_table, detector_col),
        )

    def _find_layer(self, layer_hash: str) -> Optional[tuple[LayerRecord, int]]:
        if not layer_hash:
            raise BadRequestError("Empty Layer Hash is not allowed")
        layer_id = self._layer_id(layer_hash)
        if layer_id is None:
            return None
        record = LayerRecord(Layer(hash=layer_hash), self._find_processors("layer", layer_id))
        return record, layer_id

    def find_layer(self, layer_hash: str) -> Optional[LayerRecord]:
        """Return a layer and the processors that scanned it, or ``None`` if not stored."""
        found = self._find_layer(layer_hash)
        return found[0] if found else None

    def find_layer_with_content(self, layer_hash: str) -> Optional[LayerWithContent]:
        """Return a layer with its namespaces, features and processors, or ``None``."""
        found = self._find_layer(layer_hash)
        if found is None:
            return None
        record, layer_id = found
        features = [
            Feature(name=row[0], version=row[1], version_format=row[2])
            for row in self._execute(
                "searchLayerFeatures",
                "SELECT f.name, f.version, f.version_format FROM feature AS f "
                "JOIN layer_feature AS lf ON lf.feature_id = f.id "
                "WHERE lf.layer_id = ? ORDER BY lf.id",
                (layer_id,),
            )
        ]
        namespaces = [
            Namespace(name=row[0], version_format=row[1])
            for row in self._execute(
                "searchLayerNamespaces",
                "SELECT n.name, n.version_format FROM namespace AS n "
                "JOIN layer_namespace AS ln ON ln.namespace_id = n.id "
                "WHERE ln.layer_id = ? ORDER BY ln.id",
                (layer_id,),
            )
        ]
        return LayerWithContent(
            layer=record.layer,
            processed_by=record.processed_by,
            namespaces=namespaces,
            features=features,
        )