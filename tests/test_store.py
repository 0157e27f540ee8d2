import pytest

from layerscan.datastore import (
    BadRequestError,
    ComponentConfig,
    DatabaseError,
    NotFoundError,
    open_datastore,
)
from layerscan.models import Ancestry, Feature, Layer, Namespace, NamespacedFeature, Processors
from layerscan.sqlite.store import SQLiteDatastore, open_sqlite

DEB7 = Namespace(name="debian:7", version_format="dpkg")
DEB8 = Namespace(name="debian:8", version_format="dpkg")
WECHAT = Feature(name="wechat", version="0.5", version_format="dpkg")
OPENSSL = Feature(name="openssl", version="1.0", version_format="dpkg")
PROCESSORS = Processors(listers=["dpkg"], detectors=["os-release"])
LAYER_HASHES = ["layer-0", "layer-1", "layer-2", "layer-3a", "layer-3b"]


def _layers(*hashes):
    return [Layer(hash=h) for h in hashes]


@pytest.fixture
def datastore():
    ds = SQLiteDatastore(":memory:")
    with ds.begin() as tx:
        tx.persist_namespaces([DEB7, DEB8])
        tx.persist_features([WECHAT, OPENSSL])
        tx.persist_namespaced_features(
            [
                NamespacedFeature(feature=WECHAT, namespace=DEB7),
                NamespacedFeature(feature=OPENSSL, namespace=DEB8),
            ]
        )
        for layer_hash in LAYER_HASHES:
            tx.persist_layer(Layer(hash=layer_hash))
        tx.upsert_ancestry(
            Ancestry(name="ancestry-1", layers=_layers("layer-0", "layer-1", "layer-2", "layer-3a")),
            [],
            PROCESSORS,
        )
        tx.upsert_ancestry(
            Ancestry(name="ancestry-2", layers=_layers("layer-0", "layer-1", "layer-2", "layer-3b")),
            [
                NamespacedFeature(feature=WECHAT, namespace=DEB7),
                NamespacedFeature(feature=OPENSSL, namespace=DEB8),
            ],
            PROCESSORS,
        )
        tx.commit()
    yield ds
    ds.close()


@pytest.fixture
def tx(datastore):
    with datastore.begin() as session:
        yield session


def _sorted_processors(processors):
    return sorted(processors.listers), sorted(processors.detectors)


def test_upsert_ancestry(tx):
    a1 = Ancestry(name="a1", layers=_layers("layer-N"))
    a2 = Ancestry()
    a3 = Ancestry(name="a", layers=_layers("layer-0"))
    a4 = Ancestry(name="a", layers=_layers("layer-1"))
    f2 = Feature(name="wechat", version="0.6", version_format="dpkg")
    p = Processors(listers=["dpkg", "non-existing"], detectors=["os-release", "non-existing"])
    nsf1 = NamespacedFeature(feature=WECHAT, namespace=DEB7)
    nsf2 = NamespacedFeature(feature=f2, namespace=DEB7)

    with pytest.raises(NotFoundError):
        tx.upsert_ancestry(a1, None, Processors())
    with pytest.raises(BadRequestError):
        tx.upsert_ancestry(a2, None, Processors())
    tx.upsert_ancestry(a3, None, Processors())
    with pytest.raises(NotFoundError):
        tx.upsert_ancestry(a4, [nsf1, nsf2], p)
    tx.upsert_ancestry(a4, [nsf1], p)

    ancestry = tx.find_ancestry_features("a")
    assert ancestry is not None
    assert ancestry.ancestry == a4
    assert ancestry.features == [nsf1]
    assert _sorted_processors(ancestry.processed_by) == _sorted_processors(p)


def test_upsert_ancestry_without_layers_is_rejected(tx):
    with pytest.raises(BadRequestError):
        tx.upsert_ancestry(Ancestry(name="empty"), None, Processors())


def test_failed_replacement_keeps_previous_ancestry(tx):
    tx.upsert_ancestry(Ancestry(name="a", layers=_layers("layer-0")), None, Processors())
    with pytest.raises(NotFoundError):
        tx.upsert_ancestry(Ancestry(name="a", layers=_layers("layer-missing")), None, Processors())
    record = tx.find_ancestry("a")
    assert record.ancestry == Ancestry(name="a", layers=_layers("layer-0"))


def test_find_ancestry(tx):
    assert tx.find_ancestry("ancestry-non") is None

    expected = Ancestry(
        name="ancestry-1", layers=_layers("layer-0", "layer-1", "layer-2", "layer-3a")
    )
    record = tx.find_ancestry("ancestry-1")
    assert record is not None
    assert record.ancestry.name == expected.name
    assert record.ancestry.layers == expected.layers
    assert _sorted_processors(record.processed_by) == (["dpkg"], ["os-release"])


def test_find_ancestry_features(tx):
    assert tx.find_ancestry_features("ancestry-non") is None

    ancestry = tx.find_ancestry_features("ancestry-2")
    assert ancestry is not None
    assert ancestry.name == "ancestry-2"
    assert ancestry.layers == _layers("layer-0", "layer-1", "layer-2", "layer-3b")
    assert set(ancestry.features) == {
        NamespacedFeature(feature=WECHAT, namespace=DEB7),
        NamespacedFeature(feature=OPENSSL, namespace=DEB8),
    }
    assert len(ancestry.features) == 2
    assert _sorted_processors(ancestry.processed_by) == (["dpkg"], ["os-release"])


def test_layer_order_is_preserved(tx):
    layers = _layers("layer-2", "layer-0", "layer-2")
    tx.upsert_ancestry(Ancestry(name="ordered", layers=layers), None, Processors())
    assert tx.find_ancestry("ordered").ancestry.layers == layers


def test_commit_persists_and_rollback_discards(datastore):
    with datastore.begin() as session:
        session.upsert_ancestry(Ancestry(name="kept", layers=_layers("layer-0")), None, Processors())
        session.commit()
    with datastore.begin() as session:
        session.upsert_ancestry(Ancestry(name="dropped", layers=_layers("layer-0")), None, Processors())
        session.rollback()
    with datastore.begin() as session:
        assert session.find_ancestry("kept").ancestry.layers == _layers("layer-0")
        assert session.find_ancestry("dropped") is None


def test_session_cannot_be_used_after_commit(datastore):
    session = datastore.begin()
    session.commit()
    with pytest.raises(DatabaseError):
        session.find_ancestry("ancestry-1")


def test_ping_and_close(datastore):
    assert datastore.ping() is True
    datastore.close()
    assert datastore.ping() is False
    with pytest.raises(DatabaseError):
        datastore.begin()


def test_open_through_registry():
    ds = open_datastore(ComponentConfig(type="sqlite"))
    try:
        assert isinstance(ds, SQLiteDatastore)
        assert ds.ping() is True
    finally:
        ds.close()


def test_open_sqlite_with_file_source(tmp_path):
    path = tmp_path / "store.db"
    ds = open_sqlite(ComponentConfig(type="sqlite", options={"source": str(path)}))
    with ds.begin() as session:
        session.persist_layer(Layer(hash="layer-x"))
        session.upsert_ancestry(Ancestry(name="file", layers=_layers("layer-x")), None, Processors())
        session.commit()
    ds.close()

    reopened = open_sqlite(ComponentConfig(type="sqlite", options={"source": str(path)}))
    try:
        with reopened.begin() as session:
            assert session.find_ancestry("file").ancestry.layers == _layers("layer-x")
    finally:
        reopened.close()