# layerscan

`layerscan` records what has been found in container images. It keeps image
layers, ancestries (ordered stacks of layers), namespaces, features (installed
packages), namespaced features, the processors (listers and detectors) used on
each layer and ancestry, key/value pairs and named locks. It stores them in
SQLite.

## What is inside

- `layerscan.models` holds the data model: `Layer`, `Ancestry`,
  `AncestryWithFeatures`, `LayerWithContent`, `Namespace`, `Feature`,
  `NamespacedFeature`, `Processors`, `Vulnerability` and its variants, and the
  notification types. It also has the `DEBIAN_RELEASES` and `UBUNTU_RELEASES`
  code-name tables, and `decode_metadata` / `encode_metadata` for
  vulnerability metadata kept as JSON text.
- `layerscan.datastore` holds the `Session` and `Datastore` interfaces. Both
  work as context managers: a session is rolled back on exit and a datastore
  is closed on exit. The module also has a driver registry (`register` and
  `open_datastore`, which take a `ComponentConfig`) and the error types:
  `DatabaseError` and its subclasses `BadRequestError`, `NotFoundError`,
  `BackendError` and `InconsistentError`.
- `layerscan.mock` holds `MockSession` and `MockDatastore`. Every method
  forwards to a callable that you pass in a `*_fn` field.
- `layerscan.sqlite` is the SQLite datastore. `layerscan.sqlite.store` has
  `SQLiteDatastore`, `SQLiteSession` and `open_sqlite`. Importing that module
  registers the `"sqlite"` driver. `layerscan.sqlite.schema` has `Migration`,
  `register_migration` and `apply_migrations`.
- `layerscan.api.health` holds `health_app`, `run_health`, `ApiConfig` and
  `tls_client_context`.
- `layerscan.api.convert` turns stored models into API objects
  (`ApiAncestry`, `ApiFeature`, `ApiVulnerability`, `ApiNotification`, ...).
- `layerscan.httputil.get_client_addr(remote_addr, headers)` returns the first
  `X-Forwarded-For` address when it is a valid IP. Otherwise it returns
  `remote_addr`.

## Installing

The package uses only the standard library and runs on Python 3.10 and later.

## Using the SQLite datastore

```python
from layerscan.models import Layer, Namespace, Processors
from layerscan.sqlite.store import SQLiteDatastore

store = SQLiteDatastore("layers.db")
session = store.begin()
session.persist_namespaces([Namespace("debian:9", "dpkg")])
session.persist_layer(Layer("sha256-layer-0"))
session.persist_layer_content(
    "sha256-layer-0",
    [Namespace("debian:9", "dpkg")],
    [],
    Processors(listers=["dpkg"], detectors=["os-release"]),
)
session.update_key_value("updater/last", "1500000000")
session.commit()
store.close()
```

You can also open the store through the registry. Import
`layerscan.sqlite.store`, then call
`open_datastore(ComponentConfig("sqlite", {"source": "layers.db"}))`. When no
`source` is given, the database is kept in memory.

A session is one transaction. `commit()` keeps its changes and `rollback()`
drops them. Once a session has ended, another `commit()` or `rollback()` does
nothing, and any other operation raises `DatabaseError`. Sessions share the
datastore's connection, so use only one session at a time.

Input the store cannot accept raises `BadRequestError`. Examples are an empty
layer hash, an empty namespace or feature field, or a key/value pair with an
empty part. Referring to a layer, namespace or feature that is not stored
raises `NotFoundError`. `find_layer`, `find_layer_with_content`,
`find_ancestry`, `find_ancestry_features` and `find_key_value` return `None`
when nothing is found.

`upsert_ancestry(ancestry, features, processed_by)` replaces any ancestry of
the same name. Its layers and namespaced features must already be stored. If
they are not, nothing changes.

## Locks

`lock(name, owner, duration, renew)` takes a named lock without waiting. It
returns a `LockResult(acquired, expiration)`. Expired locks are cleared before
a new lock is taken, and the owner can extend its lock with `renew=True`.
`find_lock(name)` returns a `LockInfo(owner, expiration)`, or raises
`NotFoundError`. `unlock(name, owner)` releases the lock.

## Health endpoint

`health_app(store)` is a WSGI application for `GET /health`. It replies `200`
when `store.ping()` is true and `500` otherwise, with the header
`Server: layerscan`. Other paths get `404` and other methods get `405`.

`run_health(config, store, stop_event)` serves this application on
`config.health_addr` until `stop_event` is set. A response that takes longer
than `config.timeout` becomes a `503` with a JSON timeout message. If
`config` is `None`, `run_health` does nothing.

`tls_client_context(ca_path)` builds a server `ssl.SSLContext` that requires
client certificates signed by the given CA. It returns `None` for an empty
path.

## Testing with mocks

```python
from layerscan.mock import MockDatastore

store = MockDatastore(ping_fn=lambda: True)
assert store.ping()
```

Calling a method that has no callable raises `MockNotConfiguredError`.

## What this package does not do

- It has no command-line program and no main API server. The only service is
  the health endpoint.
- The SQLite datastore does not store vulnerabilities or notifications. It
  does not work out which vulnerabilities affect a feature, and it has no
  pagination of affected ancestries. The models and the converters in
  `layerscan.api.convert` describe these things, but no store in this
  package fills them.
- It does not fetch or unpack image layers and does not detect packages.
  Callers supply the namespaces and features.