"""Configurable session and datastore doubles for tests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from layerscan.datastore import Datastore, Session

Fn = Optional[Callable[..., Any]]


class MockNotConfiguredError(RuntimeError):
    """A mock method was called without a function to answer it."""


def _call(fn: Fn, method: str, *args: Any) -> Any:
    if fn is None:
        raise MockNotConfiguredError(f"required mock function not set: {method}")
    return fn(*args)


@dataclass
class MockSession(Session):
    """A session whose every method forwards to the matching ``*_fn`` field.

    Calling a method whose function is unset raises ``MockNotConfiguredError``.
    """

    commit_fn: Fn = None
    rollback_fn: Fn = None
    upsert_ancestry_fn: Fn = None
    find_ancestry_fn: Fn = None
    find_ancestry_features_fn: Fn = None
    find_affected_namespaced_features_fn: Fn = None
    persist_namespaces_fn: Fn = None
    persist_features_fn: Fn = None
    persist_namespaced_features_fn: Fn = None
    cache_affected_namespaced_features_fn: Fn = None
    persist_layer_fn: Fn = None
    persist_layer_content_fn: Fn = None
    find_layer_fn: Fn = None
    find_layer_with_content_fn: Fn = None
    insert_vulnerabilities_fn: Fn = None
    find_vulnerabilities_fn: Fn = None
    delete_vulnerabilities_fn: Fn = None
    insert_vulnerability_notifications_fn: Fn = None
    find_new_notification_fn: Fn = None
    find_vulnerability_notification_fn: Fn = None
    mark_notification_notified_fn: Fn = None
    delete_notification_fn: Fn = None
    update_key_value_fn: Fn = None
    find_key_value_fn: Fn = None
    lock_fn: Fn = None
    unlock_fn: Fn = None
    find_lock_fn: Fn = None

    def commit(self):
        return _call(self.commit_fn, "commit")

    def rollback(self):
        return _call(self.rollback_fn, "rollback")

    def upsert_ancestry(self, ancestry, features, processed_by):
        return _call(self.upsert_ancestry_fn, "upsert_ancestry", ancestry, features, processed_by)

    def find_ancestry(self, name):
        return _call(self.find_ancestry_fn, "find_ancestry", name)

    def find_ancestry_features(self, name):
        return _call(self.find_ancestry_features_fn, "find_ancestry_features", name)

    def find_affected_namespaced_features(self, features):
        return _call(
            self.find_affected_namespaced_features_fn,
            "find_affected_namespaced_features",
            features,
        )

    def persist_namespaces(self, namespaces):
        return _call(self.persist_namespaces_fn, "persist_namespaces", namespaces)

    def persist_features(self, features):
        return _call(self.persist_features_fn, "persist_features", features)

    def persist_namespaced_features(self, features):
        return _call(self.persist_namespaced_features_fn, "persist_namespaced_features", features)

    def cache_affected_namespaced_features(self, features):
        return _call(
            self.cache_affected_namespaced_features_fn,
            "cache_affected_namespaced_features",
            features,
        )

    def persist_layer(self, layer):
        return _call(self.persist_layer_fn, "persist_layer", layer)

    def persist_layer_content(self, layer_hash, namespaces, features, processed_by):
        return _call(
            self.persist_layer_content_fn,
            "persist_layer_content",
            layer_hash,
            namespaces,
            features,
            processed_by,
        )

    def find_layer(self, layer_hash):
        return _call(self.find_layer_fn, "find_layer", layer_hash)

    def find_layer_with_content(self, layer_hash):
        return _call(self.find_layer_with_content_fn, "find_layer_with_content", layer_hash)

    def insert_vulnerabilities(self, vulnerabilities):
        return _call(self.insert_vulnerabilities_fn, "insert_vulnerabilities", vulnerabilities)

    def find_vulnerabilities(self, ids):
        return _call(self.find_vulnerabilities_fn, "find_vulnerabilities", ids)

    def delete_vulnerabilities(self, ids):
        return _call(self.delete_vulnerabilities_fn, "delete_vulnerabilities", ids)

    def insert_vulnerability_notifications(self, notifications):
        return _call(
            self.insert_vulnerability_notifications_fn,
            "insert_vulnerability_notifications",
            notifications,
        )

    def find_new_notification(self, notified_before):
        return _call(self.find_new_notification_fn, "find_new_notification", notified_before)

    def find_vulnerability_notification(self, name, limit, old_page, new_page):
        return _call(
            self.find_vulnerability_notification_fn,
            "find_vulnerability_notification",
            name,
            limit,
            old_page,
            new_page,
        )

    def mark_notification_notified(self, name):
        return _call(self.mark_notification_notified_fn, "mark_notification_notified", name)

    def delete_notification(self, name):
        return _call(self.delete_notification_fn, "delete_notification", name)

    def update_key_value(self, key, value):
        return _call(self.update_key_value_fn, "update_key_value", key, value)

    def find_key_value(self, key):
        return _call(self.find_key_value_fn, "find_key_value", key)

    def lock(self, name, owner, duration, renew):
        return _call(self.lock_fn, "lock", name, owner, duration, renew)

    def unlock(self, name, owner):
        return _call(self.unlock_fn, "unlock", name, owner)

    def find_lock(self, name):
        return _call(self.find_lock_fn, "find_lock", name)


@dataclass
class MockDatastore(Datastore):
    """A datastore whose methods forward to ``begin_fn``, ``ping_fn`` and ``close_fn``."""

    begin_fn: Fn = None
    ping_fn: Fn = None
    close_fn: Fn = None

    def begin(self):
        return _call(self.begin_fn, "begin")

    def ping(self):
        return _call(self.ping_fn, "ping")

    def close(self):
        _call(self.close_fn, "close")