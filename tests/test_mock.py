import pytest

from layerscan.mock import MockDatastore, MockNotConfiguredError, MockSession

SESSION_CALLS = [
    ("commit", ()),
    ("rollback", ()),
    ("upsert_ancestry", ("ancestry", ["feature"], "processors")),
    ("find_ancestry", ("a",)),
    ("find_ancestry_features", ("a",)),
    ("find_affected_namespaced_features", (["nf"],)),
    ("persist_namespaces", (["ns"],)),
    ("persist_features", (["f"],)),
    ("persist_namespaced_features", (["nf"],)),
    ("cache_affected_namespaced_features", (["nf"],)),
    ("persist_layer", ("layer",)),
    ("persist_layer_content", ("hash", ["ns"], ["f"], "processors")),
    ("find_layer", ("hash",)),
    ("find_layer_with_content", ("hash",)),
    ("insert_vulnerabilities", (["v"],)),
    ("find_vulnerabilities", (["id"],)),
    ("delete_vulnerabilities", (["id"],)),
    ("insert_vulnerability_notifications", (["n"],)),
    ("find_new_notification", ("before",)),
    ("find_vulnerability_notification", ("name", 10, "old", "new")),
    ("mark_notification_notified", ("name",)),
    ("delete_notification", ("name",)),
    ("update_key_value", ("key", "value")),
    ("find_key_value", ("key",)),
    ("lock", ("name", "owner", 60, False)),
    ("unlock", ("name", "owner")),
    ("find_lock", ("name",)),
]


def _returning(name):
    def fn(*call_args):
        return (name, call_args)

    return fn


@pytest.mark.parametrize("method, args", SESSION_CALLS)
def test_session_method_unset_raises(method, args):
    others = {name: a for name, a in SESSION_CALLS if name != method}
    session = MockSession(**{f"{name}_fn": _returning(name) for name in others})

    for name, other_args in others.items():
        assert getattr(session, name)(*other_args) == (name, other_args)

    with pytest.raises(MockNotConfiguredError) as excinfo:
        getattr(session, method)(*args)
    assert method in str(excinfo.value)


@pytest.mark.parametrize("method, args", SESSION_CALLS)
def test_session_method_forwards_arguments_and_result(method, args):
    received = []

    def fn(*call_args):
        received.append(call_args)
        return (method, call_args)

    session = MockSession(**{f"{method}_fn": fn})
    result = getattr(session, method)(*args)
    assert result == (method, args)
    assert received == [args]


def test_session_only_configured_method_works():
    session = MockSession(find_key_value_fn=lambda key: (key.upper(), True))
    assert session.find_key_value("abc") == ("ABC", True)
    with pytest.raises(MockNotConfiguredError):
        session.update_key_value("abc", "def")


@pytest.mark.parametrize("method", ["begin", "ping", "close"])
def test_datastore_method_unset_raises(method):
    with pytest.raises(MockNotConfiguredError) as excinfo:
        getattr(MockDatastore(), method)()
    assert method in str(excinfo.value)


def test_datastore_begin_returns_session():
    session = MockSession()
    store = MockDatastore(begin_fn=lambda: session)
    assert store.begin() is session


def test_datastore_ping_returns_value():
    assert MockDatastore(ping_fn=lambda: False).ping() is False
    assert MockDatastore(ping_fn=lambda: True).ping() is True


def test_datastore_close_calls_function_and_returns_none():
    calls = []
    store = MockDatastore(close_fn=lambda: calls.append(1) or "ignored")
    assert store.close() is None
    assert calls == [1]