"""Tests for PersistentIdentity."""

import json
import threading
from unittest.mock import MagicMock

import pytest

from mixpanel_analytics.errors import PersistenceError
from mixpanel_analytics.identity import PersistentIdentity
from mixpanel_analytics.storage import JsonFileStore


@pytest.fixture
def path(tmp_path):
    return tmp_path / "identity.json"


@pytest.fixture
def identity(path):
    ident = PersistentIdentity(JsonFileStore(path))
    ident.load()
    return ident


def _reload(path):
    ident = PersistentIdentity(JsonFileStore(path))
    ident.load()
    return ident


class TestLoad:
    async def test_defaults_generate_device_id(self, identity, path):
        assert identity.distinct_id
        assert identity.token == ""
        assert identity.super_properties == {}
        # The generated id is persisted right away.
        assert json.loads(path.read_text())["distinct_id"] == identity.distinct_id

    async def test_device_id_stable_across_restarts(self, identity, path):
        assert _reload(path).distinct_id == identity.distinct_id

    async def test_round_trip(self, identity, path):
        await identity.set_token("tok")
        await identity.set_distinct_id("user-1")
        await identity.identify("person-1")
        await identity.register_super_properties({"app": "demo"})

        restored = _reload(path)
        assert restored.token == "tok"
        assert restored.distinct_id == "user-1"
        assert restored.people_distinct_id == "person-1"
        assert restored.super_properties == {"app": "demo"}

    async def test_unreadable_storage_uses_defaults(self, path):
        path.write_text("garbage")
        ident = _reload(path)

        assert ident.distinct_id
        assert ident.super_properties == {}

    async def test_save_failure_is_not_raised(self):
        store = MagicMock()
        store.read.return_value = {"distinct_id": "abc", "token": "t"}
        store.write.side_effect = PersistenceError("disk full")
        ident = PersistentIdentity(store)
        ident.load()

        await ident.register_super_properties({"a": 1})

        assert ident.super_properties == {"a": 1}
        assert await ident.save() is False
        assert ident.save_sync() is False

    async def test_mutations_write_off_the_event_loop(self):
        writer_threads = []
        store = MagicMock()
        store.read.return_value = {"distinct_id": "abc"}
        store.write.side_effect = lambda data: writer_threads.append(
            threading.get_ident()
        )
        ident = PersistentIdentity(store)
        ident.load()

        await ident.register_super_properties({"a": 1})
        await ident.identify("person-1")

        assert len(writer_threads) == 2
        assert threading.get_ident() not in writer_threads
        assert store.write.call_args.args[0]["people_distinct_id"] == "person-1"


class TestIdentityFields:
    async def test_profile_distinct_id_falls_back(self, identity):
        assert identity.profile_distinct_id == identity.distinct_id
        await identity.identify("person-1")
        assert identity.profile_distinct_id == "person-1"

    async def test_empty_ids_ignored(self, identity):
        before = identity.distinct_id
        await identity.set_distinct_id("")
        await identity.identify("")
        assert identity.distinct_id == before
        assert identity.people_distinct_id == ""

    async def test_reset_keeps_token(self, identity, path):
        await identity.set_token("tok")
        await identity.identify("person-1")
        await identity.register_super_properties({"a": 1})
        old_id = identity.distinct_id

        await identity.reset()

        restored = _reload(path)
        assert restored.token == "tok"
        assert restored.distinct_id != old_id
        assert restored.people_distinct_id == ""
        assert restored.super_properties == {}


class TestSuperProperties:
    async def test_register_overwrites(self, identity):
        await identity.register_super_properties({"plan": "free"})
        await identity.register_super_properties({"plan": "pro", "seats": 2})
        assert identity.super_properties == {"plan": "pro", "seats": 2}

    async def test_register_once_never_overwrites(self, identity):
        await identity.register_super_properties({"plan": "free"})
        await identity.register_super_properties_once({"plan": "pro", "seats": 2})
        assert identity.super_properties == {"plan": "free", "seats": 2}

    async def test_unregister(self, identity, path):
        await identity.register_super_properties({"a": 1, "b": 2})
        await identity.unregister_super_property("a")
        await identity.unregister_super_property("missing")

        assert _reload(path).super_properties == {"b": 2}

    async def test_clear(self, identity, path):
        await identity.register_super_properties({"a": 1})
        await identity.clear_super_properties()
        assert _reload(path).super_properties == {}

    async def test_values_are_coerced(self, identity):
        await identity.register_super_properties({"tags": ("x", "y")})
        assert identity.super_properties == {"tags": ["x", "y"]}

    async def test_unserializable_map_ignored(self, identity):
        await identity.register_super_properties({"ok": 1, "bad": object()})
        assert identity.super_properties == {}
