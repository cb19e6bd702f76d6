"""
Tests for key-value storage backends.

Tests cover:
- In-memory store
- File store persistence, atomic rewrite and corrupt-file handling
- Redis store key prefixing (redis client mocked)
- Store selection from settings
"""

import json
from unittest.mock import MagicMock, patch

import pytest
import redis

from config.loader import PortalSettings
from portal.utils.storage import (
    FileKeyValueStore,
    InMemoryKeyValueStore,
    RedisKeyValueStore,
    build_attempts_store,
    build_session_store,
    get_store_info,
)


class TestInMemoryKeyValueStore:

    def test_set_get_remove(self):
        store = InMemoryKeyValueStore()

        store.set("a", "1")
        assert store.get("a") == "1"

        store.remove("a")
        assert store.get("a") is None

    def test_remove_missing_key(self):
        InMemoryKeyValueStore().remove("missing")

    def test_clear(self):
        store = InMemoryKeyValueStore()
        store.set("a", "1")
        store.set("b", "2")

        store.clear()

        assert store.keys() == []


class TestFileKeyValueStore:

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "state" / "store.json"
        FileKeyValueStore(str(path)).set("k", "v")

        assert FileKeyValueStore(str(path)).get("k") == "v"
        assert json.loads(path.read_text()) == {"k": "v"}

    def test_missing_file_reads_empty(self, tmp_path):
        assert FileKeyValueStore(str(tmp_path / "none.json")).get("k") is None

    def test_corrupt_file_reads_empty(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("{broken")
        store = FileKeyValueStore(str(path))

        assert store.get("k") is None

        store.set("k", "v")
        assert json.loads(path.read_text()) == {"k": "v"}

    def test_non_object_file_reads_empty(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("[1, 2]")

        assert FileKeyValueStore(str(path)).get("k") is None

    def test_non_string_value_ignored(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text(json.dumps({"k": 5}))

        assert FileKeyValueStore(str(path)).get("k") is None

    def test_remove(self, tmp_path):
        store = FileKeyValueStore(str(tmp_path / "store.json"))
        store.set("a", "1")
        store.set("b", "2")

        store.remove("a")
        store.remove("missing")

        assert store.get("a") is None
        assert store.get("b") == "2"

    def test_no_temp_files_left(self, tmp_path):
        store = FileKeyValueStore(str(tmp_path / "store.json"))
        for i in range(3):
            store.set(str(i), "x")

        assert [p.name for p in tmp_path.iterdir()] == ["store.json"]


class TestRedisKeyValueStore:

    @pytest.fixture
    def client(self):
        with patch("portal.utils.storage.redis.from_url") as from_url:
            client = MagicMock()
            from_url.return_value = client
            yield client, from_url

    def test_connects_with_decoded_responses(self, client):
        _, from_url = client

        RedisKeyValueStore("redis://:secret@cache:6379/0")

        from_url.assert_called_once_with("redis://:secret@cache:6379/0", decode_responses=True)

    def test_prefixes_keys(self, client):
        mock, _ = client
        mock.get.return_value = "v"
        store = RedisKeyValueStore("redis://cache")

        store.set("k", "v")
        assert store.get("k") == "v"
        store.remove("k")

        mock.set.assert_called_once_with("portal:k", "v")
        mock.get.assert_called_once_with("portal:k")
        mock.delete.assert_called_once_with("portal:k")

    def test_errors_propagate(self, client):
        mock, _ = client
        mock.get.side_effect = redis.ConnectionError("down")
        store = RedisKeyValueStore("redis://cache")

        with pytest.raises(redis.ConnectionError):
            store.get("k")

    def test_is_healthy(self, client):
        mock, _ = client
        store = RedisKeyValueStore("redis://cache")

        mock.ping.return_value = True
        assert store.is_healthy() is True

        mock.ping.side_effect = redis.ConnectionError("down")
        assert store.is_healthy() is False


class TestBuildStores:

    def test_session_store_defaults_to_memory(self):
        assert build_session_store(PortalSettings({})).backend == "memory"

    def test_session_store_file(self, tmp_path):
        settings = PortalSettings({'session': {'store': 'file', 'store_path': str(tmp_path / 's.json')}})

        store = build_session_store(settings)

        assert store.backend == "file"
        assert str(store.path) == str(tmp_path / 's.json')

    def test_unknown_session_store_uses_memory(self):
        assert build_session_store(PortalSettings({'session': {'store': 'cookie'}})).backend == "memory"

    def test_attempts_store_file_by_default(self, tmp_path):
        settings = PortalSettings({'login': {'store_path': str(tmp_path / 'a.json')}})

        assert build_attempts_store(settings).backend == "file"

    def test_attempts_store_redis_when_configured(self):
        settings = PortalSettings({'login': {'redis_url': 'redis://cache:6379'}})

        with patch("portal.utils.storage.redis.from_url"):
            assert build_attempts_store(settings).backend == "redis"


class TestGetStoreInfo:

    def test_local_store_is_healthy(self):
        assert get_store_info(InMemoryKeyValueStore()) == {"backend": "memory", "healthy": True}

    def test_reports_redis_health(self):
        with patch("portal.utils.storage.redis.from_url") as from_url:
            from_url.return_value.ping.side_effect = redis.ConnectionError("down")
            store = RedisKeyValueStore("redis://cache")

        assert get_store_info(store) == {"backend": "redis", "healthy": False}
