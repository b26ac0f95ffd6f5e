from unittest.mock import MagicMock, patch

from connectors.kv_store import InMemoryKeyValueStore, RedisKeyValueStore


def test_in_memory_store_get_set():
    store = InMemoryKeyValueStore({"a": "1"})
    assert store.get("a") == "1"
    assert store.get("missing") is None
    store.set("b", "2")
    assert store.raw == {"a": "1", "b": "2"}


def test_in_memory_store_copies_initial_data():
    initial = {"a": "1"}
    store = InMemoryKeyValueStore(initial)
    store.set("a", "2")
    assert initial == {"a": "1"}


def test_redis_store_prefixes_keys():
    client = MagicMock()
    client.get.return_value = '{"lager": 1}'
    store = RedisKeyValueStore(client=client, prefix="bar1:")

    assert store.get("inventory") == '{"lager": 1}'
    client.get.assert_called_once_with("bar1:inventory")

    store.set("inventory", "[]")
    client.set.assert_called_once_with("bar1:inventory", "[]")


def test_redis_store_decodes_bytes():
    client = MagicMock()
    client.get.return_value = b"[1, 2]"
    assert RedisKeyValueStore(client=client).get("sales_history") == "[1, 2]"


def test_redis_store_missing_key():
    client = MagicMock()
    client.get.return_value = None
    assert RedisKeyValueStore(client=client).get("thresholds") is None


def test_redis_store_builds_client_from_env_url(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/3")
    with patch("connectors.kv_store.redis.Redis.from_url") as from_url:
        store = RedisKeyValueStore()
    from_url.assert_called_once_with("redis://cache:6379/3", decode_responses=True)
    assert store.client is from_url.return_value
    assert store.prefix == "stockalert:"


def test_redis_store_close():
    client = MagicMock()
    RedisKeyValueStore(client=client).close()
    client.close.assert_called_once()
