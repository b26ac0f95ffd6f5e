"""
Module: connectors.kv_store

Key-value stores implementing the plain ``get`` / ``set`` contract the services
persist their JSON blobs through.
"""

import logging
import os

import redis

logger = logging.getLogger(__name__)


class InMemoryKeyValueStore:
    """
    Dict-backed store for tests, demos and single-process deployments.
    """

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    @property
    def raw(self) -> dict[str, str]:
        """Direct access to the stored strings (tests use it to inject corrupted data)."""
        return self._data


class RedisKeyValueStore:
    """
    Redis-backed store. Keys are namespaced with ``prefix`` so several deployments
    can share one Redis database.
    """

    def __init__(
        self,
        client: redis.Redis | None = None,
        url: str | None = None,
        prefix: str = "stockalert:",
    ):
        if client is None:
            url = url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
            client = redis.Redis.from_url(url, decode_responses=True)
            logger.info(f"Connected key-value store to Redis at {url}")
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> str | None:
        value = self.client.get(self._key(key))
        if isinstance(value, bytes):  # Client created without decode_responses
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str) -> None:
        self.client.set(self._key(key), value)

    def close(self) -> None:
        self.client.close()
