"""
JSON blob persistence on top of a plain key-value store.

Every service stores its data as one JSON document per key. Reads never throw:
missing keys and corrupted blobs both recover to a default structure.
"""

import json
import logging
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

from models.exceptions import PersistenceCorruptionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = ["KeyValueStore", "JsonBlobStore"]


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class JsonBlobStore:
    """Reads and writes JSON documents through a ``KeyValueStore``."""

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    def load(
        self,
        key: str,
        default_factory: Callable[[], T],
        expected_type: type | tuple[type, ...] = dict,
    ) -> T:
        """
        Load and decode ``key``. Returns ``default_factory()`` when the key is absent,
        the blob is not valid JSON, or the decoded value is not ``expected_type``.
        """
        raw = self.kv.get(key)
        if raw is None or raw == "":
            return default_factory()
        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as exc:
            self._recover(PersistenceCorruptionError(key, f"invalid JSON: {exc}"))
            return default_factory()
        if not isinstance(value, expected_type):
            self._recover(
                PersistenceCorruptionError(key, f"expected {_type_name(expected_type)}, got {type(value).__name__}")
            )
            return default_factory()
        return value

    def save(self, key: str, value: Any) -> None:
        self.kv.set(key, json.dumps(value, default=str))

    def raw(self, key: str) -> str | None:
        return self.kv.get(key)

    def restore(self, key: str, raw: str | None) -> None:
        """Put back a blob captured with ``raw()``; an absent blob becomes an empty document."""
        self.kv.set(key, raw if raw is not None else "")

    @staticmethod
    def _recover(error: PersistenceCorruptionError) -> None:
        logger.warning(f"Recovered from corrupted blob, using defaults: {error}")


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__
