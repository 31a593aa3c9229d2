"""Persistent key-value storage with per-entry expiry.

Entries are written as JSON envelopes holding the value, the write timestamp
and an optional absolute expiry. Reads treat an expired envelope as absent
and evict it. Backend failures are logged and reported through return values;
they never reach the caller as exceptions.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Protocol

from storefront.core.exceptions import StorageFailure

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class StorageKey(str, Enum):
    """Persisted keys other code depends on."""

    CART_ITEMS = "cart_items"
    CART_EXPIRES_AT = "cart_expires_at"
    TOTAL_MRP = "cart_total_mrp"
    TOTAL_DISCOUNT = "cart_total_discount"
    TOTAL_EXTRA_DISCOUNT = "cart_total_extra_discount"
    TOTAL_PRICE = "cart_total_price"
    PAYMENT_AMOUNT = "payment_amount"
    ORDER_ID = "order_id"
    TRANSACTION_RECORD = "transaction_record"
    TRACKED_PURCHASES = "tracked_purchases"


class StorageBackend(Protocol):
    """Raw string storage, shaped like browser local storage."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def item_keys(self) -> list[str]: ...


class InMemoryStorageBackend:
    """Thread-safe dict backend with an optional byte quota."""

    def __init__(self, quota_bytes: int | None = None) -> None:
        """Initialize the backend.

        Args:
            quota_bytes: Optional limit on the summed size of keys and values.
        """
        self.quota_bytes = quota_bytes
        self._items: dict[str, str] = {}
        self._lock = Lock()

    def _size_with(self, key: str, value: str) -> int:
        """Size of the stored data if key were set to value. Lock must be held."""
        size = sum(len(k) + len(v) for k, v in self._items.items() if k != key)
        return size + len(key) + len(value)

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            if self.quota_bytes is not None and self._size_with(key, value) > self.quota_bytes:
                raise StorageFailure("Storage quota exceeded", key=key)
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def item_keys(self) -> list[str]:
        with self._lock:
            return list(self._items)


class FileStorageBackend:
    """JSON file backend.

    Every read reloads the file and every write replaces it atomically, so
    several stores pointed at one file see each other's writes the way
    browser tabs share local storage (last write wins).
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = Lock()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageFailure(f"Cannot read storage file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageFailure(f"Storage file {self.path} does not hold an object")
        return data

    def _save(self, data: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".storage-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageFailure(f"Cannot write storage file {self.path}: {e}") from e

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)

    def item_keys(self) -> list[str]:
        with self._lock:
            return list(self._load())


@dataclass
class StorageEntry:
    """A stored value with its write time and optional expiry."""

    value: Any
    timestamp: float
    expiry: float | None = None

    def is_expired(self, now: float) -> bool:
        """Check if this entry has expired."""
        return self.expiry is not None and now > self.expiry

    def to_json(self) -> str:
        return json.dumps({"value": self.value, "timestamp": self.timestamp, "expiry": self.expiry})

    @classmethod
    def from_json(cls, raw: str) -> "StorageEntry":
        """Parse an envelope.

        Raises:
            ValueError: If the text is not a valid envelope.
        """
        parsed = json.loads(raw)
        if not isinstance(parsed, dict) or "value" not in parsed:
            raise ValueError("not a storage envelope")
        expiry = parsed.get("expiry")
        return cls(
            value=parsed["value"],
            timestamp=float(parsed.get("timestamp") or 0),
            expiry=float(expiry) if expiry is not None else None,
        )


class KeyValueStore:
    """Namespaced, expiring key-value store over a StorageBackend."""

    def __init__(
        self,
        backend: StorageBackend,
        prefix: str = "ecommerce_",
        clock: Clock = time.time,
    ) -> None:
        """Initialize the store.

        Args:
            backend: Raw string backend.
            prefix: Prepended to every key; isolates namespaces on one backend.
            clock: Returns the current epoch time in seconds.
        """
        self.backend = backend
        self.prefix = prefix
        self.clock = clock

    def _full_key(self, key: str | StorageKey) -> str:
        name = key.value if isinstance(key, StorageKey) else key
        return self.prefix + name

    def namespaced(self, namespace: str) -> "KeyValueStore":
        """Return a store over the same backend scoped to a sub-namespace."""
        return KeyValueStore(self.backend, prefix=f"{self.prefix}{namespace}:", clock=self.clock)

    def set(self, key: str | StorageKey, value: Any, ttl: float | None = None) -> bool:
        """Store a JSON-serializable value.

        Args:
            key: Entry key.
            value: Value to store.
            ttl: Optional lifetime in seconds.

        Returns:
            bool: True if the write succeeded.
        """
        now = self.clock()
        entry = StorageEntry(value=value, timestamp=now, expiry=now + ttl if ttl is not None else None)
        full_key = self._full_key(key)
        try:
            self.backend.set_item(full_key, entry.to_json())
            return True
        except (TypeError, ValueError) as e:
            logger.warning("Storage set error for %s: value not serializable (%s)", full_key, e)
        except StorageFailure as e:
            logger.warning("Storage set error for %s: %s", full_key, e.message)
        return False

    def get(self, key: str | StorageKey, default: Any = None) -> Any:
        """Read a value, treating expired or unreadable entries as absent.

        Args:
            key: Entry key.
            default: Returned when the entry is absent, expired or unreadable.

        Returns:
            The stored value or default.
        """
        entry = self.get_entry(key)
        return default if entry is None else entry.value

    def get_entry(self, key: str | StorageKey) -> StorageEntry | None:
        """Read the full envelope for a key, or None."""
        full_key = self._full_key(key)
        try:
            raw = self.backend.get_item(full_key)
        except StorageFailure as e:
            logger.warning("Storage get error for %s: %s", full_key, e.message)
            return None
        if raw is None:
            return None

        try:
            entry = StorageEntry.from_json(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Storage get error for %s: unreadable entry (%s)", full_key, e)
            return None

        if entry.is_expired(self.clock()):
            logger.debug("Storage entry %s expired", full_key)
            self.remove(key)
            return None
        return entry

    def remove(self, key: str | StorageKey) -> bool:
        """Remove an entry. Removing an absent key succeeds."""
        full_key = self._full_key(key)
        try:
            self.backend.remove_item(full_key)
            return True
        except StorageFailure as e:
            logger.warning("Storage remove error for %s: %s", full_key, e.message)
            return False

    def keys(self) -> list[str]:
        """List keys in this namespace, without the prefix."""
        try:
            names = self.backend.item_keys()
        except StorageFailure as e:
            logger.warning("Storage key listing failed: %s", e.message)
            return []
        return [name[len(self.prefix):] for name in names if name.startswith(self.prefix)]

    def clear(self) -> int:
        """Remove every entry in this namespace.

        Returns:
            Number of entries removed.
        """
        removed = 0
        for key in self.keys():
            if self.remove(key):
                removed += 1
        return removed


# Global singleton backend
_storage_backend: StorageBackend | None = None


def get_storage_backend() -> StorageBackend:
    """Get or create the global storage backend from settings."""
    global _storage_backend
    if _storage_backend is None:
        from storefront.core.config import get_settings

        settings = get_settings()
        if settings.storage_backend == "file":
            _storage_backend = FileStorageBackend(settings.storage_file_path)
        else:
            _storage_backend = InMemoryStorageBackend()
        logger.info("Using %s storage backend", settings.storage_backend)
    return _storage_backend


def reset_storage_backend() -> None:
    """Drop the global backend so the next call rebuilds it."""
    global _storage_backend
    _storage_backend = None
