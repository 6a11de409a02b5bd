"""
Local durable key-value store.

Every offline structure (change cache, sync queue, offline orders, loyalty
balances) lives under a single key as a JSON document and is read and written
wholesale. Backends are pluggable: in-memory for tests, SQLAlchemy for
production (embedded SQLite by default).
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session, sessionmaker

from order_sync.core.exceptions import StorageCorruption
from order_sync.models.kv_store import KeyValueEntry

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Base interface for durable string storage that survives restarts."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Return the stored string, or None when the key is absent."""

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store a string under key, replacing any previous value."""

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Delete a key. Missing keys are ignored."""


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed store for tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)


class SqlKeyValueStore(KeyValueStore):
    """Store backed by the kv_entries table."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get_item(self, key: str) -> Optional[str]:
        with self._session_factory() as session:
            entry = session.get(KeyValueEntry, key)
            return entry.value if entry else None

    def set_item(self, key: str, value: str) -> None:
        with self._session_factory() as session:
            self._upsert(session, key, value)
            session.commit()

    def remove_item(self, key: str) -> None:
        with self._session_factory() as session:
            entry = session.get(KeyValueEntry, key)
            if entry is not None:
                session.delete(entry)
                session.commit()

    @staticmethod
    def _upsert(session: Session, key: str, value: str) -> None:
        entry = session.get(KeyValueEntry, key)
        if entry is None:
            session.add(KeyValueEntry(key=key, value=value))
        else:
            entry.value = value


def corrupt_key(key: str) -> str:
    """Key under which an unreadable payload is preserved for manual recovery."""
    return f"{key}.corrupt"


class JsonDocument:
    """A JSON value stored under one key, read-modify-written as a whole.

    Reads fail open: missing content yields the default, unparseable content
    is logged, preserved under ``<key>.corrupt`` and replaced by the default.
    """

    def __init__(self, store: KeyValueStore, key: str, default_factory: Callable[[], Any], expected_type: type):
        self.store = store
        self.key = key
        self.default_factory = default_factory
        self.expected_type = expected_type

    def _decode(self, raw: str) -> Any:
        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise StorageCorruption(self.key, f"invalid JSON ({e})")
        if not isinstance(value, self.expected_type):
            raise StorageCorruption(
                self.key, f"expected {self.expected_type.__name__}, found {type(value).__name__}"
            )
        return value

    def load(self) -> Any:
        raw = self.store.get_item(self.key)
        if raw is None:
            return self.default_factory()
        try:
            return self._decode(raw)
        except StorageCorruption as e:
            logger.error(f"Storage corruption, resetting to empty: {e}")
            self.store.set_item(corrupt_key(self.key), raw)
            empty = self.default_factory()
            self.save(empty)
            return empty

    def save(self, value: Any) -> None:
        self.store.set_item(self.key, json.dumps(value))
