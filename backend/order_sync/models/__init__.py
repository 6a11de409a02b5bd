"""SQLAlchemy models."""

from order_sync.models.kv_store import KeyValueEntry

__all__ = ["KeyValueEntry"]
