"""
Local Change Cache
orderId -> ChangeRecord[] kept on this device so "what changed" is available
for printing before (or without) the remote write.
"""

import logging
from typing import Dict, List

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from order_sync.schemas.order import ChangeRecord
from order_sync.services.storage import JsonDocument, KeyValueStore

logger = logging.getLogger(__name__)

ORDER_CHANGES_KEY = "order_changes"

_records_adapter = TypeAdapter(List[ChangeRecord])


class LocalChangeCache:
    """Durable per-order change records. Never raises on corrupt content."""

    def __init__(self, store: KeyValueStore):
        self._doc = JsonDocument(store, ORDER_CHANGES_KEY, dict, dict)

    def _load(self) -> Dict[str, list]:
        return self._doc.load()

    def get(self, order_id: str) -> List[ChangeRecord]:
        raw = self._load().get(str(order_id))
        if not raw:
            return []
        try:
            return _records_adapter.validate_python(raw)
        except PydanticValidationError as e:
            logger.error(f"Cached changes for order {order_id} are malformed, ignoring: {e}")
            return []

    def set(self, order_id: str, records: List[ChangeRecord]) -> None:
        """Replace this order's entry; other orders are left untouched."""
        cached = self._load()
        cached[str(order_id)] = [r.model_dump(mode="json") for r in records]
        self._doc.save(cached)
        logger.debug(f"Cached {len(records)} changes for order {order_id}")

    def rekey(self, old_id: str, new_id: str) -> None:
        """Move an order's entry from a temporary id to its real id."""
        cached = self._load()
        if str(old_id) not in cached:
            return
        cached[str(new_id)] = cached.pop(str(old_id))
        self._doc.save(cached)
