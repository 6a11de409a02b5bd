"""
Offline Order Queue
Orders placed while the remote backend is unreachable. Each gets a temporary
id and is created remotely on the next reconciliation pass; the real id is
persisted the moment the remote insert succeeds so a retry never creates the
same order twice.
"""

import logging
import random
import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from order_sync.schemas.order import CartLine, utcnow
from order_sync.schemas.sync import OfflineOrder
from order_sync.services.storage import JsonDocument, KeyValueStore

logger = logging.getLogger(__name__)

OFFLINE_ORDERS_KEY = "offline_orders"
TEMP_ID_PREFIX = "offline_"


def new_temporary_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def is_temporary_id(order_id: str) -> bool:
    return str(order_id).startswith(TEMP_ID_PREFIX)


def generate_order_number(now_ms: Optional[int] = None) -> str:
    """ORD + last 6 digits of the epoch-ms clock + 3 random digits."""
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    return f"ORD{str(now_ms)[-6:]}{random.randint(0, 999):03d}"


class OfflineOrderStore:
    """Durable list of OfflineOrder entries keyed by temporary id."""

    def __init__(self, store: KeyValueStore):
        self._doc = JsonDocument(store, OFFLINE_ORDERS_KEY, list, list)

    def _load(self) -> List[OfflineOrder]:
        orders = []
        for entry in self._doc.load():
            try:
                orders.append(OfflineOrder.model_validate(entry))
            except PydanticValidationError as e:
                logger.error(f"Skipping malformed offline order: {e}")
        return orders

    def _save(self, orders: List[OfflineOrder]) -> None:
        self._doc.save([o.model_dump(mode="json") for o in orders])

    def _update(self, temp_id: str, **fields) -> Optional[OfflineOrder]:
        orders = self._load()
        for i, order in enumerate(orders):
            if order.temp_id == temp_id:
                orders[i] = order.model_copy(update=fields)
                self._save(orders)
                return orders[i]
        logger.warning(f"Offline order {temp_id} not found")
        return None

    def add(self, order: OfflineOrder) -> OfflineOrder:
        orders = self._load()
        orders.append(order)
        self._save(orders)
        logger.info(f"Order {order.order_number} saved offline as {order.temp_id}")
        return order

    def get(self, temp_id: str) -> Optional[OfflineOrder]:
        return next((o for o in self._load() if o.temp_id == temp_id), None)

    def list_all(self) -> List[OfflineOrder]:
        return self._load()

    def list_unsynced(self) -> List[OfflineOrder]:
        return sorted((o for o in self._load() if not o.synced), key=lambda o: o.created_at)

    def unsynced_count(self) -> int:
        return sum(1 for o in self._load() if not o.synced)

    def update_cart(
        self,
        temp_id: str,
        items: List[CartLine],
        order_fields: Optional[Dict[str, Any]] = None,
    ) -> Optional[OfflineOrder]:
        """Edit an order that has not reached the remote backend yet."""
        order = self.get(temp_id)
        if order is None:
            return None
        merged_fields = {**order.order_fields, **(order_fields or {})}
        return self._update(temp_id, items=list(items), order_fields=merged_fields)

    def set_ledger(self, temp_id: str, ledger) -> Optional[OfflineOrder]:
        return self._update(temp_id, ledger=ledger)

    def set_remote_id(self, temp_id: str, remote_id: str) -> Optional[OfflineOrder]:
        return self._update(temp_id, remote_id=remote_id)

    def mark_synced(self, temp_id: str, synced_at: Optional[datetime] = None) -> Optional[OfflineOrder]:
        return self._update(temp_id, synced=True, synced_at=synced_at or utcnow(), last_error=None)

    def record_failure(self, temp_id: str, error: str) -> Optional[OfflineOrder]:
        return self._update(temp_id, last_error=error)

    def resolve_id(self, order_id: str) -> str:
        """Map a temporary id to its real id when known; other ids pass through."""
        if not is_temporary_id(order_id):
            return order_id
        order = self.get(order_id)
        if order is not None and order.remote_id:
            return order.remote_id
        return order_id
