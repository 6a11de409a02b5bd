"""
Kitchen Change View
Answers "what changed in this order" for kitchen re-prints and order views,
from the remote history when reachable and from the local cache otherwise.
"""

import logging
from typing import Dict, List, Tuple

from order_sync.core.exceptions import NetworkError, RemoteBackendError
from order_sync.schemas.order import CartLine, ChangeRecord, ChangeType
from order_sync.schemas.sync import KitchenTicketLine
from order_sync.services.change_cache import LocalChangeCache
from order_sync.services.network_monitor import NetworkStateMonitor
from order_sync.services.offline_orders import OfflineOrderStore, is_temporary_id
from order_sync.services.remote.base import RemoteBackend
from order_sync.services.sync_queue import PendingSyncQueue

logger = logging.getLogger(__name__)


class ChangeReader:
    def __init__(
        self,
        remote: RemoteBackend,
        change_cache: LocalChangeCache,
        queue: PendingSyncQueue,
        offline_orders: OfflineOrderStore,
        monitor: NetworkStateMonitor,
    ):
        self.remote = remote
        self.change_cache = change_cache
        self.queue = queue
        self.offline_orders = offline_orders
        self.monitor = monitor

    def _has_pending_changes(self, order_id: str) -> bool:
        return any(
            self.offline_orders.resolve_id(task.order_id) == order_id
            for task in self.queue.list_unsynced()
        )

    async def get_order_changes(self, order_id: str) -> List[ChangeRecord]:
        """Changes of the order's latest modification."""
        resolved = self.offline_orders.resolve_id(order_id)

        # Unsynced local edits are newer than anything the backend has
        if self.monitor.is_online and not is_temporary_id(resolved) and not self._has_pending_changes(resolved):
            try:
                entry = await self.remote.get_latest_history_entry(resolved)
                if entry is not None:
                    records = await self.remote.list_change_records(entry.id)
                    if records:
                        self.change_cache.set(resolved, records)
                        return records
            except NetworkError as e:
                logger.warning(f"Network error loading changes for order {resolved}, using cache: {e}")
                self.monitor.mark_offline()
            except RemoteBackendError as e:
                logger.warning(f"Could not load changes for order {resolved}, using cache: {e}")

        records = self.change_cache.get(resolved)
        if not records and resolved != order_id:
            records = self.change_cache.get(order_id)
        return records


def annotate_items_for_kitchen(
    current_items: List[CartLine],
    changes: List[ChangeRecord],
) -> List[KitchenTicketLine]:
    """
    Merge the current cart with its latest changes for a kitchen ticket.

    Quantity increases split into an unchanged part and an added part;
    decreases list what is left as unchanged plus a removed line. Output
    order is unchanged lines, then added, then removed.
    """
    pending: Dict[Tuple[str, object], ChangeRecord] = {
        (c.product_name, c.variant_name): c for c in changes
    }
    unchanged: List[KitchenTicketLine] = []
    added: List[KitchenTicketLine] = []
    removed: List[KitchenTicketLine] = []

    def line(name, variant, quantity, change_type, note=""):
        return KitchenTicketLine(
            name=name, variant=variant, quantity=quantity, change_type=change_type, note=note
        )

    for item in current_items:
        change = pending.pop(item.key, None)
        if change is None:
            unchanged.append(line(item.product_name, item.variant_name, item.quantity, "unchanged"))
        elif change.change_type == ChangeType.ADDED:
            added.append(line(item.product_name, item.variant_name, item.quantity, "added"))
        elif change.change_type == ChangeType.QUANTITY_CHANGED:
            delta = change.new_quantity - change.old_quantity
            if delta > 0:
                if change.old_quantity:
                    unchanged.append(line(item.product_name, item.variant_name, change.old_quantity, "unchanged"))
                added.append(line(item.product_name, item.variant_name, delta, "added", f"+{delta} added"))
            else:
                unchanged.append(line(item.product_name, item.variant_name, item.quantity, "unchanged"))
                if delta < 0:
                    removed.append(line(item.product_name, item.variant_name, -delta, "removed", f"{delta} removed"))
        else:
            # Removed per the records but present in the cart again
            unchanged.append(line(item.product_name, item.variant_name, item.quantity, "unchanged"))

    # Whatever is left refers to lines no longer in the cart
    for change in pending.values():
        if change.change_type == ChangeType.REMOVED:
            removed.append(line(change.product_name, change.variant_name, change.old_quantity, "removed"))
        elif change.new_quantity < change.old_quantity:
            delta = change.new_quantity - change.old_quantity
            removed.append(line(change.product_name, change.variant_name, -delta, "removed", f"{delta} removed"))

    return unchanged + added + removed
