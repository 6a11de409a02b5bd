"""
Sync Reconciler
Replays offline orders and queued modifications against the remote backend
once connectivity returns.

Ordering rules:
- Offline orders are created before any queued task is replayed, so tasks
  recorded against a temporary id can be resolved to the real id.
- Tasks for one order are replayed in enqueue order. When a task fails, the
  rest of that order's tasks wait for the next pass; other orders carry on.
- A network-class failure on one task only stops the pass when a health
  check confirms the backend is unreachable.
- A task is marked synced only after every remote write it needs succeeded.
"""

import logging
from typing import Set

from order_sync.core.exceptions import NetworkError, PartialSyncFailure, RemoteBackendError
from order_sync.schemas.order import utcnow
from order_sync.schemas.sync import OfflineOrder, PendingSyncTask, ReconcileResult
from order_sync.services.change_cache import LocalChangeCache
from order_sync.services.ledger import replace_ledger_entry
from order_sync.services.network_monitor import NetworkStateMonitor
from order_sync.services.offline_orders import OfflineOrderStore, is_temporary_id
from order_sync.services.remote.base import RemoteBackend
from order_sync.services.sync_queue import PendingSyncQueue

logger = logging.getLogger(__name__)


class SyncReconciler:
    def __init__(
        self,
        remote: RemoteBackend,
        queue: PendingSyncQueue,
        offline_orders: OfflineOrderStore,
        change_cache: LocalChangeCache,
        monitor: NetworkStateMonitor,
    ):
        self.remote = remote
        self.queue = queue
        self.offline_orders = offline_orders
        self.change_cache = change_cache
        self.monitor = monitor
        self._reconciling = False

    @property
    def is_reconciling(self) -> bool:
        return self._reconciling

    async def reconcile(self) -> ReconcileResult:
        """Run one pass. Safe to call repeatedly; concurrent calls are skipped."""
        if self._reconciling:
            return ReconcileResult(skipped=True, reason="in_progress")
        if not self.monitor.is_online:
            return ReconcileResult(skipped=True, reason="offline")

        self._reconciling = True
        self.monitor.set_reconciling(True)
        try:
            result = await self._run_pass()
        finally:
            self._reconciling = False
            self.monitor.set_reconciling(False, finished_at=utcnow())

        if result.total or result.orders_synced:
            logger.info(
                f"Reconciliation pass: {result.synced}/{result.total} tasks synced, "
                f"{result.orders_synced} offline orders created, {len(result.failed)} failed"
            )
        return result

    async def _run_pass(self) -> ReconcileResult:
        tasks = self.queue.list_unsynced()
        result = ReconcileResult(total=len(tasks))

        for order in self.offline_orders.list_unsynced():
            try:
                await self._sync_offline_order(order)
                result.orders_synced += 1
            except NetworkError as e:
                logger.warning(f"Network error creating offline order {order.order_number} ({order.temp_id}): {e}")
                self.offline_orders.record_failure(order.temp_id, str(e))
                if not await self._backend_reachable():
                    return result
            except RemoteBackendError as e:
                logger.warning(f"Offline order {order.order_number} ({order.temp_id}) failed to sync: {e}")
                self.offline_orders.record_failure(order.temp_id, str(e))

        unfinished = {o.temp_id for o in self.offline_orders.list_unsynced()}
        blocked: Set[str] = set()
        for task in tasks:
            order_id = self.offline_orders.resolve_id(task.order_id)
            if task.order_id in unfinished or is_temporary_id(order_id):
                logger.info(f"Deferring task {task.task_id}: order {order_id} not created remotely yet")
                continue
            if order_id in blocked:
                logger.info(f"Deferring task {task.task_id}: earlier change to order {order_id} failed")
                continue

            try:
                await self._replay(task, order_id)
            except RemoteBackendError as e:
                failure = PartialSyncFailure(task.task_id, order_id, e)
                logger.warning(str(failure))
                self.queue.record_failure(task.task_id, str(e))
                result.failed.append(task.task_id)
                blocked.add(order_id)
                if isinstance(e, NetworkError) and not await self._backend_reachable():
                    break
                continue

            if self.queue.mark_synced(task.task_id):
                result.synced += 1

        return result

    async def _backend_reachable(self) -> bool:
        """Tell a failing request apart from a lost connection."""
        if await self.remote.ping():
            return True
        logger.warning("Remote backend unreachable, deferring remaining work")
        self.monitor.mark_offline()
        return False

    async def _sync_offline_order(self, order: OfflineOrder) -> str:
        remote_id = order.remote_id
        if remote_id is None:
            remote_id = await self.remote.create_order(
                {**order.order_fields, "order_number": order.order_number}
            )
            # Persist before anything else so a retry cannot create the order twice
            self.offline_orders.set_remote_id(order.temp_id, remote_id)
            logger.info(f"Offline order {order.order_number} created remotely as {remote_id}")
        else:
            await self.remote.delete_order_items(remote_id)

        if order.items:
            await self.remote.insert_order_items(remote_id, order.items)
        await self.remote.create_history_entry(
            remote_id,
            "created",
            {"offline_sync": True, "order_number": order.order_number, "items_count": len(order.items)},
        )
        if order.ledger is not None:
            await replace_ledger_entry(self.remote, remote_id, order.ledger, order.order_number)

        self.offline_orders.mark_synced(order.temp_id)
        self.change_cache.rekey(order.temp_id, remote_id)
        return remote_id

    async def _replay(self, task: PendingSyncTask, order_id: str) -> None:
        if task.order_fields:
            await self.remote.update_order(order_id, task.order_fields)
        if task.items is not None:
            await self.remote.delete_order_items(order_id)
            if task.items:
                await self.remote.insert_order_items(order_id, task.items)

        if task.changes:
            history_id = await self.remote.create_history_entry(
                order_id,
                "modified",
                {
                    "offline_sync": True,
                    "changes_count": len(task.changes),
                    "order_number": task.order_number,
                },
            )
            records = [record.with_history_id(history_id) for record in task.changes]
            await self.remote.insert_change_records(history_id, records)

            # Swap placeholder ids in the cache only if this task is still the latest edit
            cached = self.change_cache.get(order_id)
            if cached and all(r.history_id == task.placeholder_history_id for r in cached):
                self.change_cache.set(order_id, records)

        if task.ledger is not None:
            await replace_ledger_entry(self.remote, order_id, task.ledger, task.order_number)
