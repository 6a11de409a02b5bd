"""
Order Lifecycle Orchestrator
Single entry point the UI shell calls to place and modify orders.

Every write follows the same dual path: when the backend is known to be
unreachable the change goes straight to local storage; otherwise it is tried
online and falls back to local storage on any remote failure. A modification
is never dropped, and engine errors never escape as exceptions: callers get
an OperationResult describing what happened.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from order_sync.core.config import Settings
from order_sync.core.exceptions import NetworkError, RemoteBackendError, ValidationError
from order_sync.db.base import Base
from order_sync.db.session import build_engine, build_session_factory
from order_sync.schemas.order import (
    CartLine,
    ChangeRecord,
    LedgerCharge,
    ModificationEvent,
    OperationResult,
    OperationStatus,
    OrderSnapshot,
    OrderState,
    utcnow,
)
from order_sync.schemas.sync import NetworkStatus, OfflineOrder, PendingSyncTask, ReconcileResult
from order_sync.services.change_cache import LocalChangeCache
from order_sync.services.kitchen_changes import ChangeReader
from order_sync.services.ledger import replace_ledger_entry
from order_sync.services.loyalty_cache import LoyaltyBalanceCache
from order_sync.services.network_monitor import NetworkStateMonitor
from order_sync.services.offline_orders import (
    OfflineOrderStore,
    generate_order_number,
    is_temporary_id,
    new_temporary_id,
)
from order_sync.services.reconciler import SyncReconciler
from order_sync.services.remote.base import RemoteBackend
from order_sync.services.remote.http import HttpRemoteBackend
from order_sync.services.snapshot_differ import change_records_from_event, diff, validate_event
from order_sync.services.storage import InMemoryKeyValueStore, KeyValueStore, SqlKeyValueStore
from order_sync.services.sync_queue import PendingSyncQueue

logger = logging.getLogger(__name__)


def placeholder_history_id(order_id: str, at: datetime) -> str:
    return f"offline_{order_id}_{int(at.timestamp() * 1000)}"


class OrderLifecycleOrchestrator:
    def __init__(
        self,
        remote: RemoteBackend,
        monitor: NetworkStateMonitor,
        change_cache: LocalChangeCache,
        queue: PendingSyncQueue,
        offline_orders: OfflineOrderStore,
        loyalty_cache: LoyaltyBalanceCache,
        reconciler: Optional[SyncReconciler] = None,
        change_reader: Optional[ChangeReader] = None,
    ):
        self.remote = remote
        self.monitor = monitor
        self.change_cache = change_cache
        self.queue = queue
        self.offline_orders = offline_orders
        self.loyalty_cache = loyalty_cache
        self.reconciler = reconciler or SyncReconciler(
            remote, queue, offline_orders, change_cache, monitor
        )
        self.change_reader = change_reader or ChangeReader(
            remote, change_cache, queue, offline_orders, monitor
        )
        self._sync_task: Optional[asyncio.Task] = None

    # ==================== HELPERS ====================

    def _target_id(self, order_id: str) -> str:
        """Temporary id while the offline order is unfinished, real id afterwards."""
        for order in self.offline_orders.list_unsynced():
            if order_id in (order.temp_id, order.remote_id):
                return order.temp_id
        return self.offline_orders.resolve_id(order_id)

    def _must_queue(self, order_id: str) -> bool:
        """True when an online write would overtake unsynced local edits of the order."""
        if is_temporary_id(order_id):
            return True
        return any(
            self.offline_orders.resolve_id(task.order_id) == order_id
            for task in self.queue.list_unsynced()
        )

    def _remote_failed(self, operation: str, error: RemoteBackendError) -> None:
        if isinstance(error, NetworkError):
            logger.warning(f"{operation}: network error, switching to offline mode: {error}")
            self.monitor.mark_offline()
        else:
            logger.warning(f"{operation}: remote backend error, saving locally: {error}")

    @staticmethod
    def _rejected(
        message: str,
        order_id: Optional[str] = None,
        order_state: Optional[OrderState] = None,
    ) -> OperationResult:
        return OperationResult(
            status=OperationStatus.REJECTED, message=message, order_id=order_id, order_state=order_state
        )

    # ==================== ORDER PLACEMENT ====================

    async def place_order(
        self,
        order_fields: Dict[str, Any],
        items: List[CartLine],
        ledger: Optional[LedgerCharge] = None,
    ) -> OperationResult:
        """Create an order, remotely when possible and as an offline order otherwise."""
        items = list(items)
        if not items:
            # Checkout never happened; the cart stays a draft
            return self._rejected("Order has no items", order_state=OrderState.DRAFT)

        order_number = order_fields.get("order_number") or generate_order_number()
        fields = {**order_fields, "order_number": order_number}

        remote_id = None
        if self.monitor.is_online:
            try:
                remote_id = await self.remote.create_order(fields)
                await self.remote.insert_order_items(remote_id, items)
                await self.remote.create_history_entry(
                    remote_id, "created", {"order_number": order_number, "items_count": len(items)}
                )
                if ledger is not None:
                    await replace_ledger_entry(self.remote, remote_id, ledger, order_number)
                logger.info(f"Order {order_number} placed as {remote_id}")
                return OperationResult(
                    status=OperationStatus.SAVED,
                    message=f"Order {order_number} placed",
                    order_id=remote_id,
                    order_number=order_number,
                    order_state=OrderState.PLACED,
                )
            except RemoteBackendError as e:
                self._remote_failed(f"place_order {order_number}", e)

        # A remote_id here means the order row exists but a later write failed;
        # the reconciler finishes it without creating it again.
        offline_order = self.offline_orders.add(OfflineOrder(
            temp_id=new_temporary_id(),
            order_number=order_number,
            order_fields=fields,
            items=items,
            ledger=ledger,
            remote_id=remote_id,
        ))
        return OperationResult(
            status=OperationStatus.SAVED_OFFLINE,
            message=f"Order {order_number} saved offline, will sync when online",
            order_id=offline_order.temp_id,
            order_number=order_number,
            order_state=OrderState.PLACED_OFFLINE,
        )

    # ==================== ORDER MODIFICATION ====================

    async def modify_order(
        self,
        order_id: str,
        order_number: Optional[str],
        previous: OrderSnapshot,
        current: OrderSnapshot,
        order_fields: Optional[Dict[str, Any]] = None,
        ledger: Optional[LedgerCharge] = None,
    ) -> OperationResult:
        """Save an edited order given its cart before and after the edit."""
        order_diff = diff(previous, current)
        if not order_diff.has_changes and not order_fields and ledger is None:
            return OperationResult(
                status=OperationStatus.NO_CHANGES,
                message="No changes to save",
                order_id=order_id,
                order_number=order_number,
            )

        fields = {**(order_fields or {}), "subtotal": current.subtotal, "total_amount": current.total}
        return await self._apply_modification(
            order_id, order_number, order_diff.to_event(), list(current.lines), fields, ledger
        )

    async def record_modification_event(
        self,
        order_id: str,
        order_number: Optional[str],
        event: ModificationEvent,
        items: Optional[List[CartLine]] = None,
        order_fields: Optional[Dict[str, Any]] = None,
        ledger: Optional[LedgerCharge] = None,
    ) -> OperationResult:
        """Save a modification described in the checkout UI's event shape."""
        try:
            validate_event(event)
        except ValidationError as e:
            logger.warning(f"Rejected modification for order {order_number or order_id}: {e}")
            return self._rejected(str(e), order_id)

        return await self._apply_modification(order_id, order_number, event, items, order_fields, ledger)

    async def _apply_modification(
        self,
        order_id: str,
        order_number: Optional[str],
        event: ModificationEvent,
        items: Optional[List[CartLine]],
        order_fields: Optional[Dict[str, Any]],
        ledger: Optional[LedgerCharge],
    ) -> OperationResult:
        created_at = utcnow()
        target = self._target_id(order_id)

        if self.monitor.is_online and not self._must_queue(target):
            try:
                history_id = await self._write_modification(
                    target, order_number, event, items, order_fields, ledger, created_at
                )
                logger.info(f"Order {order_number or target} modified ({event.change_count} changes)")
                return OperationResult(
                    status=OperationStatus.SAVED,
                    message="Order updated",
                    order_id=target,
                    order_number=order_number,
                    order_state=OrderState.MODIFIED,
                    changes_count=event.change_count,
                    history_id=history_id,
                )
            except RemoteBackendError as e:
                self._remote_failed(f"modify_order {order_number or target}", e)

        return self._save_modification_offline(
            target, order_number, event, items, order_fields, ledger, created_at
        )

    async def _write_modification(
        self,
        order_id: str,
        order_number: Optional[str],
        event: ModificationEvent,
        items: Optional[List[CartLine]],
        order_fields: Optional[Dict[str, Any]],
        ledger: Optional[LedgerCharge],
        created_at: datetime,
    ) -> Optional[str]:
        if order_fields:
            await self.remote.update_order(order_id, order_fields)
        if items is not None:
            await self.remote.delete_order_items(order_id)
            if items:
                await self.remote.insert_order_items(order_id, items)

        history_id = None
        if event.change_count:
            history_id = await self.remote.create_history_entry(
                order_id,
                "modified",
                {
                    "order_number": order_number,
                    "changes_count": event.change_count,
                    "total_delta": str(event.total_delta),
                },
            )
            records = change_records_from_event(event, history_id, created_at)
            await self.remote.insert_change_records(history_id, records)
            self.change_cache.set(order_id, records)

        if ledger is not None:
            await replace_ledger_entry(self.remote, order_id, ledger, order_number)
        return history_id

    def _save_modification_offline(
        self,
        order_id: str,
        order_number: Optional[str],
        event: ModificationEvent,
        items: Optional[List[CartLine]],
        order_fields: Optional[Dict[str, Any]],
        ledger: Optional[LedgerCharge],
        created_at: datetime,
    ) -> OperationResult:
        placeholder = placeholder_history_id(order_id, created_at)
        records = change_records_from_event(event, placeholder, created_at)

        if is_temporary_id(order_id):
            # Not created remotely yet: fold the edit into the stored order,
            # queue only the change records for the audit trail.
            offline_order = self.offline_orders.get(order_id)
            if offline_order is None:
                return self._rejected(f"Unknown offline order {order_id}", order_id)
            if items is not None or order_fields:
                self.offline_orders.update_cart(
                    order_id, items if items is not None else offline_order.items, order_fields
                )
            if ledger is not None:
                self.offline_orders.set_ledger(order_id, ledger)
            order_fields, items, ledger = None, None, None

        if records:
            self.change_cache.set(order_id, records)
        if records or order_fields or items is not None or ledger is not None:
            self.queue.enqueue(PendingSyncTask(
                task_id=uuid.uuid4().hex,
                order_id=order_id,
                order_number=order_number,
                placeholder_history_id=placeholder,
                changes=records,
                order_fields=order_fields or None,
                items=items,
                ledger=ledger,
                enqueued_at=created_at,
            ))

        return OperationResult(
            status=OperationStatus.SAVED_OFFLINE,
            message="Changes saved offline, will sync when online",
            order_id=order_id,
            order_number=order_number,
            order_state=OrderState.MODIFIED_OFFLINE,
            changes_count=len(records),
            history_id=placeholder,
        )

    # ==================== ACCOUNT CHARGES ====================

    async def record_account_charge(
        self,
        order_id: str,
        order_number: Optional[str],
        charge: LedgerCharge,
    ) -> OperationResult:
        """Charge an order to the customer's account, replacing any earlier charge."""
        target = self._target_id(order_id)

        if self.monitor.is_online and not self._must_queue(target):
            try:
                await replace_ledger_entry(self.remote, target, charge, order_number)
                return OperationResult(
                    status=OperationStatus.SAVED,
                    message=f"Charged {charge.amount} to customer account",
                    order_id=target,
                    order_number=order_number,
                )
            except RemoteBackendError as e:
                self._remote_failed(f"record_account_charge {order_number or target}", e)

        return self._save_modification_offline(
            target, order_number, ModificationEvent(), None, None, charge, utcnow()
        ).model_copy(update={
            "message": "Account charge saved offline, will sync when online",
            "order_state": None,
            "history_id": None,
        })

    # ==================== LOYALTY ====================

    def _loyalty_pending(self, customer_id: str) -> OperationResult:
        cached = self.loyalty_cache.get(customer_id)
        return OperationResult(
            status=OperationStatus.PENDING_ONLINE,
            message="Loyalty points will be processed when online",
            balance=cached.current_balance if cached else None,
        )

    async def award_loyalty_points(self, customer_id: str, order_id: str, points: int) -> OperationResult:
        if points <= 0:
            return self._rejected("Points to award must be positive", order_id)
        if not self.monitor.is_online:
            return self._loyalty_pending(customer_id)

        try:
            new_balance = await self.remote.award_loyalty_points(customer_id, order_id, points)
        except NetworkError as e:
            self._remote_failed("award_loyalty_points", e)
            return self._loyalty_pending(customer_id)
        except RemoteBackendError as e:
            logger.warning(f"Loyalty award for customer {customer_id} refused: {e}")
            return self._rejected(str(e), order_id)

        self.loyalty_cache.apply_award(customer_id, points, new_balance)
        return OperationResult(
            status=OperationStatus.SAVED,
            message=f"Awarded {points} points",
            order_id=order_id,
            balance=new_balance,
        )

    async def redeem_loyalty_points(self, customer_id: str, order_id: str, points: int) -> OperationResult:
        if points <= 0:
            return self._rejected("Points to redeem must be positive", order_id)

        cached = self.loyalty_cache.get(customer_id)
        if not self.monitor.is_online:
            if cached is not None and points > cached.current_balance:
                return self._rejected(
                    f"Insufficient points: {cached.current_balance} available", order_id
                )
            return self._loyalty_pending(customer_id)

        try:
            available = await self.remote.get_loyalty_balance(customer_id)
            if points > available:
                return self._rejected(f"Insufficient points: {available} available", order_id)
            new_balance = await self.remote.redeem_loyalty_points(customer_id, order_id, points)
        except NetworkError as e:
            self._remote_failed("redeem_loyalty_points", e)
            return self._loyalty_pending(customer_id)
        except RemoteBackendError as e:
            logger.warning(f"Loyalty redemption for customer {customer_id} refused: {e}")
            return self._rejected(str(e), order_id)

        self.loyalty_cache.apply_redemption(customer_id, points, new_balance)
        return OperationResult(
            status=OperationStatus.SAVED,
            message=f"Redeemed {points} points",
            order_id=order_id,
            balance=new_balance,
        )

    # ==================== READ PATH & SYNC ====================

    async def get_order_changes(self, order_id: str) -> List[ChangeRecord]:
        return await self.change_reader.get_order_changes(order_id)

    def network_status(self) -> NetworkStatus:
        return self.monitor.status()

    async def sync_now(self) -> ReconcileResult:
        """Manual sync trigger; re-probes first if the backend looked unreachable."""
        if not self.monitor.is_online:
            await self.monitor.refresh()
        return await self.reconciler.reconcile()

    async def _on_status(self, status: NetworkStatus) -> None:
        if not status.is_online or not status.unsynced_count or status.is_reconciling:
            return
        if self._sync_task is not None and not self._sync_task.done():
            return
        self._sync_task = asyncio.create_task(self._background_sync())

    async def _background_sync(self) -> None:
        try:
            await self.reconciler.reconcile()
        except Exception as e:
            logger.error(f"Background reconciliation failed: {e}", exc_info=True)

    async def start(self) -> None:
        self.monitor.add_listener(self._on_status)
        await self.monitor.start()

    async def stop(self) -> None:
        await self.monitor.stop()
        self.monitor.remove_listener(self._on_status)
        if self._sync_task is not None:
            await asyncio.gather(self._sync_task, return_exceptions=True)
            self._sync_task = None


def build_store(settings: Settings) -> KeyValueStore:
    if settings.storage_backend == "memory":
        return InMemoryKeyValueStore()
    engine = build_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    return SqlKeyValueStore(build_session_factory(engine))


def build_orchestrator(settings: Settings, remote: Optional[RemoteBackend] = None) -> OrderLifecycleOrchestrator:
    """Wire the production collaborators."""
    store = build_store(settings)
    remote = remote or HttpRemoteBackend(
        settings.remote_base_url,
        api_key=settings.remote_api_key,
        timeout=settings.remote_timeout_seconds,
    )
    queue = PendingSyncQueue(store)
    offline_orders = OfflineOrderStore(store)
    monitor = NetworkStateMonitor(
        remote.ping,
        lambda: queue.unsynced_count() + offline_orders.unsynced_count(),
        poll_interval=settings.connectivity_poll_interval_seconds,
    )
    return OrderLifecycleOrchestrator(
        remote=remote,
        monitor=monitor,
        change_cache=LocalChangeCache(store),
        queue=queue,
        offline_orders=offline_orders,
        loyalty_cache=LoyaltyBalanceCache(store),
    )
