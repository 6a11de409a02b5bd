"""Tests for the sync reconciler.

Covers replay order, idempotence, partial-failure isolation, per-order
deferral, the re-entrancy guard and offline order creation.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import make_line
from order_sync.core.exceptions import NetworkError, RemoteBackendError
from order_sync.schemas.order import ChangeRecord, ChangeType, LedgerCharge, LedgerEntry, utcnow
from order_sync.schemas.sync import OfflineOrder, PendingSyncTask
from order_sync.services.offline_orders import new_temporary_id
from order_sync.services.reconciler import SyncReconciler


def _task(task_id, order_id, minutes=0, items=None, ledger=None, product="Latte"):
    placeholder = f"offline_{order_id}_{task_id}"
    return PendingSyncTask(
        task_id=task_id,
        order_id=order_id,
        order_number="ORD100200300",
        placeholder_history_id=placeholder,
        changes=[ChangeRecord(
            history_id=placeholder,
            change_type=ChangeType.ADDED,
            product_name=product,
            new_quantity=1,
            new_price=Decimal("5.00"),
        )],
        items=items,
        ledger=ledger,
        enqueued_at=utcnow() + timedelta(minutes=minutes),
    )


@pytest.fixture
def reconciler(remote, queue, offline_orders, change_cache, monitor):
    return SyncReconciler(remote, queue, offline_orders, change_cache, monitor)


class TestReplay:
    @pytest.mark.asyncio
    async def test_replays_task_and_marks_synced(self, reconciler, remote, queue, change_cache):
        queue.enqueue(_task("t1", "order-1", items=[make_line("Latte", 1)]))
        change_cache.set("order-1", queue.get("t1").changes)

        result = await reconciler.reconcile()

        assert (result.synced, result.total, result.failed) == (1, 1, [])
        assert remote.call_names() == [
            "delete_order_items", "insert_order_items", "create_history_entry", "insert_change_records",
        ]
        history = remote.history[0]
        assert history.action == "modified"
        assert history.details["offline_sync"] is True
        assert history.details["changes_count"] == 1
        # Placeholder ids are replaced by the real history id
        assert [r.history_id for r in remote.change_records[history.id]] == [history.id]
        assert [r.history_id for r in change_cache.get("order-1")] == [history.id]
        assert queue.get("t1").synced

    @pytest.mark.asyncio
    async def test_second_pass_is_a_noop(self, reconciler, remote, queue):
        queue.enqueue(_task("t1", "order-1"))
        await reconciler.reconcile()
        remote.calls.clear()

        result = await reconciler.reconcile()

        assert (result.synced, result.total) == (0, 0)
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_failed_task_does_not_block_other_orders(self, reconciler, remote, queue):
        queue.enqueue(_task("a1", "order-a", minutes=0))
        queue.enqueue(_task("b1", "order-b", minutes=1))
        remote.fail_on["create_history_entry"] = RemoteBackendError("constraint violation", status_code=400)
        remote.fail_times["create_history_entry"] = 1

        result = await reconciler.reconcile()

        assert result.failed == ["a1"]
        assert result.synced == 1
        assert not queue.get("a1").synced
        assert queue.get("b1").synced
        assert queue.failures()["a1"].attempts == 1

        # Next pass picks up the failed task
        result = await reconciler.reconcile()
        assert (result.synced, result.total) == (1, 1)
        assert queue.get("a1").synced
        assert queue.failures() == {}

    @pytest.mark.asyncio
    async def test_later_tasks_of_failed_order_are_deferred(self, reconciler, remote, queue):
        queue.enqueue(_task("a1", "order-a", minutes=0))
        queue.enqueue(_task("a2", "order-a", minutes=1, product="Bagel"))
        remote.fail_on["create_history_entry"] = RemoteBackendError("rejected", status_code=400)
        remote.fail_times["create_history_entry"] = 1

        result = await reconciler.reconcile()

        assert result.synced == 0
        assert result.failed == ["a1"]
        assert not queue.get("a2").synced
        assert remote.history == []

        await reconciler.reconcile()
        # Replayed in enqueue order
        products = [remote.change_records[h.id][0].product_name for h in remote.history]
        assert products == ["Latte", "Bagel"]

    @pytest.mark.asyncio
    async def test_gateway_timeout_on_one_order_does_not_starve_others(self, reconciler, remote, queue, monitor):
        queue.enqueue(_task("a1", "order-a", minutes=0))
        queue.enqueue(_task("a2", "order-a", minutes=1, product="Bagel"))
        queue.enqueue(_task("b1", "order-b", minutes=2))
        original = remote.create_history_entry

        async def flaky_history(order_id, action, details):
            if order_id == "order-a":
                raise NetworkError("gateway timeout", status_code=504)
            return await original(order_id, action, details)

        remote.create_history_entry = flaky_history

        for _ in range(3):
            result = await reconciler.reconcile()
            assert result.failed == ["a1"]

        assert queue.get("b1").synced
        assert not queue.get("a1").synced
        assert not queue.get("a2").synced
        assert queue.failures()["a1"].attempts == 3
        assert monitor.is_online

    @pytest.mark.asyncio
    async def test_unreachable_backend_defers_remaining_work(self, reconciler, remote, queue, monitor):
        queue.enqueue(_task("t1", "order-1", minutes=0))
        queue.enqueue(_task("t2", "order-2", minutes=1))
        remote.reachable = False

        result = await reconciler.reconcile()

        assert result.synced == 0
        assert result.failed == ["t1"]
        assert not monitor.is_online
        assert remote.calls == []
        assert not queue.get("t2").synced
        assert "t2" not in queue.failures()

    @pytest.mark.asyncio
    async def test_ledger_replaced_not_appended(self, reconciler, remote, queue):
        remote.ledger["ledger-old"] = LedgerEntry(
            id="ledger-old", order_id="order-1", customer_id="cust-1", amount=Decimal("20.00"),
        )
        charge = LedgerCharge(customer_id="cust-1", amount=Decimal("35.00"))
        queue.enqueue(_task("t1", "order-1", ledger=charge))

        await reconciler.reconcile()

        entries = [e for e in remote.ledger.values() if e.order_id == "order-1"]
        assert len(entries) == 1
        assert entries[0].amount == Decimal("35.00")
        assert entries[0].balance_before == Decimal("0")
        assert entries[0].balance_after == Decimal("35.00")


class TestGuards:
    @pytest.mark.asyncio
    async def test_skips_when_offline(self, reconciler, remote, queue, monitor):
        queue.enqueue(_task("t1", "order-1"))
        monitor.mark_offline()

        result = await reconciler.reconcile()

        assert result.skipped and result.reason == "offline"
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_concurrent_call_is_skipped(self, reconciler, remote, queue):
        queue.enqueue(_task("t1", "order-1"))
        gate = asyncio.Event()
        original = remote.create_history_entry

        async def slow_history(*args):
            await gate.wait()
            return await original(*args)

        remote.create_history_entry = slow_history

        first = asyncio.create_task(reconciler.reconcile())
        await asyncio.sleep(0)
        assert reconciler.is_reconciling

        second = await reconciler.reconcile()
        assert second.skipped and second.reason == "in_progress"

        gate.set()
        result = await first
        assert result.synced == 1
        assert len(remote.history) == 1
        assert not reconciler.is_reconciling

    @pytest.mark.asyncio
    async def test_status_reflects_last_pass(self, reconciler, queue, monitor):
        queue.enqueue(_task("t1", "order-1"))
        assert monitor.status().unsynced_count == 1

        await reconciler.reconcile()

        status = monitor.status()
        assert status.unsynced_count == 0
        assert status.last_reconciled_at is not None
        assert not status.is_reconciling


class TestOfflineOrders:
    def _offline_order(self, offline_orders, ledger=None):
        return offline_orders.add(OfflineOrder(
            temp_id=new_temporary_id(),
            order_number="ORD555000111",
            order_fields={"table": "4"},
            items=[make_line("Latte", 2)],
            ledger=ledger,
        ))

    @pytest.mark.asyncio
    async def test_offline_order_created_before_its_tasks(
        self, reconciler, remote, queue, offline_orders, change_cache
    ):
        order = self._offline_order(offline_orders)
        queue.enqueue(_task("t1", order.temp_id))
        change_cache.set(order.temp_id, queue.get("t1").changes)

        result = await reconciler.reconcile()

        assert result.orders_synced == 1
        assert result.synced == 1
        real_id = offline_orders.get(order.temp_id).remote_id
        assert remote.orders[real_id]["order_number"] == "ORD555000111"
        assert [h.action for h in remote.history] == ["created", "modified"]
        assert all(h.order_id == real_id for h in remote.history)
        assert change_cache.get(order.temp_id) == []
        assert len(change_cache.get(real_id)) == 1

    @pytest.mark.asyncio
    async def test_order_never_created_twice(self, reconciler, remote, offline_orders):
        order = self._offline_order(offline_orders)
        remote.fail_on["create_history_entry"] = RemoteBackendError("boom", status_code=500)
        remote.fail_times["create_history_entry"] = 1

        await reconciler.reconcile()
        stored = offline_orders.get(order.temp_id)
        assert stored.remote_id is not None and not stored.synced
        assert stored.last_error == "boom"

        await reconciler.reconcile()

        assert remote.call_names().count("create_order") == 1
        assert offline_orders.get(order.temp_id).synced
        # Items were rewritten, not duplicated
        assert [line.quantity for line in remote.items[stored.remote_id]] == [2]

    @pytest.mark.asyncio
    async def test_tasks_wait_for_their_offline_order(self, reconciler, remote, queue, offline_orders):
        order = self._offline_order(offline_orders)
        queue.enqueue(_task("t1", order.temp_id))
        remote.fail_on["create_order"] = RemoteBackendError("bad payload", status_code=400)

        result = await reconciler.reconcile()

        assert result.orders_synced == 0
        assert result.synced == 0
        assert result.failed == []
        assert not queue.get("t1").synced

    @pytest.mark.asyncio
    async def test_offline_order_ledger(self, reconciler, remote, offline_orders):
        self._offline_order(offline_orders, ledger=LedgerCharge(customer_id="cust-1", amount=Decimal("10.00")))

        await reconciler.reconcile()

        entries = list(remote.ledger.values())
        assert len(entries) == 1
        assert entries[0].customer_id == "cust-1"

    @pytest.mark.asyncio
    async def test_network_error_on_one_offline_order_does_not_stop_the_next(
        self, reconciler, remote, offline_orders, monitor
    ):
        first = self._offline_order(offline_orders)
        second = self._offline_order(offline_orders)
        remote.fail_on["create_order"] = NetworkError("read timeout")
        remote.fail_times["create_order"] = 1

        result = await reconciler.reconcile()

        assert result.orders_synced == 1
        assert not offline_orders.get(first.temp_id).synced
        assert offline_orders.get(second.temp_id).synced
        assert monitor.is_online
