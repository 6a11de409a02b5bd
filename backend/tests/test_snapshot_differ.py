"""Tests for snapshot diffing and modification-event validation."""

from decimal import Decimal

import pytest

from conftest import make_line
from order_sync.core.exceptions import ValidationError
from order_sync.schemas.order import ChangeType, ModificationEvent, OrderSnapshot
from order_sync.services.snapshot_differ import change_records_from_event, diff, validate_event


class TestDiff:
    def test_identical_snapshots_have_no_changes(self):
        lines = [make_line("Latte", 2, variant="Large"), make_line("Bagel", 1)]
        result = diff(OrderSnapshot.capture(lines), OrderSnapshot.capture(list(lines)))
        assert not result.has_changes
        assert result.added == [] and result.removed == [] and result.modified == []

    def test_added_removed_and_modified(self):
        old = OrderSnapshot.capture([make_line("Latte", 1, variant="Large"), make_line("Bagel", 2)])
        new = OrderSnapshot.capture([make_line("Latte", 3, variant="Large"), make_line("Muffin", 1)])

        result = diff(old, new)

        assert [line.product_name for line in result.added] == ["Muffin"]
        assert [line.product_name for line in result.removed] == ["Bagel"]
        assert len(result.modified) == 1
        change = result.modified[0]
        assert (change.product_name, change.variant_name) == ("Latte", "Large")
        assert (change.old_quantity, change.new_quantity) == (1, 3)
        assert change.old_price == Decimal("5.00")
        assert change.new_price == Decimal("15.00")

    def test_variant_is_part_of_the_key(self):
        old = OrderSnapshot.capture([make_line("Latte", 1, variant="Small")])
        new = OrderSnapshot.capture([make_line("Latte", 1, variant="Large")])
        result = diff(old, new)
        assert [line.variant_name for line in result.added] == ["Large"]
        assert [line.variant_name for line in result.removed] == ["Small"]

    def test_duplicate_lines_are_aggregated(self):
        old = OrderSnapshot.capture([make_line("Latte", 1), make_line("Latte", 1)])
        new = OrderSnapshot.capture([make_line("Latte", 3)])
        result = diff(old, new)
        assert result.added == [] and result.removed == []
        assert (result.modified[0].old_quantity, result.modified[0].new_quantity) == (2, 3)

    def test_added_and_removed_keep_cart_order(self):
        old = OrderSnapshot.capture([make_line("C", 1), make_line("A", 1)])
        new = OrderSnapshot.capture([make_line("Z", 1), make_line("B", 1)])
        result = diff(old, new)
        assert [line.product_name for line in result.added] == ["Z", "B"]
        assert [line.product_name for line in result.removed] == ["C", "A"]

    def test_totals_carried_for_payment_delta(self):
        old = OrderSnapshot.capture([make_line("Latte", 1)])
        new = OrderSnapshot.capture([make_line("Latte", 2)])
        event = diff(old, new).to_event()
        assert event.old_total == Decimal("5.00")
        assert event.new_total == Decimal("10.00")
        assert event.total_delta == Decimal("5.00")
        assert (event.old_item_count, event.new_item_count) == (1, 2)


class TestValidateEvent:
    def test_empty_event_rejected(self):
        with pytest.raises(ValidationError):
            validate_event(ModificationEvent())

    def test_empty_event_allowed_when_not_required(self):
        validate_event(ModificationEvent(), require_changes=False)

    def test_unchanged_quantity_rejected(self):
        event = ModificationEvent.model_validate({
            "itemsModified": [{"name": "Latte", "oldQuantity": 2, "newQuantity": 2}],
        })
        with pytest.raises(ValidationError):
            validate_event(event)

    def test_same_item_in_two_buckets_rejected(self):
        event = ModificationEvent.model_validate({
            "itemsAdded": [{"name": "Latte", "quantity": 1}],
            "itemsRemoved": [{"name": "Latte", "quantity": 1}],
        })
        with pytest.raises(ValidationError):
            validate_event(event)

    def test_negative_total_rejected(self):
        event = ModificationEvent.model_validate({
            "itemsAdded": [{"name": "Latte", "quantity": 1}],
            "newTotal": "-1",
        })
        with pytest.raises(ValidationError):
            validate_event(event)


def test_change_records_from_event():
    event = ModificationEvent.model_validate({
        "itemsAdded": [{"name": "Muffin", "quantity": 2, "price": "6.00"}],
        "itemsRemoved": [{"name": "Bagel", "variant": "Plain", "quantity": 1, "price": "3.00"}],
        "itemsModified": [{
            "name": "Latte", "oldQuantity": 1, "newQuantity": 2,
            "oldPrice": "4.00", "newPrice": "8.00",
        }],
    })

    records = change_records_from_event(event, "hist-1")

    assert [r.change_type for r in records] == [
        ChangeType.ADDED, ChangeType.REMOVED, ChangeType.QUANTITY_CHANGED,
    ]
    added, removed, modified = records
    assert (added.old_quantity, added.new_quantity, added.old_price) == (0, 2, Decimal("0"))
    assert (removed.old_quantity, removed.new_quantity, removed.new_price) == (1, 0, Decimal("0"))
    assert removed.variant_name == "Plain"
    assert (modified.old_quantity, modified.new_quantity) == (1, 2)
    assert all(r.history_id == "hist-1" for r in records)
    assert len({r.created_at for r in records}) == 1


def _keyed(lines):
    return sorted((line.product_name, line.variant_name or "", line.quantity) for line in lines)


def _swapped(changes):
    return sorted(
        (c.product_name, c.variant_name or "", c.new_quantity, c.old_quantity, c.new_price, c.old_price)
        for c in changes
    )


def _as_is(changes):
    return sorted(
        (c.product_name, c.variant_name or "", c.old_quantity, c.new_quantity, c.old_price, c.new_price)
        for c in changes
    )


@pytest.mark.parametrize(
    "before, after",
    [
        ([make_line("Latte", 1)], [make_line("Latte", 1), make_line("Bagel", 2)]),
        ([make_line("Latte", 1, variant="Small")], [make_line("Latte", 1, variant="Large")]),
        (
            [make_line("Latte", 1), make_line("Latte", 2), make_line("Tea", 1)],
            [make_line("Latte", 2), make_line("Muffin", 1)],
        ),
        ([make_line("Bagel", 4, unit_price="3.00")], []),
        (
            [make_line("Latte", 2, variant="Large"), make_line("Latte", 1)],
            [make_line("Latte", 1, variant="Large"), make_line("Latte", 1), make_line("Scone", 1)],
        ),
    ],
    ids=["added-line", "variant-only", "duplicate-keys", "emptied-cart", "mixed"],
)
def test_diff_is_anti_symmetric(before, after):
    a = OrderSnapshot.capture(before)
    b = OrderSnapshot.capture(after)

    forward = diff(a, b)
    backward = diff(b, a)

    assert _keyed(forward.added) == _keyed(backward.removed)
    assert _keyed(forward.removed) == _keyed(backward.added)
    assert _as_is(forward.modified) == _swapped(backward.modified)
