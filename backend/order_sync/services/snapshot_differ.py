"""
Order Snapshot Differ
Computes what changed between two cart snapshots of the same order.

Lines are matched on (product_name, variant_name) because a reopened order's
cart is rebuilt with fresh line ids. Two visually identical lines (e.g. two
separately added "Latte / Large") are collapsed into a single bucket with
their quantities and totals summed.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from order_sync.core.exceptions import ValidationError
from order_sync.schemas.order import (
    CartLine,
    ChangeRecord,
    ChangeType,
    EventItem,
    EventModifiedItem,
    ModificationEvent,
    OrderSnapshot,
    utcnow,
)

LineKey = Tuple[str, Optional[str]]


class LineChange(BaseModel):
    """Quantity change for one (product, variant) bucket."""

    product_name: str
    variant_name: Optional[str] = None
    old_quantity: int
    new_quantity: int
    old_price: Decimal
    new_price: Decimal


class OrderDiff(BaseModel):
    """Set difference between two snapshots, plus totals for payment deltas."""

    added: List[CartLine] = Field(default_factory=list)
    removed: List[CartLine] = Field(default_factory=list)
    modified: List[LineChange] = Field(default_factory=list)
    old_subtotal: Decimal = Decimal("0")
    new_subtotal: Decimal = Decimal("0")
    old_total: Decimal = Decimal("0")
    new_total: Decimal = Decimal("0")
    old_item_count: int = 0
    new_item_count: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.modified)

    def to_event(self) -> ModificationEvent:
        """Express the diff in the checkout UI's modification-event shape."""
        return ModificationEvent(
            items_added=[
                EventItem(name=line.product_name, variant=line.variant_name,
                          quantity=line.quantity, price=line.line_total)
                for line in self.added
            ],
            items_removed=[
                EventItem(name=line.product_name, variant=line.variant_name,
                          quantity=line.quantity, price=line.line_total)
                for line in self.removed
            ],
            items_modified=[
                EventModifiedItem(
                    name=change.product_name,
                    variant=change.variant_name,
                    old_quantity=change.old_quantity,
                    new_quantity=change.new_quantity,
                    old_price=change.old_price,
                    new_price=change.new_price,
                )
                for change in self.modified
            ],
            old_subtotal=self.old_subtotal,
            new_subtotal=self.new_subtotal,
            old_total=self.old_total,
            new_total=self.new_total,
            old_item_count=self.old_item_count,
            new_item_count=self.new_item_count,
        )


def _aggregate(lines: List[CartLine]) -> Dict[LineKey, CartLine]:
    """Group lines by key, summing quantity and line total. Keeps first-seen order."""
    buckets: Dict[LineKey, CartLine] = {}
    for line in lines:
        existing = buckets.get(line.key)
        if existing is None:
            buckets[line.key] = line
        else:
            buckets[line.key] = existing.model_copy(update={
                "quantity": existing.quantity + line.quantity,
                "line_total": existing.line_total + line.line_total,
            })
    return buckets


def diff(old: OrderSnapshot, new: OrderSnapshot) -> OrderDiff:
    """Compare two snapshots. O(n + m)."""
    old_lines = _aggregate(old.lines)
    new_lines = _aggregate(new.lines)

    added: List[CartLine] = []
    modified: List[LineChange] = []
    for key, new_line in new_lines.items():
        old_line = old_lines.get(key)
        if old_line is None:
            added.append(new_line)
        elif old_line.quantity != new_line.quantity:
            modified.append(LineChange(
                product_name=new_line.product_name,
                variant_name=new_line.variant_name,
                old_quantity=old_line.quantity,
                new_quantity=new_line.quantity,
                old_price=old_line.line_total,
                new_price=new_line.line_total,
            ))

    removed = [line for key, line in old_lines.items() if key not in new_lines]

    return OrderDiff(
        added=added,
        removed=removed,
        modified=modified,
        old_subtotal=old.subtotal,
        new_subtotal=new.subtotal,
        old_total=old.total,
        new_total=new.total,
        old_item_count=old.item_count,
        new_item_count=new.item_count,
    )


def validate_event(event: ModificationEvent, require_changes: bool = True) -> None:
    """Reject malformed modification input before it is cached or queued."""
    if require_changes and event.change_count == 0:
        raise ValidationError("Modification contains no item changes")

    for item in event.items_modified:
        if item.old_quantity == item.new_quantity:
            raise ValidationError(
                f"Modified item {item.name!r} has unchanged quantity {item.new_quantity}"
            )

    seen = set()
    for item in [*event.items_added, *event.items_removed, *event.items_modified]:
        key = (item.name, item.variant)
        if key in seen:
            raise ValidationError(f"Item {item.name!r} appears in more than one change bucket")
        seen.add(key)

    for label, amount in (
        ("old_subtotal", event.old_subtotal),
        ("new_subtotal", event.new_subtotal),
        ("old_total", event.old_total),
        ("new_total", event.new_total),
    ):
        if amount < 0:
            raise ValidationError(f"{label} cannot be negative")
    if event.old_item_count < 0 or event.new_item_count < 0:
        raise ValidationError("Item counts cannot be negative")


def change_records_from_event(
    event: ModificationEvent,
    history_id: str,
    created_at: Optional[datetime] = None,
) -> List[ChangeRecord]:
    """Convert a modification event into change records for one history entry."""
    created_at = created_at or utcnow()
    records: List[ChangeRecord] = []

    for item in event.items_added:
        records.append(ChangeRecord(
            history_id=history_id,
            change_type=ChangeType.ADDED,
            product_name=item.name,
            variant_name=item.variant,
            old_quantity=0,
            new_quantity=item.quantity,
            old_price=Decimal("0"),
            new_price=item.price,
            created_at=created_at,
        ))

    for item in event.items_removed:
        records.append(ChangeRecord(
            history_id=history_id,
            change_type=ChangeType.REMOVED,
            product_name=item.name,
            variant_name=item.variant,
            old_quantity=item.quantity,
            new_quantity=0,
            old_price=item.price,
            new_price=Decimal("0"),
            created_at=created_at,
        ))

    for item in event.items_modified:
        records.append(ChangeRecord(
            history_id=history_id,
            change_type=ChangeType.QUANTITY_CHANGED,
            product_name=item.name,
            variant_name=item.variant,
            old_quantity=item.old_quantity,
            new_quantity=item.new_quantity,
            old_price=item.old_price,
            new_price=item.new_price,
            created_at=created_at,
        ))

    return records
