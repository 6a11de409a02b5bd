"""Order, snapshot and change-record schemas."""

from __future__ import annotations

from datetime import datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChangeType(str, Enum):
    """Kind of line-level change between two snapshots."""
    ADDED = "added"
    REMOVED = "removed"
    QUANTITY_CHANGED = "quantity_changed"


class OrderState(str, Enum):
    """Lifecycle of a single order on this client."""
    DRAFT = "draft"
    PLACED = "placed"
    PLACED_OFFLINE = "placed_offline"
    MODIFIED = "modified"
    MODIFIED_OFFLINE = "modified_offline"


class CartLine(BaseModel):
    """One cart line. Lines are matched by (product_name, variant_name), not by id."""

    model_config = ConfigDict(frozen=True)

    product_name: str = Field(..., min_length=1)
    variant_name: Optional[str] = None
    quantity: int = Field(..., gt=0)
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    line_total: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def default_line_total(self) -> "CartLine":
        if self.line_total is None:
            # frozen model - bypass __setattr__ during validation
            object.__setattr__(self, "line_total", self.unit_price * self.quantity)
        return self

    @property
    def key(self) -> tuple:
        return (self.product_name, self.variant_name)


class OrderSnapshot(BaseModel):
    """Immutable point-in-time view of an order's cart."""

    model_config = ConfigDict(frozen=True)

    lines: List[CartLine] = Field(default_factory=list)
    subtotal: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    item_count: int = 0
    captured_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def capture(
        cls,
        lines: List[CartLine],
        subtotal: Optional[Decimal] = None,
        total: Optional[Decimal] = None,
        captured_at: Optional[datetime] = None,
    ) -> "OrderSnapshot":
        """Build a snapshot, deriving totals from the lines where not given."""
        lines = list(lines)
        computed_subtotal = sum((line.line_total for line in lines), Decimal("0"))
        subtotal = computed_subtotal if subtotal is None else subtotal
        return cls(
            lines=lines,
            subtotal=subtotal,
            total=subtotal if total is None else total,
            item_count=sum(line.quantity for line in lines),
            captured_at=captured_at or utcnow(),
        )


class ChangeRecord(BaseModel):
    """A single line change belonging to exactly one history entry."""

    model_config = ConfigDict(frozen=True)

    history_id: str
    change_type: ChangeType
    product_name: str
    variant_name: Optional[str] = None
    old_quantity: int = 0
    new_quantity: int = 0
    old_price: Decimal = Decimal("0")
    new_price: Decimal = Decimal("0")
    created_at: datetime = Field(default_factory=utcnow)

    def with_history_id(self, history_id: str) -> "ChangeRecord":
        return self.model_copy(update={"history_id": history_id})


class HistoryEntry(BaseModel):
    """Remote audit record grouping the changes of one modification event."""

    id: str
    order_id: str
    action: str
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class LedgerCharge(BaseModel):
    """An "on account" debit to apply for an order."""

    customer_id: str
    amount: Decimal = Field(..., ge=0)
    description: str = ""
    notes: Optional[str] = None


class LedgerEntry(BaseModel):
    """Customer ledger row as stored by the remote backend."""

    id: Optional[str] = None
    order_id: str
    customer_id: str
    transaction_type: str = "debit"
    amount: Decimal
    balance_before: Decimal = Decimal("0")
    balance_after: Decimal = Decimal("0")
    description: str = ""
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class BusinessDayConfig(BaseModel):
    """Business day window; end_time <= start_time means it crosses midnight."""

    model_config = ConfigDict(frozen=True)

    start_time: time = time(10, 0)
    end_time: time = time(3, 0)

    @property
    def crosses_midnight(self) -> bool:
        return self.end_time <= self.start_time


# ==================== MODIFICATION EVENT (UI CONTRACT) ====================


class EventItem(BaseModel):
    """Added or removed item as reported by the editing UI."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    variant: Optional[str] = None
    quantity: int = Field(..., gt=0)
    price: Decimal = Field(default=Decimal("0"), ge=0)


class EventModifiedItem(BaseModel):
    """Quantity change as reported by the editing UI."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    variant: Optional[str] = None
    old_quantity: int = Field(..., ge=0, alias="oldQuantity")
    new_quantity: int = Field(..., ge=0, alias="newQuantity")
    old_price: Decimal = Field(default=Decimal("0"), ge=0, alias="oldPrice")
    new_price: Decimal = Field(default=Decimal("0"), ge=0, alias="newPrice")


class ModificationEvent(BaseModel):
    """What changed in one edit of an order, in the shape the checkout UI produces."""

    model_config = ConfigDict(populate_by_name=True)

    items_added: List[EventItem] = Field(default_factory=list, alias="itemsAdded")
    items_removed: List[EventItem] = Field(default_factory=list, alias="itemsRemoved")
    items_modified: List[EventModifiedItem] = Field(default_factory=list, alias="itemsModified")
    old_subtotal: Decimal = Field(default=Decimal("0"), alias="oldSubtotal")
    new_subtotal: Decimal = Field(default=Decimal("0"), alias="newSubtotal")
    old_total: Decimal = Field(default=Decimal("0"), alias="oldTotal")
    new_total: Decimal = Field(default=Decimal("0"), alias="newTotal")
    old_item_count: int = Field(default=0, alias="oldItemCount")
    new_item_count: int = Field(default=0, alias="newItemCount")

    @property
    def change_count(self) -> int:
        return len(self.items_added) + len(self.items_removed) + len(self.items_modified)

    @property
    def total_delta(self) -> Decimal:
        """Amount still to collect (negative when a refund is due)."""
        return self.new_total - self.old_total


# ==================== ORCHESTRATOR RESULTS ====================


class OperationStatus(str, Enum):
    SAVED = "saved"
    SAVED_OFFLINE = "saved_offline"
    NO_CHANGES = "no_changes"
    PENDING_ONLINE = "pending_online"
    REJECTED = "rejected"


class OperationResult(BaseModel):
    """User-visible outcome of an orchestrator operation."""

    status: OperationStatus
    message: str
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    order_state: Optional[OrderState] = None
    changes_count: int = 0
    history_id: Optional[str] = None
    balance: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status != OperationStatus.REJECTED

    @property
    def offline(self) -> bool:
        return self.status in (OperationStatus.SAVED_OFFLINE, OperationStatus.PENDING_ONLINE)
