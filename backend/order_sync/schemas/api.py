"""Request and response bodies for the HTTP surface."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from order_sync.schemas.order import CartLine, ChangeRecord, LedgerCharge, ModificationEvent
from order_sync.schemas.sync import KitchenTicketLine, OfflineOrder, PendingSyncTask, SyncFailure


class ConnectivityUpdate(BaseModel):
    is_online: bool


class PlaceOrderRequest(BaseModel):
    order_fields: Dict[str, Any] = Field(default_factory=dict)
    items: List[CartLine] = Field(..., min_length=1)
    ledger: Optional[LedgerCharge] = None


class ModifyOrderRequest(BaseModel):
    """
    An edit of an existing order.

    Either send both carts (previous and current) and let the engine diff them,
    or send the checkout UI's ``event`` together with the current cart.
    """

    order_number: Optional[str] = None
    previous: Optional[List[CartLine]] = None
    current: List[CartLine] = Field(default_factory=list)
    previous_total: Optional[Decimal] = None
    current_total: Optional[Decimal] = None
    event: Optional[ModificationEvent] = None
    order_fields: Optional[Dict[str, Any]] = None
    ledger: Optional[LedgerCharge] = None


class AccountChargeRequest(LedgerCharge):
    order_number: Optional[str] = None


class LoyaltyRequest(BaseModel):
    customer_id: str
    order_id: str
    points: int


class PendingSyncResponse(BaseModel):
    tasks: List[PendingSyncTask]
    offline_orders: List[OfflineOrder]
    failures: Dict[str, SyncFailure]


class OrderChangesResponse(BaseModel):
    order_id: str
    has_changes: bool
    changes: List[ChangeRecord]


class KitchenTicketRequest(BaseModel):
    items: List[CartLine]


class KitchenTicketResponse(BaseModel):
    order_id: str
    lines: List[KitchenTicketLine]


class BusinessDayResponse(BaseModel):
    business_date: str
    start: datetime
    end: datetime
