"""Sync schemas for offline-first order reconciliation."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from order_sync.schemas.order import CartLine, ChangeRecord, LedgerCharge, utcnow


class PendingSyncTask(BaseModel):
    """A modification made while offline, waiting to be replayed remotely.

    Tasks are never deleted; ``synced`` only ever goes from False to True.
    """

    task_id: str
    order_id: str
    order_number: Optional[str] = None
    placeholder_history_id: str
    changes: List[ChangeRecord] = Field(default_factory=list)
    order_fields: Optional[Dict[str, Any]] = None
    items: Optional[List[CartLine]] = None
    ledger: Optional[LedgerCharge] = None
    enqueued_at: datetime = Field(default_factory=utcnow)
    synced: bool = False
    synced_at: Optional[datetime] = None


class SyncFailure(BaseModel):
    """Bookkeeping for a task that failed at least one reconciliation pass."""

    task_id: str
    attempts: int = 0
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None


class OfflineOrder(BaseModel):
    """Order placed while offline, identified by a temporary id until created remotely."""

    temp_id: str
    order_number: str
    order_fields: Dict[str, Any] = Field(default_factory=dict)
    items: List[CartLine] = Field(default_factory=list)
    ledger: Optional[LedgerCharge] = None
    created_at: datetime = Field(default_factory=utcnow)
    remote_id: Optional[str] = None  # set as soon as the remote insert succeeds
    synced: bool = False
    synced_at: Optional[datetime] = None
    last_error: Optional[str] = None


class NetworkStatus(BaseModel):
    """Connectivity signal for UI display."""

    is_online: bool
    unsynced_count: int = 0
    is_reconciling: bool = False
    last_reconciled_at: Optional[datetime] = None
    last_changed_at: Optional[datetime] = None


class ReconcileResult(BaseModel):
    """Outcome of one reconciliation pass."""

    synced: int = 0
    total: int = 0
    orders_synced: int = 0
    failed: List[str] = Field(default_factory=list)
    skipped: bool = False
    reason: Optional[str] = None


class KitchenTicketLine(BaseModel):
    """Line on a kitchen re-print, tagged with what happened to it."""

    name: str
    variant: Optional[str] = None
    quantity: int
    change_type: str  # added, removed, unchanged
    note: str = ""


class LoyaltyBalance(BaseModel):
    """Last known loyalty point balance for a customer."""

    customer_id: str
    current_balance: int = 0
    total_points_earned: int = 0
    points_redeemed: int = 0
    updated_at: datetime = Field(default_factory=utcnow)
