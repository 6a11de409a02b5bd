"""Abstract base class for the remote system of record."""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Optional

from order_sync.schemas.order import CartLine, ChangeRecord, HistoryEntry, LedgerEntry


class RemoteBackend(ABC):
    """Base interface for the backend the engine reconciles against.

    Implementations raise NetworkError for transient reachability problems and
    RemoteBackendError for everything else the backend refuses.
    """

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the backend is reachable. Never raises."""

    # ==================== ORDERS ====================

    @abstractmethod
    async def create_order(self, fields: Dict[str, Any]) -> str:
        """Insert an order and return its real id."""

    @abstractmethod
    async def update_order(self, order_id: str, fields: Dict[str, Any]) -> None:
        """Update order-level fields (totals, payment method, status...)."""

    @abstractmethod
    async def insert_order_items(self, order_id: str, items: List[CartLine]) -> None:
        """Insert cart lines for an order."""

    @abstractmethod
    async def delete_order_items(self, order_id: str) -> None:
        """Remove every cart line of an order."""

    # ==================== HISTORY ====================

    @abstractmethod
    async def create_history_entry(self, order_id: str, action: str, details: Dict[str, Any]) -> str:
        """Create an audit entry and return its id."""

    @abstractmethod
    async def insert_change_records(self, history_id: str, records: List[ChangeRecord]) -> None:
        """Attach change records to a history entry."""

    @abstractmethod
    async def get_latest_history_entry(self, order_id: str) -> Optional[HistoryEntry]:
        """Most recent history entry for an order, if any."""

    @abstractmethod
    async def list_change_records(self, history_id: str) -> List[ChangeRecord]:
        """Change records of one history entry, oldest first."""

    # ==================== CUSTOMER LEDGER ====================

    @abstractmethod
    async def find_ledger_entry(self, order_id: str) -> Optional[LedgerEntry]:
        """The debit entry recorded for an order, if any."""

    @abstractmethod
    async def delete_ledger_entry(self, entry_id: str) -> None:
        """Delete a ledger entry."""

    @abstractmethod
    async def insert_ledger_entry(self, entry: LedgerEntry) -> str:
        """Insert a ledger entry and return its id."""

    @abstractmethod
    async def get_customer_balance(self, customer_id: str) -> Decimal:
        """Current amount the customer owes on account."""

    # ==================== LOYALTY ====================

    @abstractmethod
    async def get_loyalty_balance(self, customer_id: str) -> int:
        """Current loyalty point balance."""

    @abstractmethod
    async def award_loyalty_points(self, customer_id: str, order_id: str, points: int) -> int:
        """Credit points for an order; returns the new balance."""

    @abstractmethod
    async def redeem_loyalty_points(self, customer_id: str, order_id: str, points: int) -> int:
        """Debit points against an order; returns the new balance."""
