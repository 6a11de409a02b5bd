"""Cached loyalty point balances, readable while offline."""

import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from order_sync.schemas.order import utcnow
from order_sync.schemas.sync import LoyaltyBalance
from order_sync.services.storage import JsonDocument, KeyValueStore

logger = logging.getLogger(__name__)

LOYALTY_POINTS_KEY = "loyalty_points"


class LoyaltyBalanceCache:
    def __init__(self, store: KeyValueStore):
        self._doc = JsonDocument(store, LOYALTY_POINTS_KEY, dict, dict)

    def get(self, customer_id: str) -> Optional[LoyaltyBalance]:
        raw = self._doc.load().get(str(customer_id))
        if raw is None:
            return None
        try:
            return LoyaltyBalance.model_validate(raw)
        except PydanticValidationError as e:
            logger.error(f"Cached loyalty balance for {customer_id} is malformed: {e}")
            return None

    def set(self, balance: LoyaltyBalance) -> None:
        cached = self._doc.load()
        cached[str(balance.customer_id)] = balance.model_dump(mode="json")
        self._doc.save(cached)

    def apply_award(self, customer_id: str, points: int, new_balance: int) -> LoyaltyBalance:
        current = self.get(customer_id) or LoyaltyBalance(customer_id=str(customer_id))
        updated = current.model_copy(update={
            "current_balance": new_balance,
            "total_points_earned": current.total_points_earned + points,
            "updated_at": utcnow(),
        })
        self.set(updated)
        return updated

    def apply_redemption(self, customer_id: str, points: int, new_balance: int) -> LoyaltyBalance:
        current = self.get(customer_id) or LoyaltyBalance(customer_id=str(customer_id))
        updated = current.model_copy(update={
            "current_balance": new_balance,
            "points_redeemed": current.points_redeemed + points,
            "updated_at": utcnow(),
        })
        self.set(updated)
        return updated
