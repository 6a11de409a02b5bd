"""Customer ledger writes for orders charged "on account"."""

import logging
from typing import Optional

from order_sync.schemas.order import LedgerCharge, LedgerEntry
from order_sync.services.remote.base import RemoteBackend

logger = logging.getLogger(__name__)


async def replace_ledger_entry(
    remote: RemoteBackend,
    order_id: str,
    charge: LedgerCharge,
    order_number: Optional[str] = None,
) -> LedgerEntry:
    """
    Record the order's debit, replacing any earlier one.

    An order has at most one debit entry. A modified order's previous entry is
    deleted before the balance is read, so balance_before reflects the
    customer's position without this order and the new entry never stacks
    on top of the old one.
    """
    existing = await remote.find_ledger_entry(order_id)
    if existing is not None and existing.id:
        await remote.delete_ledger_entry(existing.id)
        logger.info(f"Removed previous ledger entry {existing.id} for order {order_id}")

    balance_before = await remote.get_customer_balance(charge.customer_id)
    entry = LedgerEntry(
        order_id=order_id,
        customer_id=charge.customer_id,
        amount=charge.amount,
        balance_before=balance_before,
        balance_after=balance_before + charge.amount,
        description=charge.description or f"Order {order_number or order_id}",
        notes=charge.notes,
    )
    entry_id = await remote.insert_ledger_entry(entry)
    logger.info(f"Charged {charge.amount} to customer {charge.customer_id} for order {order_id}")
    return entry.model_copy(update={"id": entry_id})
