"""
Inventory ledger for ticket types.

CONCURRENCY STRATEGY: Conditional decrement
============================================

Problem:
  Two users try to book the last ticket simultaneously.
  Both read available_quantity=1, both decrement to 0, both succeed.
  Result: Oversell.

Solution:
  The check and the decrement are one statement:

    UPDATE ticket_types SET available_quantity = available_quantity - :q
    WHERE id = :id AND available_quantity >= :q

  The database evaluates the WHERE clause against the latest committed row
  (Postgres re-checks it after waiting on the row lock, SQLite serializes
  writers), so at most `available` units are ever handed out. rowcount == 0
  means "not enough tickets" and nothing was changed. The CHECK constraint
  available_quantity >= 0 stays as the last line of defense.

The ledger never commits. It runs inside the caller's transaction so the
decrement and the booking insert (or the release and the cancellation) land
together or not at all.
"""

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from ticketpay.models.event import TicketType
from ticketpay.core.logging import get_logger
from ticketpay.core.metrics import record_inventory_operation

logger = get_logger(__name__)


class InventoryLedger:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def reserve(self, ticket_type_id: int, quantity: int) -> bool:
        """
        Take `quantity` units if that many are available.
        Returns False (no side effects) when the ticket type is short or missing.
        """
        result = await self.db.execute(
            update(TicketType)
            .where(
                TicketType.id == ticket_type_id,
                TicketType.available_quantity >= quantity,
            )
            .values(available_quantity=TicketType.available_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        reserved = result.rowcount == 1
        record_inventory_operation("reserve", reserved)

        if not reserved:
            logger.info(
                "inventory_reserve_rejected",
                ticket_type_id=ticket_type_id,
                requested=quantity,
            )
        return reserved

    async def release(self, ticket_type_id: int, quantity: int) -> None:
        """Return `quantity` units. Callers pair this 1:1 with a reserve."""
        await self.db.execute(
            update(TicketType)
            .where(TicketType.id == ticket_type_id)
            .values(available_quantity=TicketType.available_quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        record_inventory_operation("release", True)
        logger.info("inventory_released", ticket_type_id=ticket_type_id, quantity=quantity)
