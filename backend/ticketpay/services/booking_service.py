"""
Booking lifecycle: reserve on create, release on cancel.

Each mutating operation is one transaction. create_booking commits the
inventory decrement together with the booking row; cancel_booking commits the
status change, the release and the closing of any pending payment together.
Expected business outcomes (sold out, not yours, already cancelled) come back
as Rejection values; database faults propagate.
"""

from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketpay.core.logging import get_logger
from ticketpay.core.metrics import record_booking_attempt, record_cancellation
from ticketpay.core.security import Requester
from ticketpay.domain.results import ErrorKind, Rejection
from ticketpay.domain.states import BookingStatus
from ticketpay.models.booking import Booking
from ticketpay.models.event import Event, TicketType
from ticketpay.models.payment import Payment
from ticketpay.services.inventory_ledger import InventoryLedger
from ticketpay.services.state_transitions import close_pending_payments, transition_booking

logger = get_logger(__name__)


def closed_booking_rejection(status: BookingStatus) -> Rejection:
    if status == BookingStatus.CONFIRMED:
        return Rejection(ErrorKind.ALREADY_CONFIRMED, "Booking is already paid")
    return Rejection(ErrorKind.ALREADY_CANCELLED, "Booking is already cancelled")


async def create_booking(
    db: AsyncSession,
    user_id: str,
    ticket_type_id: int,
    quantity: int,
    event_id: Optional[int] = None,
) -> Union[Booking, Rejection]:
    """
    Reserve `quantity` tickets and record a PENDING booking.
    Nothing is written unless both the reservation and the insert succeed.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        record_booking_attempt("rejected")
        return Rejection(ErrorKind.INVALID_QUANTITY, "Quantity must be a positive integer")

    row = (
        await db.execute(
            select(TicketType, Event.is_active)
            .join(Event, Event.id == TicketType.event_id)
            .where(TicketType.id == ticket_type_id)
        )
    ).one_or_none()

    if row is None:
        record_booking_attempt("rejected")
        return Rejection(ErrorKind.NOT_FOUND, f"Ticket type {ticket_type_id} not found")

    ticket_type, event_active = row
    if event_id is not None and ticket_type.event_id != event_id:
        record_booking_attempt("rejected")
        return Rejection(
            ErrorKind.VALIDATION,
            "Ticket type does not belong to the specified event",
        )
    if not event_active:
        record_booking_attempt("rejected")
        return Rejection(ErrorKind.INACTIVE, "Event not found or inactive")

    total_amount = ticket_type.price * quantity

    ledger = InventoryLedger(db)
    if not await ledger.reserve(ticket_type.id, quantity):
        await db.rollback()
        record_booking_attempt("insufficient_inventory")
        logger.warning(
            "booking_failed_insufficient_inventory",
            user_id=user_id,
            ticket_type_id=ticket_type_id,
            requested=quantity,
        )
        return Rejection(ErrorKind.INSUFFICIENT_INVENTORY, "Not enough tickets available")

    booking = Booking(
        user_id=user_id,
        ticket_type_id=ticket_type.id,
        quantity=quantity,
        total_amount=total_amount,
        status=BookingStatus.PENDING,
    )
    db.add(booking)
    await db.commit()
    await db.refresh(booking)

    record_booking_attempt("created")
    logger.info(
        "booking_created",
        booking_id=booking.id,
        user_id=user_id,
        ticket_type_id=ticket_type.id,
        quantity=quantity,
        total_amount=str(total_amount),
    )
    return booking


async def cancel_booking(
    db: AsyncSession,
    booking_id: int,
    requester: Requester,
) -> Union[Booking, Rejection]:
    """
    Cancel a PENDING booking and return its tickets.
    Confirmed bookings cannot be cancelled here; refunds go through support.
    """
    booking = await db.get(Booking, booking_id)
    if booking is None:
        return Rejection(ErrorKind.NOT_FOUND, "Booking not found")

    if booking.user_id != requester.user_id and not requester.is_privileged:
        return Rejection(ErrorKind.NOT_AUTHORIZED, "You are not authorized to cancel this booking")

    if booking.status != BookingStatus.PENDING:
        return closed_booking_rejection(booking.status)

    if not await transition_booking(db, booking.id, BookingStatus.CANCELLED):
        # a callback closed it between our read and our write
        await db.rollback()
        await db.refresh(booking)
        return closed_booking_rejection(booking.status)

    await InventoryLedger(db).release(booking.ticket_type_id, booking.quantity)
    orphaned = await close_pending_payments(db, booking.id, reason="Booking cancelled")
    await db.commit()
    await db.refresh(booking)

    record_cancellation("user")
    logger.info(
        "booking_cancelled",
        booking_id=booking.id,
        cancelled_by=requester.user_id,
        ticket_type_id=booking.ticket_type_id,
        quantity_released=booking.quantity,
        pending_payments_closed=orphaned,
    )
    return booking


async def latest_payments(db: AsyncSession, booking_ids: list[int]) -> dict[int, Payment]:
    """Most recent payment per booking."""
    if not booking_ids:
        return {}
    result = await db.execute(
        select(Payment)
        .where(Payment.booking_id.in_(booking_ids))
        .order_by(Payment.created_at.desc(), Payment.id.desc())
    )
    latest: dict[int, Payment] = {}
    for payment in result.scalars():
        latest.setdefault(payment.booking_id, payment)
    return latest


async def get_booking(
    db: AsyncSession,
    booking_id: int,
    requester: Requester,
) -> Union[tuple[Booking, Optional[Payment]], Rejection]:
    booking = await db.get(Booking, booking_id)
    if booking is None:
        return Rejection(ErrorKind.NOT_FOUND, "Booking not found")
    if booking.user_id != requester.user_id and not requester.is_privileged:
        return Rejection(ErrorKind.NOT_AUTHORIZED, "You are not authorized to view this booking")

    payments = await latest_payments(db, [booking.id])
    return booking, payments.get(booking.id)


async def list_user_bookings(
    db: AsyncSession,
    user_id: str,
) -> list[tuple[Booking, Optional[Payment]]]:
    """All bookings for a user, newest first, each with its latest payment."""
    result = await db.execute(
        select(Booking)
        .where(Booking.user_id == user_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
    )
    bookings = list(result.scalars().all())
    payments = await latest_payments(db, [b.id for b in bookings])
    return [(b, payments.get(b.id)) for b in bookings]
