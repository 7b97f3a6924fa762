"""
Compare-and-set status transitions.

Every status change is `UPDATE ... WHERE id = :id AND status = :from`. When a
user cancels while the provider's callback confirms, both statements target
the same PENDING row; only the first one to commit changes it and the other
sees rowcount == 0. Callers branch on the boolean instead of re-reading and
writing, which would reopen the race.
"""

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from ticketpay.domain.states import (
    BookingStateMachine,
    BookingStatus,
    PaymentStateMachine,
    PaymentStatus,
)
from ticketpay.models.booking import Booking
from ticketpay.models.payment import Payment


async def transition_booking(
    db: AsyncSession,
    booking_id: int,
    to_status: BookingStatus,
    from_status: BookingStatus = BookingStatus.PENDING,
) -> bool:
    BookingStateMachine.validate_transition(from_status, to_status)
    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == from_status)
        .values(status=to_status)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def transition_payment(
    db: AsyncSession,
    payment_id: int,
    to_status: PaymentStatus,
    from_status: PaymentStatus = PaymentStatus.PENDING,
    **values,
) -> bool:
    """Move one payment and write any bookkeeping columns in the same statement."""
    PaymentStateMachine.validate_transition(from_status, to_status)
    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == from_status)
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def close_pending_payments(
    db: AsyncSession,
    booking_id: int,
    reason: str,
) -> int:
    """
    Fail every PENDING payment of a booking.
    A callback that later arrives for one of them finds a closed payment and
    is acknowledged without touching the booking.
    """
    stmt = (
        update(Payment)
        .where(Payment.booking_id == booking_id, Payment.status == PaymentStatus.PENDING)
        .values(status=PaymentStatus.FAILED, result_desc=reason)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount
