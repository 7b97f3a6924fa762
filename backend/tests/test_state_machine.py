"""
Tests for the booking/payment transition tables and the compare-and-set
transitions that persist them.
"""

import pytest
from conftest import reload

from ticketpay.domain.states import (
    BookingStateMachine,
    BookingStatus,
    InvalidStateTransitionError,
    PaymentStateMachine,
    PaymentStatus,
)
from ticketpay.models.booking import Booking
from ticketpay.models.payment import Payment
from ticketpay.services.state_transitions import (
    close_pending_payments,
    transition_booking,
    transition_payment,
)


# ---------------------
# TRANSITION TABLES
# ---------------------

def test_pending_booking_can_confirm_or_cancel():
    assert BookingStateMachine.can_transition(BookingStatus.PENDING, BookingStatus.CONFIRMED)
    assert BookingStateMachine.can_transition(BookingStatus.PENDING, BookingStatus.CANCELLED)


def test_pending_payment_can_succeed_or_fail():
    assert PaymentStateMachine.can_transition(PaymentStatus.PENDING, PaymentStatus.SUCCESS)
    assert PaymentStateMachine.can_transition(PaymentStatus.PENDING, PaymentStatus.FAILED)


@pytest.mark.parametrize("terminal", [BookingStatus.CONFIRMED, BookingStatus.CANCELLED])
def test_booking_terminal_states_are_final(terminal):
    assert BookingStateMachine.is_terminal(terminal)
    for target in BookingStatus:
        with pytest.raises(InvalidStateTransitionError):
            BookingStateMachine.validate_transition(terminal, target)


def test_cancelled_booking_cannot_be_confirmed():
    with pytest.raises(InvalidStateTransitionError) as exc:
        BookingStateMachine.validate_transition(BookingStatus.CANCELLED, BookingStatus.CONFIRMED)
    assert exc.value.from_state == "CANCELLED"
    assert exc.value.to_state == "CONFIRMED"


@pytest.mark.parametrize("terminal", [PaymentStatus.SUCCESS, PaymentStatus.FAILED])
def test_payment_terminal_states_are_final(terminal):
    assert PaymentStateMachine.is_terminal(terminal)
    assert not PaymentStateMachine.can_transition(terminal, PaymentStatus.PENDING)


def test_pending_is_not_terminal():
    assert not BookingStateMachine.is_terminal(BookingStatus.PENDING)
    assert not PaymentStateMachine.is_terminal(PaymentStatus.PENDING)


def test_wrong_status_type_rejected():
    with pytest.raises(TypeError):
        BookingStateMachine.can_transition(PaymentStatus.PENDING, BookingStatus.CONFIRMED)
    with pytest.raises(TypeError):
        PaymentStateMachine.is_terminal("SUCCESS")


# ---------------------
# COMPARE-AND-SET
# ---------------------

async def _booking_with_payment(db, ticket_type, provider_ref="ws_CO_1"):
    booking = Booking(
        user_id="user-1",
        ticket_type_id=ticket_type.id,
        quantity=1,
        total_amount=ticket_type.price,
        status=BookingStatus.PENDING,
    )
    db.add(booking)
    await db.flush()
    payment = Payment(
        booking_id=booking.id,
        amount=booking.total_amount,
        provider_ref=provider_ref,
        phone_number="254712345678",
        status=PaymentStatus.PENDING,
    )
    db.add(payment)
    await db.commit()
    return booking, payment


@pytest.mark.asyncio
async def test_first_terminal_transition_wins(session_factory, db_session, ticket_type):
    booking, _ = await _booking_with_payment(db_session, ticket_type)

    async with session_factory() as db:
        assert await transition_booking(db, booking.id, BookingStatus.CANCELLED) is True
        await db.commit()

    async with session_factory() as db:
        assert await transition_booking(db, booking.id, BookingStatus.CONFIRMED) is False
        await db.commit()

    assert (await reload(session_factory, Booking, booking.id)).status == BookingStatus.CANCELLED


@pytest.mark.asyncio
async def test_transition_payment_writes_extra_columns(session_factory, db_session, ticket_type):
    _, payment = await _booking_with_payment(db_session, ticket_type)

    async with session_factory() as db:
        moved = await transition_payment(
            db,
            payment.id,
            PaymentStatus.SUCCESS,
            provider_ref="NLJ7RT61SV",
            result_desc="The service request is processed successfully.",
        )
        await db.commit()

    assert moved is True
    stored = await reload(session_factory, Payment, payment.id)
    assert stored.status == PaymentStatus.SUCCESS
    assert stored.provider_ref == "NLJ7RT61SV"


@pytest.mark.asyncio
async def test_illegal_transition_raises_before_touching_db(db_session, ticket_type):
    booking, _ = await _booking_with_payment(db_session, ticket_type)
    with pytest.raises(InvalidStateTransitionError):
        await transition_booking(
            db_session, booking.id, BookingStatus.PENDING, from_status=BookingStatus.CONFIRMED
        )


@pytest.mark.asyncio
async def test_close_pending_payments(session_factory, db_session, ticket_type):
    booking, payment = await _booking_with_payment(db_session, ticket_type)

    async with session_factory() as db:
        assert await close_pending_payments(db, booking.id, reason="Booking cancelled") == 1
        await db.commit()
    async with session_factory() as db:
        assert await close_pending_payments(db, booking.id, reason="Booking cancelled") == 0

    stored = await reload(session_factory, Payment, payment.id)
    assert stored.status == PaymentStatus.FAILED
    assert stored.result_desc == "Booking cancelled"
