"""
Starting an STK push for a booking and reading payment status.
"""

import re
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketpay.core.config import get_settings
from ticketpay.core.logging import get_logger
from ticketpay.core.metrics import record_payment_initiation
from ticketpay.core.security import Requester
from ticketpay.domain.results import ErrorKind, Rejection
from ticketpay.domain.states import BookingStatus, PaymentStatus
from ticketpay.models.booking import Booking
from ticketpay.models.event import Event, TicketType
from ticketpay.models.payment import Payment
from ticketpay.services.booking_service import closed_booking_rejection
from ticketpay.services.mpesa_client import GatewayError, MpesaClient
from ticketpay.services.state_transitions import close_pending_payments

logger = get_logger(__name__)

_DIGITS = re.compile(r"^\d{9,15}$")


def normalize_phone_number(phone: str, country_code: Optional[str] = None) -> Optional[str]:
    """
    Canonical international digits, e.g. "0712 345 678" -> "254712345678".
    Returns None when the input cannot be a phone number.
    """
    country_code = country_code or get_settings().PHONE_COUNTRY_CODE
    formatted = re.sub(r"\s+", "", str(phone or ""))

    if formatted.startswith("+"):
        formatted = formatted[1:]
        # "+" means a country code follows; no country code starts with 0
        if formatted.startswith("0"):
            return None
    elif formatted.startswith("0"):
        formatted = country_code + formatted[1:]
    elif not formatted.startswith(country_code):
        formatted = country_code + formatted

    if not _DIGITS.match(formatted):
        return None
    return formatted


async def initiate_payment_for_booking(
    db: AsyncSession,
    gateway: MpesaClient,
    booking_id: int,
    requester: Requester,
    phone_number: str,
) -> Union[Payment, Rejection]:
    """
    Push an M-Pesa PIN prompt for the booking's total and record a PENDING
    payment keyed by the returned CheckoutRequestID.

    If the push fails nothing is written and the reservation keeps holding,
    so the user can simply try again.
    """
    booking = await db.get(Booking, booking_id)
    if booking is None:
        record_payment_initiation("rejected")
        return Rejection(ErrorKind.NOT_FOUND, "Booking not found")

    if booking.user_id != requester.user_id:
        record_payment_initiation("rejected")
        return Rejection(ErrorKind.NOT_OWNER, "You are not authorized to pay for this booking")

    if booking.status != BookingStatus.PENDING:
        record_payment_initiation("rejected")
        return closed_booking_rejection(booking.status)

    phone = normalize_phone_number(phone_number)
    if phone is None:
        record_payment_initiation("rejected")
        return Rejection(ErrorKind.VALIDATION, "Phone number is not valid")

    event_id, event_title = (
        await db.execute(
            select(Event.id, Event.title)
            .join(TicketType, TicketType.event_id == Event.id)
            .where(TicketType.id == booking.ticket_type_id)
        )
    ).one()
    amount = booking.total_amount

    # don't hold a transaction open across the remote call
    await db.commit()

    try:
        charge = await gateway.initiate_charge(
            phone,
            amount,
            reference=f"Event-{event_id}",
            description=f"Payment for {event_title}",
        )
    except GatewayError as e:
        record_payment_initiation("gateway_error")
        logger.warning(
            "payment_initiation_failed",
            booking_id=booking_id,
            error=str(e),
            provider_status=e.status_code,
        )
        return Rejection(ErrorKind.GATEWAY_ERROR, "Failed to initiate payment", detail=e.payload)

    # row lock keeps a concurrent cancel from missing the new payment
    await db.refresh(booking, with_for_update=True)
    superseded = await close_pending_payments(db, booking_id, reason="Superseded by a new payment request")

    payment = Payment(
        booking_id=booking_id,
        amount=amount,
        provider="mpesa",
        provider_ref=charge.checkout_request_id,
        merchant_request_id=charge.merchant_request_id,
        phone_number=phone,
        status=PaymentStatus.PENDING,
    )
    if booking.status != BookingStatus.PENDING:
        # closed while the push was in flight; keep the row so the callback can be traced
        payment.status = PaymentStatus.FAILED
        payment.result_desc = f"Booking {booking.status.value.lower()} during initiation"
        logger.warning(
            "payment_initiated_for_closed_booking",
            booking_id=booking_id,
            booking_status=booking.status.value,
            checkout_request_id=charge.checkout_request_id,
        )

    db.add(payment)
    try:
        await db.commit()
    except Exception:
        # the customer may already be looking at a PIN prompt
        logger.exception(
            "payment_persist_failed",
            booking_id=booking_id,
            checkout_request_id=charge.checkout_request_id,
        )
        raise
    await db.refresh(payment)

    record_payment_initiation("initiated")
    logger.info(
        "payment_initiated",
        booking_id=booking_id,
        payment_id=payment.id,
        checkout_request_id=payment.provider_ref,
        superseded_payments=superseded,
    )
    return payment


async def get_payment(
    db: AsyncSession,
    payment_id: int,
    requester: Requester,
) -> Union[Payment, Rejection]:
    row = (
        await db.execute(
            select(Payment, Booking.user_id)
            .join(Booking, Booking.id == Payment.booking_id)
            .where(Payment.id == payment_id)
        )
    ).one_or_none()
    if row is None:
        return Rejection(ErrorKind.NOT_FOUND, "Payment not found")

    payment, owner_id = row
    if owner_id != requester.user_id and not requester.is_privileged:
        return Rejection(ErrorKind.NOT_AUTHORIZED, "You are not authorized to view this payment")
    return payment
