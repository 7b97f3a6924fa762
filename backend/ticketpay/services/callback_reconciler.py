"""
M-Pesa STK callback reconciliation.

Safaricom POSTs the outcome of every STK push to our callback URL, with no
authentication, possibly late and possibly more than once. Anything other
than a success-shaped acknowledgement makes it retry, so handle() always
answers {"ResultCode": 0, ...} and records problems in the log for manual
follow-up instead.

Replays are harmless: a successful callback overwrites the payment's
CheckoutRequestID with the receipt number, and every transition is a
compare-and-set on PENDING, so a second delivery either finds nothing or finds
a closed payment.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticketpay.core.logging import get_logger
from ticketpay.core.metrics import record_callback, record_cancellation
from ticketpay.domain.states import BookingStatus, PaymentStatus
from ticketpay.models.booking import Booking
from ticketpay.models.payment import Payment
from ticketpay.services.inventory_ledger import InventoryLedger
from ticketpay.services.state_transitions import transition_booking, transition_payment

logger = get_logger(__name__)

ACKNOWLEDGEMENT = {"ResultCode": 0, "ResultDesc": "Accepted"}


@dataclass(frozen=True)
class StkCallback:
    result_code: int
    checkout_request_id: Optional[str]
    merchant_request_id: Optional[str] = None
    result_desc: Optional[str] = None
    metadata: tuple = ()

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0

    def item(self, *names: str) -> Any:
        """First non-null metadata value under any of `names`."""
        for name in names:
            for item_name, value in self.metadata:
                if item_name == name and value is not None:
                    return value
        return None


def _field(obj: dict, *names: str) -> Any:
    for name in names:
        if obj.get(name) is not None:
            return obj[name]
    return None


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def parse_stk_callback(payload: Any) -> Optional[StkCallback]:
    """
    Pull the handful of fields we use out of a callback body.

    Accepts {"Body": {"stkCallback": {...}}} or a bare {"stkCallback": {...}},
    PascalCase or camelCase keys, and CallbackMetadata given either as
    {"Item": [...]} or as the list itself. Returns None when there is no
    stkCallback object at all.
    """
    if not isinstance(payload, dict):
        return None

    body = payload.get("Body")
    callback = body.get("stkCallback") if isinstance(body, dict) else None
    if callback is None:
        callback = payload.get("stkCallback")
    if not isinstance(callback, dict):
        return None

    metadata = _field(callback, "CallbackMetadata", "callbackMetadata")
    items = metadata.get("Item", metadata.get("item")) if isinstance(metadata, dict) else metadata
    pairs = []
    for entry in items if isinstance(items, list) else []:
        if not isinstance(entry, dict):
            continue
        name = _field(entry, "Name", "name")
        if name is not None:
            pairs.append((str(name), _field(entry, "Value", "value")))

    checkout_request_id = _field(callback, "CheckoutRequestID", "checkoutRequestID", "checkoutRequestId")
    merchant_request_id = _field(callback, "MerchantRequestID", "merchantRequestID", "merchantRequestId")
    result_desc = _field(callback, "ResultDesc", "resultDesc")

    return StkCallback(
        result_code=_as_int(_field(callback, "ResultCode", "resultCode"), default=-1),
        checkout_request_id=str(checkout_request_id) if checkout_request_id is not None else None,
        merchant_request_id=str(merchant_request_id) if merchant_request_id is not None else None,
        result_desc=str(result_desc) if result_desc is not None else None,
        metadata=tuple(pairs),
    )


class CallbackReconciler:
    """Applies provider callbacks to payments and bookings, one transaction per callback."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def handle(self, payload: Any) -> dict:
        callback = parse_stk_callback(payload)
        if callback is None or not callback.checkout_request_id:
            logger.warning("mpesa_callback_malformed", payload=payload)
            record_callback("malformed")
            return dict(ACKNOWLEDGEMENT)

        log = logger.bind(
            checkout_request_id=callback.checkout_request_id,
            result_code=callback.result_code,
        )
        log.info("mpesa_callback_received", result_desc=callback.result_desc)

        try:
            async with self.session_factory() as db:
                outcome = await self._reconcile(db, callback, log)
        except Exception:
            # rolled back by the session; the provider still gets its ack
            log.exception("mpesa_callback_reconcile_failed", needs_manual_reconciliation=True)
            outcome = "error"

        record_callback(outcome)
        return dict(ACKNOWLEDGEMENT)

    async def _reconcile(self, db: AsyncSession, callback: StkCallback, log) -> str:
        payment = (
            await db.execute(
                select(Payment)
                .where(Payment.provider_ref == callback.checkout_request_id)
                .order_by(Payment.created_at.desc(), Payment.id.desc())
                .limit(1)
            )
        ).scalar_one_or_none()

        if payment is None:
            log.warning("mpesa_callback_unmatched")
            return "unmatched"

        log = log.bind(payment_id=payment.id, booking_id=payment.booking_id)

        if payment.status != PaymentStatus.PENDING:
            if callback.succeeded:
                # money moved for a payment we already closed
                log.error(
                    "mpesa_success_for_closed_payment",
                    payment_status=payment.status.value,
                    receipt=callback.item("MpesaReceiptNumber", "MpesaReceiptNo"),
                    needs_manual_reconciliation=True,
                )
            else:
                log.info("mpesa_callback_duplicate", payment_status=payment.status.value)
            return "duplicate"

        # booking row first, then payment: the same order cancel and
        # initiation lock in, so a racing cancel waits instead of deadlocking
        await db.execute(
            select(Booking.id).where(Booking.id == payment.booking_id).with_for_update()
        )

        if callback.succeeded:
            return await self._confirm(db, payment, callback, log)
        return await self._fail(db, payment, callback, log)

    async def _confirm(self, db: AsyncSession, payment: Payment, callback: StkCallback, log) -> str:
        receipt = callback.item("MpesaReceiptNumber", "MpesaReceiptNo")
        paid_amount = _as_decimal(callback.item("Amount"))
        paid_phone = callback.item("PhoneNumber")

        if paid_amount is not None and paid_amount != payment.amount:
            log.warning(
                "mpesa_amount_mismatch",
                expected=str(payment.amount),
                received=str(paid_amount),
            )

        moved = await transition_payment(
            db,
            payment.id,
            PaymentStatus.SUCCESS,
            provider_ref=str(receipt) if receipt is not None else payment.provider_ref,
            amount=paid_amount if paid_amount is not None else payment.amount,
            phone_number=str(paid_phone) if paid_phone is not None else payment.phone_number,
            result_desc=(callback.result_desc or "")[:255] or None,
        )
        if not moved:
            await db.rollback()
            log.info("mpesa_callback_duplicate")
            return "duplicate"

        if not await transition_booking(db, payment.booking_id, BookingStatus.CONFIRMED):
            log.error(
                "mpesa_success_for_closed_booking",
                receipt=receipt,
                needs_manual_reconciliation=True,
            )

        await db.commit()
        log.info("payment_confirmed", receipt=receipt)
        return "confirmed"

    async def _fail(self, db: AsyncSession, payment: Payment, callback: StkCallback, log) -> str:
        moved = await transition_payment(
            db,
            payment.id,
            PaymentStatus.FAILED,
            result_desc=(callback.result_desc or "Failed")[:255],
        )
        if not moved:
            await db.rollback()
            log.info("mpesa_callback_duplicate")
            return "duplicate"

        booking = await db.get(Booking, payment.booking_id)
        if booking is not None and await transition_booking(db, booking.id, BookingStatus.CANCELLED):
            await InventoryLedger(db).release(booking.ticket_type_id, booking.quantity)
            record_cancellation("callback")

        await db.commit()
        log.warning("payment_failed", result_desc=callback.result_desc)
        return "failed"
