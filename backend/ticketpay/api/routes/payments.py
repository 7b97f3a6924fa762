"""
Payment endpoints: start an STK push, receive the M-Pesa callback, poll status.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ticketpay.api.deps import get_callback_reconciler, get_mpesa_client, rejection_to_http
from ticketpay.core.security import Requester, get_current_user
from ticketpay.db.session import get_db
from ticketpay.domain.results import Rejection
from ticketpay.schemas.payment import (
    CallbackAcknowledgement,
    PaymentInitiate,
    PaymentInitiateResponse,
    PaymentResponse,
)
from ticketpay.services.callback_reconciler import CallbackReconciler
from ticketpay.services.mpesa_client import MpesaClient
from ticketpay.services.payment_service import get_payment, initiate_payment_for_booking

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/initiate", response_model=PaymentInitiateResponse)
async def initiate_payment(
    payment_data: PaymentInitiate,
    requester: Requester = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: MpesaClient = Depends(get_mpesa_client),
):
    """
    Send an M-Pesa PIN prompt for a pending booking.
    A 502 means the push did not start; the tickets stay reserved and the
    request can be repeated.
    """
    result = await initiate_payment_for_booking(
        db,
        gateway,
        booking_id=payment_data.booking_id,
        requester=requester,
        phone_number=payment_data.phone_number,
    )
    if isinstance(result, Rejection):
        raise rejection_to_http(result)
    return PaymentInitiateResponse(
        message="Payment initiated successfully. Please check your phone to complete the payment.",
        payment=PaymentResponse.model_validate(result),
    )


@router.post("/mpesa-callback", response_model=CallbackAcknowledgement)
async def mpesa_callback(
    request: Request,
    reconciler: CallbackReconciler = Depends(get_callback_reconciler),
):
    """
    Safaricom result notification. Always answers 200 with ResultCode 0;
    anything else makes the provider redeliver.
    """
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    return await reconciler.handle(payload)


@router.get("/{payment_id}/status", response_model=PaymentResponse)
async def payment_status(
    payment_id: int,
    requester: Requester = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await get_payment(db, payment_id, requester)
    if isinstance(result, Rejection):
        raise rejection_to_http(result)
    return result
