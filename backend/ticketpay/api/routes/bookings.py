"""
Booking endpoints: reserve, list, view and cancel.
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ticketpay.api.deps import rejection_to_http
from ticketpay.core.security import Requester, get_current_user
from ticketpay.db.session import get_db
from ticketpay.domain.results import Rejection
from ticketpay.models.booking import Booking
from ticketpay.models.payment import Payment
from ticketpay.schemas.booking import (
    BookingCancelResponse,
    BookingCreate,
    BookingDetailResponse,
    BookingResponse,
)
from ticketpay.schemas.payment import PaymentResponse
from ticketpay.services.booking_service import (
    cancel_booking,
    create_booking,
    get_booking,
    list_user_bookings,
)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def _detail(booking: Booking, payment: Optional[Payment]) -> BookingDetailResponse:
    detail = BookingDetailResponse.model_validate(booking)
    if payment is not None:
        detail.latest_payment = PaymentResponse.model_validate(payment)
    return detail


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking_endpoint(
    booking_data: BookingCreate,
    requester: Requester = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Reserve tickets and open a PENDING booking.

    The reservation is a single conditional UPDATE, so concurrent requests for
    the last tickets cannot oversell; the loser gets 409.
    """
    result = await create_booking(
        db,
        user_id=requester.user_id,
        ticket_type_id=booking_data.ticket_type_id,
        quantity=booking_data.quantity,
        event_id=booking_data.event_id,
    )
    if isinstance(result, Rejection):
        raise rejection_to_http(result)
    return result


@router.get("/my-bookings", response_model=list[BookingDetailResponse])
async def list_my_bookings(
    requester: Requester = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Bookings of the authenticated user, newest first."""
    rows = await list_user_bookings(db, requester.user_id)
    return [_detail(booking, payment) for booking, payment in rows]


@router.get("/{booking_id}", response_model=BookingDetailResponse)
async def get_booking_endpoint(
    booking_id: int,
    requester: Requester = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await get_booking(db, booking_id, requester)
    if isinstance(result, Rejection):
        raise rejection_to_http(result)
    return _detail(*result)


@router.put("/{booking_id}/cancel", response_model=BookingCancelResponse)
async def cancel_booking_endpoint(
    booking_id: int,
    requester: Requester = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a pending booking and release its tickets. Owner or admin only."""
    result = await cancel_booking(db, booking_id, requester)
    if isinstance(result, Rejection):
        raise rejection_to_http(result)
    return BookingCancelResponse(
        message="Booking cancelled successfully",
        booking_id=result.id,
        status=result.status,
    )
