"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from ticketpay.domain.states import BookingStatus
from ticketpay.schemas.payment import PaymentResponse


class BookingCreate(BaseModel):
    ticket_type_id: int
    # type and range are checked by the service so the client gets a
    # structured invalid_quantity reason instead of a 422
    quantity: Any = Field(None, description="Number of tickets, a positive integer")
    event_id: Optional[int] = None


class BookingResponse(BaseModel):
    id: int
    user_id: str
    ticket_type_id: int
    quantity: int
    total_amount: Decimal
    status: BookingStatus
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BookingDetailResponse(BookingResponse):
    latest_payment: Optional[PaymentResponse] = None


class BookingCancelResponse(BaseModel):
    message: str
    booking_id: int
    status: BookingStatus
