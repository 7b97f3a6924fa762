"""
Pydantic schemas for payment requests, responses and the M-Pesa acknowledgement.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from ticketpay.domain.states import PaymentStatus


class PaymentInitiate(BaseModel):
    booking_id: int
    phone_number: str = Field(..., min_length=1, max_length=20)


class PaymentResponse(BaseModel):
    id: int
    booking_id: int
    amount: Decimal
    provider: str
    provider_ref: Optional[str]
    phone_number: str
    status: PaymentStatus
    result_desc: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PaymentInitiateResponse(BaseModel):
    message: str
    payment: PaymentResponse


class CallbackAcknowledgement(BaseModel):
    ResultCode: int = 0
    ResultDesc: str = "Accepted"
