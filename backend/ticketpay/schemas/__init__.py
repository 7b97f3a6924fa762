from ticketpay.schemas.payment import (
    PaymentInitiate, PaymentResponse, PaymentInitiateResponse, CallbackAcknowledgement,
)
from ticketpay.schemas.booking import (
    BookingCreate, BookingResponse, BookingDetailResponse, BookingCancelResponse,
)

__all__ = [
    "PaymentInitiate", "PaymentResponse", "PaymentInitiateResponse", "CallbackAcknowledgement",
    "BookingCreate", "BookingResponse", "BookingDetailResponse", "BookingCancelResponse",
]
