"""
Payment model for M-Pesa STK Push charges.

`provider_ref` holds the CheckoutRequestID while the charge is pending and
the M-Pesa receipt number once it succeeds. It is the only key the callback
carries, so it must be unique among pending payments.
"""

from sqlalchemy import Column, Enum, ForeignKey, Index, Integer, Numeric, String, text

from ticketpay.db.base import Base, TimestampMixin
from ticketpay.domain.states import PaymentStatus


class Payment(Base, TimestampMixin):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    provider = Column(String(20), nullable=False, default="mpesa")
    provider_ref = Column(String(64), nullable=True, index=True)
    merchant_request_id = Column(String(64), nullable=True)
    phone_number = Column(String(20), nullable=False)
    status = Column(
        Enum(PaymentStatus, name="payment_status", native_enum=False, create_constraint=True, length=20),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    result_desc = Column(String(255), nullable=True)

    __table_args__ = (
        Index(
            "uq_payments_pending_provider_ref",
            "provider_ref",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, booking={self.booking_id}, ref={self.provider_ref}, status={self.status})>"
