"""
Booking model representing a user's claim on units of one ticket type.

Key design decisions:
- `total_amount` is computed once at creation (price x quantity) and never
  recomputed from what the payment provider later reports
- Status changes only through compare-and-set UPDATEs on PENDING
- No per-user uniqueness: a user may hold several bookings for one event
"""

from sqlalchemy import CheckConstraint, Column, Enum, ForeignKey, Index, Integer, Numeric, String

from ticketpay.db.base import Base, TimestampMixin
from ticketpay.domain.states import BookingStatus


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    ticket_type_id = Column(Integer, ForeignKey("ticket_types.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    status = Column(
        Enum(BookingStatus, name="booking_status", native_enum=False, create_constraint=True, length=20),
        nullable=False,
        default=BookingStatus.PENDING,
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_booking_quantity_positive"),
        CheckConstraint("total_amount >= 0", name="check_booking_total_non_negative"),
        # "my bookings" listing
        Index("ix_bookings_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, user={self.user_id}, ticket_type={self.ticket_type_id}, status={self.status})>"
