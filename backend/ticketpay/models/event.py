"""
Event and ticket-type (offering) models.

Events and ticket types are managed by the events service; this API only
reads them and moves `available_quantity` through the inventory ledger.

Key design decisions:
- `available_quantity` is denormalized on the ticket type so a reservation is
  one conditional UPDATE instead of a COUNT over bookings
- CHECK constraints are the final safety net against oversell
"""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String

from ticketpay.db.base import Base, TimestampMixin


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    venue = Column(String(255), nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=True)
    organizer_id = Column(String(64), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title}, active={self.is_active})>"


class TicketType(Base, TimestampMixin):
    __tablename__ = "ticket_types"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    capacity = Column(Integer, nullable=False)
    available_quantity = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("price >= 0", name="check_ticket_price_non_negative"),
        CheckConstraint("capacity >= 0", name="check_ticket_capacity_non_negative"),
        CheckConstraint("available_quantity >= 0", name="check_available_quantity_non_negative"),
        CheckConstraint("available_quantity <= capacity", name="check_available_lte_capacity"),
    )

    def __repr__(self) -> str:
        return (
            f"<TicketType(id={self.id}, event={self.event_id}, "
            f"available={self.available_quantity}/{self.capacity})>"
        )
