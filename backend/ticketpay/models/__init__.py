from ticketpay.models.event import Event, TicketType
from ticketpay.models.booking import Booking
from ticketpay.models.payment import Payment

__all__ = ["Event", "TicketType", "Booking", "Payment"]
