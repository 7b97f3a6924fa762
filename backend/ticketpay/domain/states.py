"""
Booking and payment lifecycles.

A booking and its active payment move in lockstep:

    PENDING/PENDING --success callback--> CONFIRMED/SUCCESS
    PENDING/PENDING --failure callback--> CANCELLED/FAILED (inventory released)
    PENDING/*       --user cancel-------> CANCELLED (inventory released)

Terminal states have no outgoing transitions. The tables below are the single
source of truth; the persistence layer turns each allowed transition into a
compare-and-set UPDATE guarded on the source state.
"""

from enum import Enum
from typing import Dict, Set


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class InvalidStateTransitionError(Exception):
    """Raised when code asks for a transition the lifecycle does not allow."""

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Illegal state transition attempted: {from_state} -> {to_state}")


class _StateMachine:
    _status_type: type = Enum
    _ALLOWED_TRANSITIONS: Dict[Enum, Set[Enum]] = {}

    @classmethod
    def can_transition(cls, from_status, to_status) -> bool:
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)
        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(cls, from_status, to_status) -> None:
        """Raises InvalidStateTransitionError if the transition is illegal."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status) -> bool:
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def _ensure_valid_status(cls, status) -> None:
        if not isinstance(status, cls._status_type):
            raise TypeError(
                f"Expected {cls._status_type.__name__}, got {type(status)}"
            )


class BookingStateMachine(_StateMachine):
    _status_type = BookingStatus
    _ALLOWED_TRANSITIONS = {
        BookingStatus.PENDING: {
            BookingStatus.CONFIRMED,
            BookingStatus.CANCELLED,
        },
        BookingStatus.CONFIRMED: set(),
        BookingStatus.CANCELLED: set(),
    }


class PaymentStateMachine(_StateMachine):
    _status_type = PaymentStatus
    _ALLOWED_TRANSITIONS = {
        PaymentStatus.PENDING: {
            PaymentStatus.SUCCESS,
            PaymentStatus.FAILED,
        },
        PaymentStatus.SUCCESS: set(),
        PaymentStatus.FAILED: set(),
    }
