"""
Business outcomes returned by the booking and payment services.

"Not enough tickets" or "you don't own this booking" are expected answers,
not faults, so services return a Rejection instead of raising. The HTTP layer
maps each kind to a status code; infrastructure failures still raise.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    INVALID_QUANTITY = "invalid_quantity"
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    INSUFFICIENT_INVENTORY = "insufficient_inventory"
    NOT_OWNER = "not_owner"
    NOT_AUTHORIZED = "not_authorized"
    ALREADY_CONFIRMED = "already_confirmed"
    ALREADY_CANCELLED = "already_cancelled"
    GATEWAY_ERROR = "gateway_error"


@dataclass(frozen=True)
class Rejection:
    kind: ErrorKind
    message: str
    detail: Optional[Any] = None
