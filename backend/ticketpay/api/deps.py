"""
Shared route dependencies and the mapping from business rejections to HTTP.
"""

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticketpay.db.session import get_session_factory
from ticketpay.domain.results import ErrorKind, Rejection
from ticketpay.services.callback_reconciler import CallbackReconciler
from ticketpay.services.mpesa_client import MpesaClient

REJECTION_STATUS = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_QUANTITY: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INACTIVE: status.HTTP_404_NOT_FOUND,
    ErrorKind.INSUFFICIENT_INVENTORY: status.HTTP_409_CONFLICT,
    ErrorKind.NOT_OWNER: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_AUTHORIZED: status.HTTP_403_FORBIDDEN,
    ErrorKind.ALREADY_CONFIRMED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.ALREADY_CANCELLED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.GATEWAY_ERROR: status.HTTP_502_BAD_GATEWAY,
}


def rejection_to_http(rejection: Rejection) -> HTTPException:
    detail = {"reason": rejection.kind.value, "message": rejection.message}
    if rejection.detail is not None:
        detail["provider_error"] = rejection.detail
    return HTTPException(status_code=REJECTION_STATUS[rejection.kind], detail=detail)


def get_mpesa_client(request: Request) -> MpesaClient:
    """The per-process client created in the application lifespan."""
    return request.app.state.mpesa_client


def get_callback_reconciler(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> CallbackReconciler:
    return CallbackReconciler(session_factory)
