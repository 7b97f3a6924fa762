"""
Bearer-token authentication boundary.

Users log in through the auth service; this API only verifies the JWT it
issued and turns the claims into a Requester. create_access_token exists for
tests and local tooling.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from ticketpay.core.config import get_settings

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Requester:
    user_id: str
    role: str = "USER"

    @property
    def is_privileged(self) -> bool:
        return self.role == get_settings().ADMIN_ROLE


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode["exp"] = expire
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_requester(token: str) -> Requester:
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise _unauthorized("Invalid or expired token")

    # Older tokens carry the user id as userId/id instead of sub
    user_id = claims.get("sub") or claims.get("userId") or claims.get("id")
    if not user_id:
        raise _unauthorized("Invalid token payload")

    return Requester(user_id=str(user_id), role=str(claims.get("role") or "USER"))


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Requester:
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Access token required")
    return decode_requester(credentials.credentials)
