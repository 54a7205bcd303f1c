"""
Bearer-token authentication.

Tokens are issued by the platform's auth service; this API only verifies
them and turns the claims into a ``Principal``. ``create_access_token``
exists for tooling (load tests, fixtures) that needs to mint tokens with
the shared secret.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from carpool.core.config import get_settings
from carpool.core.errors import AuthenticationError

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    id: uuid.UUID
    role: str = "user"
    email: Optional[str] = None
    language: Optional[str] = None
    currency: Optional[str] = None


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode["exp"] = expire
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Principal:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise AuthenticationError("Invalid or expired token")

    raw_id = payload.get("sub") or payload.get("id") or payload.get("userId")
    try:
        user_id = uuid.UUID(str(raw_id))
    except (TypeError, ValueError):
        raise AuthenticationError("Invalid or expired token")

    return Principal(
        id=user_id,
        role=payload.get("role") or "user",
        email=payload.get("email"),
        language=payload.get("language"),
        currency=payload.get("currency"),
    )


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Access token is required")
    return decode_access_token(credentials.credentials)


async def get_current_user_id(principal: Principal = Depends(get_current_principal)) -> uuid.UUID:
    return principal.id
