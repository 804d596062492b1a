"""Bearer token authentication.

Tokens are issued by the platform's auth service; this service only
verifies them and reads the principal id from the ``sub`` claim.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from adaptive_media.core.config import settings
from adaptive_media.modules.access.guard import Principal

security = HTTPBearer()


def decode_principal(token: str) -> Optional[Principal]:
    """Principal from an access token, or None when the token is invalid."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
    if payload.get("type", "access") != "access":
        return None
    try:
        return Principal(id=uuid.UUID(str(payload.get("sub"))))
    except ValueError:
        return None


def create_access_token(user_id: uuid.UUID, expires_minutes: int = 15) -> str:
    """Issue an access token. Used by tooling and tests."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
        "type": "access",
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    """FastAPI dependency resolving the caller from the Authorization header."""
    principal = decode_principal(credentials.credentials)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal
