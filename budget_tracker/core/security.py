from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from jose import jwt, JWTError

from budget_tracker.core.config import settings


def create_access_token(subject: str | int, expires_minutes: int | None = None) -> str:
    """Mint a bearer token the way the upstream identity provider does.

    The engine itself only decodes tokens; this helper exists for service-to-service
    callers and tests that need an already-authenticated actor.
    """
    expire_minutes = expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    to_encode = {
        "sub": str(subject),
        "exp": expire,
        "type": "access",
        "iat": datetime.now(timezone.utc)
    }
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict[str, Any]]:
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
