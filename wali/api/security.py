"""JWT helpers (python-jose). Tokens are issued by the auth service; we only verify."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from wali.config import settings
from wali.domain.errors import AuthenticationError


def create_access_token(
    user_id: int, role: str, expires_delta: Optional[timedelta] = None
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {"sub": str(user_id), "role": role, "exp": expire, "type": "access"}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> int:
    """Return the user id carried by *token*, or raise AuthenticationError."""
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except JWTError as exc:
        raise AuthenticationError() from exc
    if payload.get("type") != "access":
        raise AuthenticationError()
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise AuthenticationError() from exc
