"""JWT verification (and minting, for tests and local tooling)."""

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import jwt

from servicehub.config import settings


class TokenError(Exception):
    """Raised when a token can't be verified."""


def create_access_token(
    user_id: str,
    roles: Iterable[str] = (),
    expires_minutes: int = 60,
) -> str:
    """Mint a session token the way the auth service does."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "type": "access",
        "roles": list(roles),
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: Optional[str]) -> dict:
    """Decode and validate ``token``. Raises TokenError on any failure."""
    if not token:
        raise TokenError("Missing token")
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")
    if not payload.get("sub"):
        raise TokenError("Token has no subject")
    return payload
