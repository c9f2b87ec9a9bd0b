"""FastAPI auth dependencies.

Learn: get_current_user is the "hard" dependency (401 without a valid
Bearer token). require_admin layers the capability check on top (403).
The WebSocket endpoint can't use Depends for its token (it arrives as a
query param), so it calls identity_from_token directly.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException

from servicehub.auth.jwt import TokenError, verify_token

ADMIN_ROLE = "admin"


class CurrentIdentity:
    """The authenticated user behind a request or socket."""

    def __init__(self, user_id: str, roles: Optional[list[str]] = None):
        self.user_id = user_id
        self.roles = roles or []

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles

    def __repr__(self) -> str:
        return f"CurrentIdentity(user_id={self.user_id!r}, roles={self.roles!r})"


def identity_from_token(token: Optional[str]) -> CurrentIdentity:
    """Raises TokenError if the token is missing or invalid."""
    payload = verify_token(token)
    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    return CurrentIdentity(user_id=str(payload["sub"]), roles=list(roles))


async def get_current_user(
    authorization: Optional[str] = Header(None),
) -> CurrentIdentity:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return identity_from_token(authorization[7:])
    except TokenError as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_admin(
    identity: CurrentIdentity = Depends(get_current_user),
) -> CurrentIdentity:
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin capability required")
    return identity
