"""FastAPI auth dependencies.

Used as Depends() in route handlers to extract and validate the
current user from the request. Every failure is reported the same
way (401 "Not authenticated"); the precise reason is only logged.
"""

from typing import Optional

import structlog
from fastapi import Depends, Header, HTTPException

from smartflow.auth.jwt import TokenError, token_user_id, verify_token

logger = structlog.get_logger()

UNAUTHORIZED_DETAIL = "Not authenticated"


class CurrentIdentity:
    """Represents the authenticated user making the request."""

    def __init__(self, user_id: int, role: Optional[str] = None):
        self.user_id = user_id
        self.role = role or "member"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=UNAUTHORIZED_DETAIL,
        headers={"WWW-Authenticate": "Bearer"},
    )


def authenticate_token(token: Optional[str]) -> CurrentIdentity:
    """Validate a raw JWT and build the identity, or raise 401.

    Shared by the Authorization header path and the ?token= query
    parameter path of the notification stream.
    """
    if not token:
        raise unauthorized()
    try:
        payload = verify_token(token)
        user_id = token_user_id(payload)
    except TokenError as e:
        logger.info("auth.rejected", reason=str(e))
        raise unauthorized()
    return CurrentIdentity(user_id=user_id, role=payload.get("role"))


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentIdentity]:
    """Extract current identity (optional, None without an auth header)."""
    if not authorization:
        return None
    if not authorization.startswith("Bearer "):
        raise unauthorized()
    return authenticate_token(authorization[7:].strip())


async def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Extract current identity (required, 401 without auth)."""
    if not identity:
        raise unauthorized()
    return identity
