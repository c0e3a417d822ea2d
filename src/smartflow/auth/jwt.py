"""JWT token creation and verification.

Tokens minted here carry the numeric user id in `sub` (as a string).
Tokens issued by the tracker's login route carry it in `id` instead;
both shapes are accepted.
`role` is carried along for display and admin checks.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from smartflow.config import settings


class TokenError(Exception):
    """Raised when token creation/verification fails."""


def create_access_token(
    user_id: int,
    role: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """Create a JWT access token."""
    now = datetime.now(timezone.utc)
    expires = now + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    payload = {
        "sub": str(user_id),
        "type": "access",
        "exp": expires,
        "iat": now,
    }
    if role:
        payload["role"] = role
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Verify and decode a JWT token.

    Returns the payload dict on success.
    Raises TokenError on failure.
    """
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")

    token_user_id(payload)
    return payload


def token_user_id(payload: dict) -> int:
    """The user id a verified payload refers to: `sub`, else `id`."""
    raw = payload.get("sub", payload.get("id"))
    if raw is None:
        raise TokenError("Token without subject")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise TokenError(f"Invalid subject: {raw!r}")
