"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current identity from the Authorization header.
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException

from spinearn.auth.jwt import TokenError, verify_token


class CurrentIdentity:
    """The authenticated user making the request."""

    def __init__(
        self,
        user_id: str,
        role: str = "user",
        email: Optional[str] = None,
    ):
        self.user_id = user_id
        self.role = role
        self.email = email

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def identity_from_token(token: str) -> CurrentIdentity:
    """Verify a raw JWT and build the identity. Raises TokenError."""
    payload = verify_token(token)
    # users.id is a UUID; anything else would only fail later in a query
    try:
        user_id = str(uuid.UUID(str(payload["sub"])))
    except ValueError:
        raise TokenError("Invalid token: subject is not a user id")
    return CurrentIdentity(
        user_id=user_id,
        role=payload.get("role", "user"),
        email=payload.get("email"),
    )


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentIdentity]:
    """Extract current identity (optional — returns None if no auth)."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    try:
        return identity_from_token(authorization[7:])
    except TokenError as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Extract current identity (required — 401 if no auth)."""
    if not identity:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


async def require_admin(
    identity: CurrentIdentity = Depends(get_current_user),
) -> CurrentIdentity:
    """Admin-only routes — 403 for everyone else."""
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity
