"""JWT verification for tokens issued by the hosted auth provider.

Learn: The auth provider signs access tokens with a shared HS256 secret.
"sub" is the user id (same UUID as users.id) and "role" is "admin" for
the admin dashboard. When SPINEARN_JWT_AUDIENCE is set, the "aud" claim
must match it.

create_access_token() mints the same shape of token for tests, scripts,
and local development.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from spinearn.config import settings


class TokenError(Exception):
    """Raised when a token can't be verified."""


def create_access_token(
    user_id: str,
    role: str = "user",
    email: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(
            minutes=expires_minutes or settings.access_token_expire_minutes
        ),
    }
    if email:
        payload["email"] = email
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Decode and validate a token. Raises TokenError on any failure."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options={"verify_aud": bool(settings.jwt_audience)},
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")

    if not payload.get("sub"):
        raise TokenError("Invalid token: missing subject")
    return payload
