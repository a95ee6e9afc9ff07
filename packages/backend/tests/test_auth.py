"""Auth tests — JWT verification and the settings guard.

Learn: Tokens come from the hosted auth provider; we only verify them.
create_access_token() signs with the same secret so tests can mint one.
"""

import jwt
import pytest
from pydantic import ValidationError

from conftest import ADMIN_ID, USER_ID
from spinearn.auth.dependencies import identity_from_token
from spinearn.auth.jwt import TokenError, create_access_token, verify_token
from spinearn.config import Settings, settings


def test_token_round_trip():
    token = create_access_token(USER_ID, email="ada@example.com")
    payload = verify_token(token)
    assert payload["sub"] == USER_ID
    assert payload["role"] == "user"
    assert payload["email"] == "ada@example.com"


def test_admin_identity():
    identity = identity_from_token(create_access_token(ADMIN_ID, role="admin"))
    assert identity.user_id == ADMIN_ID
    assert identity.is_admin


def test_expired_token_rejected():
    token = create_access_token(USER_ID, expires_minutes=-1)
    with pytest.raises(TokenError, match="expired"):
        verify_token(token)


def test_wrong_secret_rejected():
    token = jwt.encode({"sub": USER_ID}, "not-the-secret", algorithm="HS256")
    with pytest.raises(TokenError, match="Invalid token"):
        verify_token(token)


def test_token_without_subject_rejected():
    token = jwt.encode({"role": "admin"}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    with pytest.raises(TokenError, match="missing subject"):
        verify_token(token)


def test_default_secret_refused_outside_development():
    with pytest.raises(ValidationError):
        Settings(environment="production", jwt_secret="change-me-in-production")

    ok = Settings(environment="production", jwt_secret="s3cret")
    assert ok.environment == "production"


def test_asyncpg_dsn_drops_driver_suffix():
    s = Settings(database_url="postgresql+asyncpg://u:p@db:5432/spinearn")
    assert s.asyncpg_dsn == "postgresql://u:p@db:5432/spinearn"


def test_audience_enforced_when_configured(monkeypatch):
    monkeypatch.setattr(settings, "jwt_audience", "authenticated")

    assert verify_token(create_access_token(USER_ID))["aud"] == "authenticated"

    no_aud = jwt.encode({"sub": USER_ID}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    with pytest.raises(TokenError, match="Invalid token"):
        verify_token(no_aud)


def test_identity_requires_uuid_subject():
    with pytest.raises(TokenError, match="subject is not a user id"):
        identity_from_token(create_access_token("not-a-uuid"))

    upper = identity_from_token(create_access_token(USER_ID.upper()))
    assert upper.user_id == USER_ID
