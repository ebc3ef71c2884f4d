"""
Tests for bearer-token decoding and the auth-disable guard.
"""

import asyncio

import jwt
import pytest
from fastapi.security import HTTPAuthorizationCredentials

from conftest import make_token
from dbbroker.auth import identity
from dbbroker.auth.identity import (
    DEV_IDENTITY_ID,
    decode_token,
    get_caller_identity,
)
from dbbroker.config import settings
from dbbroker.core.errors import (
    AuthenticationRequiredError,
    InvalidTokenError,
    TokenExpiredError,
)


class TestDecodeToken:
    def test_valid_token(self):
        caller = decode_token(make_token(user_id="u-7", role="editor"))
        assert caller.id == "u-7"
        assert caller.role == "editor"
        assert caller.is_active is True

    def test_sub_fallback(self):
        token = jwt.encode({"sub": "abc"}, settings.jwt_secret, algorithm="HS256")
        assert decode_token(token).id == "abc"

    def test_is_active_claim(self):
        assert decode_token(make_token(isActive=False)).is_active is False

    def test_status_claim(self):
        assert decode_token(make_token(status="Active")).is_active is True
        assert decode_token(make_token(status="Suspended")).is_active is False

    def test_missing_user_id(self):
        token = jwt.encode({"role": "admin"}, settings.jwt_secret, algorithm="HS256")
        with pytest.raises(InvalidTokenError):
            decode_token(token)

    def test_wrong_secret(self):
        token = jwt.encode({"userId": "u"}, "another-secret-entirely-not-ours", algorithm="HS256")
        with pytest.raises(InvalidTokenError):
            decode_token(token)

    def test_garbage(self):
        with pytest.raises(InvalidTokenError):
            decode_token("not.a.jwt")

    def test_expired(self):
        with pytest.raises(TokenExpiredError) as exc_info:
            decode_token(make_token(expires_in=-60))
        assert exc_info.value.message == "Token expired."


class TestGetCallerIdentity:
    def test_missing_credentials(self):
        with pytest.raises(AuthenticationRequiredError) as exc_info:
            asyncio.run(get_caller_identity(None))
        assert exc_info.value.message == "Access denied. No token provided."

    def test_bearer_credentials(self):
        creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials=make_token(user_id="u-9"))
        assert asyncio.run(get_caller_identity(creds)).id == "u-9"

    def test_disabled_only_in_debug_development(self, monkeypatch):
        monkeypatch.setattr(settings, "auth_enabled", False)
        monkeypatch.setattr(settings, "debug", True)
        monkeypatch.setenv("ENVIRONMENT", "development")

        caller = asyncio.run(get_caller_identity(None))
        assert caller.id == DEV_IDENTITY_ID

    def test_disable_ignored_outside_development(self, monkeypatch):
        monkeypatch.setattr(settings, "auth_enabled", False)
        monkeypatch.setattr(settings, "debug", True)
        monkeypatch.setenv("ENVIRONMENT", "production")

        assert identity._is_auth_enabled() is True
        with pytest.raises(AuthenticationRequiredError):
            asyncio.run(get_caller_identity(None))
