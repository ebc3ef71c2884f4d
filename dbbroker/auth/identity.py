"""
Caller identity
===============

Resolves ``Authorization: Bearer <jwt>`` into a ``CallerIdentity``. Tokens
are issued by the external authentication service and verified here with
the shared secret (PyJWT, HS256 by default).

Claims read:
    userId (or sub): caller id
    role: caller role
    isActive / status: account state; ``status`` must equal "Active"

Auth can only be disabled when BOTH settings.debug is True and
ENVIRONMENT is 'development'.
"""

import logging
import os
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from dbbroker.config import settings
from dbbroker.core.errors import (
    AuthenticationRequiredError,
    InvalidTokenError,
    TokenExpiredError,
)

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)

DEV_IDENTITY_ID = "dev_user"


class CallerIdentity(BaseModel):
    """Authenticated caller as seen by the broker."""

    id: str
    role: Optional[str] = None
    is_active: bool = True


def _is_auth_enabled() -> bool:
    """Check if auth is enabled.

    Disabling requires settings.auth_enabled=False together with
    settings.debug=True and ENVIRONMENT=development.
    """
    if settings.auth_enabled:
        return True
    environment = os.environ.get("ENVIRONMENT", "production").lower()
    if settings.debug and environment == "development":
        logger.warning(
            "AUTH DISABLED: auth_enabled=false with debug=True and ENVIRONMENT=development. "
            "Do NOT use this in production."
        )
        return False
    logger.warning(
        "Ignoring auth_enabled=false because debug=%s and ENVIRONMENT=%s.",
        settings.debug,
        environment,
    )
    return True


def _claims_to_identity(claims: dict) -> CallerIdentity:
    user_id = claims.get("userId", claims.get("sub"))
    if user_id is None or user_id == "":
        raise InvalidTokenError(detail="token carries no userId/sub claim")

    if "isActive" in claims:
        is_active = bool(claims["isActive"])
    elif "status" in claims:
        is_active = str(claims["status"]) == "Active"
    else:
        is_active = True

    return CallerIdentity(id=str(user_id), role=claims.get("role"), is_active=is_active)


def decode_token(token: str) -> CallerIdentity:
    """Verify *token* and map its claims to a CallerIdentity."""
    try:
        claims = jwt.decode(
            token,
            settings.get_jwt_secret(),
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError:
        raise TokenExpiredError()
    except jwt.InvalidTokenError as e:
        raise InvalidTokenError(detail=str(e))
    return _claims_to_identity(claims)


async def get_caller_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> CallerIdentity:
    """FastAPI dependency: the authenticated caller for this request."""
    if not _is_auth_enabled():
        return CallerIdentity(id=DEV_IDENTITY_ID, role="admin", is_active=True)

    if credentials is None or not credentials.credentials:
        raise AuthenticationRequiredError("Access denied. No token provided.")

    return decode_token(credentials.credentials)
