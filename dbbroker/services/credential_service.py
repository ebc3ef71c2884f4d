"""
Database Credential Service
============================

Fernet encrypt/decrypt for stored connection passwords.

An empty password is encrypted like any other value, so ``""`` ("no
password") stays distinct from ``None`` (never set) once stored.
"""

import logging
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from dbbroker.config import settings
from dbbroker.core.errors import InternalError

logger = logging.getLogger(__name__)


@lru_cache(maxsize=4)
def _fernet_for(key: str) -> Fernet:
    return Fernet(key.encode())


def _get_fernet() -> Fernet:
    """Return the cached Fernet for the app's current SECRET_KEY."""
    return _fernet_for(settings.get_secret_key())


def encrypt_password(plaintext: Optional[str]) -> Optional[str]:
    """Encrypt a database password. Returns a URL-safe base64 token string."""
    if plaintext is None:
        return None
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt_password(token: Optional[str]) -> Optional[str]:
    """Decrypt a database password from its Fernet token."""
    if token is None:
        return None
    try:
        return _get_fernet().decrypt(token.encode()).decode()
    except InvalidToken:
        logger.error("Stored password could not be decrypted; SECRET_KEY changed since it was saved")
        raise InternalError(
            "Stored credentials could not be decrypted",
            detail="Fernet InvalidToken: DBBROKER_SECRET_KEY differs from the key used at write time",
        )
