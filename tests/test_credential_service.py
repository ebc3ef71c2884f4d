"""Tests for Fernet password encryption at rest."""

import pytest
from cryptography.fernet import Fernet

from dbbroker.config import settings
from dbbroker.core.errors import InternalError
from dbbroker.services.credential_service import _get_fernet, decrypt_password, encrypt_password


class TestCredentialService:
    def test_round_trip(self):
        token = encrypt_password("s3cret")
        assert token != "s3cret"
        assert decrypt_password(token) == "s3cret"

    def test_empty_password_is_kept(self):
        token = encrypt_password("")
        assert token
        assert decrypt_password(token) == ""

    def test_none_passes_through(self):
        assert encrypt_password(None) is None
        assert decrypt_password(None) is None

    def test_foreign_token_is_internal_error(self):
        with pytest.raises(InternalError) as exc_info:
            decrypt_password("not-a-fernet-token")
        assert exc_info.value.message == "Stored credentials could not be decrypted"

    def test_cipher_reused_for_same_key(self):
        assert _get_fernet() is _get_fernet()

    def test_key_rotation_builds_new_cipher(self, monkeypatch):
        before = _get_fernet()
        token = encrypt_password("s3cret")
        monkeypatch.setattr(settings, "secret_key", Fernet.generate_key().decode())

        assert _get_fernet() is not before
        with pytest.raises(InternalError):
            decrypt_password(token)
