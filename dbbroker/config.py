"""
dbbroker Application Configuration
==================================

PURPOSE:
    Pydantic-Settings based configuration for the connection broker.
    All settings can be overridden via environment variables (DBBROKER_ prefix).

NOTES:
    The backing store is selected by DATABASE_URL (no prefix), see
    dbbroker.core.database.
"""

import logging
from typing import List, Optional

from cryptography.fernet import Fernet
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


def _generate_fernet_key() -> str:
    """Generate a Fernet-compatible key for password encryption at rest.

    WARNING: Auto-generated keys are ephemeral, they change on each restart.
    In production, set DBBROKER_SECRET_KEY env var to a persistent Fernet key.
    Generate one with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    """
    return Fernet.generate_key().decode()


class Settings(BaseSettings):
    app_name: str = "dbbroker"
    debug: bool = False

    # Caller identity (JWTs are issued by the external auth service)
    auth_enabled: bool = True
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    token_lifetime_s: int = 24 * 3600  # Also the eviction TTL for revoked-token entries
    revocation_max_entries: int = 10_000
    revoked_user_ids: List[str] = []  # Seeds the revoked-token registry at startup

    # Encryption key for stored connection passwords.
    # If not set, auto-generates a Fernet key.
    # WARNING: Auto-generated keys are ephemeral, stored passwords become unreadable on restart.
    secret_key: Optional[str] = None

    # Engine adapter deadlines (seconds)
    connect_timeout_s: int = 5
    introspection_timeout_s: int = 10
    clickhouse_timeout_s: int = 10
    sample_row_limit: int = 50

    # Lifecycle
    disconnect_delay_s: float = 1.0  # Keeps "Disconnecting" observable to pollers

    # API
    request_timeout_s: float = 60
    default_page_size: int = 10
    max_page_size: int = 100

    # Storage / logging
    data_directory: str = "./data"
    log_dir: str = "logs"
    log_file: str = "dbbroker.jsonl"
    log_level: str = "INFO"

    # CORS
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    class Config:
        env_file = ".env"
        env_prefix = "DBBROKER_"

    def get_secret_key(self) -> str:
        """Return the SECRET_KEY, auto-generating if not set.

        Uses Fernet.generate_key() for auto-generation so the key is always
        valid for Fernet encryption/decryption. Logs a warning when auto-generating
        since the key won't survive restarts.
        """
        if self.secret_key:
            return self.secret_key

        logger.warning(
            "SECRET_KEY not set, auto-generating ephemeral Fernet key. "
            "Stored connection passwords will be UNREADABLE after restart. "
            "Set DBBROKER_SECRET_KEY in production."
        )
        self.secret_key = _generate_fernet_key()
        return self.secret_key

    def get_jwt_secret(self) -> str:
        """Return the JWT verification secret; refuse to run without one when auth is on."""
        if not self.jwt_secret:
            raise RuntimeError(
                "DBBROKER_JWT_SECRET is not set. It must match the secret used by the "
                "authentication service that issues access tokens."
            )
        return self.jwt_secret


settings = Settings()
