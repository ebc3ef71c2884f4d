"""
Error code system.

BrokerError is the base exception for all structured errors. Every subclass
is tied to a code in registry.yaml; the exception handler looks the code up
to pick the HTTP status, log severity and remediation hints.

Usage:
    from dbbroker.core.errors import NotFoundError
    raise NotFoundError()
"""

from __future__ import annotations

import re

CODE_PATTERN = re.compile(r"^DBB-[A-Z]{2,6}-\d{3}$")


class BrokerError(Exception):
    """Structured application error tied to the error registry.

    Args:
        message: Human-readable message returned to the caller. Defaults to
            the class ``default_message``.
        detail: Internal-only detail (logged; rendered only for 500s).
        context: Arbitrary key-value context for structured logging.
        fields: Extra top-level keys merged into the JSON failure body.
        code: Override the class error code.
    """

    code: str = "DBB-SYS-001"
    default_message: str = "An unexpected error occurred."

    def __init__(
        self,
        message: str | None = None,
        detail: str | None = None,
        context: dict | None = None,
        fields: dict | None = None,
        code: str | None = None,
    ) -> None:
        code = code or type(self).code
        if not CODE_PATTERN.match(code):
            raise ValueError(f"Invalid error code format: {code!r}")
        self.code = code
        self.message = message or self.default_message
        self.detail = detail
        self.context = context or {}
        self.fields = fields or {}
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Validation (400)
# ---------------------------------------------------------------------------

class ValidationError(BrokerError):
    code = "DBB-VAL-001"
    default_message = "Invalid connection descriptor"


class DescriptorValidationError(ValidationError):
    code = "DBB-VAL-001"


class DatabaseNameMismatchError(ValidationError):
    code = "DBB-VAL-002"

    def __init__(self, actual: str, provided: str, **kwargs) -> None:
        self.actual = actual
        self.provided = provided
        super().__init__(
            f"Database name mismatch. Connection string contains database '{actual}' "
            f"but you entered '{provided}'. Please use the correct database name.",
            **kwargs,
        )


class CloudHostError(ValidationError):
    code = "DBB-VAL-003"

    def __init__(self, host: str, **kwargs) -> None:
        self.host = host
        super().__init__(
            "Cloud databases should be added as external connections. "
            f"Detected cloud host: {host}",
            **kwargs,
        )


class DuplicateNameError(ValidationError):
    code = "DBB-VAL-004"
    default_message = "Database connection with this name already exists"


class InvalidTableNameError(ValidationError):
    code = "DBB-VAL-005"
    default_message = "Invalid table name"


class NotConnectedError(ValidationError):
    code = "DBB-VAL-006"
    default_message = "Database is not connected. Please connect first to view schema."


# ---------------------------------------------------------------------------
# Conflicts (400)
# ---------------------------------------------------------------------------

class ConflictError(BrokerError):
    code = "DBB-CONF-001"
    default_message = "This database connection already exists"


class SameDatabaseConflictError(ConflictError):
    code = "DBB-CONF-001"
    default_message = (
        "This database connection already exists "
        "(same database detected across different connection types)"
    )


class DuplicateConnectionError(ConflictError):
    code = "DBB-CONF-002"
    default_message = "A connection to this database already exists"


# ---------------------------------------------------------------------------
# Engine adapter failures (400)
# ---------------------------------------------------------------------------

class EngineError(BrokerError):
    """A failure reported by an engine adapter.

    When ``engine`` is given, the caller-facing message becomes
    ``"<engine> connection failed: <reason>"``; ``reason`` keeps the bare text.
    """

    code = "DBB-ENG-001"
    default_message = "Connection failed"

    def __init__(self, reason: str | None = None, engine: str | None = None, **kwargs) -> None:
        self.reason = reason or self.default_message
        self.engine = engine
        message = f"{engine} connection failed: {self.reason}" if engine else self.reason
        super().__init__(message, **kwargs)


class RefusedConnectionError(EngineError):
    code = "DBB-ENG-002"
    default_message = (
        "Connection refused. Check if host and port are correct and server is running."
    )


class HostNotFoundError(EngineError):
    code = "DBB-ENG-003"
    default_message = "Host not found. Check the hostname or IP address."


class TimedOutError(EngineError):
    code = "DBB-ENG-004"
    default_message = "Connection timed out. Check network connectivity."


class AuthFailedError(EngineError):
    code = "DBB-ENG-005"
    default_message = "Authentication failed: Invalid username or password."


class DatabaseMissingError(EngineError):
    code = "DBB-ENG-006"
    default_message = "Database does not exist."


class UnsupportedEngineError(EngineError):
    code = "DBB-ENG-007"
    default_message = "Unsupported database type"


class FeatureDisabledError(EngineError):
    code = "DBB-ENG-008"
    default_message = "MongoDB connections are temporarily disabled."


# ---------------------------------------------------------------------------
# Not found (404)
# ---------------------------------------------------------------------------

class NotFoundError(BrokerError):
    code = "DBB-API-404"
    default_message = "Database connection not found"


# ---------------------------------------------------------------------------
# Caller authorization (401 / 403)
# ---------------------------------------------------------------------------

class AuthorizationError(BrokerError):
    code = "DBB-AUTH-001"
    default_message = "Authentication required"


class AuthenticationRequiredError(AuthorizationError):
    code = "DBB-AUTH-001"


class InvalidTokenError(AuthorizationError):
    code = "DBB-AUTH-002"
    default_message = "Invalid token."


class TokenExpiredError(AuthorizationError):
    code = "DBB-AUTH-003"
    default_message = "Token expired."


class TokenRevokedError(AuthorizationError):
    code = "DBB-AUTH-004"
    default_message = "Token revoked. User account no longer exists."


class InactiveAccountError(AuthorizationError):
    code = "DBB-AUTH-005"
    default_message = "Your account is not active. Please contact your administrator."


# ---------------------------------------------------------------------------
# Internal (500)
# ---------------------------------------------------------------------------

class InternalError(BrokerError):
    code = "DBB-SYS-001"
    default_message = "Internal server error"
