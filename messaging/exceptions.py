"""Gateway error taxonomy."""

from enum import StrEnum


class FailureCategory(StrEnum):
    """Why a transport operation failed."""

    SESSION_CLOSED = "session_closed"
    CONNECTION_LOST = "connection_lost"
    AUTHENTICATION = "authentication"
    INVALID_RECIPIENT = "invalid_recipient"
    UNKNOWN = "unknown"

    @property
    def is_fatal(self) -> bool:
        """Fatal categories mean the underlying connection is gone."""
        return self in (FailureCategory.SESSION_CLOSED, FailureCategory.CONNECTION_LOST)


class GatewayError(Exception):
    """Base exception for all gateway errors."""

    def __init__(self, message: str, raw_error: str | None = None):
        super().__init__(message)
        self.message = message
        self.raw_error = raw_error


class InitializationError(GatewayError):
    """The transport failed to start."""


class AuthenticationError(GatewayError):
    """The transport rejected the stored credentials."""


class TransportError(GatewayError):
    """A transport operation failed."""

    def __init__(
        self,
        message: str,
        category: FailureCategory = FailureCategory.UNKNOWN,
        raw_error: str | None = None,
    ):
        super().__init__(message, raw_error=raw_error)
        self.category = category

    @property
    def is_fatal(self) -> bool:
        return self.category.is_fatal


class TransportFatalError(TransportError):
    """The connection is gone; the session has to be restarted."""

    def __init__(
        self,
        message: str,
        category: FailureCategory = FailureCategory.SESSION_CLOSED,
        raw_error: str | None = None,
    ):
        super().__init__(message, category=category, raw_error=raw_error)


class ValidationError(GatewayError):
    """Malformed send() arguments."""


class TeardownError(GatewayError):
    """Destroying a stale transport handle failed."""
