"""Failure classification for transport errors."""

import httpx

from .exceptions import (
    AuthenticationError,
    FailureCategory,
    InitializationError,
    TransportError,
    ValidationError,
)

# whatsapp-web.js surfaces a dead puppeteer page as "Session closed" /
# "Target closed". Matching on text is fragile; it is only the fallback when
# the transport did not attach a category.
_FATAL_MARKERS = ("session closed", "target closed", "connection closed")


def classify_error(e: Exception) -> FailureCategory:
    """Return the failure category for an exception raised by a transport."""
    if isinstance(e, TransportError):
        return e.category
    if isinstance(e, AuthenticationError):
        return FailureCategory.AUTHENTICATION
    if isinstance(e, (httpx.ConnectError, httpx.RemoteProtocolError)):
        return FailureCategory.CONNECTION_LOST
    return classify_message(str(e))


def classify_message(message: str) -> FailureCategory:
    """Classify a raw error string."""
    lowered = message.lower()
    if any(marker in lowered for marker in _FATAL_MARKERS):
        return FailureCategory.SESSION_CLOSED
    return FailureCategory.UNKNOWN


def get_user_facing_error_message(e: Exception) -> str:
    """Return a readable, non-empty error message for callers."""
    message = str(e).strip()
    if message:
        return message

    if isinstance(e, httpx.TimeoutException):
        return "WhatsApp bridge request timed out."
    if isinstance(e, httpx.ConnectError):
        return "Could not connect to WhatsApp bridge."
    if isinstance(e, ValidationError):
        return "Invalid message."
    if isinstance(e, AuthenticationError):
        return "WhatsApp authentication failed. Scan a new QR code."
    if isinstance(e, InitializationError):
        return "WhatsApp failed to start."
    if isinstance(e, TransportError):
        if e.is_fatal:
            return "WhatsApp session closed. Restarting."
        return "WhatsApp send failed."

    return "WhatsApp request failed unexpectedly."
