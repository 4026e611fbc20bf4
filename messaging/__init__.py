"""WhatsApp session management layer."""

from .address import normalize_recipient
from .credentials import CredentialStore
from .events import StatusBroadcaster, Subscription
from .exceptions import (
    AuthenticationError,
    FailureCategory,
    GatewayError,
    InitializationError,
    TeardownError,
    TransportError,
    TransportFatalError,
    ValidationError,
)
from .models import OutboundMessage, SendResult, SessionState, StatusEvent
from .outbound_queue import OutboundQueue
from .session import WhatsAppSession, managed_session
from .supervisor import RestartSupervisor

__all__ = [
    "AuthenticationError",
    "CredentialStore",
    "FailureCategory",
    "GatewayError",
    "InitializationError",
    "OutboundMessage",
    "OutboundQueue",
    "RestartSupervisor",
    "SendResult",
    "SessionState",
    "StatusBroadcaster",
    "StatusEvent",
    "Subscription",
    "TeardownError",
    "TransportError",
    "TransportFatalError",
    "ValidationError",
    "WhatsAppSession",
    "managed_session",
    "normalize_recipient",
]
