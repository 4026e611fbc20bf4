"""Transport clients the session can drive."""

from .base import (
    AuthFailure,
    Disconnected,
    EventSink,
    QrReceived,
    Ready,
    StateChanged,
    TransportClient,
    TransportEvent,
    TransportFactory,
)
from .bridge import BridgeTransport

__all__ = [
    "AuthFailure",
    "BridgeTransport",
    "Disconnected",
    "EventSink",
    "QrReceived",
    "Ready",
    "StateChanged",
    "TransportClient",
    "TransportEvent",
    "TransportFactory",
]
