"""Abstract transport client and the lifecycle events it emits."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from ..credentials import CredentialStore


@dataclass(frozen=True, slots=True)
class QrReceived:
    """A new pairing code is available (raw string, not yet rendered)."""

    code: str


@dataclass(frozen=True, slots=True)
class Ready:
    """The transport is authenticated and can send."""


@dataclass(frozen=True, slots=True)
class Disconnected:
    reason: str


@dataclass(frozen=True, slots=True)
class AuthFailure:
    reason: str


@dataclass(frozen=True, slots=True)
class StateChanged:
    """Informational connection state from the transport (logged only)."""

    state: str


TransportEvent = QrReceived | Ready | Disconnected | AuthFailure | StateChanged
EventSink = Callable[[TransportEvent], None]


class TransportClient(ABC):
    """
    Base class for the connection primitive.

    Implementations push lifecycle events through the sink registered with
    on_event(). The sink never blocks, so it is safe to call from callbacks.
    """

    def __init__(self) -> None:
        self._sink: EventSink | None = None

    def on_event(self, sink: EventSink) -> None:
        """Register the single receiver of lifecycle events."""
        self._sink = sink

    def emit(self, event: TransportEvent) -> None:
        if self._sink is not None:
            self._sink(event)

    @abstractmethod
    async def connect(self) -> None:
        """Start the connection. Lifecycle events follow through the sink."""

    @abstractmethod
    async def send_text(self, chat_id: str, text: str) -> str | None:
        """
        Send a text message.

        Returns:
            The transport's message id, if it reports one

        Raises:
            TransportError: with a FailureCategory describing the failure
        """

    @abstractmethod
    async def destroy(self) -> None:
        """Tear the connection down and release resources."""


TransportFactory = Callable[[CredentialStore], TransportClient]
