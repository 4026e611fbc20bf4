"""
Session state machine.

transition() is a pure function of (current state, input) that returns the
next state, the side effects the session has to perform and the status event
to publish. It returns None when the input is ignored in the current state,
which is how stale events from a torn-down transport are discarded.
"""

from dataclasses import dataclass
from enum import StrEnum

from .models import (
    AuthFailed,
    PairingRequested,
    SessionDisconnected,
    SessionReady,
    SessionState,
    StatusEvent,
)


class Effect(StrEnum):
    STORE_PAIRING_ARTIFACT = "store_pairing_artifact"
    CLEAR_PAIRING_ARTIFACT = "clear_pairing_artifact"
    DRAIN_QUEUE = "drain_queue"
    SCHEDULE_RESTART = "schedule_restart"
    TEARDOWN = "teardown"


# =============================================================================
# Inputs
# =============================================================================


@dataclass(frozen=True, slots=True)
class PairingCode:
    artifact: str


@dataclass(frozen=True, slots=True)
class TransportReady:
    pass


@dataclass(frozen=True, slots=True)
class TransportDisconnected:
    reason: str


@dataclass(frozen=True, slots=True)
class TransportAuthFailed:
    reason: str


@dataclass(frozen=True, slots=True)
class FatalError:
    """Unrecoverable init or send failure."""

    reason: str


MachineInput = (
    PairingCode | TransportReady | TransportDisconnected | TransportAuthFailed | FatalError
)


@dataclass(frozen=True, slots=True)
class Transition:
    state: SessionState
    effects: tuple[Effect, ...] = ()
    event: StatusEvent | None = None


_CONNECTING = frozenset({SessionState.INITIALIZING, SessionState.AWAITING_PAIRING})
_LIVE = _CONNECTING | {SessionState.READY}


def _to_disconnected(reason: str) -> Transition:
    return Transition(
        SessionState.DISCONNECTED,
        (Effect.CLEAR_PAIRING_ARTIFACT, Effect.SCHEDULE_RESTART),
        SessionDisconnected(reason=reason),
    )


def transition(state: SessionState, event: MachineInput) -> Transition | None:
    """Compute the transition for event in state, or None to ignore it."""
    if state not in _LIVE:
        # No live transport: anything arriving now belongs to a dead handle.
        return None

    if isinstance(event, PairingCode):
        if state not in _CONNECTING:
            return None
        return Transition(
            SessionState.AWAITING_PAIRING,
            (Effect.STORE_PAIRING_ARTIFACT,),
            PairingRequested(artifact=event.artifact),
        )
    if isinstance(event, TransportReady):
        if state is SessionState.READY:
            return None
        return Transition(
            SessionState.READY,
            (Effect.CLEAR_PAIRING_ARTIFACT, Effect.DRAIN_QUEUE),
            SessionReady(),
        )
    if isinstance(event, (TransportDisconnected, FatalError)):
        return _to_disconnected(event.reason)
    if isinstance(event, TransportAuthFailed):
        return Transition(
            SessionState.AUTH_FAILED,
            (Effect.CLEAR_PAIRING_ARTIFACT, Effect.TEARDOWN),
            AuthFailed(reason=event.reason),
        )
    return None
