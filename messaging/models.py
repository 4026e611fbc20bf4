"""Value types shared by the session, queue and HTTP layer."""

from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field


class SessionState(StrEnum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    AWAITING_PAIRING = "awaiting_pairing"
    READY = "ready"
    DISCONNECTED = "disconnected"
    RESTARTING = "restarting"
    AUTH_FAILED = "auth_failed"


# States in which a live transport handle is (or is being) established
ACTIVE_STATES = frozenset(
    {SessionState.INITIALIZING, SessionState.AWAITING_PAIRING, SessionState.READY}
)


@dataclass(frozen=True, slots=True)
class OutboundMessage:
    """A message waiting for the session to become ready."""

    recipient: str  # normalized chat id
    payload: str
    enqueued_at: int  # queue sequence number


class SendResult(BaseModel):
    """Outcome of a send() call."""

    status: Literal["sent", "queued", "failed"]
    recipient: str
    message_id: str | None = None
    detail: str | None = None


# =============================================================================
# Status events
# =============================================================================


class PairingRequested(BaseModel):
    kind: Literal["pairing_requested"] = "pairing_requested"
    artifact: str


class SessionReady(BaseModel):
    kind: Literal["ready"] = "ready"


class SessionDisconnected(BaseModel):
    kind: Literal["disconnected"] = "disconnected"
    reason: str


class AuthFailed(BaseModel):
    kind: Literal["auth_failed"] = "auth_failed"
    reason: str


class SessionInitializing(BaseModel):
    kind: Literal["initializing"] = "initializing"
    attempt: int = 0


class SessionRestarting(BaseModel):
    kind: Literal["restarting"] = "restarting"
    delay: float


StatusEvent = Annotated[
    PairingRequested
    | SessionReady
    | SessionDisconnected
    | AuthFailed
    | SessionInitializing
    | SessionRestarting,
    Field(discriminator="kind"),
]
