"""Pydantic models for the WhatsApp HTTP endpoints."""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from messaging.models import SessionState

# =============================================================================
# Request Models
# =============================================================================


class SendMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Billing UI posts {"number", "message"}; both spellings are accepted.
    recipient: str = Field(validation_alias=AliasChoices("recipient", "number"))
    text: str = Field(validation_alias=AliasChoices("text", "message"))

    @field_validator("recipient")
    @classmethod
    def recipient_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("recipient must not be empty")
        return v

    @field_validator("text")
    @classmethod
    def text_not_empty(cls, v: str) -> str:
        # Whitespace is a valid message body; only "" is rejected.
        if not v:
            raise ValueError("text must not be empty")
        return v


# =============================================================================
# Response Models
# =============================================================================


class StatusResponse(BaseModel):
    ready: bool


class SessionSnapshot(BaseModel):
    state: SessionState
    ready: bool
    queued: int
    restart_attempts: int
    restart_exhausted: bool


class InitializeResponse(BaseModel):
    state: SessionState


class RestartResponse(BaseModel):
    scheduled: bool
    state: SessionState


class PairingArtifactResponse(BaseModel):
    qr: str | None = None
    unavailable: bool = False
    message: str | None = None

    @classmethod
    def from_artifact(cls, artifact: str | None) -> "PairingArtifactResponse":
        if artifact:
            return cls(qr=artifact)
        return cls(unavailable=True, message="QR not generated yet")
