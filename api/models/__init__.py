from .whatsapp import (
    InitializeResponse,
    PairingArtifactResponse,
    RestartResponse,
    SendMessageRequest,
    SessionSnapshot,
    StatusResponse,
)

__all__ = [
    "InitializeResponse",
    "PairingArtifactResponse",
    "RestartResponse",
    "SendMessageRequest",
    "SessionSnapshot",
    "StatusResponse",
]
