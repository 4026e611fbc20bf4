import pytest
from pydantic import ValidationError

from api.models.whatsapp import (
    PairingArtifactResponse,
    SendMessageRequest,
    SessionSnapshot,
)
from messaging.models import SessionState


def test_send_request_accepts_billing_ui_field_names():
    request = SendMessageRequest.model_validate({"number": "1555", "message": "hi"})
    assert request.recipient == "1555"
    assert request.text == "hi"


def test_send_request_accepts_canonical_field_names():
    request = SendMessageRequest.model_validate({"recipient": "1555@c.us", "text": "hi"})
    assert request.recipient == "1555@c.us"


@pytest.mark.parametrize(
    "payload",
    [
        {"number": "1555", "message": ""},
        {"number": "   ", "message": "hi"},
        {"number": "", "message": "hi"},
        {"message": "hi"},
    ],
)
def test_send_request_rejects_blank_fields(payload):
    with pytest.raises(ValidationError):
        SendMessageRequest.model_validate(payload)


def test_send_request_keeps_whitespace_text():
    request = SendMessageRequest.model_validate({"number": "1555", "message": "  "})
    assert request.text == "  "


def test_pairing_response_from_artifact():
    assert PairingArtifactResponse.from_artifact("data:image/png;base64,AA").qr == (
        "data:image/png;base64,AA"
    )
    missing = PairingArtifactResponse.from_artifact(None)
    assert missing.unavailable is True
    assert missing.message == "QR not generated yet"


def test_snapshot_coerces_state():
    snapshot = SessionSnapshot(
        state="awaiting_pairing",
        ready=False,
        queued=2,
        restart_attempts=0,
        restart_exhausted=False,
    )
    assert snapshot.state is SessionState.AWAITING_PAIRING
