"""WhatsApp gateway endpoints."""

import json
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from loguru import logger

from messaging.error_mapping import get_user_facing_error_message
from messaging.exceptions import ValidationError
from messaging.models import SendResult
from messaging.session import WhatsAppSession

from .dependencies import get_session
from .models import (
    InitializeResponse,
    PairingArtifactResponse,
    RestartResponse,
    SendMessageRequest,
    SessionSnapshot,
    StatusResponse,
)

router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])


def format_sse(event_type: str, data: dict[str, Any]) -> str:
    """Format one server-sent event."""
    return f"event: {event_type}\ndata: {json.dumps(data)}\n\n"


@router.post("/initialize", response_model=InitializeResponse)
async def initialize(session: WhatsAppSession = Depends(get_session)):
    state = await session.initialize()
    return InitializeResponse(state=state)


@router.post("/send", response_model=SendResult)
async def send_message(
    body: SendMessageRequest, session: WhatsAppSession = Depends(get_session)
):
    try:
        return await session.send(body.recipient, body.text)
    except ValidationError as e:
        raise HTTPException(
            status_code=422, detail=get_user_facing_error_message(e)
        ) from e


@router.get("/status", response_model=StatusResponse)
async def get_status(session: WhatsAppSession = Depends(get_session)):
    return StatusResponse(**session.get_status())


@router.get("/state", response_model=SessionSnapshot)
async def get_state(session: WhatsAppSession = Depends(get_session)):
    return SessionSnapshot(**session.get_snapshot())


@router.get("/qr", response_model=PairingArtifactResponse, response_model_exclude_none=True)
async def get_qr(session: WhatsAppSession = Depends(get_session)):
    return PairingArtifactResponse.from_artifact(session.get_pairing_artifact())


@router.post("/restart", response_model=RestartResponse)
async def restart(session: WhatsAppSession = Depends(get_session)):
    scheduled = session.request_restart("restart requested over HTTP")
    return RestartResponse(scheduled=scheduled, state=session.state)


@router.post("/relink", response_model=InitializeResponse)
async def relink(session: WhatsAppSession = Depends(get_session)):
    logger.info("Relinking WhatsApp: stored credentials will be discarded")
    state = await session.relink()
    return InitializeResponse(state=state)


@router.get("/events")
async def stream_events(request: Request, session: WhatsAppSession = Depends(get_session)):
    """Stream status events. The first event is a snapshot of the current state."""
    subscription = session.subscribe()

    async def event_stream():
        async with subscription:
            yield format_sse("snapshot", session.get_snapshot())
            async for event in subscription:
                if await request.is_disconnected():
                    break
                yield format_sse(event.kind, event.model_dump())

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
