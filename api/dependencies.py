"""Dependency injection for FastAPI."""

from fastapi import HTTPException, Request

from config.settings import Settings
from config.settings import get_settings as _get_settings
from messaging.session import WhatsAppSession


def get_settings() -> Settings:
    """Get application settings via dependency injection."""
    return _get_settings()


def get_session(request: Request) -> WhatsAppSession:
    """Return the session owned by the running app."""
    session = getattr(request.app.state, "whatsapp", None)
    if session is None:
        raise HTTPException(status_code=503, detail="WhatsApp session not started")
    return session
