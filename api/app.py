"""FastAPI application factory."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from config.logging_config import configure_logging
from config.settings import Settings, get_settings
from messaging.session import WhatsAppSession, managed_session
from messaging.transport.base import TransportFactory

from .routes import router


def create_app(
    settings: Settings | None = None,
    transport_factory: TransportFactory | None = None,
    *,
    setup_logging: bool = True,
) -> FastAPI:
    """
    Build the app. The WhatsApp session lives exactly as long as the app's
    lifespan, so SIGINT/SIGTERM under uvicorn always close the transport.
    """
    settings = settings or get_settings()
    if setup_logging:
        configure_logging(settings.log_level, settings.log_file)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        session = WhatsAppSession.from_settings(settings, transport_factory)
        app.state.whatsapp = session
        async with managed_session(session, initialize=settings.auto_initialize):
            logger.info("WhatsApp gateway started")
            yield
        app.state.whatsapp = None
        logger.info("WhatsApp gateway stopped")

    app = FastAPI(title="WhatsApp Gateway", lifespan=lifespan)
    app.include_router(router)

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app
