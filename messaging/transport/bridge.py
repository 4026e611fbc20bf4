"""HTTP client for a whatsapp-web.js bridge process.

The bridge hosts the browser automation and exposes a small JSON API:

    POST   /sessions/{client_id}/start      {"dataPath": "..."}
    GET    /sessions/{client_id}/events     long-poll, returns a list of events
    POST   /sessions/{client_id}/messages   {"chatId": "...", "text": "..."}
    DELETE /sessions/{client_id}

Events are ``{"type": "qr", "qr": "..."}``, ``{"type": "ready"}``,
``{"type": "disconnected", "reason": "..."}``,
``{"type": "auth_failure", "message": "..."}`` and
``{"type": "change_state", "state": "..."}``.
"""

import asyncio
from typing import Any

import httpx
from loguru import logger

from config.settings import Settings

from ..credentials import CredentialStore
from ..error_mapping import classify_message
from ..exceptions import (
    AuthenticationError,
    FailureCategory,
    InitializationError,
    TransportError,
    TransportFatalError,
)
from .base import (
    AuthFailure,
    Disconnected,
    QrReceived,
    Ready,
    StateChanged,
    TransportClient,
    TransportEvent,
)

# Pause before polling again after a transient poll error
_POLL_RETRY_DELAY = 1.0
# Consecutive poll failures before the bridge is considered gone
_MAX_POLL_FAILURES = 3


def parse_bridge_event(data: dict[str, Any]) -> TransportEvent | None:
    """Map one bridge JSON event to a transport event (None if unknown)."""
    etype = data.get("type")
    if etype == "qr":
        code = data.get("qr") or ""
        return QrReceived(code=code) if code else None
    if etype == "ready":
        return Ready()
    if etype == "disconnected":
        return Disconnected(reason=str(data.get("reason") or "unknown"))
    if etype == "auth_failure":
        return AuthFailure(reason=str(data.get("message") or "authentication failed"))
    if etype == "change_state":
        return StateChanged(state=str(data.get("state") or ""))
    return None


def _error_from_response(response: httpx.Response) -> TransportError:
    """Build a TransportError from a bridge error response."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = str(body.get("error") or response.text or f"HTTP {response.status_code}")
    raw_category = body.get("category")
    try:
        category = FailureCategory(raw_category) if raw_category else None
    except ValueError:
        category = None
    if category is None:
        if response.status_code == 401:
            category = FailureCategory.AUTHENTICATION
        elif response.status_code in (409, 410):
            category = FailureCategory.SESSION_CLOSED
        else:
            category = classify_message(message)
    error_cls = TransportFatalError if category.is_fatal else TransportError
    return error_cls(message, category=category, raw_error=response.text)


class BridgeTransport(TransportClient):
    """Transport client backed by the bridge's HTTP API."""

    def __init__(
        self,
        base_url: str,
        credentials: CredentialStore,
        *,
        poll_timeout: float = 25.0,
        timeout: httpx.Timeout | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__()
        self._credentials = credentials
        self._client_id = credentials.client_id
        self._poll_timeout = poll_timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout or httpx.Timeout(poll_timeout + 10.0, connect=5.0),
        )
        self._poll_task: asyncio.Task | None = None
        self._closed = False

    @classmethod
    def from_settings(
        cls, settings: Settings, credentials: CredentialStore
    ) -> "BridgeTransport":
        timeout = httpx.Timeout(
            max(settings.http_read_timeout, settings.bridge_poll_timeout + 10.0),
            connect=settings.http_connect_timeout,
            write=settings.http_write_timeout,
        )
        return cls(
            settings.whatsapp_bridge_url,
            credentials,
            poll_timeout=settings.bridge_poll_timeout,
            timeout=timeout,
        )

    @property
    def _session_path(self) -> str:
        return f"/sessions/{self._client_id}"

    async def connect(self) -> None:
        try:
            response = await self._client.post(
                f"{self._session_path}/start",
                json={"dataPath": str(self._credentials.session_dir)},
            )
        except httpx.HTTPError as e:
            raise InitializationError(
                f"Could not reach WhatsApp bridge: {e}", raw_error=repr(e)
            ) from e
        if response.status_code == 401:
            raise AuthenticationError(_error_from_response(response).message)
        if response.is_error:
            error = _error_from_response(response)
            raise InitializationError(error.message, raw_error=error.raw_error)

        logger.info("WhatsApp bridge session {} started", self._client_id)
        self._poll_task = asyncio.create_task(self._poll_events())

    async def _poll_events(self) -> None:
        failures = 0
        while not self._closed:
            try:
                response = await self._client.get(
                    f"{self._session_path}/events",
                    params={"timeout": self._poll_timeout},
                )
                response.raise_for_status()
                events = response.json()
            except asyncio.CancelledError:
                raise
            except (httpx.HTTPError, ValueError) as e:
                failures += 1
                logger.warning(
                    "Bridge event poll failed ({}/{}): {}", failures, _MAX_POLL_FAILURES, e
                )
                if failures >= _MAX_POLL_FAILURES:
                    self.emit(Disconnected(reason=f"bridge unreachable: {e}"))
                    return
                await asyncio.sleep(_POLL_RETRY_DELAY)
                continue

            failures = 0
            for data in events if isinstance(events, list) else []:
                event = parse_bridge_event(data) if isinstance(data, dict) else None
                if event is None:
                    logger.debug("Ignoring bridge event {!r}", data)
                    continue
                if isinstance(event, Ready):
                    self._remember_link()
                self.emit(event)
                if isinstance(event, (Disconnected, AuthFailure)):
                    # The bridge session is over; the owner decides what comes next.
                    return

    def _remember_link(self) -> None:
        try:
            self._credentials.save({"client_id": self._client_id, "linked": True})
        except OSError as e:
            logger.warning(f"Could not persist credential record: {e}")

    async def send_text(self, chat_id: str, text: str) -> str | None:
        try:
            response = await self._client.post(
                f"{self._session_path}/messages",
                json={"chatId": chat_id, "text": text},
            )
        except httpx.TimeoutException as e:
            # Delivery outcome unknown; the connection itself may still be fine.
            raise TransportError(
                "WhatsApp bridge request timed out.",
                category=FailureCategory.UNKNOWN,
                raw_error=repr(e),
            ) from e
        except httpx.HTTPError as e:
            raise TransportFatalError(
                f"WhatsApp bridge unreachable: {e}",
                category=FailureCategory.CONNECTION_LOST,
                raw_error=repr(e),
            ) from e

        if response.is_error:
            raise _error_from_response(response)
        try:
            body = response.json()
        except ValueError:
            return None
        message_id = body.get("id") if isinstance(body, dict) else None
        return str(message_id) if message_id is not None else None

    async def destroy(self) -> None:
        self._closed = True
        task, self._poll_task = self._poll_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        try:
            response = await self._client.delete(self._session_path)
            if response.is_error and response.status_code != 404:
                raise _error_from_response(response)
        finally:
            if self._owns_client:
                await self._client.aclose()
