"""
WhatsApp Session

Owns the single logical WhatsApp connection for the process: the transport
handle, the state machine, the outbound queue and the status surface.

Transport events are pushed onto one asyncio.Queue and consumed by a single
task. Every state change happens under one lock, so transitions are totally
ordered and only one transport handle is ever live.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from loguru import logger

from config.settings import Settings

from .address import DEFAULT_CHAT_DOMAIN, normalize_recipient
from .credentials import CredentialStore
from .error_mapping import classify_error, get_user_facing_error_message
from .events import StatusBroadcaster, StatusHandler, Subscription
from .exceptions import (
    AuthenticationError,
    GatewayError,
    InitializationError,
    TeardownError,
    ValidationError,
)
from .models import (
    ACTIVE_STATES,
    OutboundMessage,
    SendResult,
    SessionInitializing,
    SessionRestarting,
    SessionState,
    StatusEvent,
)
from .outbound_queue import OutboundQueue, QueueFullError
from .pairing import render_pairing_artifact
from .state_machine import (
    Effect,
    FatalError,
    MachineInput,
    PairingCode,
    TransportAuthFailed,
    TransportDisconnected,
    TransportReady,
    transition,
)
from .supervisor import RestartSupervisor
from .transport.base import (
    AuthFailure,
    Disconnected,
    QrReceived,
    Ready,
    StateChanged,
    TransportClient,
    TransportEvent,
    TransportFactory,
)


class WhatsAppSession:
    """
    Single-session WhatsApp manager.

    Construct one per process and hand it to whoever needs it. Tests build
    fresh instances with a fake transport factory.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        credentials: CredentialStore,
        *,
        chat_domain: str = DEFAULT_CHAT_DOMAIN,
        broadcaster: StatusBroadcaster | None = None,
        queue_max_size: int | None = None,
        restart_cooldown: float = 3.0,
        restart_backoff_factor: float = 1.0,
        restart_max_cooldown: float = 60.0,
        restart_max_attempts: int | None = None,
    ):
        self._transport_factory = transport_factory
        self._credentials = credentials
        self._chat_domain = chat_domain
        self._broadcaster = broadcaster or StatusBroadcaster()
        self._queue = OutboundQueue(max_size=queue_max_size)

        self._state = SessionState.UNINITIALIZED
        self._handle: TransportClient | None = None
        self._generation = 0
        self._pairing_artifact: str | None = None
        self._draining = False

        self._lock = asyncio.Lock()
        self._events: asyncio.Queue[tuple[int, TransportEvent]] = asyncio.Queue()
        self._consumer: asyncio.Task | None = None

        self.supervisor = RestartSupervisor(
            self._restart_teardown,
            self._restart_start,
            cooldown=restart_cooldown,
            backoff_factor=restart_backoff_factor,
            max_cooldown=restart_max_cooldown,
            max_attempts=restart_max_attempts,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport_factory: TransportFactory | None = None,
    ) -> "WhatsAppSession":
        """Build a session wired to the HTTP bridge described by settings."""
        credentials = CredentialStore(
            settings.whatsapp_auth_dir, settings.whatsapp_client_id
        )
        if transport_factory is None:
            from .transport.bridge import BridgeTransport

            def transport_factory(store: CredentialStore) -> TransportClient:
                return BridgeTransport.from_settings(settings, store)

        return cls(
            transport_factory,
            credentials,
            chat_domain=settings.whatsapp_chat_domain,
            broadcaster=StatusBroadcaster(settings.status_subscriber_buffer),
            queue_max_size=settings.outbound_queue_max_size,
            restart_cooldown=settings.restart_cooldown,
            restart_backoff_factor=settings.restart_backoff_factor,
            restart_max_cooldown=settings.restart_max_cooldown,
            restart_max_attempts=settings.restart_max_attempts,
        )

    # =========================================================================
    # Status surface (never awaits)
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is SessionState.READY

    def get_status(self) -> dict[str, bool]:
        return {"ready": self.ready}

    def get_pairing_artifact(self) -> str | None:
        """Latest QR data URL, or None if none is pending."""
        return self._pairing_artifact

    def get_snapshot(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "ready": self.ready,
            "queued": len(self._queue),
            "restart_attempts": self.supervisor.attempts,
            "restart_exhausted": self.supervisor.exhausted,
        }

    def queued_messages(self) -> list[OutboundMessage]:
        return self._queue.snapshot()

    def subscribe(self, buffer_size: int | None = None) -> Subscription:
        return self._broadcaster.subscribe(buffer_size)

    def on_status_event(self, handler: StatusHandler) -> Subscription:
        """Push every future status event to handler until the subscription is closed."""
        return self._broadcaster.on_event(handler)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self) -> SessionState:
        """
        Start the session if it is not already starting or running.

        Idempotent: while initializing, awaiting pairing or ready this returns
        the current state without touching the transport. Start failures are
        handed to the restart supervisor instead of being raised.
        """
        logger.info("Starting WhatsApp service...")
        async with self._lock:
            if self._state in ACTIVE_STATES:
                logger.info("WhatsApp already initialized ({})", self._state)
                return self._state
            if self._state is SessionState.RESTARTING or self.supervisor.running:
                logger.info("WhatsApp restart in progress, not initializing again")
                return self._state
            # Manual (re)initialization gets a fresh restart budget.
            self.supervisor.reset()
            await self._start_locked()
            return self._state

    def request_restart(self, reason: str = "manual restart") -> bool:
        """Schedule a supervised restart unless one is already in flight."""
        if self._state in (SessionState.INITIALIZING, SessionState.AWAITING_PAIRING):
            logger.info("WhatsApp initialization in flight, ignoring restart request")
            return False
        return self.supervisor.request(reason)

    async def relink(self) -> SessionState:
        """Drop stored credentials and start over with a fresh pairing."""
        await self.supervisor.stop()
        async with self._lock:
            await self._teardown_locked()
            self._credentials.clear()
            self._pairing_artifact = None
            self._set_state(SessionState.UNINITIALIZED)
        return await self.initialize()

    async def shutdown(self) -> None:
        """Close the transport, stop background tasks and detach subscribers."""
        logger.info("Shutting down WhatsApp...")
        await self.supervisor.stop()
        async with self._lock:
            await self._teardown_locked()
            self._pairing_artifact = None
            self._set_state(SessionState.UNINITIALIZED)

        consumer, self._consumer = self._consumer, None
        if consumer and not consumer.done():
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass
        self._broadcaster.close()

    # =========================================================================
    # Sending
    # =========================================================================

    async def send(self, recipient: str, text: str) -> SendResult:
        """
        Send a text message, or queue it until the session is ready.

        Raises:
            ValidationError: if recipient or text is empty
        """
        chat_id = self._validate(recipient, text)

        # Read state and handle together; no await until the handle is used.
        state, handle, generation = self._state, self._handle, self._generation
        if state is not SessionState.READY or handle is None or self._draining:
            try:
                self._queue.enqueue(chat_id, text)
            except QueueFullError as e:
                logger.warning("Dropping message for {}: {}", chat_id, e)
                return SendResult(status="failed", recipient=chat_id, detail=str(e))
            logger.info("WhatsApp not ready ({}) -> queued message: {}", state, chat_id)
            return SendResult(status="queued", recipient=chat_id)

        with logger.contextualize(chat_id=chat_id, generation=generation):
            try:
                message_id = await handle.send_text(chat_id, text)
            except Exception as e:
                category = classify_error(e)
                detail = get_user_facing_error_message(e)
                logger.error(f"WhatsApp send error ({category}): {detail}")
                if category.is_fatal:
                    logger.warning("Detected session crash -> restarting WhatsApp")
                    await self._on_send_fatal(generation, detail)
                return SendResult(status="failed", recipient=chat_id, detail=detail)

            logger.info("Message SENT to {}", chat_id)
            return SendResult(status="sent", recipient=chat_id, message_id=message_id)

    def _validate(self, recipient: str, text: str) -> str:
        if not isinstance(recipient, str) or not recipient.strip():
            raise ValidationError("recipient must be a non-empty string")
        if not isinstance(text, str) or not text:
            raise ValidationError("message text must not be empty")
        chat_id = normalize_recipient(recipient, self._chat_domain)
        if chat_id.startswith("@"):
            raise ValidationError(f"recipient {recipient!r} has no address part")
        return chat_id

    async def _on_send_fatal(self, generation: int, reason: str) -> None:
        async with self._lock:
            if generation != self._generation or self._handle is None:
                logger.debug("Send failure from stale generation {}, ignoring", generation)
                return
            await self._apply_locked(FatalError(reason=reason))

    # =========================================================================
    # Transport events
    # =========================================================================

    def _sink_for(self, generation: int):
        def sink(event: TransportEvent) -> None:
            self._events.put_nowait((generation, event))

        return sink

    def _ensure_consumer(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume())

    async def _consume(self) -> None:
        while True:
            generation, event = await self._events.get()
            try:
                await self._handle_transport_event(generation, event)
            except Exception as e:
                logger.error(f"Error handling transport event {event!r}: {e}")
            finally:
                self._events.task_done()

    async def _handle_transport_event(self, generation: int, event: TransportEvent) -> None:
        machine_input: MachineInput
        if isinstance(event, StateChanged):
            logger.info("WhatsApp state: {}", event.state)
            return
        elif isinstance(event, QrReceived):
            machine_input = PairingCode(artifact=render_pairing_artifact(event.code))
            logger.info("WhatsApp QR generated")
        elif isinstance(event, Ready):
            machine_input = TransportReady()
        elif isinstance(event, Disconnected):
            logger.warning("WhatsApp disconnected: {}", event.reason)
            machine_input = TransportDisconnected(reason=event.reason)
        elif isinstance(event, AuthFailure):
            logger.error("WhatsApp auth error: {}", event.reason)
            machine_input = TransportAuthFailed(reason=event.reason)
        else:
            logger.warning("Unknown transport event {!r}", event)
            return

        async with self._lock:
            if generation != self._generation:
                logger.debug(
                    "Dropping {} from stale generation {} (current {})",
                    type(event).__name__,
                    generation,
                    self._generation,
                )
                return
            await self._apply_locked(machine_input)

    async def wait_idle(self) -> None:
        """Wait until every transport event received so far has been handled."""
        await self._events.join()

    # =========================================================================
    # Internals (caller holds self._lock)
    # =========================================================================

    def _set_state(self, state: SessionState) -> None:
        if state is not self._state:
            logger.info("WhatsApp state {} -> {}", self._state, state)
        self._state = state

    def _publish(self, event: StatusEvent) -> None:
        self._broadcaster.publish(event)

    async def _apply_locked(self, machine_input: MachineInput) -> None:
        result = transition(self._state, machine_input)
        if result is None:
            logger.debug(
                "Ignoring {} in state {}", type(machine_input).__name__, self._state
            )
            return

        self._set_state(result.state)
        for effect in result.effects:
            if effect is Effect.STORE_PAIRING_ARTIFACT:
                self._pairing_artifact = machine_input.artifact
            elif effect is Effect.CLEAR_PAIRING_ARTIFACT:
                self._pairing_artifact = None
            elif effect is Effect.TEARDOWN:
                await self._teardown_locked()
        if result.event is not None:
            self._publish(result.event)

        if Effect.DRAIN_QUEUE in result.effects:
            logger.info("WhatsApp is READY")
            self.supervisor.reset()
            fatal_reason = await self._drain_locked()
            if fatal_reason is not None:
                await self._apply_locked(FatalError(reason=fatal_reason))
        if Effect.SCHEDULE_RESTART in result.effects:
            reason = getattr(machine_input, "reason", "disconnected")
            self.supervisor.request(reason)

    async def _drain_locked(self) -> str | None:
        """Flush the outbound queue. Returns the reason of the first fatal failure, if any."""
        handle = self._handle
        fatal_reason: str | None = None

        async def dispatch(message: OutboundMessage) -> None:
            nonlocal fatal_reason
            try:
                await handle.send_text(message.recipient, message.payload)
            except Exception as e:
                if fatal_reason is None and classify_error(e).is_fatal:
                    fatal_reason = get_user_facing_error_message(e)
                raise
            logger.info("Message SENT to {} (from queue)", message.recipient)

        self._draining = True
        try:
            # send() queues while draining, so loop until nothing is left.
            while len(self._queue) and fatal_reason is None and handle is not None:
                await self._queue.drain(dispatch)
        finally:
            self._draining = False
        return fatal_reason

    async def _start_locked(self) -> bool:
        """Create and connect a new transport handle. Returns False on failure."""
        self._generation += 1
        generation = self._generation
        stored = self._credentials.load()
        logger.info(
            "Starting WhatsApp client (generation={}, stored credentials={})",
            generation,
            stored is not None,
        )
        self._pairing_artifact = None
        self._set_state(SessionState.INITIALIZING)
        self._publish(SessionInitializing(attempt=self.supervisor.attempts))
        self._ensure_consumer()

        try:
            handle = self._transport_factory(self._credentials)
            handle.on_event(self._sink_for(generation))
            self._handle = handle
            await handle.connect()
        except AuthenticationError as e:
            await self._apply_locked(TransportAuthFailed(reason=str(e)))
            return True
        except Exception as e:
            error = e if isinstance(e, GatewayError) else InitializationError(
                get_user_facing_error_message(e), raw_error=repr(e)
            )
            logger.error(f"WhatsApp init error: {error.message}")
            await self._teardown_locked()
            await self._apply_locked(FatalError(reason=error.message))
            return False
        return True

    async def _teardown_locked(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        # The reference is already gone, so a cancelled caller must still
        # see the destroy through or nobody will.
        destroy = asyncio.ensure_future(self._destroy_handle(handle))
        try:
            await asyncio.shield(destroy)
        except asyncio.CancelledError:
            await destroy
            raise

    @staticmethod
    async def _destroy_handle(handle: TransportClient) -> None:
        try:
            await handle.destroy()
        except Exception as e:
            error = TeardownError(f"Failed to destroy WhatsApp client: {e}", raw_error=repr(e))
            logger.warning(f"{error.message} (ignored)")

    # Restart supervisor callbacks

    async def _restart_teardown(self, delay: float) -> None:
        async with self._lock:
            logger.info("Restarting WhatsApp client...")
            await self._teardown_locked()
            self._pairing_artifact = None
            self._set_state(SessionState.RESTARTING)
            self._publish(SessionRestarting(delay=delay))

    async def _restart_start(self) -> bool:
        async with self._lock:
            if self._state is not SessionState.RESTARTING:
                # Someone else moved the session on (shutdown, relink, initialize).
                return True
            return await self._start_locked()


@asynccontextmanager
async def managed_session(
    session: WhatsAppSession, *, initialize: bool = True
) -> AsyncIterator[WhatsAppSession]:
    """Run a session for the duration of the block and always shut it down."""
    try:
        if initialize:
            await session.initialize()
        yield session
    finally:
        try:
            await session.shutdown()
        except Exception as e:
            logger.error(f"WhatsApp shutdown failed: {e}")
