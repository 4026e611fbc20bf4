import asyncio

import pytest

from messaging.exceptions import (
    AuthenticationError,
    FailureCategory,
    TransportError,
    ValidationError,
)
from messaging.models import SessionState
from messaging.transport.base import (
    AuthFailure,
    Disconnected,
    QrReceived,
    Ready,
    StateChanged,
)


async def _ready_session(make_session, factory, **kwargs):
    session = make_session(**kwargs)
    await session.initialize()
    factory.current.emit(Ready())
    await session.wait_idle()
    assert session.ready
    return session


# =============================================================================
# Initialization
# =============================================================================


@pytest.mark.asyncio
async def test_initialize_starts_single_transport(make_session, factory):
    session = make_session()
    assert session.state is SessionState.UNINITIALIZED

    state = await session.initialize()

    assert state is SessionState.INITIALIZING
    assert len(factory.created) == 1
    assert factory.current.connected


@pytest.mark.asyncio
async def test_initialize_is_idempotent(make_session, factory):
    session = make_session()
    await session.initialize()
    await asyncio.gather(*(session.initialize() for _ in range(5)))
    assert len(factory.created) == 1

    factory.current.emit(Ready())
    await session.wait_idle()
    assert await session.initialize() is SessionState.READY
    assert len(factory.created) == 1
    assert len(factory.live) == 1


@pytest.mark.asyncio
async def test_concurrent_first_initialize_creates_one_handle(make_session, factory):
    session = make_session()
    await asyncio.gather(*(session.initialize() for _ in range(10)))
    assert len(factory.created) == 1


@pytest.mark.asyncio
async def test_state_change_events_are_informational(make_session, factory):
    session = make_session()
    await session.initialize()
    factory.current.emit(StateChanged(state="OPENING"))
    await session.wait_idle()
    assert session.state is SessionState.INITIALIZING


# =============================================================================
# Pairing
# =============================================================================


@pytest.mark.asyncio
async def test_pairing_artifact_published_and_retrievable(
    make_session, factory, event_kinds
):
    session = make_session()
    sub = session.subscribe()
    assert session.get_pairing_artifact() is None

    await session.initialize()
    factory.current.emit(QrReceived(code="2@abc,def,ghi"))
    await session.wait_idle()

    artifact = session.get_pairing_artifact()
    assert session.state is SessionState.AWAITING_PAIRING
    assert artifact.startswith("data:image/png;base64,")
    assert event_kinds(sub) == ["initializing", "pairing_requested"]


@pytest.mark.asyncio
async def test_rotated_pairing_code_replaces_artifact(make_session, factory):
    session = make_session()
    await session.initialize()
    factory.current.emit(QrReceived(code="first-code"))
    await session.wait_idle()
    first = session.get_pairing_artifact()

    factory.current.emit(QrReceived(code="second-code"))
    await session.wait_idle()

    assert session.get_pairing_artifact() != first
    assert session.state is SessionState.AWAITING_PAIRING


@pytest.mark.asyncio
async def test_pairing_artifact_superseded_by_ready(make_session, factory):
    session = make_session()
    await session.initialize()
    factory.current.emit(QrReceived(code="code"))
    await session.wait_idle()
    assert session.get_pairing_artifact() is not None

    factory.current.emit(Ready())
    await session.wait_idle()

    assert session.get_pairing_artifact() is None
    assert session.get_status() == {"ready": True}


# =============================================================================
# Sending and the outbound queue
# =============================================================================


@pytest.mark.asyncio
async def test_scenario_queue_then_drain_then_send(make_session, factory):
    session = make_session()

    result = await session.send("1555", "hi")
    assert result.status == "queued"
    assert result.recipient == "1555@c.us"

    await session.initialize()
    factory.current.emit(Ready())
    await session.wait_idle()

    assert factory.current.sent == [("1555@c.us", "hi")]
    assert session.queued_messages() == []

    result = await session.send("1555", "yo")
    assert result.status == "sent"
    assert result.message_id == "msg-2"
    assert factory.current.sent[-1] == ("1555@c.us", "yo")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "setup",
    ["uninitialized", "initializing", "awaiting_pairing", "auth_failed"],
)
async def test_send_queues_whenever_not_ready(make_session, factory, setup):
    session = make_session()
    if setup != "uninitialized":
        await session.initialize()
    if setup == "awaiting_pairing":
        factory.current.emit(QrReceived(code="code"))
    if setup == "auth_failed":
        factory.current.emit(AuthFailure(reason="bad"))
    await session.wait_idle()
    assert session.state.value == setup

    result = await session.send("1555", "hi")

    assert result.status == "queued"
    assert len(session.queued_messages()) == 1


@pytest.mark.asyncio
async def test_drain_preserves_fifo_order(make_session, factory):
    session = make_session()
    expected = []
    for i in range(10):
        recipient = f"15550{i % 3}"
        await session.send(recipient, f"msg {i}")
        expected.append((f"{recipient}@c.us", f"msg {i}"))

    await session.initialize()
    factory.current.emit(Ready())
    await session.wait_idle()

    assert factory.current.sent == expected


@pytest.mark.asyncio
async def test_send_during_drain_is_queued_behind_backlog(make_session, factory):
    session = make_session()
    await session.send("1", "first")
    await session.initialize()
    transport = factory.current
    transport.gate = asyncio.Event()

    transport.emit(Ready())
    while not transport.attempted:
        await asyncio.sleep(0.001)

    late = await session.send("2", "second")
    assert late.status == "queued"

    transport.gate.set()
    await session.wait_idle()
    assert transport.sent == [("1@c.us", "first"), ("2@c.us", "second")]


@pytest.mark.asyncio
async def test_drain_failures_do_not_block_later_messages(make_session, factory):
    session = make_session()
    for text in ("a", "b", "c"):
        await session.send("1555", text)

    await session.initialize()
    factory.current.fail_on["b"] = TransportError("invalid wid")
    factory.current.emit(Ready())
    await session.wait_idle()

    assert factory.current.sent == [("1555@c.us", "a"), ("1555@c.us", "c")]
    assert session.queued_messages() == []
    assert session.ready


@pytest.mark.asyncio
async def test_fatal_drain_failure_disconnects_after_drain(
    make_session, factory, wait_for
):
    session = make_session()
    for text in ("a", "b", "c"):
        await session.send("1555", text)

    await session.initialize()
    first = factory.current
    first.fail_on["b"] = RuntimeError("Protocol error: Session closed.")
    first.emit(Ready())
    await session.wait_idle()

    assert [t for _, t in first.attempted] == ["a", "b", "c"]
    assert not session.ready
    assert session.queued_messages() == []
    await wait_for(lambda: len(factory.created) == 2)


@pytest.mark.asyncio
async def test_fatal_send_error_fails_once_and_restarts(
    make_session, factory, wait_for
):
    session = await _ready_session(make_session, factory)
    first = factory.current
    first.send_error = TransportError(
        "Session closed", category=FailureCategory.SESSION_CLOSED
    )

    result = await session.send("1555", "hi")

    assert result.status == "failed"
    assert "Session closed" in result.detail
    assert session.state in (SessionState.DISCONNECTED, SessionState.RESTARTING)
    assert session.queued_messages() == []

    await wait_for(lambda: len(factory.created) == 2)
    assert first.destroyed
    # The failed message is never re-sent by the new handle.
    factory.current.emit(Ready())
    await session.wait_idle()
    assert factory.current.sent == []


@pytest.mark.asyncio
async def test_session_closed_text_is_treated_as_fatal(
    make_session, factory, wait_for
):
    session = await _ready_session(make_session, factory)
    factory.current.send_error = RuntimeError("Evaluation failed: Session closed.")

    result = await session.send("1555", "hi")

    assert result.status == "failed"
    await wait_for(lambda: len(factory.created) == 2)


@pytest.mark.asyncio
async def test_non_fatal_send_error_keeps_session_ready(make_session, factory):
    session = await _ready_session(make_session, factory)
    factory.current.send_error = RuntimeError("wid error: invalid wid")

    result = await session.send("1555", "hi")

    assert result.status == "failed"
    assert session.ready
    assert len(factory.created) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "recipient, text",
    [("", "hi"), ("   ", "hi"), ("1555", ""), ("+", "hi")],
)
async def test_send_rejects_invalid_arguments(make_session, recipient, text):
    session = make_session()
    with pytest.raises(ValidationError):
        await session.send(recipient, text)
    assert session.queued_messages() == []
    assert session.state is SessionState.UNINITIALIZED


@pytest.mark.asyncio
async def test_bounded_queue_reports_failure_when_full(make_session):
    session = make_session(queue_max_size=1)
    assert (await session.send("1", "a")).status == "queued"

    result = await session.send("2", "b")

    assert result.status == "failed"
    assert "full" in result.detail
    assert len(session.queued_messages()) == 1


@pytest.mark.asyncio
async def test_qualified_recipient_passes_through(make_session, factory):
    session = await _ready_session(make_session, factory)
    result = await session.send("12036302@g.us", "group hello")
    assert result.recipient == "12036302@g.us"
    assert factory.current.sent == [("12036302@g.us", "group hello")]


# =============================================================================
# Disconnects, restarts and auth failures
# =============================================================================


@pytest.mark.asyncio
async def test_scenario_disconnect_triggers_supervised_restart(
    make_session, factory, wait_for, event_kinds
):
    session = await _ready_session(make_session, factory, restart_cooldown=0.05)
    sub = session.subscribe()
    first = factory.current

    first.emit(Disconnected(reason="NAVIGATION"))
    await session.wait_idle()

    assert session.get_status() == {"ready": False}
    await wait_for(lambda: len(factory.created) == 2, timeout=1.0)
    assert first.destroyed
    assert session.state is SessionState.INITIALIZING
    assert event_kinds(sub) == ["disconnected", "restarting", "initializing"]


@pytest.mark.asyncio
async def test_messages_sent_while_restarting_are_delivered_after_ready(
    make_session, factory, wait_for
):
    session = await _ready_session(make_session, factory)
    factory.current.emit(Disconnected(reason="LOGOUT"))
    await session.wait_idle()

    result = await session.send("1555", "during restart")
    assert result.status == "queued"

    await wait_for(lambda: len(factory.created) == 2)
    await wait_for(lambda: session.state is SessionState.INITIALIZING)
    factory.current.emit(Ready())
    await session.wait_idle()
    assert factory.current.sent == [("1555@c.us", "during restart")]


@pytest.mark.asyncio
async def test_scenario_auth_failure_does_not_restart(
    make_session, factory, event_kinds
):
    session = make_session(restart_cooldown=0.05)
    sub = session.subscribe()
    await session.initialize()

    factory.current.emit(AuthFailure(reason="credentials rejected"))
    await session.wait_idle()
    await asyncio.sleep(0.15)

    assert session.state is SessionState.AUTH_FAILED
    assert factory.current.destroyed
    assert len(factory.created) == 1
    assert not session.supervisor.running
    kinds = event_kinds(sub)
    assert "auth_failed" in kinds
    assert "restarting" not in kinds


@pytest.mark.asyncio
async def test_authentication_error_on_connect_does_not_restart(
    make_session, factory
):
    factory.connect_errors = [AuthenticationError("unauthorized")]
    session = make_session()

    state = await session.initialize()
    await asyncio.sleep(0.05)

    assert state is SessionState.AUTH_FAILED
    assert len(factory.created) == 1


@pytest.mark.asyncio
async def test_initialize_after_auth_failure_starts_fresh(make_session, factory):
    session = make_session()
    await session.initialize()
    factory.current.emit(AuthFailure(reason="bad"))
    await session.wait_idle()

    state = await session.initialize()

    assert state is SessionState.INITIALIZING
    assert len(factory.created) == 2
    assert len(factory.live) == 1


@pytest.mark.asyncio
async def test_init_failure_funnels_into_restart(make_session, factory, wait_for):
    factory.connect_errors = [RuntimeError("Failed to launch the browser process")]
    session = make_session()

    state = await session.initialize()

    assert state is SessionState.DISCONNECTED
    await wait_for(lambda: len(factory.created) == 2)
    await wait_for(lambda: session.state is SessionState.INITIALIZING)
    assert factory.created[0].destroyed
    assert factory.current.connected


@pytest.mark.asyncio
async def test_teardown_failure_does_not_block_restart(
    make_session, factory, wait_for
):
    factory.destroy_error = RuntimeError("browser already gone")
    session = await _ready_session(make_session, factory)

    factory.current.emit(Disconnected(reason="CONFLICT"))

    await wait_for(lambda: len(factory.created) == 2)
    await wait_for(lambda: session.state is SessionState.INITIALIZING)


@pytest.mark.asyncio
async def test_events_from_stale_handle_are_ignored(make_session, factory, wait_for):
    session = await _ready_session(make_session, factory)
    old = factory.current
    old.emit(Disconnected(reason="NAVIGATION"))
    await wait_for(lambda: len(factory.created) == 2)
    await wait_for(lambda: session.state is SessionState.INITIALIZING)

    old.emit(Ready())
    await session.wait_idle()

    assert session.state is SessionState.INITIALIZING


@pytest.mark.asyncio
async def test_restart_circuit_breaker(make_session, factory, wait_for):
    factory.connect_errors = [RuntimeError("boom")] * 10
    session = make_session(restart_max_attempts=2)

    await session.initialize()
    await wait_for(lambda: session.supervisor.exhausted)

    assert len(factory.created) == 3
    assert session.state is SessionState.DISCONNECTED
    assert session.get_snapshot()["restart_exhausted"] is True


@pytest.mark.asyncio
async def test_request_restart_ignored_while_initializing(make_session, factory):
    session = make_session()
    await session.initialize()
    assert session.request_restart() is False
    assert len(factory.created) == 1


@pytest.mark.asyncio
async def test_manual_restart_from_ready(make_session, factory, wait_for):
    session = await _ready_session(make_session, factory)
    assert session.request_restart("operator") is True
    assert session.request_restart("operator") is False
    await wait_for(lambda: len(factory.created) == 2)
    assert factory.created[0].destroyed


# =============================================================================
# Relink, subscriptions and shutdown
# =============================================================================


@pytest.mark.asyncio
async def test_relink_clears_credentials(make_session, factory, credentials):
    credentials.save({"linked": True})
    session = make_session()
    await session.initialize()
    factory.current.emit(AuthFailure(reason="bad"))
    await session.wait_idle()

    state = await session.relink()

    assert state is SessionState.INITIALIZING
    assert not credentials.has_credentials()
    assert len(factory.created) == 2


@pytest.mark.asyncio
async def test_on_status_event_handler(make_session, factory, wait_for):
    session = make_session()
    seen = []
    sub = session.on_status_event(lambda event: seen.append(event.kind))

    await session.initialize()
    factory.current.emit(Ready())
    await session.wait_idle()
    await wait_for(lambda: len(seen) == 2)
    assert seen == ["initializing", "ready"]

    sub.close()
    factory.current.emit(Disconnected(reason="x"))
    await session.wait_idle()
    await asyncio.sleep(0.01)
    assert seen == ["initializing", "ready"]


@pytest.mark.asyncio
async def test_shutdown_closes_transport_and_subscriptions(make_session, factory):
    session = await _ready_session(make_session, factory)
    sub = session.subscribe()

    await session.shutdown()

    assert factory.current.destroyed
    assert session.state is SessionState.UNINITIALIZED
    assert sub.closed
    assert [event async for event in sub] == []


@pytest.mark.asyncio
async def test_shutdown_tolerates_destroy_failure(make_session, factory):
    factory.destroy_error = RuntimeError("already closed")
    session = await _ready_session(make_session, factory)
    await session.shutdown()
    assert session.state is SessionState.UNINITIALIZED


@pytest.mark.asyncio
async def test_whitespace_only_text_is_delivered(make_session, factory):
    session = await _ready_session(make_session, factory)

    result = await session.send("1555", "   ")

    assert result.status == "sent"
    assert factory.current.sent == [("1555@c.us", "   ")]


@pytest.mark.asyncio
async def test_shutdown_during_restart_teardown_still_destroys_transport(
    make_session, factory, wait_for
):
    session = await _ready_session(make_session, factory)
    first = factory.current
    first.destroy_gate = asyncio.Event()

    first.emit(Disconnected(reason="NAVIGATION"))
    await wait_for(lambda: first.destroy_started)

    shutdown = asyncio.create_task(session.shutdown())
    await asyncio.sleep(0.02)
    assert not shutdown.done()
    first.destroy_gate.set()
    await shutdown

    assert first.destroyed
    assert len(factory.created) == 1
    assert session.state is SessionState.UNINITIALIZED
