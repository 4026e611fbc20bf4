import asyncio

import pytest
import pytest_asyncio

from messaging.credentials import CredentialStore
from messaging.session import WhatsAppSession
from messaging.transport.base import TransportClient


class FakeTransport(TransportClient):
    """In-memory transport: records calls, lets tests emit lifecycle events."""

    def __init__(self, store: CredentialStore):
        super().__init__()
        self.store = store
        self.connect_error: Exception | None = None
        self.send_error: Exception | None = None
        self.destroy_error: Exception | None = None
        self.fail_on: dict[str, Exception] = {}
        self.gate: asyncio.Event | None = None
        self.destroy_gate: asyncio.Event | None = None
        self.destroy_started = False
        self.connected = False
        self.destroyed = False
        self.sent: list[tuple[str, str]] = []
        self.attempted: list[tuple[str, str]] = []

    async def connect(self) -> None:
        if self.connect_error:
            raise self.connect_error
        self.connected = True

    async def send_text(self, chat_id: str, text: str) -> str | None:
        self.attempted.append((chat_id, text))
        if self.gate is not None:
            await self.gate.wait()
        if text in self.fail_on:
            raise self.fail_on[text]
        if self.send_error:
            raise self.send_error
        self.sent.append((chat_id, text))
        return f"msg-{len(self.sent)}"

    async def destroy(self) -> None:
        self.destroy_started = True
        if self.destroy_gate is not None:
            await self.destroy_gate.wait()
        self.destroyed = True
        if self.destroy_error:
            raise self.destroy_error


class FakeTransportFactory:
    def __init__(self):
        self.created: list[FakeTransport] = []
        self.connect_errors: list[Exception] = []
        self.destroy_error: Exception | None = None

    def __call__(self, store: CredentialStore) -> FakeTransport:
        transport = FakeTransport(store)
        if self.connect_errors:
            transport.connect_error = self.connect_errors.pop(0)
        transport.destroy_error = self.destroy_error
        self.created.append(transport)
        return transport

    @property
    def current(self) -> FakeTransport:
        return self.created[-1]

    @property
    def live(self) -> list[FakeTransport]:
        return [t for t in self.created if not t.destroyed]


@pytest.fixture
def factory():
    return FakeTransportFactory()


@pytest.fixture
def credentials(tmp_path):
    return CredentialStore(tmp_path / "whatsapp_auth", "test-session")


@pytest_asyncio.fixture
async def make_session(factory, credentials):
    sessions: list[WhatsAppSession] = []

    def _make(**kwargs) -> WhatsAppSession:
        kwargs.setdefault("restart_cooldown", 0.01)
        session = WhatsAppSession(factory, credentials, **kwargs)
        sessions.append(session)
        return session

    yield _make
    for session in sessions:
        await session.shutdown()


@pytest.fixture
def wait_for():
    async def _wait_for(predicate, timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return _wait_for


def drain_kinds(subscription) -> list[str]:
    kinds = []
    while (event := subscription.get_nowait()) is not None:
        kinds.append(event.kind)
    return kinds


@pytest.fixture
def event_kinds():
    return drain_kinds
