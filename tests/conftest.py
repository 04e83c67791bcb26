"""Shared fixtures: an in-memory socket double and a wired ConnectionManager."""

import asyncio
import json
from typing import Any, AsyncIterator, Callable

import pytest
import pytest_asyncio

from webchat.client import ConnectionManager
from webchat.core.config import WebChatConfig
from webchat.session.store import SessionStore
from webchat.transport.socket import Socket, SocketEvent, SocketEventType


class FakeSocket(Socket):
    """Socket double: the test pushes server-side events, the manager consumes them."""

    def __init__(self, url: str):
        super().__init__(url)
        self.sent: list[str] = []
        self.closed_with: tuple[int, str] | None = None
        self._open = False
        self._queue: asyncio.Queue[SocketEvent] = asyncio.Queue()

    @property
    def is_open(self) -> bool:
        return self._open

    async def events(self) -> AsyncIterator[SocketEvent]:
        while True:
            event = await self._queue.get()
            if event.type == SocketEventType.OPEN:
                self._open = True
            elif event.type == SocketEventType.CLOSE:
                self._open = False
            try:
                yield event
            finally:
                self._queue.task_done()
            if event.type == SocketEventType.CLOSE:
                return

    async def send(self, data: str) -> None:
        if not self._open:
            raise ConnectionError("socket is not open")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = (code, reason)
        self._open = False

    # ─── Server-side controls ────────────────────────────────────

    def force_open(self) -> None:
        self._open = True

    def open(self) -> None:
        self._queue.put_nowait(SocketEvent.opened())

    def receive(self, frame: dict[str, Any] | str) -> None:
        data = frame if isinstance(frame, str) else json.dumps(frame)
        self._queue.put_nowait(SocketEvent.message(data))

    def fail(self, error: BaseException | None = None) -> None:
        self._queue.put_nowait(SocketEvent.failed(error or OSError("connection refused")))

    def server_close(self, code: int = 1006, reason: str = "") -> None:
        self._queue.put_nowait(SocketEvent.closed(code, reason))

    async def flush(self) -> None:
        """Wait until every pushed event has been handled."""
        await asyncio.wait_for(self._queue.join(), timeout=2)

    @property
    def frames(self) -> list[dict[str, Any]]:
        return [json.loads(raw) for raw in self.sent]

    def frames_of(self, frame_type: str) -> list[dict[str, Any]]:
        return [f for f in self.frames if f.get("type") == frame_type]


class SocketRecorder:
    """Socket factory that remembers every socket it created."""

    def __init__(self) -> None:
        self.sockets: list[FakeSocket] = []

    def __call__(self, url: str) -> FakeSocket:
        socket = FakeSocket(url)
        self.sockets.append(socket)
        return socket

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


def make_config(**overrides: Any) -> WebChatConfig:
    values: dict[str, Any] = {
        "socket_url": "https://ws.example.com",
        "host": "https://flows.example.com",
        "channel_uuid": "chan-1",
        "ping_interval": 60.0,
        "reconnect_base_delay": 0.01,
        "reconnect_max_delay": 0.05,
    }
    values.update(overrides)
    return WebChatConfig(**values)


@pytest.fixture
def sockets() -> SocketRecorder:
    return SocketRecorder()


@pytest_asyncio.fixture
async def session_store(tmp_path):
    store = SessionStore(db_path=tmp_path / "sessions.db")
    yield store
    await store.stop()


@pytest_asyncio.fixture
async def manager(sockets, session_store):
    m = ConnectionManager(
        make_config(), session_store=session_store, socket_factory=sockets
    )
    yield m
    await m.disconnect()


async def open_and_register(manager: ConnectionManager, sockets: SocketRecorder) -> FakeSocket:
    """connect() → OPEN → ready_for_message, fully handled."""
    await manager.connect()
    socket = sockets.last
    socket.open()
    socket.receive({"type": "ready_for_message"})
    await socket.flush()
    return socket
