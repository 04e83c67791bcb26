"""
Socket — message-passing transport capability for the connection manager.

The manager never touches a WebSocket library directly. It asks a factory
for a Socket, then consumes ``socket.events()``:

    OPEN  → MESSAGE* → [ERROR] → CLOSE

A dial failure is reported as ERROR followed by CLOSE(1006), the same shape a
browser WebSocket produces, so the manager has one code path for every way a
connection can end.

WebsocketsSocket is the production implementation (websockets library).
Tests substitute an in-memory double with the same interface.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Callable

import websockets

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


class SocketEventType(str, Enum):
    OPEN = "open"
    MESSAGE = "message"
    ERROR = "error"
    CLOSE = "close"


@dataclass(frozen=True)
class SocketEvent:
    type: SocketEventType
    data: str = ""
    code: int = 0
    reason: str = ""
    error: BaseException | None = None

    @classmethod
    def opened(cls) -> SocketEvent:
        return cls(SocketEventType.OPEN)

    @classmethod
    def message(cls, data: str) -> SocketEvent:
        return cls(SocketEventType.MESSAGE, data=data)

    @classmethod
    def failed(cls, error: BaseException) -> SocketEvent:
        return cls(SocketEventType.ERROR, error=error)

    @classmethod
    def closed(cls, code: int, reason: str = "") -> SocketEvent:
        return cls(SocketEventType.CLOSE, code=code, reason=reason)


class Socket(ABC):
    """One WebSocket connection attempt."""

    def __init__(self, url: str):
        self.url = url

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True between OPEN and CLOSE."""
        ...

    @abstractmethod
    def events(self) -> AsyncIterator[SocketEvent]:
        """Dial and yield lifecycle events; always ends with CLOSE."""
        ...

    @abstractmethod
    async def send(self, data: str) -> None:
        """Write one text frame. Fire-and-forget: no acknowledgement."""
        ...

    @abstractmethod
    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        ...


SocketFactory = Callable[[str], Socket]


class WebsocketsSocket(Socket):
    """Socket backed by the ``websockets`` asyncio client."""

    def __init__(self, url: str):
        super().__init__(url)
        self._ws = None
        self._closing = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closing

    async def events(self) -> AsyncIterator[SocketEvent]:
        try:
            # Liveness is handled by the application-level ping frame
            self._ws = await websockets.connect(self.url, ping_interval=None)
        except (OSError, websockets.InvalidURI, websockets.InvalidHandshake) as e:
            logger.error("WebSocket connect to %s failed: %s", self.url, e)
            yield SocketEvent.failed(e)
            yield SocketEvent.closed(ABNORMAL_CLOSURE, str(e))
            return

        yield SocketEvent.opened()

        try:
            async for raw in self._ws:
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", errors="replace")
                yield SocketEvent.message(raw)
        except websockets.ConnectionClosedError as e:
            # Abnormal termination: surface as error, then close
            yield SocketEvent.failed(e)
        finally:
            self._closing = True

        code = self._ws.close_code if self._ws.close_code is not None else ABNORMAL_CLOSURE
        yield SocketEvent.closed(code, self._ws.close_reason or "")
        self._ws = None

    async def send(self, data: str) -> None:
        if not self.is_open:
            raise ConnectionError("socket is not open")
        try:
            await self._ws.send(data)
        except websockets.ConnectionClosed as e:
            raise ConnectionError(str(e)) from e

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        self._closing = True
        if self._ws is not None:
            await self._ws.close(code=code, reason=reason)


def websockets_factory(url: str) -> Socket:
    return WebsocketsSocket(url)
