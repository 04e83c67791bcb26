"""
KeepAlive — periodic application-level ping while a socket is open.

The backend expects ``{"type": "ping"}`` every 30 seconds. Replies
(``pong``) are not required for the connection to count as healthy;
a dead connection is detected by the socket closing, not by a missed pong.
"""

from __future__ import annotations

import asyncio
import json
import logging

from webchat.transport.socket import Socket

logger = logging.getLogger(__name__)

PING_FRAME = json.dumps({"type": "ping"})


class KeepAlive:
    """Sends ping frames on a fixed interval until stopped."""

    def __init__(self, interval: float = 30.0):
        self.interval = interval
        self._task: asyncio.Task | None = None
        self.pings_sent = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, socket: Socket) -> None:
        """(Re)start pinging ``socket``. Any previous loop is cancelled."""
        self.stop()
        self._task = asyncio.create_task(self._loop(socket), name="webchat-keepalive")

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _loop(self, socket: Socket) -> None:
        try:
            while True:
                await asyncio.sleep(self.interval)
                if not socket.is_open:
                    continue
                try:
                    await socket.send(PING_FRAME)
                    self.pings_sent += 1
                    logger.debug("Keepalive ping sent (#%d)", self.pings_sent)
                except (ConnectionError, OSError) as e:
                    # The close handler owns recovery
                    logger.warning("Keepalive ping failed: %s", e)
        except asyncio.CancelledError:
            pass
