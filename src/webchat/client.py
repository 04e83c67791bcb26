"""
Connection Manager — the webchat protocol client.

Owns the single socket to the webchat backend and everything that hangs off
it:

  1. connect(): dial wss://<socket_host>/ws, send ``register``
  2. wait for ``ready_for_message`` before user messages may be sent
  3. decode every inbound frame and route it (stream reassembly, typing,
     plain/media/quick-reply/carousel messages)
  4. ping every 30s while open
  5. on a non-clean close, reconnect with exponential backoff
     (1s, 2s, 4s, 8s, 10s, then give up quietly)

All state the UI needs lives in one ChatState (``manager.state``);
subscribe() to be told about every change.

Usage:
    manager = ConnectionManager(WebChatConfig.from_env(), on_message=print)
    await manager.connect()
    await manager.wait_until_ready(timeout=10)
    await manager.send_message("hello")
    ...
    await manager.close()
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

import webchat.core.config as config_module
from webchat.core.config import WebChatConfig
from webchat.errors import WebChatConnectionError
from webchat.keepalive import KeepAlive
from webchat.models import ConnectionStatus, Message
from webchat.protocol.decoder import (
    AllowContactTimeoutFrame,
    DeltaFrame,
    ErrorFrame,
    MessageFrame,
    PongFrame,
    ProjectLanguageFrame,
    ReadyFrame,
    StreamEndFrame,
    StreamStartFrame,
    TypingFrame,
    WarningFrame,
    decode,
    parse_frame,
)
from webchat.protocol.reassembler import StreamReassembler
from webchat.session.store import SessionStore
from webchat.state import ChatState, ChatStore, StateListener
from webchat.transport.socket import (
    NORMAL_CLOSURE,
    Socket,
    SocketEvent,
    SocketEventType,
    SocketFactory,
    websockets_factory,
)

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base: float = 1.0, cap: float = 10.0) -> float:
    """Seconds to wait before reconnect attempt ``attempt`` (0-based)."""
    return min(base * (2**attempt), cap)


class ConnectionManager:
    """
    Persistent connection to one webchat channel.

    Everything runs on the caller's event loop. Socket events are consumed by
    one reader task per socket, so handlers never overlap and no locks are
    needed. Events from a socket that has been replaced are ignored.
    """

    def __init__(
        self,
        config: WebChatConfig | None = None,
        *,
        session_store: SessionStore | None = None,
        socket_factory: SocketFactory | None = None,
        on_message: Callable[[Message], None] | None = None,
        on_connect: Callable[[], None] | None = None,
        on_disconnect: Callable[[], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ):
        self.config = config or config_module.config
        self.session_store = session_store or SessionStore(self.config.session_db_path)
        self._socket_factory = socket_factory or websockets_factory

        self.on_message = on_message
        self.on_connect = on_connect
        self.on_disconnect = on_disconnect
        self.on_error = on_error

        self.store = ChatStore()
        self.reassembler = StreamReassembler(self.store)
        self.keepalive = KeepAlive(self.config.ping_interval)

        self._socket: Socket | None = None
        self._reader_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._session_id: str | None = None
        self._context = ""
        self._ready = asyncio.Event()

        self.reconnect_attempts = 0
        self.is_registered = False

    # ─── Reactive state ──────────────────────────────────────────

    @property
    def state(self) -> ChatState:
        return self.store.state

    @property
    def is_connected(self) -> bool:
        return self.store.state.is_connected

    @property
    def is_connecting(self) -> bool:
        return self.store.state.is_connecting

    @property
    def is_typing(self) -> bool:
        return self.store.state.is_typing

    @property
    def messages(self) -> list[Message]:
        return self.store.state.messages

    @property
    def session_id(self) -> str | None:
        return self.store.state.session_id

    @property
    def error(self) -> Exception | None:
        return self.store.state.error

    @property
    def connection_status(self) -> ConnectionStatus:
        return self.store.state.connection_status

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        return self.store.subscribe(listener)

    # ─── Lifecycle ───────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the socket and start the registration handshake.

        Returns once the dial has been started; progress is reported through
        ``connection_status`` and the callbacks.
        """
        if self._socket is not None and self._socket.is_open:
            logger.info("Already connected")
            return

        self.config.validate()

        if self._reconnect_task is not None and self._reconnect_task is not asyncio.current_task():
            self._reconnect_task.cancel()
        self._reconnect_task = None

        # Drop any stale socket before dialing a new one
        await self._detach_socket()

        self.is_registered = False
        self._ready.clear()
        self.store.update(
            connection_status=ConnectionStatus.CONNECTING,
            is_connecting=True,
            error=None,
        )

        session_id = await self._resolve_session_id()
        url = self.config.ws_url
        logger.info(
            "Connecting to %s (channel=%s)",
            url,
            self.config.channel_uuid,
            extra={"session_id": session_id, "channel": self.config.channel_uuid},
        )

        socket = self._socket_factory(url)
        self._socket = socket
        self._reader_task = asyncio.create_task(
            self._read(socket, session_id), name="webchat-reader"
        )

    async def disconnect(self) -> None:
        """User-initiated close: never followed by an automatic reconnect."""
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
        self.keepalive.stop()

        had_socket = self._socket is not None
        if had_socket:
            logger.info("Disconnecting")
        await self._detach_socket(NORMAL_CLOSURE, "User disconnect")

        self.reconnect_attempts = 0
        self.is_registered = False
        self._ready.clear()
        self.store.update(
            connection_status=ConnectionStatus.DISCONNECTED,
            is_connected=False,
            is_connecting=False,
        )
        if had_socket:
            self._invoke(self.on_disconnect)

    async def close(self) -> None:
        """Disconnect and release the session store."""
        await self.disconnect()
        await self.session_store.stop()

    async def __aenter__(self) -> ConnectionManager:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def wait_until_ready(self, timeout: float | None = None) -> bool:
        """Wait for the registration handshake. False on timeout."""
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # ─── Commands ────────────────────────────────────────────────

    async def send_message(self, text: str) -> Message | None:
        """Send user text. Returns the locally appended message, or None."""
        return await self._send_user_message(text=text, display=text)

    async def send_quick_reply(self, payload: str, title: str) -> Message | None:
        """Send a quick reply: ``payload`` on the wire, ``title`` in the list."""
        return await self._send_user_message(text=payload, display=title)

    async def set_custom_field(self, key: str, value: Any) -> None:
        """Best-effort contact field update; dropped when not connected."""
        if not self._is_open():
            logger.debug("set_custom_field(%s) skipped: not connected", key)
            return
        await self._send_json(
            {
                "type": "set_custom_field",
                "data": {"key": key, "value": value},
                "from": self._session_id,
            }
        )

    def set_context(self, context: dict[str, Any] | None) -> None:
        """Context serialized into the ``context`` field of later messages."""
        self._context = json.dumps(context) if context else ""

    def clear_messages(self) -> None:
        self.store.clear_messages()

    async def _send_user_message(self, text: str, display: str) -> Message | None:
        if not self._is_open():
            logger.error("Cannot send message: not connected")
            return None
        if not self.is_registered:
            logger.error("Cannot send message: not registered with the server yet")
            return None

        message = Message.user(display)
        # Optimistic: the bot is assumed to be typing as soon as we send
        self.store.append(message, is_typing=True)
        await self._send_json(self._message_frame(text))
        return message

    # ─── Wire frames ─────────────────────────────────────────────

    def _register_frame(self, session_id: str) -> dict[str, Any]:
        frame: dict[str, Any] = {
            "type": "register",
            "from": session_id,
            "callback": self.config.callback_url,
            "session_type": "local",
        }
        if self.config.session_token:
            frame["token"] = self.config.session_token
        return frame

    def _message_frame(self, text: str) -> dict[str, Any]:
        return {
            "type": "message",
            "message": {"type": "text", "text": text},
            "context": self._context,
            "from": self._session_id,
        }

    async def _send_json(self, frame: dict[str, Any]) -> None:
        socket = self._socket
        if socket is None:
            return
        try:
            await socket.send(json.dumps(frame))
        except (ConnectionError, OSError) as e:
            logger.error("Send of %s frame failed: %s", frame.get("type"), e)

    # ─── Socket events ───────────────────────────────────────────

    async def _read(self, socket: Socket, session_id: str) -> None:
        try:
            async for event in socket.events():
                if socket is not self._socket:
                    logger.debug("Ignoring %s from stale socket", event.type.value)
                    continue
                try:
                    await self._dispatch(socket, event, session_id)
                except Exception as e:
                    logger.error("Error handling %s event: %s", event.type.value, e, exc_info=True)
        except asyncio.CancelledError:
            pass

    async def _dispatch(self, socket: Socket, event: SocketEvent, session_id: str) -> None:
        if event.type == SocketEventType.OPEN:
            await self._on_open(socket, session_id)
        elif event.type == SocketEventType.MESSAGE:
            await self._on_frame(event.data)
        elif event.type == SocketEventType.ERROR:
            self._on_error(event.error)
        elif event.type == SocketEventType.CLOSE:
            self._on_close(event.code, event.reason)

    async def _on_open(self, socket: Socket, session_id: str) -> None:
        logger.info("WebSocket connected", extra={"session_id": session_id})
        self.reconnect_attempts = 0
        self.store.update(
            is_connected=True,
            is_connecting=False,
            session_id=session_id,
            error=None,
        )
        await self._send_json(self._register_frame(session_id))
        self.keepalive.start(socket)
        self.store.update(connection_status=ConnectionStatus.CONNECTED)
        self._invoke(self.on_connect)

    def _on_error(self, error: BaseException | None) -> None:
        logger.error("WebSocket error: %s", error)
        err = WebChatConnectionError(cause=error)
        self.store.update(
            connection_status=ConnectionStatus.ERROR,
            is_connecting=False,
            error=err,
        )
        self._invoke(self.on_error, err)

    def _on_close(self, code: int, reason: str) -> None:
        logger.info("WebSocket closed (code=%s, reason=%r)", code, reason)
        self.keepalive.stop()
        self.is_registered = False
        self._ready.clear()
        self._socket = None

        self.store.update(
            connection_status=ConnectionStatus.DISCONNECTED,
            is_connected=False,
            is_connecting=False,
        )
        self._invoke(self.on_disconnect)

        if code == NORMAL_CLOSURE:
            return
        if self.reconnect_attempts >= self.config.max_reconnect_attempts:
            logger.warning(
                "Giving up after %d reconnect attempts", self.reconnect_attempts
            )
            return
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        delay = backoff_delay(
            self.reconnect_attempts,
            self.config.reconnect_base_delay,
            self.config.reconnect_max_delay,
        )
        logger.info(
            "Reconnecting in %.0fms (attempt %d)",
            delay * 1000,
            self.reconnect_attempts + 1,
            extra={"attempt": self.reconnect_attempts + 1, "delay_ms": delay * 1000},
        )
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after(delay), name="webchat-reconnect"
        )

    async def _reconnect_after(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        self.reconnect_attempts += 1
        await self.connect()

    # ─── Frame routing ───────────────────────────────────────────

    async def _on_frame(self, data: str) -> None:
        raw = parse_frame(data)
        if raw is None:
            return

        frame = decode(raw)
        logger.debug(
            "Frame received: %s",
            type(frame).__name__,
            extra={"frame_type": raw.get("type")},
        )

        if isinstance(frame, StreamStartFrame):
            if not frame.message_id:
                logger.error("stream_start without id")
                return
            self.reassembler.on_stream_start(frame.message_id)

        elif isinstance(frame, DeltaFrame):
            self.reassembler.on_delta(frame.seq, frame.content, frame.message_id)

        elif isinstance(frame, StreamEndFrame):
            if not frame.message_id:
                logger.error("stream_end without id")
                return
            delivered = self.reassembler.on_stream_end(frame.message_id)
            if delivered is not None:
                self._invoke(self.on_message, delivered)

        elif isinstance(frame, PongFrame):
            return

        elif isinstance(frame, ReadyFrame):
            await self._on_ready()

        elif isinstance(frame, ProjectLanguageFrame):
            logger.info("Project language: %s", frame.language)
            self.store.update(language=frame.language)

        elif isinstance(frame, AllowContactTimeoutFrame):
            logger.info("Contact timeout allowed")

        elif isinstance(frame, ErrorFrame):
            logger.error("Server error: %s", frame.error)
            if frame.duplicate_registration:
                # Stale registration on the server side; reconnect policy is unchanged
                logger.warning("Another connection is registered for this session")

        elif isinstance(frame, WarningFrame):
            logger.warning("Server warning: %s", frame.warning)

        elif isinstance(frame, TypingFrame):
            self.store.set_typing(frame.active)

        elif isinstance(frame, MessageFrame):
            if frame.message is None:
                return
            self.store.append(frame.message, is_typing=False)
            self._invoke(self.on_message, frame.message)

        else:
            logger.debug("Unknown frame: %.200r", raw)

    async def _on_ready(self) -> None:
        logger.info("Server ready for messages")
        self.is_registered = True
        self._ready.set()
        if self.config.init_payload and self._is_open():
            logger.info("Sending init payload")
            await self._send_json(self._message_frame(self.config.init_payload))

    # ─── Helpers ─────────────────────────────────────────────────

    def _is_open(self) -> bool:
        return self._socket is not None and self._socket.is_open

    async def _resolve_session_id(self) -> str:
        if self._session_id is None:
            self._session_id = await self.session_store.get_session_id(
                self.config.channel_uuid, self.config.session_id
            )
        return self._session_id

    async def _detach_socket(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        socket, task = self._socket, self._reader_task
        self._socket = None
        self._reader_task = None

        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if socket is not None:
            try:
                await socket.close(code, reason)
            except (ConnectionError, OSError) as e:
                logger.debug("Closing stale socket failed: %s", e)

    def _invoke(self, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error("Webchat callback failed: %s", e, exc_info=True)
