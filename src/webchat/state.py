"""
Chat State — the single reactive state object exposed to the UI layer.

ChatStore holds a ChatState and notifies subscribers after every change.
All mutation goes through the store so that:
- message ids stay unique within the list
- delivered messages are never rewritten
- observers see every transition, in order

Usage:
    store = ChatStore()
    unsubscribe = store.subscribe(lambda state: render(state))
    store.append(Message.user("hi"))
    unsubscribe()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable

from webchat.models import ConnectionStatus, Message, MessageStatus, Sender

logger = logging.getLogger(__name__)

StateListener = Callable[["ChatState"], None]


@dataclass
class ChatState:
    is_connected: bool = False
    is_connecting: bool = False
    is_typing: bool = False
    messages: list[Message] = field(default_factory=list)
    session_id: str | None = None
    error: Exception | None = None
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    language: str | None = None


class ChatStore:
    """Owns the ChatState and fans changes out to listeners."""

    def __init__(self) -> None:
        self.state = ChatState()
        self._listeners: list[StateListener] = []

    # ─── Subscription ────────────────────────────────────────────

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception as e:
                logger.error("State listener failed: %s", e, exc_info=True)

    # ─── Field updates ───────────────────────────────────────────

    def update(self, **changes: Any) -> None:
        """Set one or more ChatState fields and notify once."""
        self.state = replace(self.state, **changes)
        self._notify()

    def set_typing(self, active: bool) -> None:
        if self.state.is_typing != active:
            self.update(is_typing=active)

    # ─── Message list ────────────────────────────────────────────

    def find(self, message_id: str) -> Message | None:
        for message in self.state.messages:
            if message.id == message_id:
                return message
        return None

    def append(self, message: Message, **changes: Any) -> bool:
        """Append a message (plus optional field changes). False on duplicate id."""
        if self.find(message.id) is not None:
            logger.warning("Duplicate message id %s ignored", message.id)
            return False
        self.update(messages=[*self.state.messages, message], **changes)
        return True

    def upsert_streaming(self, message_id: str, text: str) -> None:
        """Create or update a bot message in ``streaming`` status.

        Streaming content replaces the typing indicator.
        """
        existing = self.find(message_id)
        if existing is None:
            message = Message(
                id=message_id,
                text=text,
                sender=Sender.BOT,
                status=MessageStatus.STREAMING,
            )
            self.update(messages=[*self.state.messages, message], is_typing=False)
            return

        if existing.is_delivered:
            logger.debug("Ignoring update to delivered message %s", message_id)
            return

        updated = replace(existing, text=text, status=MessageStatus.STREAMING)
        self.update(messages=self._replace(updated), is_typing=False)

    def deliver(self, message_id: str, text: str) -> Message | None:
        """Mark a message delivered with its final text. None if absent."""
        existing = self.find(message_id)
        if existing is None:
            return None
        if existing.is_delivered:
            return existing
        delivered = replace(existing, text=text, status=MessageStatus.DELIVERED)
        self.update(messages=self._replace(delivered))
        return delivered

    def clear_messages(self) -> None:
        self.update(messages=[])

    def _replace(self, message: Message) -> list[Message]:
        return [message if m.id == message.id else m for m in self.state.messages]
