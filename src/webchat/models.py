"""
Webchat Models — the domain message model handed to the UI layer.

A bot reply, a user message, a media attachment and a product carousel are
all a single ``Message`` type; ``type`` and ``metadata`` carry the variant.
Connection progress is a ``ConnectionStatus``.

Messages are mutable only while ``status`` is ``streaming``; the state store
enforces that delivered messages are never rewritten.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ConnectionStatus(str, Enum):
    """Connection lifecycle as seen by the UI."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class Sender(str, Enum):
    USER = "user"
    BOT = "bot"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"
    QUICK_REPLY = "quick_reply"
    CAROUSEL = "carousel"


class MessageStatus(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    DELIVERED = "delivered"


# Media kind → metadata key carrying the URL
MEDIA_METADATA_KEYS = {
    MessageType.IMAGE: "image_url",
    MessageType.VIDEO: "video_url",
    MessageType.AUDIO: "audio_url",
    MessageType.FILE: "file_url",
}


@dataclass(frozen=True)
class QuickReply:
    """A server-offered shortcut: show ``title``, send ``payload``."""

    title: str
    payload: str


@dataclass(frozen=True)
class CarouselProduct:
    """One product card parsed from carousel markup."""

    id: str
    name: str
    price: str
    image_url: str = ""
    product_link: str = ""
    original_price: str | None = None
    discount_percentage: float | None = None
    description: str | None = None


@dataclass
class Message:
    """
    A single entry in the session's message list.

    ``id`` is unique within the list. Bot stream messages use the server id
    (prefixed ``msg_``); everything else gets a random UUID.
    """

    text: str
    sender: Sender = Sender.BOT
    type: MessageType = MessageType.TEXT
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)
    status: MessageStatus | None = None

    @property
    def quick_replies(self) -> list[QuickReply]:
        return list(self.metadata.get("quick_replies", []))

    @property
    def products(self) -> list[CarouselProduct]:
        return list(self.metadata.get("products", []))

    @property
    def is_delivered(self) -> bool:
        return self.status == MessageStatus.DELIVERED

    @classmethod
    def user(cls, text: str) -> Message:
        """Create a locally-synthesized user message."""
        return cls(text=text, sender=Sender.USER, type=MessageType.TEXT)


@dataclass
class StreamState:
    """Accumulated text of one in-flight streamed reply."""

    id: str
    text: str = ""
    timestamp: float = field(default_factory=time.time)
