"""
Message Decoder — classify raw server frames into a tagged union.

Every inbound JSON object is resolved to exactly one Frame subclass by
``decode()``. Handlers dispatch on the frame class instead of poking at
raw dict keys, which keeps the protocol's one structural quirk in one place:
streaming deltas carry no ``type`` field at all, only ``seq`` and ``v``.

Classification order:
    1. {seq, v} without type      → delta
    2. known ``type`` value        → that frame
    3. type=message / message obj / top-level text → message
    4. anything else               → unknown
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from webchat.models import (
    MEDIA_METADATA_KEYS,
    Message,
    MessageType,
    QuickReply,
    Sender,
)
from webchat.protocol import carousel

logger = logging.getLogger(__name__)

MESSAGE_ID_PREFIX = "msg_"
DUPLICATE_REGISTRATION_MARKER = "already exists"


class FrameType(str, Enum):
    STREAM_START = "stream_start"
    DELTA = "delta"
    STREAM_END = "stream_end"
    READY_FOR_MESSAGE = "ready_for_message"
    PROJECT_LANGUAGE = "project_language"
    ALLOW_CONTACT_TIMEOUT = "allow_contact_timeout"
    ERROR = "error"
    WARNING = "warning"
    TYPING = "typing"
    TYPING_START = "typing_start"
    TYPING_STOP = "typing_stop"
    PONG = "pong"
    MESSAGE = "message"
    UNKNOWN = "unknown"


# Frame types selected directly by the ``type`` field
_TYPED_FRAMES = {ft.value: ft for ft in FrameType if ft not in (FrameType.DELTA, FrameType.UNKNOWN)}


# ─── Frame union ─────────────────────────────────────────────────


@dataclass(frozen=True)
class Frame:
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class StreamStartFrame(Frame):
    message_id: str | None = None


@dataclass(frozen=True)
class DeltaFrame(Frame):
    seq: Any = None
    content: str = ""
    message_id: str | None = None


@dataclass(frozen=True)
class StreamEndFrame(Frame):
    message_id: str | None = None


@dataclass(frozen=True)
class ReadyFrame(Frame):
    pass


@dataclass(frozen=True)
class ProjectLanguageFrame(Frame):
    language: str | None = None


@dataclass(frozen=True)
class AllowContactTimeoutFrame(Frame):
    pass


@dataclass(frozen=True)
class ErrorFrame(Frame):
    error: str = ""
    duplicate_registration: bool = False


@dataclass(frozen=True)
class WarningFrame(Frame):
    warning: str = ""


@dataclass(frozen=True)
class TypingFrame(Frame):
    active: bool = True


@dataclass(frozen=True)
class PongFrame(Frame):
    pass


@dataclass(frozen=True)
class MessageFrame(Frame):
    # None when the frame had nothing displayable and was dropped
    message: Message | None = None


@dataclass(frozen=True)
class UnknownFrame(Frame):
    pass


# ─── Parsing ─────────────────────────────────────────────────────


def parse_frame(data: str | bytes) -> dict[str, Any] | None:
    """Parse wire text into a JSON object. None for anything else."""
    try:
        parsed = json.loads(data)
    except (TypeError, ValueError):
        logger.debug("Dropping non-JSON frame: %.120r", data)
        return None
    if not isinstance(parsed, dict):
        logger.debug("Dropping non-object frame: %.120r", data)
        return None
    return parsed


def classify(raw: dict[str, Any]) -> FrameType:
    """Resolve the frame type, including the implicit delta shape."""
    if "v" in raw and "seq" in raw and "type" not in raw:
        return FrameType.DELTA

    frame_type = raw.get("type")
    if isinstance(frame_type, str) and frame_type in _TYPED_FRAMES:
        return _TYPED_FRAMES[frame_type]

    if isinstance(raw.get("message"), dict) or isinstance(raw.get("text"), str):
        return FrameType.MESSAGE

    return FrameType.UNKNOWN


def message_id_from_raw(raw: dict[str, Any]) -> str | None:
    """Stream/message id: ``msg_`` + message.messageId or top-level id."""
    message = raw.get("message")
    candidate = message.get("messageId") if isinstance(message, dict) else None
    candidate = candidate or raw.get("id")
    return f"{MESSAGE_ID_PREFIX}{candidate}" if candidate else None


def decode(raw: dict[str, Any]) -> Frame:
    frame_type = classify(raw)

    if frame_type == FrameType.STREAM_START:
        return StreamStartFrame(raw=raw, message_id=message_id_from_raw(raw))
    if frame_type == FrameType.DELTA:
        return DeltaFrame(
            raw=raw,
            seq=raw.get("seq"),
            content=raw.get("v") if isinstance(raw.get("v"), str) else "",
            message_id=message_id_from_raw(raw),
        )
    if frame_type == FrameType.STREAM_END:
        return StreamEndFrame(raw=raw, message_id=message_id_from_raw(raw))
    if frame_type == FrameType.READY_FOR_MESSAGE:
        return ReadyFrame(raw=raw)
    if frame_type == FrameType.PROJECT_LANGUAGE:
        data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
        return ProjectLanguageFrame(raw=raw, language=data.get("language"))
    if frame_type == FrameType.ALLOW_CONTACT_TIMEOUT:
        return AllowContactTimeoutFrame(raw=raw)
    if frame_type == FrameType.ERROR:
        error = str(raw.get("error") or "")
        return ErrorFrame(
            raw=raw,
            error=error,
            duplicate_registration=DUPLICATE_REGISTRATION_MARKER in error,
        )
    if frame_type == FrameType.WARNING:
        return WarningFrame(raw=raw, warning=str(raw.get("warning") or ""))
    if frame_type in (FrameType.TYPING, FrameType.TYPING_START):
        return TypingFrame(raw=raw, active=True)
    if frame_type == FrameType.TYPING_STOP:
        return TypingFrame(raw=raw, active=False)
    if frame_type == FrameType.PONG:
        return PongFrame(raw=raw)
    if frame_type == FrameType.MESSAGE:
        return MessageFrame(raw=raw, message=decode_message(raw))
    return UnknownFrame(raw=raw)


def decode_message(raw: dict[str, Any]) -> Message | None:
    """Build a bot Message from a message frame, or None to drop it."""
    data = raw.get("message") if isinstance(raw.get("message"), dict) else {}

    if isinstance(data.get("text"), str):
        text = data["text"]
    elif isinstance(raw.get("text"), str):
        text = raw["text"]
    else:
        text = ""

    media = data.get("media")
    quick_replies = data.get("quick_replies")

    # TODO: confirm against the backend contract whether empty frames are a server quirk
    if not text and not media and not quick_replies:
        logger.debug("Message frame without content, dropping")
        return None

    if carousel.detect(text):
        products = carousel.parse(text)
        if products:
            return Message(
                text=carousel.extract_remaining_text(text),
                sender=Sender.BOT,
                type=MessageType.CAROUSEL,
                metadata={"products": products},
            )

    message = Message(text=text, sender=Sender.BOT, type=MessageType.TEXT)

    replies = _quick_replies(quick_replies)
    if replies:
        message.type = MessageType.QUICK_REPLY
        message.metadata = {"quick_replies": replies}

    media_kind = _media_kind(data.get("type"))
    if media_kind is not None and media:
        message.type = media_kind
        message.metadata = {MEDIA_METADATA_KEYS[media_kind]: media}

    return message


def _quick_replies(value: Any) -> list[QuickReply]:
    if not isinstance(value, list):
        return []
    replies = []
    for item in value:
        if isinstance(item, dict):
            title = str(item.get("title") or "")
            payload = str(item.get("payload") or title)
            replies.append(QuickReply(title=title, payload=payload))
        elif isinstance(item, str):
            # Bare strings: title and payload are the same
            replies.append(QuickReply(title=item, payload=item))
    return replies


def _media_kind(value: Any) -> MessageType | None:
    try:
        kind = MessageType(value)
    except ValueError:
        return None
    return kind if kind in MEDIA_METADATA_KEYS else None
