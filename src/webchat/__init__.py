"""
Webchat — asyncio client for the Weni webchat WebSocket protocol.

Usage:
    from webchat import ConnectionManager, WebChatConfig

    manager = ConnectionManager(WebChatConfig.from_env(), on_message=print)
    await manager.connect()
"""

from webchat.client import ConnectionManager, backoff_delay
from webchat.core.config import WebChatConfig
from webchat.errors import ConfigError, WebChatConnectionError, WebChatError
from webchat.models import (
    CarouselProduct,
    ConnectionStatus,
    Message,
    MessageStatus,
    MessageType,
    QuickReply,
    Sender,
)
from webchat.session.store import SessionStore
from webchat.state import ChatState

__all__ = [
    "ConnectionManager",
    "backoff_delay",
    "WebChatConfig",
    "ConfigError",
    "WebChatConnectionError",
    "WebChatError",
    "CarouselProduct",
    "ConnectionStatus",
    "Message",
    "MessageStatus",
    "MessageType",
    "QuickReply",
    "Sender",
    "SessionStore",
    "ChatState",
]
