"""Exception types raised or recorded by the webchat client."""

from __future__ import annotations


class WebChatError(Exception):
    """Base class for webchat client errors."""


class ConfigError(WebChatError):
    """Required configuration is missing or invalid."""


class WebChatConnectionError(WebChatError):
    """The WebSocket transport failed.

    Recorded into ``ChatState.error`` and passed to ``on_error``; never raised
    out of the connection manager.
    """

    def __init__(self, message: str = "WebSocket connection error", cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause
