"""
Webchat Configuration — single source of truth for all client settings.

Reads from environment variables (and a local .env file) with sensible
defaults. No config files beyond .env, just env vars.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from webchat.errors import ConfigError

load_dotenv()


def _optional(name: str) -> str | None:
    value = os.getenv(name, "")
    return value or None


@dataclass(frozen=True)
class WebChatConfig:
    """Connection settings for one webchat channel."""

    socket_url: str = ""
    host: str = "https://flows.weni.ai"
    channel_uuid: str = ""
    init_payload: str | None = None
    session_token: str | None = None
    session_id: str | None = None
    # Keepalive
    ping_interval: float = 30.0  # seconds
    # Reconnection
    max_reconnect_attempts: int = 5
    reconnect_base_delay: float = 1.0  # seconds, doubles each attempt
    reconnect_max_delay: float = 10.0
    # Session persistence
    session_db_path: str = "webchat_sessions.db"

    @classmethod
    def from_env(cls) -> WebChatConfig:
        return cls(
            socket_url=os.getenv("WEBCHAT_SOCKET_URL", ""),
            host=os.getenv("WEBCHAT_HOST", "https://flows.weni.ai"),
            channel_uuid=os.getenv("WEBCHAT_CHANNEL_UUID", ""),
            init_payload=_optional("WEBCHAT_INIT_PAYLOAD"),
            session_token=_optional("WEBCHAT_SESSION_TOKEN"),
            session_id=_optional("WEBCHAT_SESSION_ID"),
            ping_interval=float(os.getenv("WEBCHAT_PING_INTERVAL", "30.0")),
            max_reconnect_attempts=int(
                os.getenv("WEBCHAT_MAX_RECONNECT_ATTEMPTS", "5")
            ),
            reconnect_base_delay=float(
                os.getenv("WEBCHAT_RECONNECT_BASE_DELAY", "1.0")
            ),
            reconnect_max_delay=float(os.getenv("WEBCHAT_RECONNECT_MAX_DELAY", "10.0")),
            session_db_path=os.getenv("WEBCHAT_SESSION_DB", "webchat_sessions.db"),
        )

    def validate(self) -> None:
        """Raise ConfigError if the settings cannot produce a connection."""
        missing = [
            name
            for name, value in (
                ("socket_url", self.socket_url),
                ("channel_uuid", self.channel_uuid),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"Missing required webchat settings: {', '.join(missing)}")

    @property
    def socket_host(self) -> str:
        """Socket URL with any scheme prefix removed."""
        return strip_scheme(self.socket_url).rstrip("/")

    @property
    def ws_url(self) -> str:
        """Secure WebSocket endpoint — always wss://<socket_host>/ws."""
        return f"wss://{self.socket_host}/ws"

    @property
    def callback_url(self) -> str:
        return f"{self.host.rstrip('/')}/c/wwc/{self.channel_uuid}/receive"


def strip_scheme(url: str) -> str:
    for prefix in ("https://", "http://", "wss://", "ws://", "//"):
        if url.startswith(prefix):
            return url[len(prefix) :]
    return url


# Singleton — import this wherever you need env-derived defaults
config = WebChatConfig.from_env()
