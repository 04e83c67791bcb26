"""
Webchat Logging — clean, colorized, protocol-aware logging.

Features:
- Color formatter for dev mode (auto-detects TTY)
- JSON structured formatter for production (WEBCHAT_LOG_FORMAT=json)
- Suppresses noisy third-party loggers (websockets, aiosqlite)
- Configurable via WEBCHAT_LOG_LEVEL, WEBCHAT_LOG_COLOR, WEBCHAT_LOG_FORMAT

Structured log extra fields (pass via logger.info(..., extra={...})):
    session_id, channel, stream_id, frame_type, attempt, delay_ms
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone


# --- Color codes ---
COLORS = {
    "DEBUG": "\033[36m",  # Cyan
    "INFO": "\033[32m",  # Green
    "WARNING": "\033[33m",  # Yellow
    "ERROR": "\033[31m",  # Red
    "CRITICAL": "\033[1;31m",  # Bold red
    "RESET": "\033[0m",
    "DIM": "\033[2m",
    "BOLD": "\033[1m",
}


class ColorFormatter(logging.Formatter):
    """Colorized log formatter for terminal output."""

    def __init__(self, use_color: bool = True):
        super().__init__(
            fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_color:
            return super().format(record)

        level_color = COLORS.get(record.levelname, "")
        reset = COLORS["RESET"]
        dim = COLORS["DIM"]

        orig_levelname = record.levelname
        orig_name = record.name

        record.levelname = f"{level_color}{record.levelname}{reset}"
        record.name = f"{dim}{record.name}{reset}"

        result = super().format(record)

        # Restore so other handlers see the plain record
        record.levelname = orig_levelname
        record.name = orig_name

        return result


# Structured log fields forwarded from logger.info(..., extra={...})
_STRUCTURED_FIELDS = (
    "session_id",
    "channel",
    "stream_id",
    "frame_type",
    "attempt",
    "delay_ms",
)


class StructuredFormatter(logging.Formatter):
    """JSON log formatter for log aggregation.

    Each log line is a single JSON object. Extra fields passed via
    logger.info("msg", extra={"stream_id": "...", "attempt": 2})
    are included at the top level for easy querying.

    Enable with: WEBCHAT_LOG_FORMAT=json
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        for key in _STRUCTURED_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)

        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def _should_use_color() -> bool:
    """Auto-detect color support."""
    env_val = os.getenv("WEBCHAT_LOG_COLOR", "auto").lower()
    if env_val == "true":
        return True
    if env_val == "false":
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def setup_logging() -> None:
    """Configure logging for the client process.

    Call this once at startup.

    Env vars:
        WEBCHAT_LOG_LEVEL  — DEBUG / INFO / WARNING / ERROR (default: INFO)
        WEBCHAT_LOG_COLOR  — true / false / auto (default: auto, TTY detection)
        WEBCHAT_LOG_FORMAT — text / json (default: text)
    """
    level_name = os.getenv("WEBCHAT_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    log_format = os.getenv("WEBCHAT_LOG_FORMAT", "text").lower()

    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers (avoid duplicate output)
    root.handlers.clear()

    if log_format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = ColorFormatter(use_color=_should_use_color())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    # Frame-level chatter from the socket and DB libraries
    for noisy_logger in ["websockets", "websockets.client", "aiosqlite"]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    logger = logging.getLogger("webchat")
    logger.debug("Logging configured (level=%s, format=%s)", level_name, log_format)
