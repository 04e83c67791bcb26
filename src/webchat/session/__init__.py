"""
Session persistence — stable per-channel visitor identifiers.

Key components:
- SessionStore: SQLite-backed channel → session id mapping
"""

from webchat.session.store import SessionStore, storage_key

__all__ = ["SessionStore", "storage_key"]
