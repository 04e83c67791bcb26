"""
Stream Reassembler — ordered delta reassembly for streamed bot replies.

The backend streams a reply as numbered fragments:

    stream_start(id) → {seq: 1, v: "Hel"} → {seq: 2, v: "lo"} → stream_end(id)

Distinct delta frames are not guaranteed to arrive in order, so fragments
ahead of the next expected sequence number are parked in a pending buffer
and drained as soon as the gap closes. Fragments behind it are duplicates
and are dropped.

Only one stream is active at a time: a new stream_start (or a delta with no
active stream) discards the previous stream's pending buffer and delivers
whatever contiguous text it had. Memory is bounded by the out-of-order
window of a single reply.

The reassembler writes straight into the ChatStore:
- typing indicator on at stream_start, off at the first delta
- a ``streaming`` message that grows as contiguous text arrives
- ``delivered`` with the final text at stream_end
"""

from __future__ import annotations

import logging
import time
import uuid

from webchat.models import Message, MessageStatus, Sender, StreamState
from webchat.protocol.decoder import MESSAGE_ID_PREFIX
from webchat.state import ChatStore

logger = logging.getLogger(__name__)

STREAM_INITIAL_SEQUENCE = 1


class StreamReassembler:
    def __init__(self, store: ChatStore):
        self.store = store
        self.streams: dict[str, StreamState] = {}
        self.active_stream_id: str | None = None
        self.pending_deltas: dict[int, str] = {}
        self.next_expected_seq = STREAM_INITIAL_SEQUENCE
        self.emitted = False

    def reset(self, stream_id: str | None = None) -> None:
        """Idle state, or a fresh state for ``stream_id``."""
        self.active_stream_id = stream_id
        self.pending_deltas = {}
        self.next_expected_seq = STREAM_INITIAL_SEQUENCE
        self.emitted = False

    def text_of(self, stream_id: str) -> str | None:
        stream = self.streams.get(stream_id)
        return stream.text if stream else None

    # ─── Events ──────────────────────────────────────────────────

    def on_stream_start(self, stream_id: str) -> None:
        logger.debug("Stream started", extra={"stream_id": stream_id})
        if self.active_stream_id is not None and self.active_stream_id != stream_id:
            self._supersede(self.active_stream_id)
        self.reset(stream_id)
        self.streams[stream_id] = StreamState(id=stream_id)
        # Reply is being generated, no content yet
        self.store.set_typing(True)

    def on_delta(self, seq: object, content: str, message_id: str | None = None) -> None:
        if not _is_sequence_number(seq):
            logger.debug("Ignoring delta with invalid seq %r", seq)
            return

        if self.active_stream_id is None:
            stream_id = message_id or f"{MESSAGE_ID_PREFIX}{uuid.uuid4()}"
            logger.debug("Synthesizing stream for orphan delta", extra={"stream_id": stream_id})
            self.reset(stream_id)
            # The first in-order append creates the message
            self.emitted = True
            self.streams[stream_id] = StreamState(id=stream_id)

        stream_id = self.active_stream_id

        if self.next_expected_seq == STREAM_INITIAL_SEQUENCE:
            self.store.set_typing(False)
            if not self.emitted:
                self.emitted = True
                # Empty streaming message so the UI can show a live cursor
                self.store.upsert_streaming(stream_id, "")

        if seq == self.next_expected_seq:
            self._append(stream_id, content)
            self.next_expected_seq += 1
            self._drain(stream_id)
        elif seq > self.next_expected_seq:
            self.pending_deltas[seq] = content
        else:
            logger.debug(
                "Dropping stale delta seq=%d (expected %d)",
                seq,
                self.next_expected_seq,
                extra={"stream_id": stream_id},
            )

    def on_stream_end(self, stream_id: str) -> Message | None:
        """Finalize a stream; returns the delivered message, if any."""
        self.store.set_typing(False)

        stream = self.streams.pop(stream_id, None)
        final_text = stream.text if stream else ""

        delivered = self.store.deliver(stream_id, final_text)
        if delivered is None and stream is not None:
            # Started but no delta ever arrived
            delivered = Message(
                id=stream_id,
                text=final_text,
                sender=Sender.BOT,
                status=MessageStatus.DELIVERED,
            )
            self.store.append(delivered)

        if self.pending_deltas and self.active_stream_id == stream_id:
            logger.warning(
                "Stream ended with %d undelivered fragment(s)",
                len(self.pending_deltas),
                extra={"stream_id": stream_id},
            )

        if self.active_stream_id == stream_id:
            self.reset()

        logger.debug("Stream ended", extra={"stream_id": stream_id})
        return delivered

    # ─── Internals ───────────────────────────────────────────────

    def _supersede(self, stream_id: str) -> None:
        """Finalize a stream whose stream_end never arrived."""
        stream = self.streams.pop(stream_id, None)
        if stream is None:
            return
        logger.warning(
            "Stream superseded before stream_end (%d fragment(s) pending)",
            len(self.pending_deltas),
            extra={"stream_id": stream_id},
        )
        self.store.deliver(stream_id, stream.text)

    def _append(self, stream_id: str, content: str) -> None:
        stream = self.streams.get(stream_id)
        if stream is None:
            return
        stream.text += content
        stream.timestamp = time.time()
        self.store.upsert_streaming(stream_id, stream.text)

    def _drain(self, stream_id: str) -> None:
        while self.next_expected_seq in self.pending_deltas:
            content = self.pending_deltas.pop(self.next_expected_seq)
            self._append(stream_id, content)
            self.next_expected_seq += 1


def _is_sequence_number(seq: object) -> bool:
    return isinstance(seq, int) and not isinstance(seq, bool) and seq >= STREAM_INITIAL_SEQUENCE
