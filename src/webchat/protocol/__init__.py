"""
Webchat wire protocol — inbound frame decoding.

Key components:
- decoder: classify raw JSON frames into a tagged Frame union
- reassembler: ordered reassembly of streamed reply deltas
- carousel: product carousel markup embedded in message text
"""

from webchat.protocol.decoder import (
    FrameType,
    classify,
    decode,
    decode_message,
    parse_frame,
)
from webchat.protocol.reassembler import StreamReassembler

__all__ = [
    "FrameType",
    "classify",
    "decode",
    "decode_message",
    "parse_frame",
    "StreamReassembler",
]
