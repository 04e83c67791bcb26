"""Tests for the message decoder — frame classification and message building."""

import pytest

from webchat.models import MessageType, QuickReply, Sender
from webchat.protocol.decoder import (
    DeltaFrame,
    ErrorFrame,
    FrameType,
    MessageFrame,
    ProjectLanguageFrame,
    StreamEndFrame,
    StreamStartFrame,
    TypingFrame,
    UnknownFrame,
    classify,
    decode,
    decode_message,
    message_id_from_raw,
    parse_frame,
)


# ─── classify ────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "raw,expected",
    [
        ({"seq": 1, "v": "x"}, FrameType.DELTA),
        ({"type": "stream_start", "id": "1"}, FrameType.STREAM_START),
        ({"type": "stream_end", "id": "1"}, FrameType.STREAM_END),
        ({"type": "ready_for_message"}, FrameType.READY_FOR_MESSAGE),
        ({"type": "project_language", "data": {"language": "en"}}, FrameType.PROJECT_LANGUAGE),
        ({"type": "allow_contact_timeout"}, FrameType.ALLOW_CONTACT_TIMEOUT),
        ({"type": "error", "error": "boom"}, FrameType.ERROR),
        ({"type": "warning", "warning": "hm"}, FrameType.WARNING),
        ({"type": "typing"}, FrameType.TYPING),
        ({"type": "typing_start"}, FrameType.TYPING_START),
        ({"type": "typing_stop"}, FrameType.TYPING_STOP),
        ({"type": "pong"}, FrameType.PONG),
        ({"type": "message", "message": {"text": "hi"}}, FrameType.MESSAGE),
        ({"message": {"type": "text", "text": "hi"}}, FrameType.MESSAGE),
        ({"text": "hi"}, FrameType.MESSAGE),
        ({"type": "whatever"}, FrameType.UNKNOWN),
        ({}, FrameType.UNKNOWN),
    ],
)
def test_classify(raw, expected):
    assert classify(raw) == expected


def test_seq_and_v_with_type_is_not_delta():
    assert classify({"type": "message", "seq": 1, "v": "x", "message": {"text": "a"}}) == FrameType.MESSAGE


def test_typing_wins_over_message_content():
    frame = decode({"type": "typing", "message": {"text": "hello"}})
    assert isinstance(frame, TypingFrame)
    assert frame.active


# ─── parse_frame ─────────────────────────────────────────────────


def test_parse_frame_object():
    assert parse_frame('{"type": "pong"}') == {"type": "pong"}


@pytest.mark.parametrize("data", ["not json", "[1]", '"str"', "42", ""])
def test_parse_frame_rejects_non_objects(data):
    assert parse_frame(data) is None


# ─── decode ──────────────────────────────────────────────────────


def test_stream_ids_prefixed():
    assert decode({"type": "stream_start", "id": "abc"}) == StreamStartFrame(message_id="msg_abc")
    assert decode({"type": "stream_end", "message": {"messageId": "xyz"}}) == StreamEndFrame(
        message_id="msg_xyz"
    )


def test_message_id_prefers_message_id_field():
    assert message_id_from_raw({"id": "top", "message": {"messageId": "inner"}}) == "msg_inner"
    assert message_id_from_raw({}) is None


def test_delta_frame():
    frame = decode({"seq": 3, "v": "frag"})
    assert isinstance(frame, DeltaFrame)
    assert frame.seq == 3
    assert frame.content == "frag"
    assert frame.message_id is None


def test_error_frame_duplicate_registration():
    frame = decode({"type": "error", "error": "unable to register: client already exists"})
    assert isinstance(frame, ErrorFrame)
    assert frame.duplicate_registration

    assert not decode({"type": "error", "error": "other"}).duplicate_registration


def test_project_language_frame():
    frame = decode({"type": "project_language", "data": {"language": "es"}})
    assert isinstance(frame, ProjectLanguageFrame)
    assert frame.language == "es"


def test_typing_stop_frame():
    assert decode({"type": "typing_stop"}) == TypingFrame(active=False)


def test_unknown_frame():
    assert isinstance(decode({"type": "nope"}), UnknownFrame)


# ─── decode_message ──────────────────────────────────────────────


def test_text_message():
    message = decode_message({"type": "message", "message": {"type": "text", "text": "Hi"}})
    assert message.text == "Hi"
    assert message.type == MessageType.TEXT
    assert message.sender == Sender.BOT


def test_top_level_text_fallback():
    assert decode_message({"type": "message", "text": "Top"}).text == "Top"


def test_empty_message_dropped():
    frame = decode({"type": "message", "message": {"type": "text", "text": ""}})
    assert isinstance(frame, MessageFrame)
    assert frame.message is None


def test_quick_replies():
    message = decode_message(
        {
            "type": "message",
            "message": {
                "type": "text",
                "text": "Pick one",
                "quick_replies": [
                    {"title": "Yes", "payload": "YES"},
                    {"title": "No", "payload": "NO"},
                ],
            },
        }
    )
    assert message.type == MessageType.QUICK_REPLY
    assert message.quick_replies == [QuickReply("Yes", "YES"), QuickReply("No", "NO")]


def test_quick_replies_with_null_fields():
    message = decode_message(
        {
            "message": {
                "text": "Pick one",
                "quick_replies": [
                    {"title": None, "payload": "OK"},
                    {"title": "Later", "payload": None},
                ],
            }
        }
    )
    assert message.quick_replies == [QuickReply("", "OK"), QuickReply("Later", "Later")]


def test_quick_replies_without_text_kept():
    message = decode_message({"message": {"quick_replies": ["A", "B"]}})
    assert message.type == MessageType.QUICK_REPLY
    assert [r.payload for r in message.quick_replies] == ["A", "B"]


@pytest.mark.parametrize(
    "kind,key",
    [
        ("image", "image_url"),
        ("video", "video_url"),
        ("audio", "audio_url"),
        ("file", "file_url"),
    ],
)
def test_media_messages(kind, key):
    message = decode_message({"message": {"type": kind, "media": "https://cdn/x"}})
    assert message.type == MessageType(kind)
    assert message.metadata == {key: "https://cdn/x"}
    assert message.text == ""


def test_unrecognized_media_kind_stays_text():
    message = decode_message({"message": {"type": "sticker", "media": "https://cdn/x", "text": "t"}})
    assert message.type == MessageType.TEXT


def test_carousel_skips_media_and_quick_replies():
    text = "Deals\n<carousel><product><name>Hat</name><price>$5</price></product></carousel>"
    message = decode_message(
        {"message": {"type": "image", "media": "https://cdn/x", "text": text, "quick_replies": ["A"]}}
    )
    assert message.type == MessageType.CAROUSEL
    assert message.text == "Deals"
    assert [p.name for p in message.products] == ["Hat"]
    assert "quick_replies" not in message.metadata


def test_malformed_carousel_falls_back_to_text():
    text = "Oops <carousel><product><price>$5</price></product></carousel>"
    message = decode_message({"message": {"text": text}})
    assert message.type == MessageType.TEXT
    assert message.text == text
