"""Tests for StreamReassembler — ordered delta reassembly."""

import itertools

import pytest

from webchat.models import MessageStatus, Sender
from webchat.protocol.reassembler import StreamReassembler
from webchat.state import ChatStore


@pytest.fixture
def store():
    return ChatStore()


@pytest.fixture
def reassembler(store):
    return StreamReassembler(store)


FRAGMENTS = ["The ", "quick ", "brown ", "fox"]


@pytest.mark.parametrize("order", list(itertools.permutations(range(1, 5))))
def test_any_permutation_reassembles_in_order(store, reassembler, order):
    reassembler.on_stream_start("msg_a")
    for seq in order:
        reassembler.on_delta(seq, FRAGMENTS[seq - 1])
    reassembler.on_stream_end("msg_a")

    (message,) = store.state.messages
    assert message.text == "The quick brown fox"
    assert message.status == MessageStatus.DELIVERED
    assert reassembler.pending_deltas == {}


def test_hello_scenario(store, reassembler):
    reassembler.on_stream_start("msg_m1")
    reassembler.on_delta(2, "lo")
    reassembler.on_delta(1, "Hel")
    reassembler.on_stream_end("msg_m1")

    (message,) = store.state.messages
    assert message.id == "msg_m1"
    assert message.text == "Hello"
    assert message.status == MessageStatus.DELIVERED
    assert message.sender == Sender.BOT


def test_stream_start_raises_typing(store, reassembler):
    reassembler.on_stream_start("msg_a")

    assert store.state.is_typing
    assert store.state.messages == []
    assert reassembler.active_stream_id == "msg_a"
    assert reassembler.next_expected_seq == 1


def test_first_delta_clears_typing_and_emits_placeholder(store, reassembler):
    reassembler.on_stream_start("msg_a")
    reassembler.on_delta(3, "later")

    assert not store.state.is_typing
    (message,) = store.state.messages
    assert message.text == ""
    assert message.status == MessageStatus.STREAMING
    assert reassembler.pending_deltas == {3: "later"}


def test_partial_text_visible_while_streaming(store, reassembler):
    reassembler.on_stream_start("msg_a")
    reassembler.on_delta(1, "Hi")
    reassembler.on_delta(3, "!")

    (message,) = store.state.messages
    assert message.text == "Hi"
    assert message.status == MessageStatus.STREAMING

    reassembler.on_delta(2, " there")
    assert store.state.messages[0].text == "Hi there!"
    assert reassembler.next_expected_seq == 4


def test_duplicate_delta_ignored(store, reassembler):
    reassembler.on_stream_start("msg_a")
    reassembler.on_delta(1, "a")
    reassembler.on_delta(2, "b")
    reassembler.on_delta(1, "X")
    reassembler.on_delta(2, "Y")

    assert store.state.messages[0].text == "ab"
    assert reassembler.next_expected_seq == 3


@pytest.mark.parametrize("seq", [0, -1, None, "1", 1.5, True])
def test_invalid_seq_ignored(store, reassembler, seq):
    reassembler.on_stream_start("msg_a")
    reassembler.on_delta(seq, "bad")

    assert store.state.messages == []
    assert reassembler.next_expected_seq == 1
    assert reassembler.pending_deltas == {}


def test_stream_end_without_deltas_delivers_empty_message(store, reassembler):
    reassembler.on_stream_start("msg_a")
    delivered = reassembler.on_stream_end("msg_a")

    assert delivered is not None
    (message,) = store.state.messages
    assert message.text == ""
    assert message.status == MessageStatus.DELIVERED
    assert not store.state.is_typing
    assert reassembler.active_stream_id is None


def test_stream_end_for_unknown_stream_is_noop(store, reassembler):
    assert reassembler.on_stream_end("msg_nope") is None
    assert store.state.messages == []


def test_orphan_delta_synthesizes_stream(store, reassembler):
    reassembler.on_delta(1, "orphan")

    (message,) = store.state.messages
    assert message.id.startswith("msg_")
    assert message.text == "orphan"
    assert message.status == MessageStatus.STREAMING
    assert reassembler.active_stream_id == message.id


def test_orphan_delta_uses_frame_id(store, reassembler):
    reassembler.on_delta(1, "x", message_id="msg_42")
    reassembler.on_stream_end("msg_42")

    (message,) = store.state.messages
    assert message.id == "msg_42"
    assert message.status == MessageStatus.DELIVERED


def test_new_stream_discards_pending_buffer(store, reassembler):
    reassembler.on_stream_start("msg_a")
    reassembler.on_delta(2, "stale")
    reassembler.on_stream_start("msg_b")

    assert reassembler.pending_deltas == {}
    reassembler.on_delta(1, "fresh")
    reassembler.on_delta(2, "!")
    reassembler.on_stream_end("msg_b")

    assert store.find("msg_b").text == "fresh!"


def test_superseded_stream_is_released_and_delivered(store, reassembler):
    reassembler.on_stream_start("msg_a")
    reassembler.on_delta(1, "partial")
    reassembler.on_stream_start("msg_b")

    assert "msg_a" not in reassembler.streams
    superseded = store.find("msg_a")
    assert superseded.text == "partial"
    assert superseded.status == MessageStatus.DELIVERED
    assert store.state.is_typing


def test_abandoned_streams_do_not_accumulate(store, reassembler):
    for i in range(100):
        reassembler.on_stream_start(f"msg_{i}")
        reassembler.on_delta(1, "partial")

    assert list(reassembler.streams) == ["msg_99"]
    statuses = [m.status for m in store.state.messages]
    assert statuses.count(MessageStatus.STREAMING) == 1
    assert statuses.count(MessageStatus.DELIVERED) == 99


def test_delivered_message_is_immutable(store, reassembler):
    reassembler.on_stream_start("msg_a")
    reassembler.on_delta(1, "done")
    reassembler.on_stream_end("msg_a")

    # Late fragment tagged with the same id
    reassembler.on_delta(1, "late", message_id="msg_a")

    (message,) = store.state.messages
    assert message.text == "done"
    assert message.status == MessageStatus.DELIVERED


def test_consecutive_streams(store, reassembler):
    for stream_id, text in [("msg_1", "first"), ("msg_2", "second")]:
        reassembler.on_stream_start(stream_id)
        reassembler.on_delta(1, text)
        reassembler.on_stream_end(stream_id)

    assert [m.text for m in store.state.messages] == ["first", "second"]
    assert all(m.status == MessageStatus.DELIVERED for m in store.state.messages)
    assert reassembler.streams == {}
