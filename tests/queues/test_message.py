"""Tests for the message model and wire codec."""

import pytest

from jobqueue_rabbitmq.queue import (
    Message,
    MessageDecodeError,
    MessageState,
    QueueException,
    decode_message,
    encode_message,
)


class TestMessage:
    """Test Message construction and state."""

    def test_new_message_defaults(self):
        """Test a freshly created message."""
        message = Message({"task": "resize"})

        assert message.payload == {"task": "resize"}
        assert message.identifier is None
        assert message.state == MessageState.NEW
        assert message.original_value is None

    def test_keyword_construction(self):
        """Test creating a message with keyword arguments."""
        message = Message(payload=[1, 2, 3], identifier="7")

        assert message.payload == [1, 2, 3]
        assert message.identifier == "7"

    def test_empty_payload(self):
        """Test a message without payload."""
        assert Message().payload is None

    def test_state_values_in_transition_order(self):
        """Test the lifecycle states."""
        assert [state.value for state in MessageState] == [
            "new",
            "published",
            "received",
            "done",
        ]


class TestCodec:
    """Test encode_message/decode_message."""

    @pytest.mark.parametrize(
        "payload",
        [
            "hello",
            "Grüße, 世界",
            42,
            3.5,
            None,
            True,
            [1, "two", {"three": 3}],
            {"task": "resize", "size": [640, 480], "meta": {"retry": False}},
        ],
    )
    def test_payload_survives_round_trip(self, payload):
        """Test decoding an encoded message restores the payload."""
        decoded = decode_message(encode_message(Message(payload)))

        assert decoded.payload == payload

    def test_encode_sets_original_value(self):
        """Test encoding stores the bytes on the message."""
        message = Message("payload")

        encoded = encode_message(message)

        assert isinstance(encoded, bytes)
        assert message.original_value == encoded

    def test_encode_omits_missing_identifier(self):
        """Test that a message without identifier encodes only its payload."""
        assert encode_message(Message("x")) == b'{"payload":"x"}'

    def test_encode_includes_identifier(self):
        """Test that an identifier travels with the message."""
        decoded = decode_message(encode_message(Message("x", identifier="abc")))

        assert decoded.identifier == "abc"

    def test_decode_stores_original_value(self):
        """Test decoding keeps the raw bytes."""
        raw = b'{"payload": {"a": 1}}'

        decoded = decode_message(raw)

        assert decoded.original_value == raw
        assert decoded.state == MessageState.NEW
        assert decoded.identifier is None

    def test_reencoding_is_stable(self):
        """Test encoding a decoded message reproduces the bytes."""
        raw = encode_message(Message({"b": [1, 2], "a": "z"}))

        assert encode_message(decode_message(raw)) == raw

    def test_numeric_identifier_becomes_string(self):
        """Test identifiers are always strings."""
        assert decode_message(b'{"payload": 1, "identifier": 5}').identifier == "5"

    def test_decode_invalid_json(self):
        """Test decoding bytes that are not JSON."""
        with pytest.raises(MessageDecodeError) as exc_info:
            decode_message(b"not json")

        assert exc_info.value.original_error is not None
        assert isinstance(exc_info.value, QueueException)

    @pytest.mark.parametrize("raw", [b'{"identifier": "1"}', b"[1, 2]", b'"text"'])
    def test_decode_without_payload(self, raw):
        """Test decoding JSON that is not an encoded message."""
        with pytest.raises(MessageDecodeError):
            decode_message(raw)
