import re

import pytest

from pawchat.constants import ERR_INVALID_FORMAT
from pawchat.envelope import (
    EnvelopeError,
    make_auth,
    make_auth_success,
    make_chat_message,
    make_chat_request,
    make_error,
    make_system_message,
    msg_id,
    now_iso,
    parse_inbound,
)

ISO_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


def test_now_iso_is_utc_with_millis() -> None:
    assert ISO_RE.match(now_iso())


def test_msg_id_strictly_increases() -> None:
    ids = [msg_id() for _ in range(500)]
    assert ids == sorted(set(ids))


def test_parse_inbound_accepts_objects() -> None:
    env = parse_inbound('{"type":"chat_message","message":"hi"}')
    assert env == {"type": "chat_message", "message": "hi"}


def test_parse_inbound_allows_unknown_types_and_fields() -> None:
    env = parse_inbound('{"type":"typing","future":true}')
    assert env["type"] == "typing"


@pytest.mark.parametrize("raw", ["not json", "{", "", b"\xff\xfe"])
def test_parse_inbound_rejects_unparsable(raw) -> None:
    with pytest.raises(EnvelopeError):
        parse_inbound(raw)


def test_parse_inbound_rejects_null() -> None:
    with pytest.raises(EnvelopeError):
        parse_inbound("null")


@pytest.mark.parametrize("raw", ["[1, 2]", '"auth"', "42", "true"])
def test_parse_inbound_treats_non_objects_as_untyped(raw) -> None:
    assert parse_inbound(raw) == {}


def test_envelope_error_is_value_error() -> None:
    assert issubclass(EnvelopeError, ValueError)


def test_system_message_shape() -> None:
    env = make_system_message("welcome", ts="2024-01-01T00:00:00.000Z")
    assert env == {
        "type": "system_message",
        "data": {"message": "welcome", "timestamp": "2024-01-01T00:00:00.000Z"},
    }


def test_system_message_stamps_time() -> None:
    env = make_system_message("welcome")
    assert ISO_RE.match(env["data"]["timestamp"])


def test_chat_message_shape() -> None:
    sender = {"userId": 1, "username": "alice", "isAdmin": False}
    env = make_chat_message("hi", sender, mid=7, ts="2024-01-01T00:00:00.000Z")
    assert env == {
        "type": "chat_message",
        "data": {
            "id": 7,
            "message": "hi",
            "sender": sender,
            "timestamp": "2024-01-01T00:00:00.000Z",
        },
    }


def test_chat_message_assigns_id_and_copies_sender() -> None:
    sender = {"userId": "guest", "username": "Guest", "isAdmin": False}
    env = make_chat_message("hi", sender)
    assert isinstance(env["data"]["id"], int)
    assert env["data"]["sender"] == sender
    assert env["data"]["sender"] is not sender


def test_chat_message_omits_missing_text() -> None:
    env = make_chat_message(None, {"userId": "guest", "username": "Guest", "isAdmin": False})
    assert "message" not in env["data"]


def test_error_and_auth_success_shapes() -> None:
    assert make_error(ERR_INVALID_FORMAT) == {
        "type": "error",
        "data": {"message": "Invalid message format"},
    }
    assert make_auth_success({"userId": 3, "username": "bob"}) == {
        "type": "auth_success",
        "data": {"userId": 3, "username": "bob"},
    }


def test_client_envelopes_are_flat() -> None:
    assert make_auth(5, "carol", 1) == {
        "type": "auth",
        "userId": 5,
        "username": "carol",
        "isAdmin": True,
    }
    assert make_chat_request("hello") == {"type": "chat_message", "message": "hello"}
    assert make_chat_request("psst", recipient_id=2) == {
        "type": "chat_message",
        "message": "psst",
        "recipientId": 2,
    }
