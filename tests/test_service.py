import json

import pytest
from websockets.exceptions import ConnectionClosed, InvalidStatus
from websockets.sync.client import connect

from conftest import wait_for
from pawchat.constants import DEFAULT_GREETING


def _recv(ws, timeout: float = 3.0) -> dict:
    return json.loads(ws.recv(timeout=timeout))


def _auth(ws, user_id, username, is_admin=False) -> dict:
    ws.send(json.dumps({"type": "auth", "userId": user_id, "username": username, "isAdmin": is_admin}))
    return _recv(ws)


def test_welcome_on_connect(hub, hub_url) -> None:
    with connect(hub_url) as ws:
        env = _recv(ws)
        assert env["type"] == "system_message"
        assert env["data"]["message"] == DEFAULT_GREETING
        assert env["data"]["timestamp"].endswith("Z")


def test_other_paths_are_not_upgraded(hub) -> None:
    host, port = hub.bound_address
    with pytest.raises(InvalidStatus) as excinfo:
        with connect(f"ws://{host}:{port}/chat"):
            pass
    assert excinfo.value.response.status_code == 404


def test_query_string_is_ignored_for_path_match(hub, hub_url) -> None:
    with connect(hub_url + "?token=abc") as ws:
        assert _recv(ws)["type"] == "system_message"


def test_private_message_end_to_end(hub, hub_url) -> None:
    with connect(hub_url) as a, connect(hub_url) as b, connect(hub_url) as c:
        for ws in (a, b, c):
            assert _recv(ws)["type"] == "system_message"

        assert _auth(a, 1, "alice") == {
            "type": "auth_success",
            "data": {"userId": 1, "username": "alice", "isAdmin": False},
        }
        assert _auth(b, 2, "bob")["type"] == "auth_success"

        a.send(json.dumps({"type": "chat_message", "message": "hi", "recipientId": 2}))

        got_b = _recv(b)
        got_a = _recv(a)
        assert got_b["type"] == "chat_message"
        assert got_b["data"]["message"] == "hi"
        assert got_b["data"]["sender"] == {"userId": 1, "username": "alice", "isAdmin": False}
        assert got_a == got_b

        with pytest.raises(TimeoutError):
            c.recv(timeout=0.3)


def test_broadcast_end_to_end(hub, hub_url) -> None:
    with connect(hub_url) as a, connect(hub_url) as b, connect(hub_url) as c:
        for ws in (a, b, c):
            _recv(ws)

        b.send(json.dumps({"type": "chat_message", "message": "hello everyone"}))

        for ws in (a, b, c):
            env = _recv(ws)
            assert env["type"] == "chat_message"
            assert env["data"]["sender"]["userId"] == "guest"
            assert env["data"]["message"] == "hello everyone"


def test_malformed_frame_keeps_connection_open(hub, hub_url) -> None:
    with connect(hub_url) as a:
        _recv(a)
        a.send("{{{ nope")
        assert _recv(a) == {"type": "error", "data": {"message": "Invalid message format"}}

        a.send(json.dumps({"type": "chat_message", "message": "ok"}))
        assert _recv(a)["data"]["message"] == "ok"


def test_disconnect_deregisters(hub, hub_url) -> None:
    with connect(hub_url) as a:
        _recv(a)
        with connect(hub_url) as b:
            _recv(b)
            _auth(b, 2, "bob")
            assert wait_for(lambda: len(hub.registry) == 2)

        assert wait_for(lambda: len(hub.registry) == 1)
        with hub._state_lock:
            assert hub.registry.lookup_by_user_id(2) is None

        a.send(json.dumps({"type": "chat_message", "message": "hi", "recipientId": 2}))
        with pytest.raises(TimeoutError):
            a.recv(timeout=0.3)


def test_stop_closes_clients(hub, hub_url) -> None:
    with connect(hub_url) as ws:
        _recv(ws)
        hub.stop()
        assert len(hub.registry) == 0
        with pytest.raises(ConnectionClosed):
            ws.recv(timeout=2.0)
