from __future__ import annotations

import json
import time
import uuid
from types import SimpleNamespace

import pytest
from websockets.exceptions import ConnectionClosedOK
from websockets.protocol import State

from pawchat.config import HubRuntimeConfig
from pawchat.service import HubService


class FakeConnection:
    """Stands in for a websockets ServerConnection in routing tests."""

    def __init__(self, state: State = State.OPEN) -> None:
        self.protocol = SimpleNamespace(state=state)
        self.id = uuid.uuid4()
        self.sent: list[dict] = []

    def send(self, payload: str) -> None:
        if self.protocol.state is not State.OPEN:
            raise ConnectionClosedOK(None, None)
        self.sent.append(json.loads(payload))

    def close(self) -> None:
        self.protocol.state = State.CLOSED

    def of_type(self, msg_type: str) -> list[dict]:
        return [env for env in self.sent if env.get("type") == msg_type]


def wait_for(predicate, timeout: float = 3.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture
def offline_hub() -> HubService:
    """A hub whose handlers are driven directly, without a listening socket."""
    return HubService(HubRuntimeConfig())


@pytest.fixture
def hub():
    svc = HubService(
        HubRuntimeConfig(host="127.0.0.1", port=0, ping_interval_s=0, ping_timeout_s=0)
    )
    svc.start()
    yield svc
    svc.stop()


@pytest.fixture
def hub_url(hub: HubService) -> str:
    host, port = hub.bound_address
    return f"ws://{host}:{port}/ws"
