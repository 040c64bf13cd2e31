from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Any

from .codec import decode
from .constants import (
    D_ID,
    D_MESSAGE,
    D_SENDER,
    D_TIMESTAMP,
    F_IS_ADMIN,
    F_MESSAGE,
    F_RECIPIENT_ID,
    F_USER_ID,
    F_USERNAME,
    K_DATA,
    K_TYPE,
    T_AUTH,
    T_AUTH_SUCCESS,
    T_CHAT,
    T_ERROR,
    T_SYSTEM,
)


class EnvelopeError(ValueError):
    """Raised when an inbound frame is not a usable envelope."""


_id_lock = threading.Lock()
_last_id = 0


def now_ms() -> int:
    return int(time.time() * 1000)


def now_iso() -> str:
    ts = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return ts.replace("+00:00", "Z")


def msg_id() -> int:
    """Time-based message id, strictly increasing within this process."""
    global _last_id
    with _id_lock:
        mid = now_ms()
        if mid <= _last_id:
            mid = _last_id + 1
        _last_id = mid
        return mid


def parse_inbound(raw: str | bytes) -> dict:
    try:
        env = decode(raw)
    except (UnicodeDecodeError, ValueError) as e:
        raise EnvelopeError(f"unparsable frame: {e}") from e

    if env is None:
        raise EnvelopeError("envelope is null")
    if not isinstance(env, dict):
        # Arrays and scalars carry no type; routing treats them as unknown.
        return {}
    return env


def _outbound(msg_type: str, data: dict[str, Any]) -> dict:
    return {K_TYPE: msg_type, K_DATA: data}


def make_auth_success(identity: dict[str, Any]) -> dict:
    return _outbound(T_AUTH_SUCCESS, dict(identity))


def make_system_message(text: str, *, ts: str | None = None) -> dict:
    return _outbound(T_SYSTEM, {D_MESSAGE: text, D_TIMESTAMP: ts or now_iso()})


def make_chat_message(
    text: Any,
    sender: dict[str, Any],
    *,
    mid: int | None = None,
    ts: str | None = None,
) -> dict:
    data: dict[str, Any] = {D_ID: mid if mid is not None else msg_id()}
    if text is not None:
        data[D_MESSAGE] = text
    data[D_SENDER] = dict(sender)
    data[D_TIMESTAMP] = ts or now_iso()
    return _outbound(T_CHAT, data)


def make_error(text: str) -> dict:
    return _outbound(T_ERROR, {D_MESSAGE: text})


# Client -> hub envelopes are flat (no "data" wrapper).


def make_auth(user_id: Any, username: str | None, is_admin: bool) -> dict:
    return {
        K_TYPE: T_AUTH,
        F_USER_ID: user_id,
        F_USERNAME: username,
        F_IS_ADMIN: bool(is_admin),
    }


def make_chat_request(text: str, *, recipient_id: Any = None) -> dict:
    env: dict[str, Any] = {K_TYPE: T_CHAT, F_MESSAGE: text}
    if recipient_id is not None:
        env[F_RECIPIENT_ID] = recipient_id
    return env
