from __future__ import annotations

import json


def encode(obj) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def decode(data: str | bytes):
    if isinstance(data, (bytes, bytearray)):
        data = bytes(data).decode("utf-8")
    return json.loads(data)
