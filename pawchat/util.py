from __future__ import annotations

import os
from urllib.parse import urlsplit, urlunsplit

from .constants import DEFAULT_WS_PATH


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def chat_url(page_url: str, path: str = DEFAULT_WS_PATH) -> str:
    """Derive the chat endpoint URL from the hosting page URL.

    The scheme mirrors the page (http -> ws, https -> wss) and the host/port
    are kept; the path is always the fixed chat endpoint path. URLs that are
    already ws:// or wss:// keep their scheme.
    """

    parts = urlsplit(page_url)
    scheme = parts.scheme.lower()
    if scheme in ("https", "wss"):
        ws_scheme = "wss"
    elif scheme in ("http", "ws", ""):
        ws_scheme = "ws"
    else:
        raise ValueError(f"unsupported page scheme {parts.scheme!r}")

    if not parts.netloc:
        raise ValueError(f"page URL has no host: {page_url!r}")

    if not path.startswith("/"):
        path = "/" + path
    return urlunsplit((ws_scheme, parts.netloc, path, "", ""))


def same_id(a, b) -> bool:
    """Compare two user ids without letting bools alias the ints 0/1."""
    if a is None or b is None:
        return False
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    return a == b
