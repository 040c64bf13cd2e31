"""Message queueing and delivery utilities for the chat hub."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from websockets.exceptions import ConnectionClosed

from .codec import encode
from .envelope import make_error, make_system_message

if TYPE_CHECKING:
    from .service import HubService

Outgoing = list[tuple[Any, str]]


def fmt_conn_id(conn: Any) -> str:
    cid = getattr(conn, "id", None)
    if cid is None:
        return "-"
    return str(cid)[:8]


class MessageHelper:
    """
    Helper methods for queueing and sending envelopes.

    Handles:
    - Message queueing (outgoing lists built while the state lock is held)
    - Welcome and error emission
    - Flushing an outgoing list once the lock is released, skipping peers
      that went away in the meantime
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("pawchat.hub")

    def queue_env(self, outgoing: Outgoing, conn: Any, env: dict) -> None:
        """Encode and queue an envelope for one connection."""
        outgoing.append((conn, encode(env)))

    def queue_fanout(self, outgoing: Outgoing, conns: list[Any], env: dict) -> None:
        """Queue one envelope for several connections, encoding it once."""
        payload = encode(env)
        for conn in conns:
            outgoing.append((conn, payload))

    def queue_welcome(self, outgoing: Outgoing, conn: Any) -> None:
        self.queue_env(outgoing, conn, make_system_message(self.hub.config.greeting))

    def emit_error(self, outgoing: Outgoing, conn: Any, text: str) -> None:
        self.hub.stats_manager.inc("errors_sent")
        self.queue_env(outgoing, conn, make_error(text))

    def flush(self, outgoing: Outgoing) -> int:
        """Send every queued payload; returns how many were delivered.

        Must be called without the state lock held.
        """
        sent = 0
        for conn, payload in outgoing:
            if self.send_payload(conn, payload):
                sent += 1
        return sent

    def send_payload(self, conn: Any, payload: str) -> bool:
        try:
            conn.send(payload)
        except ConnectionClosed:
            # Peer closed between routing and delivery; skip it.
            self.hub.stats_manager.inc("sends_failed")
            self.log.debug(
                "Send skipped, connection closed conn_id=%s bytes=%s",
                fmt_conn_id(conn),
                len(payload),
            )
            return False
        except Exception:
            self.hub.stats_manager.inc("sends_failed")
            self.log.debug(
                "Send failed conn_id=%s bytes=%s",
                fmt_conn_id(conn),
                len(payload),
                exc_info=True,
            )
            return False

        self.hub.stats_manager.inc("bytes_out", len(payload.encode("utf-8")))
        return True
