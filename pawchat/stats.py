"""Statistics tracking and reporting for the chat hub."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import HubService


class StatsManager:
    """
    Manages hub statistics collection and reporting.

    Tracks counters for:
    - Connections opened/closed
    - Frames and bytes in/out
    - Malformed frames and error envelopes sent
    - Auth messages
    - Broadcasts, private deliveries and private misses
    - Sends skipped because the peer had gone away
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self._lock = threading.Lock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "connections_opened": 0,
            "connections_closed": 0,
            "msgs_in": 0,
            "msgs_bad": 0,
            "bytes_in": 0,
            "bytes_out": 0,
            "auths": 0,
            "broadcasts": 0,
            "private_sent": 0,
            "private_missed": 0,
            "errors_sent": 0,
            "sends_failed": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def format_stats(self) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        started_mono = self.started_monotonic
        uptime_s = (time.monotonic() - started_mono) if started_mono is not None else 0.0

        with self.hub._state_lock:
            reg = self.hub.registry.get_stats()
        c = self.snapshot()

        lines: list[str] = []
        lines.append(f"pawchat {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f}")
        lines.append(
            f"clients_total={reg['total']} "
            f"clients_identified={reg['identified']} "
            f"clients_admin={reg['admins']}"
        )
        lines.append(
            "connections: opened={} closed={}".format(
                c.get("connections_opened", 0),
                c.get("connections_closed", 0),
            )
        )
        lines.append(
            "io: msgs_in={} msgs_bad={} bytes_in={} bytes_out={} sends_failed={}".format(
                c.get("msgs_in", 0),
                c.get("msgs_bad", 0),
                c.get("bytes_in", 0),
                c.get("bytes_out", 0),
                c.get("sends_failed", 0),
            )
        )
        lines.append(
            "events: auths={} broadcasts={} private_sent={} private_missed={} errors_sent={}".format(
                c.get("auths", 0),
                c.get("broadcasts", 0),
                c.get("private_sent", 0),
                c.get("private_missed", 0),
                c.get("errors_sent", 0),
            )
        )

        return "\n".join(lines)
