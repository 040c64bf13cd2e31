from __future__ import annotations

import logging
import os
import signal
import threading
import time
from dataclasses import replace
from http import HTTPStatus
from typing import Any

from websockets.exceptions import ConnectionClosedError
from websockets.http11 import Request, Response
from websockets.sync.server import Server, ServerConnection, serve

from .config import HubRuntimeConfig, apply_config_data, diff_config_summary, load_toml
from .logging_config import configure_logging
from .messages import MessageHelper, Outgoing, fmt_conn_id
from .router import MessageRouter
from .session import ConnectionRegistry
from .stats import StatsManager
from .util import expand_path

# Listener settings are bound when the server starts; reload keeps them.
_RESTART_ONLY_FIELDS = (
    "host",
    "port",
    "ws_path",
    "max_message_bytes",
    "ping_interval_s",
    "ping_timeout_s",
)


class HubService:
    def __init__(self, config: HubRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("pawchat.hub")

        # The websockets sync server runs each connection's handler in its own
        # thread. Registry reads and writes happen under this lock; sends do not.
        self._state_lock = threading.RLock()

        self._shutdown = threading.Event()

        # Connection registry (the only shared mutable state)
        self.registry = ConnectionRegistry()

        # Message router for inbound frames
        self.router = MessageRouter(self)

        # Queueing/delivery helper
        self.message_helper = MessageHelper(self)

        # Counters reported in logs
        self.stats_manager = StatsManager(self)

        self._server: Server | None = None
        self._serve_thread: threading.Thread | None = None

    @property
    def bound_address(self) -> tuple[str, int] | None:
        if self._server is None:
            return None
        sockname = self._server.socket.getsockname()
        return str(sockname[0]), int(sockname[1])

    def start(self) -> None:
        if self._server is not None:
            return

        self.stats_manager.set_start_time()

        ping_interval = self.config.ping_interval_s
        ping_timeout = self.config.ping_timeout_s
        self._server = serve(
            self._handle_connection,
            self.config.host,
            int(self.config.port),
            process_request=self._process_request,
            ping_interval=float(ping_interval) if ping_interval and ping_interval > 0 else None,
            ping_timeout=float(ping_timeout) if ping_timeout and ping_timeout > 0 else None,
            max_size=int(self.config.max_message_bytes) or None,
        )

        self._serve_thread = threading.Thread(
            target=self._server.serve_forever, name="pawchat-serve", daemon=True
        )
        self._serve_thread.start()

        addr = self.bound_address
        self.log.info(
            "Hub running name=%s listen=%s:%s path=%s",
            self.config.hub_name,
            addr[0] if addr else self.config.host,
            addr[1] if addr else self.config.port,
            self.config.ws_path,
        )
        self.log.info(
            "Policy max_message_bytes=%s ping_interval_s=%s ping_timeout_s=%s",
            self.config.max_message_bytes,
            self.config.ping_interval_s,
            self.config.ping_timeout_s,
        )

    def run_forever(self) -> None:
        if self._server is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())
        if hasattr(signal, "SIGHUP"):
            signal.signal(signal.SIGHUP, lambda *_: self.reload_config())

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def stop(self) -> None:
        if self._shutdown.is_set():
            return
        self._shutdown.set()

        with self._state_lock:
            conns = self.registry.clear_all()

        for conn in conns:
            try:
                conn.close()
            except Exception:
                self.log.debug("Close failed conn_id=%s", fmt_conn_id(conn), exc_info=True)

        if self._server is not None:
            self._server.shutdown()
        if self._serve_thread is not None:
            self._serve_thread.join(timeout=5.0)

        self.log.info("Hub stopped\n%s", self.stats_manager.format_stats())

    def reload_config(self) -> bool:
        """Re-read the config file and apply greeting and logging changes."""
        cfg_path = expand_path(self.config.config_path) if self.config.config_path else None
        if not cfg_path or not os.path.exists(cfg_path):
            self.log.warning("Reload failed: config_path not set or missing")
            return False

        old_cfg = self.config
        try:
            new_cfg = apply_config_data(old_cfg, load_toml(cfg_path))
        except Exception as e:
            self.log.warning("Reload failed: config parse error: %s", e)
            return False

        kept = {k: getattr(old_cfg, k) for k in _RESTART_ONLY_FIELDS}
        skipped = [k for k, v in kept.items() if getattr(new_cfg, k) != v]
        new_cfg = replace(new_cfg, **kept)

        with self._state_lock:
            self.config = new_cfg

        try:
            configure_logging(self.config)
        except Exception:
            self.log.exception("Failed to reconfigure logging")

        changes = diff_config_summary(old_cfg, new_cfg)
        self.log.info(
            "Reloaded config changes=%s", "; ".join(changes) if changes else "(none)"
        )
        if skipped:
            self.log.warning("Restart required to apply: %s", ", ".join(skipped))
        return True

    def _process_request(
        self, connection: ServerConnection, request: Request
    ) -> Response | None:
        path = request.path.split("?", 1)[0]
        if path != self.config.ws_path:
            self.log.debug("Rejected handshake path=%r", path)
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")
        return None

    def _handle_connection(self, conn: ServerConnection) -> None:
        self._on_open(conn)
        try:
            for raw in conn:
                self._on_message(conn, raw)
        except ConnectionClosedError as e:
            self.log.debug("Connection dropped conn_id=%s err=%s", fmt_conn_id(conn), e)
        finally:
            self._on_close(conn)

    def _on_open(self, conn: Any) -> None:
        # The welcome is delivered before the handle is registered, so no
        # other connection thread can reach the client ahead of it.
        outgoing: Outgoing = []
        self.message_helper.queue_welcome(outgoing, conn)
        self.message_helper.flush(outgoing)

        with self._state_lock:
            self.registry.register(conn)

        self.stats_manager.inc("connections_opened")
        self.log.info(
            "Client connected conn_id=%s remote=%s",
            fmt_conn_id(conn),
            getattr(conn, "remote_address", None),
        )

    def _on_message(self, conn: Any, raw: str | bytes) -> None:
        # Route under the lock, deliver after releasing it so a slow peer
        # cannot stall the other connection threads.
        outgoing: Outgoing = []
        with self._state_lock:
            self.router.route_message(conn, raw, outgoing)

        if self.log.isEnabledFor(logging.DEBUG) and outgoing:
            self.log.debug(
                "Sending %d envelope(s) conn_id=%s", len(outgoing), fmt_conn_id(conn)
            )
        self.message_helper.flush(outgoing)

    def _on_close(self, conn: Any) -> None:
        with self._state_lock:
            identity = self.registry.deregister(conn)

        self.stats_manager.inc("connections_closed")
        self.log.info(
            "Client disconnected conn_id=%s user_id=%r",
            fmt_conn_id(conn),
            identity.user_id if identity is not None else None,
        )
