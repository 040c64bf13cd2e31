"""Client-side chat widget controller.

Owns one WebSocket per "widget open" session, keeps the local transcript and
connection status, and degrades to a local fallback reply when the channel is
not available. Rendering is left to the caller: transcript changes and
notifications are reported through callbacks.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

from websockets.exceptions import ConnectionClosed, ConnectionClosedError
from websockets.sync.client import ClientConnection, connect

from .codec import decode, encode
from .constants import (
    D_ID,
    D_MESSAGE,
    D_SENDER,
    D_TIMESTAMP,
    DEFAULT_WS_PATH,
    F_USER_ID,
    GUEST_USER_ID,
    K_DATA,
    K_TYPE,
    T_CHAT,
    T_ERROR,
    T_SYSTEM,
)
from .envelope import make_auth, make_chat_request, now_iso
from .util import chat_url, same_id

GREETING_TEXT = (
    "Hello! How can we help you today? Our team is here to assist with pet "
    "adoptions, care questions, or emergencies."
)
MENU_TEXTS = (
    "Select an option or type your question:",
    "• Emergency pet care assistance\n"
    "• Adoption process questions\n"
    "• Schedule a visit\n"
    "• General pet care advice",
)
FALLBACK_TEXT = (
    "I'm having trouble connecting to the server right now. "
    "Please try again in a moment."
)
BANNER_CONNECTING = "Connecting to chat..."
BANNER_DISCONNECTED = "Disconnected - messages may not be delivered"

ORIGIN_USER = "user"
ORIGIN_SYSTEM = "system"


class ConnectionStatus(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class LocalUser:
    """The authenticated principal of the host application."""

    id: Any
    username: str
    name: str | None = None
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def auth_envelope(self) -> dict:
        return make_auth(self.id, self.name or self.username, self.is_admin)


@dataclass
class TranscriptEntry:
    origin: str
    text: Any
    timestamp: str | None = None
    id: Any = None
    sender: dict[str, Any] | None = None


@dataclass(frozen=True)
class Notification:
    title: str
    description: str
    variant: str = "default"


def _log_notification(note: Notification) -> None:
    logging.getLogger("pawchat.client").warning("%s: %s", note.title, note.description)


class ChatWidget:
    """
    Consumer-side controller for the support chat widget.

    Handles:
    - Opening a fresh channel each time the widget opens, closing it on close
    - Identifying the local user right after the channel opens
    - Classifying incoming chat messages as the user's own or someone else's
    - Optimistic local echo of sent messages (the server copy is kept too)
    - A delayed local fallback reply when sending without a channel
    - Connection status and the degraded-state banner
    """

    def __init__(
        self,
        page_url: str,
        *,
        user: LocalUser | None = None,
        path: str = DEFAULT_WS_PATH,
        fallback_delay_s: float = 1.0,
        open_timeout_s: float = 10.0,
        notify: Callable[[Notification], None] | None = None,
        on_change: Callable[[ChatWidget], None] | None = None,
    ) -> None:
        self.url = chat_url(page_url, path)
        self.user = user
        self.fallback_delay_s = float(fallback_delay_s)
        self.open_timeout_s = float(open_timeout_s)
        self.notify = notify or _log_notification
        self.on_change = on_change
        self.log = logging.getLogger("pawchat.client")

        self._lock = threading.RLock()
        self._transcript: list[TranscriptEntry] = [
            TranscriptEntry(ORIGIN_SYSTEM, GREETING_TEXT, timestamp=now_iso())
        ]
        self._status = ConnectionStatus.DISCONNECTED
        self._is_open = False
        self._waiting = False
        self._ws: ClientConnection | None = None
        self._reader: threading.Thread | None = None
        # Bumped on every open/close so a stale reader thread cannot touch
        # the state of a newer session.
        self._generation = 0

    # -- state -----------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        with self._lock:
            return self._status

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._is_open

    @property
    def waiting(self) -> bool:
        with self._lock:
            return self._waiting

    @property
    def transcript(self) -> list[TranscriptEntry]:
        with self._lock:
            return list(self._transcript)

    @property
    def banner(self) -> str | None:
        status = self.status
        if status is ConnectionStatus.CONNECTED:
            return None
        if status is ConnectionStatus.CONNECTING:
            return BANNER_CONNECTING
        return BANNER_DISCONNECTED

    @property
    def local_user_id(self) -> Any:
        return self.user.id if self.user is not None else GUEST_USER_ID

    # -- lifecycle -------------------------------------------------------

    def open(self) -> None:
        with self._lock:
            if self._is_open:
                return
            self._is_open = True
            if len(self._transcript) == 1:
                for text in MENU_TEXTS:
                    self._transcript.append(
                        TranscriptEntry(ORIGIN_SYSTEM, text, timestamp=now_iso())
                    )
        self._changed()
        self._connect()

    def close(self) -> None:
        with self._lock:
            if not self._is_open:
                return
            self._is_open = False
            self._generation += 1
            ws, self._ws = self._ws, None
            reader, self._reader = self._reader, None
            self._status = ConnectionStatus.DISCONNECTED

        if ws is not None:
            ws.close()
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=self.open_timeout_s)
        self._changed()

    def retry(self) -> bool:
        """Reconnect while the widget is open but the channel is down."""
        with self._lock:
            if not self._is_open or self._status is not ConnectionStatus.DISCONNECTED:
                return False
        self._connect()
        return True

    def _connect(self) -> None:
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._status = ConnectionStatus.CONNECTING
            reader = threading.Thread(
                target=self._run, args=(generation,), name="pawchat-widget", daemon=True
            )
            self._reader = reader
        self._changed()
        reader.start()

    def _run(self, generation: int) -> None:
        opened = False
        failed = False
        try:
            with connect(
                self.url, open_timeout=self.open_timeout_s, ping_interval=None
            ) as ws:
                opened = True
                self._session(ws, generation)
        except ConnectionClosedError as e:
            self.log.warning("Chat connection error url=%s err=%s", self.url, e)
            failed = True
        except ConnectionClosed:
            pass
        except Exception as e:
            if opened:
                self.log.exception("Chat reader failed url=%s", self.url)
            else:
                self.log.warning("Chat connection failed url=%s err=%s", self.url, e)
            failed = True
        finally:
            if self._set_disconnected(generation) and failed:
                self._notify(
                    Notification(
                        "Connection Error",
                        "Could not connect to chat. Please try again later.",
                        "destructive",
                    )
                )

    def _session(self, ws: ClientConnection, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._ws = ws

        self.log.info("Chat connection established url=%s", self.url)
        if self.user is not None:
            ws.send(encode(self.user.auth_envelope()))
        with self._lock:
            if generation == self._generation:
                self._status = ConnectionStatus.CONNECTED
        self._changed()

        for raw in ws:
            self._on_frame(raw)
        self.log.info("Chat connection closed url=%s", self.url)

    def _set_disconnected(self, generation: int) -> bool:
        with self._lock:
            if generation != self._generation:
                return False
            self._status = ConnectionStatus.DISCONNECTED
            self._ws = None
        self._changed()
        return True

    # -- inbound ---------------------------------------------------------

    def _on_frame(self, raw: str | bytes) -> None:
        try:
            env = decode(raw)
        except ValueError as e:
            self.log.error("Error parsing chat frame: %s", e)
            return
        if not isinstance(env, dict):
            self.log.error("Ignoring non-object chat frame")
            return

        t = env.get(K_TYPE)
        data = env.get(K_DATA)
        if not isinstance(data, dict):
            data = {}

        if t == T_CHAT:
            self._on_chat_message(data)
        elif t == T_SYSTEM:
            self._append(
                TranscriptEntry(
                    ORIGIN_SYSTEM, data.get(D_MESSAGE), timestamp=data.get(D_TIMESTAMP)
                )
            )
        elif t == T_ERROR:
            text = data.get(D_MESSAGE)
            self._append(TranscriptEntry(ORIGIN_SYSTEM, text, timestamp=now_iso()))
            self._notify(Notification("Chat Error", str(text), "destructive"))

    def _on_chat_message(self, data: dict) -> None:
        sender = data.get(D_SENDER)
        sender_id = sender.get(F_USER_ID) if isinstance(sender, dict) else None
        origin = ORIGIN_USER if same_id(sender_id, self.local_user_id) else ORIGIN_SYSTEM
        entry = TranscriptEntry(
            origin,
            data.get(D_MESSAGE),
            timestamp=data.get(D_TIMESTAMP),
            id=data.get(D_ID),
            sender=sender if isinstance(sender, dict) else None,
        )
        with self._lock:
            self._transcript.append(entry)
            self._waiting = False
        self._changed()

    # -- outbound --------------------------------------------------------

    def send(self, text: str, *, recipient_id: Any = None) -> bool:
        """Send a chat message; returns False when it could not be transmitted."""
        if not text or not text.strip():
            return False

        with self._lock:
            self._transcript.append(TranscriptEntry(ORIGIN_USER, text, timestamp=now_iso()))
            self._waiting = True
            ws = self._ws if self._status is ConnectionStatus.CONNECTED else None
        self._changed()

        if ws is not None:
            try:
                ws.send(encode(make_chat_request(text, recipient_id=recipient_id)))
                return True
            except ConnectionClosed as e:
                self.log.warning("Chat send failed url=%s err=%s", self.url, e)

        self._notify(
            Notification(
                "Connection Issue", "Could not send message. Reconnecting...", "destructive"
            )
        )
        self._schedule_fallback()
        return False

    def _schedule_fallback(self) -> None:
        timer = threading.Timer(self.fallback_delay_s, self._fallback)
        timer.daemon = True
        timer.start()

    def _fallback(self) -> None:
        with self._lock:
            self._transcript.append(
                TranscriptEntry(ORIGIN_SYSTEM, FALLBACK_TEXT, timestamp=now_iso())
            )
            self._waiting = False
        self._changed()

    def _append(self, entry: TranscriptEntry) -> None:
        with self._lock:
            self._transcript.append(entry)
        self._changed()

    def _changed(self) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(self)
        except Exception:
            self.log.exception("on_change callback failed")

    def _notify(self, note: Notification) -> None:
        try:
            self.notify(note)
        except Exception:
            self.log.exception("notify callback failed title=%r", note.title)
