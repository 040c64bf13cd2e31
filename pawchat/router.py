from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .constants import (
    ERR_INVALID_FORMAT,
    F_MESSAGE,
    F_RECIPIENT_ID,
    K_TYPE,
    T_AUTH,
    T_CHAT,
)
from .envelope import EnvelopeError, make_auth_success, make_chat_message, parse_inbound
from .messages import Outgoing, fmt_conn_id
from .session import Identity

if TYPE_CHECKING:
    from .service import HubService


class MessageRouter:
    """
    Handles inbound frames for the chat hub.

    This class is responsible for:
    - Parsing inbound frames and answering malformed ones with an error
    - Binding identities on auth
    - Addressing chat messages: an explicit recipient gets the message plus an
      echo to the sender, no recipient means every open connection (sender
      included) gets it
    - Ignoring message types it does not know
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("pawchat.router")

    def route_message(self, conn: Any, raw: str | bytes, outgoing: Outgoing) -> None:
        """
        Main entry point for routing an inbound frame.

        This method should be called with the state lock held; deliveries are
        queued on ``outgoing`` and sent by the caller after releasing it.
        """
        registry = self.hub.registry
        if conn not in registry:
            return

        self.hub.stats_manager.inc("msgs_in")
        self.hub.stats_manager.inc("bytes_in", len(raw))

        try:
            env = parse_inbound(raw)
        except EnvelopeError as e:
            self.hub.stats_manager.inc("msgs_bad")
            self.log.debug(
                "Bad frame conn_id=%s bytes=%s err=%s", fmt_conn_id(conn), len(raw), e
            )
            self.hub.message_helper.emit_error(outgoing, conn, ERR_INVALID_FORMAT)
            return

        t = env.get(K_TYPE)
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("RX conn_id=%s type=%r bytes=%s", fmt_conn_id(conn), t, len(raw))

        if t == T_AUTH:
            self._handle_auth(conn, env, outgoing)
        elif t == T_CHAT:
            self._handle_chat(conn, env, outgoing)

    def _handle_auth(self, conn: Any, env: dict, outgoing: Outgoing) -> None:
        identity = Identity.from_auth(env)
        self.hub.registry.set_identity(conn, identity)
        self.hub.stats_manager.inc("auths")

        self.log.info(
            "Auth conn_id=%s user_id=%r username=%r admin=%r",
            fmt_conn_id(conn),
            identity.user_id,
            identity.username,
            identity.is_admin,
        )
        self.hub.message_helper.queue_env(
            outgoing, conn, make_auth_success(identity.to_wire())
        )

    def _handle_chat(self, conn: Any, env: dict, outgoing: Outgoing) -> None:
        registry = self.hub.registry
        # Sender comes from hub state, never from the payload.
        identity = registry.get_identity(conn) or Identity()
        msg = make_chat_message(env.get(F_MESSAGE), identity.as_sender())

        recipient_id = env.get(F_RECIPIENT_ID)
        if recipient_id:
            target = registry.lookup_by_user_id(recipient_id)
            if target is None:
                self.hub.stats_manager.inc("private_missed")
                self.log.debug(
                    "Private message dropped, recipient not connected conn_id=%s recipient=%r",
                    fmt_conn_id(conn),
                    recipient_id,
                )
                return

            self.hub.stats_manager.inc("private_sent")
            self.hub.message_helper.queue_fanout(outgoing, [target, conn], msg)
            return

        recipients = registry.all_handles()
        self.hub.stats_manager.inc("broadcasts")
        self.log.debug(
            "Broadcast conn_id=%s recipients=%s", fmt_conn_id(conn), len(recipients)
        )
        self.hub.message_helper.queue_fanout(outgoing, recipients, msg)
