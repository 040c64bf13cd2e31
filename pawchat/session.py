from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from websockets.protocol import State

from .constants import (
    F_IS_ADMIN,
    F_USER_ID,
    F_USERNAME,
    GUEST_IS_ADMIN,
    GUEST_USER_ID,
    GUEST_USERNAME,
)
from .util import same_id


@dataclass(frozen=True)
class Identity:
    """Who a connection claims to be. ``None`` means the field was never sent."""

    user_id: Any = None
    username: Any = None
    is_admin: Any = None

    @classmethod
    def from_auth(cls, env: dict) -> Identity:
        # Full replacement: anything missing from the auth payload is cleared.
        return cls(
            user_id=env.get(F_USER_ID),
            username=env.get(F_USERNAME),
            is_admin=env.get(F_IS_ADMIN),
        )

    @property
    def is_empty(self) -> bool:
        return self.user_id is None and self.username is None and self.is_admin is None

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.user_id is not None:
            out[F_USER_ID] = self.user_id
        if self.username is not None:
            out[F_USERNAME] = self.username
        if self.is_admin is not None:
            out[F_IS_ADMIN] = self.is_admin
        return out

    def as_sender(self) -> dict[str, Any]:
        """Sender descriptor with guest defaults for absent fields."""
        return {
            F_USER_ID: GUEST_USER_ID if self.user_id is None else self.user_id,
            F_USERNAME: GUEST_USERNAME if self.username is None else self.username,
            F_IS_ADMIN: GUEST_IS_ADMIN if self.is_admin is None else self.is_admin,
        }


class ConnectionRegistry:
    """
    Tracks the open chat connections and the identity bound to each.

    This class is responsible for:
    - Registering a connection with an empty identity when it opens
    - Replacing (never merging) the identity on auth
    - First-match lookup of a connection by user id for private delivery
    - Snapshotting the ready connections for broadcast
    - Forgetting connections when they close

    Lookups never raise for unknown connections. The registry does no locking
    of its own; the hub mutates it only while holding its state lock.
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("pawchat.registry")
        # dicts keep insertion order, which is what first-match lookup scans.
        self._identities: dict[Any, Identity] = {}

    def __len__(self) -> int:
        return len(self._identities)

    def __contains__(self, conn: Any) -> bool:
        return conn in self._identities

    @staticmethod
    def is_ready(conn: Any) -> bool:
        protocol = getattr(conn, "protocol", None)
        return getattr(protocol, "state", None) is State.OPEN

    def register(self, conn: Any) -> None:
        self._identities[conn] = Identity()

    def set_identity(self, conn: Any, identity: Identity) -> bool:
        if conn not in self._identities:
            self.log.debug("set_identity for unregistered connection ignored")
            return False
        self._identities[conn] = identity
        return True

    def get_identity(self, conn: Any) -> Identity | None:
        return self._identities.get(conn)

    def lookup_by_user_id(self, user_id: Any) -> Any | None:
        """Return the first ready connection bound to ``user_id``, if any.

        A user with several open connections is only reachable on the
        earliest-registered one.
        """
        for conn, ident in self._identities.items():
            if same_id(ident.user_id, user_id) and self.is_ready(conn):
                return conn
        return None

    def deregister(self, conn: Any) -> Identity | None:
        return self._identities.pop(conn, None)

    def all_handles(self) -> list[Any]:
        return [conn for conn in self._identities if self.is_ready(conn)]

    def clear_all(self) -> list[Any]:
        conns = list(self._identities.keys())
        self._identities.clear()
        return conns

    def get_stats(self) -> dict[str, int]:
        idents = list(self._identities.values())
        return {
            "total": len(idents),
            "identified": sum(1 for i in idents if i.user_id is not None),
            "admins": sum(1 for i in idents if i.is_admin is True),
        }
