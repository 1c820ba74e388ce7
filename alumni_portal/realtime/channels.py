"""In-memory channel membership for live Socket.IO connections.

Three kinds of channel exist, all derived from a naming convention:

- ``user_<id>``: personal channel, joined by every connection of that user as
  part of the connect handshake, never by a client event;
- ``chat_<id>``: joined explicitly by participants of the chat;
- ``forum_<id>``: joined explicitly, forums live outside this service.

Nothing here is persisted: after a restart every channel is empty. All methods
are synchronous, so each one runs atomically on the event loop.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from dataclasses import field
from typing import Any

from .presence import PresenceTracker

USER_CHANNEL = "user"
CHAT_CHANNEL = "chat"
FORUM_CHANNEL = "forum"


def forum_key(forum_id: Any) -> str:
    """Canonical form of an external forum id, as used in channel names and events."""
    return "_".join(str(forum_id).strip().lower().split())


def room_for_user(user_id: int) -> str:
    return f"{USER_CHANNEL}_{int(user_id)}"


def room_for_chat(chat_id: int) -> str:
    return f"{CHAT_CHANNEL}_{int(chat_id)}"


def room_for_forum(forum_id: Any) -> str:
    return f"{FORUM_CHANNEL}_{forum_key(forum_id)}"


def split_room(room: str) -> tuple[str, str] | None:
    """``"chat_12"`` -> ``("chat", "12")``; None for unknown names."""
    kind, sep, key = room.partition("_")
    if not sep or not key or kind not in {USER_CHANNEL, CHAT_CHANNEL, FORUM_CHANNEL}:
        return None
    return kind, key


@dataclass
class Connection:
    sid: str
    user_id: int
    identity: dict[str, Any]
    channels: set[str] = field(default_factory=set)
    alive: bool = True


@dataclass(frozen=True)
class Departure:
    """What a dropped connection left behind, captured before teardown."""

    connection: Connection
    channels: tuple[str, ...]
    went_offline: bool


class ChannelRegistry:
    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._members: defaultdict[str, set[str]] = defaultdict(set)
        self.presence = PresenceTracker()

    def register(
        self,
        sid: str,
        user_id: int,
        identity: dict[str, Any],
    ) -> tuple[Connection, bool]:
        """Track a freshly authenticated connection.

        Returns the connection and whether its user just came online.
        """
        if sid in self._connections:
            return self._connections[sid], False
        conn = Connection(sid=sid, user_id=int(user_id), identity=dict(identity))
        self._connections[sid] = conn
        came_online = self.presence.connected(conn.user_id)
        return conn, came_online

    def get(self, sid: str) -> Connection | None:
        return self._connections.get(sid)

    def join(self, sid: str, channel: str) -> bool:
        """Add ``sid`` to ``channel``; False when it was already a member."""
        conn = self._connections.get(sid)
        if conn is None or not conn.alive or channel in conn.channels:
            return False
        conn.channels.add(channel)
        self._members[channel].add(sid)
        return True

    def leave(self, sid: str, channel: str) -> bool:
        """Remove ``sid`` from ``channel``; False when it was not a member."""
        conn = self._connections.get(sid)
        if conn is None or channel not in conn.channels:
            return False
        conn.channels.discard(channel)
        self._discard_member(channel, sid)
        return True

    def drop(self, sid: str) -> Departure | None:
        conn = self._connections.pop(sid, None)
        if conn is None:
            return None
        snapshot = tuple(sorted(conn.channels))
        for channel in snapshot:
            self._discard_member(channel, sid)
        conn.channels.clear()
        conn.alive = False
        went_offline = self.presence.disconnected(conn.user_id)
        return Departure(connection=conn, channels=snapshot, went_offline=went_offline)

    def members(self, channel: str) -> tuple[str, ...]:
        """Live sids in ``channel`` right now (a copy, safe to iterate)."""
        return tuple(self._members.get(channel, ()))

    def sids_for_user(self, user_id: int) -> tuple[str, ...]:
        return self.members(room_for_user(user_id))

    def is_member(self, sid: str, channel: str) -> bool:
        return sid in self._members.get(channel, ())

    def stats(self) -> dict[str, int]:
        return {
            "connections": len(self._connections),
            "online_users": len(self.presence.online_user_ids()),
            "channels": len(self._members),
        }

    def clear(self) -> None:
        self._connections.clear()
        self._members.clear()
        self.presence.clear()

    def _discard_member(self, channel: str, sid: str) -> None:
        members = self._members.get(channel)
        if members is None:
            return
        members.discard(sid)
        if not members:
            del self._members[channel]
