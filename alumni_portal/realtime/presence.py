"""Reference-counted presence.

A user is online while at least one of their connections is live. Only the
transition to zero connections flips them offline.
"""

from __future__ import annotations

import logging
from collections import Counter

from channels.db import database_sync_to_async
from django.contrib.auth import get_user_model
from django.utils import timezone

logger = logging.getLogger(__name__)


class PresenceTracker:
    def __init__(self) -> None:
        self._counts: Counter[int] = Counter()

    def connected(self, user_id: int) -> bool:
        """Count one more connection; True when the user just came online."""
        self._counts[user_id] += 1
        return self._counts[user_id] == 1

    def disconnected(self, user_id: int) -> bool:
        """Count one less connection; True when the user just went offline."""
        if self._counts[user_id] <= 0:
            self._counts.pop(user_id, None)
            return False
        self._counts[user_id] -= 1
        if self._counts[user_id] == 0:
            del self._counts[user_id]
            return True
        return False

    def is_online(self, user_id: int) -> bool:
        return self._counts.get(user_id, 0) > 0

    def connection_count(self, user_id: int) -> int:
        return self._counts.get(user_id, 0)

    def online_user_ids(self) -> list[int]:
        return sorted(self._counts)

    def clear(self) -> None:
        self._counts.clear()


def persist_presence(user_id: int, *, online: bool) -> None:
    """Write the presence columns; best-effort, never raises."""
    User = get_user_model()  # noqa: N806
    try:
        User.objects.filter(pk=user_id).update(
            is_online=online,
            last_seen_at=timezone.now(),
        )
    except Exception:
        logger.exception("Failed to persist presence for user %s", user_id)


@database_sync_to_async
def mark_online(user_id: int) -> None:
    persist_presence(user_id, online=True)


@database_sync_to_async
def mark_offline(user_id: int) -> None:
    persist_presence(user_id, online=False)
