"""Forum pushes. Forums are managed elsewhere; this only relays their updates."""

from __future__ import annotations

import logging
from typing import Any

from alumni_portal.realtime.socketio import emit_event_to_forum

logger = logging.getLogger(__name__)

FORUM_UPDATE = "forum_update"


def publish_forum_update(forum_id: Any, update: dict[str, Any]) -> int:
    """Push ``update`` to every connection following the forum."""

    payload = {"forum_id": str(forum_id), **update}
    try:
        return emit_event_to_forum(forum_id, FORUM_UPDATE, payload)
    except Exception:
        logger.exception("Failed to publish forum update for %s", forum_id)
        return 0
