from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from typing import Any

from alumni_portal.notifications.api.serializers import NotificationSerializer
from alumni_portal.realtime.socketio import emit_event_to_user

if TYPE_CHECKING:  # import for type checking only
    from alumni_portal.notifications.models import Notification

logger = logging.getLogger(__name__)

NEW_NOTIFICATION = "new_notification"


def build_notification_payload(notification: Notification) -> dict[str, Any]:
    return dict(NotificationSerializer(notification).data)


def publish_notification_created(notification: Notification) -> bool:
    """Push a newly created Notification to the recipient in realtime.

    A recipient with no live connection simply gets nothing: the stored row is
    what they will fetch later. Returns False when the push itself failed.
    """

    try:
        payload = build_notification_payload(notification)
        emit_event_to_user(notification.recipient_id, NEW_NOTIFICATION, payload)
    except Exception:
        logger.exception(
            "Failed to push notification %s to user %s",
            notification.pk,
            notification.recipient_id,
        )
        return False
    return True
