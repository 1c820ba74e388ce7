from __future__ import annotations

import logging

from django.db import transaction

from .models import Activity

logger = logging.getLogger(__name__)


def log_activity(  # noqa: PLR0913
    activity_type: str,
    *,
    user_id: int,
    action: str,
    description: str = "",
    metadata: dict | None = None,
    visibility: str = Activity.Visibility.PUBLIC,
    points: int = 0,
) -> Activity:
    return Activity.objects.create(
        user_id=user_id,
        activity_type=activity_type,
        action=action,
        description=description or action,
        metadata=metadata or {},
        visibility=visibility,
        points=points,
    )


def record_activity_later(activity_type: str, **kwargs) -> None:
    """Schedule an activity record once the surrounding transaction commits.

    Activity records are secondary: the caller's write is never rolled back or
    delayed because this one failed.
    """
    # Imported here: tasks imports this module.
    from .tasks import record_activity  # noqa: PLC0415

    def _enqueue() -> None:
        try:
            record_activity.delay(activity_type, **kwargs)
        except Exception:
            logger.exception("Could not enqueue %s activity", activity_type)

    transaction.on_commit(_enqueue)
