import logging

from celery import shared_task
from django.db import DatabaseError

from .utils import log_activity

logger = logging.getLogger(__name__)


@shared_task(name="activities.record", ignore_result=True)
def record_activity(activity_type: str, **kwargs) -> int | None:
    """Persist one activity record; failures are logged, never retried."""
    try:
        activity = log_activity(activity_type, **kwargs)
    except DatabaseError:
        logger.exception("Failed to record %s activity", activity_type)
        return None
    return activity.pk
