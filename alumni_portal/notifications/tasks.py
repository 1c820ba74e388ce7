import logging

from celery import shared_task
from django.conf import settings

from . import services

logger = logging.getLogger(__name__)


@shared_task(name="notifications.purge_expired", ignore_result=True)
def purge_expired() -> int:
    deleted = services.purge_expired()
    logger.info("Purged %s expired notifications", deleted)
    return deleted


@shared_task(name="notifications.cleanup_read", ignore_result=True)
def cleanup_read() -> int:
    deleted = services.cleanup_read(settings.NOTIFICATION_READ_RETENTION_DAYS)
    logger.info("Cleaned up %s old read notifications", deleted)
    return deleted
