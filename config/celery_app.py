from logging.config import dictConfig

from celery import Celery
from celery.signals import setup_logging

from config.settings import use_default_settings

use_default_settings()

app = Celery("alumni_portal")

# CELERY_* settings, beat schedule included.
app.config_from_object("django.conf:settings", namespace="CELERY")

# activities.record, notifications.purge_expired, notifications.cleanup_read
app.autodiscover_tasks()


@setup_logging.connect
def use_django_logging(*args, **kwargs):
    """Workers log through the same LOGGING dictConfig as the web process."""
    from django.conf import settings  # noqa: PLC0415

    dictConfig(settings.LOGGING)
