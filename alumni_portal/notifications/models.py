from datetime import timedelta

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


def default_expiry():
    return timezone.now() + timedelta(days=settings.NOTIFICATION_TTL_DAYS)


class NotificationQuerySet(models.QuerySet):
    def active(self):
        """Rows not yet past their expiry; expired rows wait for the purge task."""
        return self.filter(Q(expires_at__isnull=True) | Q(expires_at__gt=timezone.now()))

    def unread(self):
        return self.filter(is_read=False)


class Notification(models.Model):
    class Type(models.TextChoices):
        CONNECTION_REQUEST = "connection_request", _("Connection Request")
        CONNECTION_ACCEPTED = "connection_accepted", _("Connection Accepted")
        EVENT_REMINDER = "event_reminder", _("Event Reminder")
        EVENT_RSVP = "event_rsvp", _("Event RSVP")
        JOB_APPLICATION = "job_application", _("Job Application")
        JOB_STATUS_UPDATE = "job_status_update", _("Job Status Update")
        SURVEY_INVITATION = "survey_invitation", _("Survey Invitation")
        SYSTEM = "system", _("System")
        ADMIN_MESSAGE = "admin_message", _("Admin Message")
        PROFILE_VIEW = "profile_view", _("Profile View")
        NEW_JOB_POSTING = "new_job_posting", _("New Job Posting")
        EVENT_INVITATION = "event_invitation", _("Event Invitation")

    class Priority(models.TextChoices):
        LOW = "low", _("Low")
        MEDIUM = "medium", _("Medium")
        HIGH = "high", _("High")
        URGENT = "urgent", _("Urgent")

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="notifications"
    )
    # Empty for system-generated notifications.
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sent_notifications",
    )
    notification_type = models.CharField(max_length=30, choices=Type.choices)
    title = models.CharField(max_length=100)
    message = models.CharField(max_length=500)
    data = models.JSONField(default=dict, blank=True)
    action_url = models.CharField(max_length=500, blank=True, default="")
    is_read = models.BooleanField(default=False)
    read_at = models.DateTimeField(null=True, blank=True)
    priority = models.CharField(
        max_length=10, choices=Priority.choices, default=Priority.MEDIUM
    )
    expires_at = models.DateTimeField(default=default_expiry, null=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = NotificationQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(
                fields=["recipient", "is_read", "created_at"],
                name="notification_inbox_idx",
            ),
        ]

    def __str__(self):
        return f"{self.title} - {self.recipient}"
