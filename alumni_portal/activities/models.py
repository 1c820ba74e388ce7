from django.conf import settings
from django.db import models
from django.utils.translation import gettext_lazy as _


class Activity(models.Model):
    class Type(models.TextChoices):
        PROFILE_UPDATE = "profile_update", _("Profile Update")
        CONNECTION_ACCEPTED = "connection_accepted", _("Connection Accepted")
        EVENT_REGISTRATION = "event_registration", _("Event Registration")
        JOB_APPLICATION = "job_application", _("Job Application")
        FORUM_POST = "forum_post", _("Forum Post")
        MESSAGE_SENT = "message_sent", _("Message Sent")
        CHAT_CREATED = "chat_created", _("Chat Created")
        LOGIN = "login", _("Login")

    class Visibility(models.TextChoices):
        PUBLIC = "public", _("Public")
        CONNECTIONS = "connections", _("Connections")
        PRIVATE = "private", _("Private")

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="activities",
    )
    activity_type = models.CharField(max_length=50, choices=Type.choices)
    action = models.CharField(max_length=255)
    description = models.CharField(max_length=255)
    metadata = models.JSONField(default=dict, blank=True)
    visibility = models.CharField(
        max_length=20, choices=Visibility.choices, default=Visibility.PUBLIC
    )
    points = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        verbose_name_plural = "activities"

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"[{self.created_at}] {self.user_id}: {self.activity_type}"
