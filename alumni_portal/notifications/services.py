"""Notification dispatcher.

Every notification is stored first; the realtime push to the recipient's
personal channel happens on commit (see ``signals.py``). A recipient without a
live connection loses nothing: the stored row is the source of truth.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING
from typing import Any

from django.db import DatabaseError
from django.db import transaction
from django.db.models import Count
from django.db.models import Q
from django.utils import timezone

from alumni_portal.core.exceptions import NotFoundError
from alumni_portal.core.exceptions import ValidationError

from .models import Notification

if TYPE_CHECKING:  # import for type checking only
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

Type = Notification.Type
Priority = Notification.Priority

_EVENT_TYPES = {Type.EVENT_REMINDER, Type.EVENT_RSVP, Type.EVENT_INVITATION}
_JOB_TYPES = {Type.JOB_APPLICATION, Type.JOB_STATUS_UPDATE, Type.NEW_JOB_POSTING}

JOB_STATUS_MESSAGES = {
    "under_review": "Your application is now under review",
    "interview": "Congratulations! You've been invited for an interview",
    "accepted": "Congratulations! Your application has been accepted",
    "rejected": "Your application status has been updated",
}


def _data_ref(data: dict[str, Any], key: str) -> Any:
    # Older producers send camelCase keys (eventId, jobId, surveyId).
    camel = key.split("_")[0] + "".join(p.title() for p in key.split("_")[1:])
    return data.get(key, data.get(camel))


def build_action_url(
    notification_type: str,
    *,
    sender_id: int | None = None,
    data: dict[str, Any] | None = None,
) -> str:
    """Derive the frontend route a notification links to.

    Pure function of its arguments, so the stored ``action_url`` always matches
    what the recipient later fetches.
    """
    data = data or {}
    if notification_type == Type.CONNECTION_REQUEST:
        return f"/alumni/{sender_id}"
    if notification_type in _EVENT_TYPES:
        return f"/events/{_data_ref(data, 'event_id')}"
    if notification_type in _JOB_TYPES:
        return f"/jobs/{_data_ref(data, 'job_id')}"
    if notification_type == Type.SURVEY_INVITATION:
        return f"/surveys/{_data_ref(data, 'survey_id')}"
    if notification_type == Type.PROFILE_VIEW:
        return "/alumni/me/profile"
    return "/dashboard"


def notify(  # noqa: PLR0913
    recipient_id: int,
    *,
    notification_type: str,
    title: str,
    message: str,
    sender_id: int | None = None,
    data: dict[str, Any] | None = None,
    priority: str = Priority.MEDIUM,
    action_url: str = "",
) -> Notification:
    """Store one notification; the push to ``user_<recipient_id>`` follows on commit."""
    if notification_type not in Type.values:
        msg = f"Unknown notification type: {notification_type}."
        raise ValidationError(msg)
    if priority not in Priority.values:
        msg = f"Unknown priority: {priority}."
        raise ValidationError(msg)
    if not (title or "").strip() or not (message or "").strip():
        msg = "Notification title and message are required."
        raise ValidationError(msg)

    data = dict(data or {})
    return Notification.objects.create(
        recipient_id=recipient_id,
        sender_id=sender_id,
        notification_type=notification_type,
        title=title.strip()[:100],
        message=message.strip()[:500],
        data=data,
        priority=priority,
        action_url=action_url
        or build_action_url(notification_type, sender_id=sender_id, data=data),
    )


def notify_bulk(recipient_ids: Iterable[int], **template: Any) -> list[Notification]:
    """One notification per recipient; one recipient's failure skips only them."""
    if isinstance(recipient_ids, int):
        recipient_ids = [recipient_ids]
    created: list[Notification] = []
    for recipient_id in dict.fromkeys(recipient_ids):
        try:
            with transaction.atomic():
                created.append(notify(recipient_id, **template))
        except DatabaseError:
            logger.exception(
                "Failed to store %s notification for user %s",
                template.get("notification_type"),
                recipient_id,
            )
    return created


# Typed helpers
# ------------------------------------------------------------------------------


def notify_connection_request(sender_id, recipient_id, sender_name: str):
    return notify(
        recipient_id,
        sender_id=sender_id,
        notification_type=Type.CONNECTION_REQUEST,
        title="New Connection Request",
        message=f"{sender_name} wants to connect with you",
        data={"sender_id": sender_id},
    )


def notify_connection_accepted(sender_id, recipient_id, sender_name: str):
    return notify(
        recipient_id,
        sender_id=sender_id,
        notification_type=Type.CONNECTION_ACCEPTED,
        title="Connection Accepted",
        message=f"{sender_name} accepted your connection request",
        data={"sender_id": sender_id},
    )


def notify_event_reminder(
    event_id,
    event_title: str,
    attendee_ids: Iterable[int],
    reminder_type: str = "upcoming",
):
    if reminder_type == "today":
        title, message, priority = (
            "Event Today!",
            f"{event_title} is happening today!",
            Priority.HIGH,
        )
    elif reminder_type == "tomorrow":
        title, message, priority = (
            "Event Tomorrow!",
            f"{event_title} is tomorrow!",
            Priority.MEDIUM,
        )
    else:
        title, message, priority = (
            "Upcoming Event Reminder",
            f"Don't forget about {event_title}",
            Priority.LOW,
        )
    return notify_bulk(
        attendee_ids,
        notification_type=Type.EVENT_REMINDER,
        title=title,
        message=message,
        data={
            "event_id": event_id,
            "event_title": event_title,
            "reminder_type": reminder_type,
        },
        priority=priority,
    )


def notify_event_rsvp(event_id, event_title, attendee_id, attendee_name, organizer_id):
    return notify(
        organizer_id,
        sender_id=attendee_id,
        notification_type=Type.EVENT_RSVP,
        title="New Event RSVP",
        message=f"{attendee_name} has RSVP'd to {event_title}",
        data={
            "event_id": event_id,
            "event_title": event_title,
            "attendee_id": attendee_id,
        },
        priority=Priority.LOW,
    )


def notify_job_application(job_id, job_title, applicant_id, applicant_name, poster_id):
    return notify(
        poster_id,
        sender_id=applicant_id,
        notification_type=Type.JOB_APPLICATION,
        title="New Job Application",
        message=f"{applicant_name} applied for {job_title}",
        data={"job_id": job_id, "job_title": job_title, "applicant_id": applicant_id},
    )


def notify_job_status_update(job_id, job_title, applicant_id, status, company_name):
    if status not in JOB_STATUS_MESSAGES:
        msg = f"Unknown application status: {status}."
        raise ValidationError(msg)
    high = status in {"accepted", "interview"}
    return notify(
        applicant_id,
        notification_type=Type.JOB_STATUS_UPDATE,
        title="Job Application Update",
        message=f"{company_name}: {JOB_STATUS_MESSAGES[status]}",
        data={
            "job_id": job_id,
            "job_title": job_title,
            "status": status,
            "company_name": company_name,
        },
        priority=Priority.HIGH if high else Priority.MEDIUM,
    )


def notify_new_job_posting(job_id, job_title, company, recipient_ids, **extra):
    return notify_bulk(
        recipient_ids,
        notification_type=Type.NEW_JOB_POSTING,
        title="New Job Opportunity",
        message=f"New {job_title} position at {company}",
        data={"job_id": job_id, "job_title": job_title, "company": company, **extra},
    )


def notify_survey_invitation(survey_id, survey_title, recipient_ids):
    return notify_bulk(
        recipient_ids,
        notification_type=Type.SURVEY_INVITATION,
        title="New Survey Available",
        message=f"You've been invited to participate in: {survey_title}",
        data={"survey_id": survey_id, "survey_title": survey_title},
        priority=Priority.LOW,
    )


def notify_profile_view(viewer_id, viewer_name, profile_owner_id):
    return notify(
        profile_owner_id,
        sender_id=viewer_id,
        notification_type=Type.PROFILE_VIEW,
        title="Profile View",
        message=f"{viewer_name} viewed your profile",
        data={"viewer_id": viewer_id},
        priority=Priority.LOW,
    )


def notify_system(recipient_ids, title, message, data=None, priority=Priority.MEDIUM):
    return notify_bulk(
        recipient_ids,
        notification_type=Type.SYSTEM,
        title=title,
        message=message,
        data=data or {},
        priority=priority,
    )


def notify_admin_message(recipient_ids, title, message, sender_id=None, **options):
    return notify_bulk(
        recipient_ids,
        notification_type=Type.ADMIN_MESSAGE,
        title=title,
        message=message,
        sender_id=sender_id,
        priority=options.pop("priority", Priority.HIGH),
        **options,
    )


# Recipient operations
# ------------------------------------------------------------------------------


def inbox(user_id: int):
    return Notification.objects.active().filter(recipient_id=user_id)


def mark_read(notification_id, user_id: int) -> Notification:
    """Mark one of the user's notifications read; repeating it is harmless."""
    try:
        notification = inbox(user_id).get(pk=notification_id)
    except (Notification.DoesNotExist, ValueError, TypeError) as exc:
        msg = "Notification not found."
        raise NotFoundError(msg) from exc
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = timezone.now()
        notification.save(update_fields=["is_read", "read_at"])
    return notification


def mark_all_read(user_id: int) -> int:
    return inbox(user_id).unread().update(is_read=True, read_at=timezone.now())


def unread_count(user_id: int) -> int:
    return inbox(user_id).unread().count()


def notification_stats(user_id: int) -> dict[str, Any]:
    by_type = (
        inbox(user_id)
        .order_by()
        .values("notification_type")
        .annotate(count=Count("id"), unread_count=Count("id", filter=Q(is_read=False)))
        .order_by("notification_type")
    )
    return {
        "by_type": [
            {
                "type": row["notification_type"],
                "count": row["count"],
                "unread_count": row["unread_count"],
            }
            for row in by_type
        ],
        "total_unread": unread_count(user_id),
    }


# Housekeeping
# ------------------------------------------------------------------------------


def purge_expired(now=None) -> int:
    deleted, _ = Notification.objects.filter(
        expires_at__lte=now or timezone.now()
    ).delete()
    return deleted


def cleanup_read(older_than_days: int, now=None) -> int:
    cutoff = (now or timezone.now()) - timedelta(days=older_than_days)
    deleted, _ = Notification.objects.filter(
        is_read=True, created_at__lt=cutoff
    ).delete()
    return deleted
