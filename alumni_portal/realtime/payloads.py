"""Validation of inbound Socket.IO payloads.

Clients send either an object or a bare id (``socket.emit("join_chat", 12)``).
Older clients use camelCase keys; those are accepted and mapped to snake_case.
"""

from __future__ import annotations

from typing import Any

from rest_framework import serializers

from alumni_portal.core.api import flatten_errors
from alumni_portal.core.exceptions import ValidationError
from alumni_portal.messaging.models import MAX_MESSAGE_LENGTH
from alumni_portal.messaging.models import Message

LEGACY_KEYS = {
    "chatId": "chat_id",
    "forumId": "forum_id",
    "notificationId": "notification_id",
    "isTyping": "is_typing",
    "replyTo": "reply_to",
    "fileUrl": "file_url",
    "fileName": "file_name",
    "fileSize": "file_size",
}


class ChatRefPayload(serializers.Serializer):
    bare_field = "chat_id"

    chat_id = serializers.IntegerField(min_value=1)


class ForumRefPayload(serializers.Serializer):
    bare_field = "forum_id"

    # Forum ids come from an external store and may not be integers.
    forum_id = serializers.CharField(max_length=64, trim_whitespace=True)


class NotificationRefPayload(serializers.Serializer):
    bare_field = "notification_id"

    notification_id = serializers.IntegerField(min_value=1)


class TypingPayload(ChatRefPayload):
    is_typing = serializers.BooleanField(default=True)


class SendMessagePayload(ChatRefPayload):
    bare_field = None

    content = serializers.CharField(
        max_length=MAX_MESSAGE_LENGTH,
        allow_blank=True,
        trim_whitespace=True,
        default="",
    )
    type = serializers.ChoiceField(
        choices=Message.Type.choices,
        default=Message.Type.TEXT,
    )
    reply_to = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    file_url = serializers.CharField(max_length=500, required=False, allow_blank=True)
    file_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    file_size = serializers.IntegerField(min_value=0, required=False, allow_null=True)


def _normalize(data: Any, bare_field: str | None) -> dict[str, Any]:
    if isinstance(data, dict):
        return {LEGACY_KEYS.get(key, key): value for key, value in data.items()}
    if bare_field and isinstance(data, (int, str)) and not isinstance(data, bool):
        return {bare_field: data}
    msg = "Payload must be an object."
    raise ValidationError(msg)


def parse_payload(payload_class: type[serializers.Serializer], data: Any) -> dict:
    """Validate ``data`` and return the cleaned fields, or raise ValidationError."""
    serializer = payload_class(data=_normalize(data, payload_class.bare_field))
    if not serializer.is_valid():
        msg = "Invalid payload."
        raise ValidationError(msg, errors=flatten_errors(serializer.errors))
    return dict(serializer.validated_data)
