from __future__ import annotations

from typing import Any

from rest_framework import serializers

from alumni_portal.notifications.models import Notification
from alumni_portal.users.api.serializers import PublicUserSerializer


class NotificationSerializer(serializers.ModelSerializer):
    """Read serializer for notifications; also the realtime push payload."""

    type = serializers.CharField(source="notification_type", read_only=True)
    sender = PublicUserSerializer(read_only=True, allow_null=True)
    unread = serializers.SerializerMethodField()

    class Meta:
        model = Notification
        fields = (
            "id",
            "recipient",
            "sender",
            "type",
            "title",
            "message",
            "data",
            "action_url",
            "priority",
            "is_read",
            "unread",
            "read_at",
            "expires_at",
            "created_at",
        )
        read_only_fields = fields

    def get_unread(self, obj: Notification) -> bool:
        return not bool(obj.is_read)


class NotificationCreateSerializer(serializers.Serializer):
    """Staff-only admin message.

    Accepted targeting forms (exactly one is required):
    - recipient_id: int
    - receivers: list[int | str], where "ALL" means every active user
    """

    title = serializers.CharField(max_length=100)
    message = serializers.CharField(max_length=500)
    priority = serializers.ChoiceField(
        choices=Notification.Priority.choices,
        required=False,
        default=Notification.Priority.HIGH,
    )
    data = serializers.DictField(required=False, default=dict)
    action_url = serializers.CharField(
        max_length=500, required=False, allow_blank=True, default=""
    )

    # Accept either int or numeric string, and tolerate "" (treated as missing).
    recipient_id = serializers.CharField(required=False, allow_blank=True)
    receivers = serializers.ListField(child=serializers.JSONField(), required=False)

    def validate(self, attrs: dict[str, Any]) -> dict[str, Any]:
        recipient_id = attrs.get("recipient_id")
        if isinstance(recipient_id, str):
            recipient_id = recipient_id.strip()
            if not recipient_id:
                attrs.pop("recipient_id", None)
            elif recipient_id.isdigit():
                attrs["recipient_id"] = int(recipient_id)
            else:
                msg = "Must be an integer."
                raise serializers.ValidationError({"recipient_id": msg})

        receivers = attrs.get("receivers")
        if isinstance(receivers, list) and len(receivers) == 0:
            attrs.pop("receivers", None)

        if ("recipient_id" in attrs) == ("receivers" in attrs):
            msg = "Provide exactly one of recipient_id, receivers."
            raise serializers.ValidationError(msg)
        return attrs
