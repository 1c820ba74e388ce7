from __future__ import annotations

from typing import Any

from rest_framework import serializers

from alumni_portal.messaging.models import MAX_MESSAGE_LENGTH
from alumni_portal.messaging.models import Chat
from alumni_portal.messaging.models import ChatParticipant
from alumni_portal.messaging.models import Message
from alumni_portal.messaging.models import MessageReaction
from alumni_portal.users.api.serializers import PresenceUserSerializer
from alumni_portal.users.api.serializers import PublicUserSerializer


class ReactionSerializer(serializers.ModelSerializer):
    user = PublicUserSerializer(read_only=True)

    class Meta:
        model = MessageReaction
        fields = ("user", "emoji", "created_at")


class MessageSerializer(serializers.ModelSerializer):
    """Fully shaped message, as broadcast and as returned by the API."""

    chat_id = serializers.IntegerField(read_only=True)
    sender = PublicUserSerializer(read_only=True)
    reply_to = serializers.PrimaryKeyRelatedField(read_only=True)
    reactions = ReactionSerializer(many=True, read_only=True)

    class Meta:
        model = Message
        fields = (
            "id",
            "chat_id",
            "sender",
            "content",
            "type",
            "file_url",
            "file_name",
            "file_size",
            "reply_to",
            "reactions",
            "is_edited",
            "edited_at",
            "is_deleted",
            "created_at",
        )
        read_only_fields = fields


class ChatParticipantSerializer(serializers.ModelSerializer):
    user = PresenceUserSerializer(read_only=True)

    class Meta:
        model = ChatParticipant
        fields = ("user", "role", "joined_at", "last_seen_at")


class ChatSerializer(serializers.ModelSerializer):
    participants = ChatParticipantSerializer(
        source="memberships",
        many=True,
        read_only=True,
    )
    last_message = MessageSerializer(read_only=True)
    unread_count = serializers.SerializerMethodField()

    class Meta:
        model = Chat
        fields = (
            "id",
            "type",
            "name",
            "description",
            "participants",
            "last_message",
            "last_activity",
            "is_archived",
            "is_pinned",
            "is_private",
            "created_by",
            "unread_count",
            "created_at",
        )
        read_only_fields = fields

    def get_unread_count(self, obj: Chat) -> int:
        # Set by services.list_user_chats; absent on freshly created chats.
        return int(getattr(obj, "unread_count", 0) or 0)


class ChatCreateSerializer(serializers.Serializer):
    participant_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        allow_empty=False,
    )
    type = serializers.ChoiceField(choices=Chat.Type.choices, default=Chat.Type.DIRECT)
    name = serializers.CharField(max_length=100, required=False, allow_blank=True)
    description = serializers.CharField(
        max_length=500,
        required=False,
        allow_blank=True,
        default="",
    )
    is_private = serializers.BooleanField(default=False)

    def validate(self, attrs: dict[str, Any]) -> dict[str, Any]:
        if attrs["type"] == Chat.Type.DIRECT and len(attrs["participant_ids"]) != 1:
            msg = "A direct chat takes exactly one other participant."
            raise serializers.ValidationError({"participant_ids": msg})
        return attrs


class MessageCreateSerializer(serializers.Serializer):
    content = serializers.CharField(
        max_length=MAX_MESSAGE_LENGTH,
        allow_blank=True,
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


class MessageUpdateSerializer(serializers.Serializer):
    content = serializers.CharField(max_length=MAX_MESSAGE_LENGTH)


class ReactionInputSerializer(serializers.Serializer):
    emoji = serializers.CharField(max_length=32)


class ParticipantInputSerializer(serializers.Serializer):
    user_id = serializers.IntegerField(min_value=1)


class ArchiveSerializer(serializers.Serializer):
    is_archived = serializers.BooleanField(default=True)
