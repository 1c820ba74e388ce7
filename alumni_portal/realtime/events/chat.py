from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from typing import Any

from alumni_portal.messaging.api.serializers import MessageSerializer
from alumni_portal.realtime.socketio import emit_event_to_user
from alumni_portal.realtime.socketio import schedule_event_to_chat

if TYPE_CHECKING:  # import for type checking only
    from alumni_portal.messaging.models import Chat
    from alumni_portal.messaging.models import Message
    from alumni_portal.messaging.models import MessageReaction

logger = logging.getLogger(__name__)

NEW_MESSAGE = "new_message"
MESSAGE_UPDATED = "message_updated"
MESSAGE_DELETED = "message_deleted"
REACTION_ADDED = "reaction_added"
REACTION_REMOVED = "reaction_removed"


def build_message_payload(message: Message) -> dict[str, Any]:
    return dict(MessageSerializer(message).data)


def build_deleted_payload(message: Message) -> dict[str, Any]:
    # Id and chat only: the redacted content is never broadcast.
    return {"message_id": message.pk, "chat_id": message.chat_id}


def build_reaction_payload(reaction: MessageReaction) -> dict[str, Any]:
    return {
        "message_id": reaction.message_id,
        "chat_id": reaction.message.chat_id,
        "emoji": reaction.emoji,
        "user_id": reaction.user_id,
        "user": reaction.user.public_identity(),
    }


def _publish(chat_id: int, event: str, payload: dict[str, Any]) -> None:
    # Runs from on_commit hooks: the request neither waits for the fan-out nor
    # sees its failures.
    try:
        schedule_event_to_chat(chat_id, event, payload)
    except Exception:
        logger.exception("Failed to publish %s to chat %s", event, chat_id)


def publish_new_message(message: Message) -> None:
    _publish(message.chat_id, NEW_MESSAGE, build_message_payload(message))


def publish_message_updated(message: Message) -> None:
    _publish(message.chat_id, MESSAGE_UPDATED, build_message_payload(message))


def publish_message_deleted(message: Message) -> None:
    _publish(message.chat_id, MESSAGE_DELETED, build_deleted_payload(message))


def publish_reaction_added(reaction: MessageReaction) -> None:
    payload = build_reaction_payload(reaction)
    _publish(payload["chat_id"], REACTION_ADDED, payload)


def publish_reaction_removed(message: Message, user, emoji: str | None) -> None:
    payload = {
        "message_id": message.pk,
        "chat_id": message.chat_id,
        "emoji": emoji,
        "user_id": user.pk,
        "user": user.public_identity(),
    }
    _publish(message.chat_id, REACTION_REMOVED, payload)


def publish_new_chat(chat: Chat, creator) -> None:
    """Tell every other participant, on their personal channel, about a new chat."""

    creator_name = f"{creator.first_name} {creator.last_name}".strip() or "Someone"
    payload = {
        "type": "new_chat",
        "title": "New Chat",
        "message": f"{creator_name} added you to a chat",
        "data": {"chat_id": chat.pk},
    }
    recipient_ids = chat.memberships.exclude(user_id=creator.pk).values_list(
        "user_id", flat=True
    )
    for user_id in recipient_ids:
        try:
            emit_event_to_user(user_id, "new_notification", payload)
        except Exception:
            logger.exception("Failed to announce chat %s to user %s", chat.pk, user_id)
