"""Chat and message persistence used by both the socket relay and the REST API.

Everything here is synchronous ORM code. Failures are raised with the relay
error taxonomy so callers on either transport render them the same way.
Broadcasting is left to the caller: the socket handlers spawn it after the
write, the REST views publish it on commit.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.db import transaction
from django.db.models import Count
from django.db.models import IntegerField
from django.db.models import OuterRef
from django.db.models import Subquery
from django.db.models.functions import Coalesce
from django.utils import timezone

from alumni_portal.activities.models import Activity
from alumni_portal.activities.utils import record_activity_later
from alumni_portal.core.exceptions import ForbiddenError
from alumni_portal.core.exceptions import NotFoundError
from alumni_portal.core.exceptions import ValidationError

from .models import DELETED_MESSAGE_PLACEHOLDER
from .models import MAX_MESSAGE_LENGTH
from .models import Chat
from .models import ChatParticipant
from .models import Message
from .models import MessageReaction
from .models import MessageReadReceipt
from .models import direct_key_for

if TYPE_CHECKING:  # import for type checking only
    from collections.abc import Iterable

    from django.db.models import QuerySet

logger = logging.getLogger(__name__)

User = get_user_model()

GROUP_CHAT_TYPES = {
    Chat.Type.GROUP,
    Chat.Type.ALUMNI_GROUP,
    Chat.Type.DEPARTMENT_GROUP,
    Chat.Type.BATCH_GROUP,
}


# Lookups
# ------------------------------------------------------------------------------


def _get_chat(chat_id) -> Chat:
    try:
        return Chat.objects.get(pk=chat_id)
    except (Chat.DoesNotExist, ValueError, TypeError) as exc:
        msg = "Chat not found."
        raise NotFoundError(msg) from exc


def _get_message(message_id) -> Message:
    try:
        return Message.objects.select_related("chat", "sender").get(pk=message_id)
    except (Message.DoesNotExist, ValueError, TypeError) as exc:
        msg = "Message not found."
        raise NotFoundError(msg) from exc


def _require_participant(chat: Chat, user_id: int) -> ChatParticipant:
    membership = ChatParticipant.objects.filter(chat=chat, user_id=user_id).first()
    if membership is None:
        msg = "You are not a participant of this chat."
        raise ForbiddenError(msg)
    return membership


def get_chat_for_participant(chat_id, user_id: int) -> Chat:
    """Resolve a chat the user takes part in: NotFound first, then Forbidden."""
    chat = _get_chat(chat_id)
    _require_participant(chat, user_id)
    return chat


# Chat creation
# ------------------------------------------------------------------------------


def create_direct_chat(user_a_id: int, user_b_id: int) -> tuple[Chat, bool]:
    """Find or create the direct chat between two users.

    The pair is unordered: ``(a, b)`` and ``(b, a)`` resolve to the same chat.
    An existing chat is returned untouched. ``user_a`` is recorded as creator.
    """
    try:
        user_a_id, user_b_id = int(user_a_id), int(user_b_id)
    except (TypeError, ValueError) as exc:
        msg = "A valid participant id is required."
        raise ValidationError(msg) from exc
    if user_a_id == user_b_id:
        msg = "Cannot start a direct chat with yourself."
        raise ValidationError(msg)
    if not User.objects.filter(pk=user_b_id, is_active=True).exists():
        msg = "Participant not found."
        raise ValidationError(msg)

    key = direct_key_for(user_a_id, user_b_id)
    existing = Chat.objects.filter(direct_key=key).first()
    if existing is not None:
        return existing, False

    try:
        with transaction.atomic():
            chat = Chat.objects.create(
                type=Chat.Type.DIRECT,
                direct_key=key,
                created_by_id=user_a_id,
            )
            ChatParticipant.objects.bulk_create(
                [
                    ChatParticipant(chat=chat, user_id=user_a_id),
                    ChatParticipant(chat=chat, user_id=user_b_id),
                ]
            )
    except IntegrityError:
        # Lost the race against a concurrent create for the same pair.
        return Chat.objects.get(direct_key=key), False
    logger.info("Direct chat %s created for %s", chat.pk, key)
    return chat, True


def create_group_chat(  # noqa: PLR0913
    creator_id: int,
    name: str,
    participant_ids: Iterable[int],
    *,
    description: str = "",
    is_private: bool = False,
    chat_type: str = Chat.Type.GROUP,
) -> Chat:
    name = (name or "").strip()
    if not name:
        msg = "Group chat requires a name."
        raise ValidationError(msg)
    if chat_type not in GROUP_CHAT_TYPES:
        msg = f"Unsupported group chat type: {chat_type}."
        raise ValidationError(msg)

    member_ids = {int(pk) for pk in participant_ids or []} - {int(creator_id)}
    if not member_ids:
        msg = "Group chat requires at least one participant."
        raise ValidationError(msg)
    found = set(
        User.objects.filter(pk__in=member_ids, is_active=True).values_list(
            "pk", flat=True
        )
    )
    missing = sorted(member_ids - found)
    if missing:
        msg = "Some participants were not found."
        raise ValidationError(msg, errors=[f"Unknown user id: {pk}" for pk in missing])

    with transaction.atomic():
        chat = Chat.objects.create(
            type=chat_type,
            name=name,
            description=description or "",
            is_private=is_private,
            created_by_id=creator_id,
        )
        memberships = [
            ChatParticipant(
                chat=chat,
                user_id=creator_id,
                role=ChatParticipant.Role.ADMIN,
            ),
        ]
        memberships.extend(
            ChatParticipant(chat=chat, user_id=pk) for pk in sorted(member_ids)
        )
        ChatParticipant.objects.bulk_create(memberships)
    logger.info("Group chat %s created by %s", chat.pk, creator_id)
    return chat


# Messages
# ------------------------------------------------------------------------------


def _touch_chat_summary(chat: Chat, message: Message) -> None:
    # Conditional update: a slower writer never moves last_activity backwards.
    Chat.objects.filter(pk=chat.pk, last_activity__lte=message.created_at).update(
        last_message=message,
        last_activity=message.created_at,
        updated_at=timezone.now(),
    )


def _record_direct_message_activity(chat: Chat, message: Message) -> None:
    other = (
        User.objects.filter(chat_memberships__chat=chat)
        .exclude(pk=message.sender_id)
        .only("pk", "first_name", "last_name")
        .first()
    )
    if other is None:
        return
    record_activity_later(
        Activity.Type.MESSAGE_SENT,
        user_id=message.sender_id,
        action=f"Sent a message to {other.first_name} {other.last_name}".strip(),
        description="sent a message",
        metadata={
            "target_user": other.pk,
            "chat_id": chat.pk,
            "message_type": message.type,
        },
        visibility=Activity.Visibility.PRIVATE,
        points=2,
    )


def send_message(  # noqa: PLR0913
    *,
    chat_id,
    sender_id: int,
    content: str = "",
    message_type: str = Message.Type.TEXT,
    reply_to_id=None,
    file_url: str = "",
    file_name: str = "",
    file_size: int | None = None,
) -> Message:
    """Persist a message and move the chat summary forward.

    Checks run in order: the chat exists, the sender participates, the content
    is acceptable. Nothing is written when any of them fails.
    """
    chat = _get_chat(chat_id)
    _require_participant(chat, sender_id)

    content = (content or "").strip()
    if message_type not in Message.Type.values:
        msg = f"Unsupported message type: {message_type}."
        raise ValidationError(msg)
    if message_type == Message.Type.TEXT and not content:
        msg = "Message content is required."
        raise ValidationError(msg)
    if len(content) > MAX_MESSAGE_LENGTH:
        msg = f"Message content cannot exceed {MAX_MESSAGE_LENGTH} characters."
        raise ValidationError(msg)

    reply_to = None
    if reply_to_id:
        reply_to = Message.objects.filter(pk=reply_to_id, chat=chat).first()
        if reply_to is None:
            msg = "Replied-to message does not belong to this chat."
            raise ValidationError(msg)

    with transaction.atomic():
        message = Message.objects.create(
            chat=chat,
            sender_id=sender_id,
            content=content,
            type=message_type,
            reply_to=reply_to,
            file_url=file_url or "",
            file_name=file_name or "",
            file_size=file_size,
        )
        _touch_chat_summary(chat, message)
        if chat.is_direct:
            _record_direct_message_activity(chat, message)

    logger.debug("Message %s stored in chat %s", message.pk, chat.pk)
    return Message.objects.select_related("sender", "reply_to").get(pk=message.pk)


def edit_message(message_id, editor_id: int, content: str) -> Message:
    message = _get_message(message_id)
    if message.sender_id != int(editor_id):
        msg = "You can only edit your own messages."
        raise ForbiddenError(msg)
    if message.is_deleted:
        msg = "Deleted messages cannot be edited."
        raise ValidationError(msg)
    content = (content or "").strip()
    if not content:
        msg = "Message content is required."
        raise ValidationError(msg)
    if len(content) > MAX_MESSAGE_LENGTH:
        msg = f"Message content cannot exceed {MAX_MESSAGE_LENGTH} characters."
        raise ValidationError(msg)

    message.content = content
    message.is_edited = True
    message.edited_at = timezone.now()
    message.save(update_fields=["content", "is_edited", "edited_at", "updated_at"])
    return message


def soft_delete_message(message_id, requester_id: int) -> Message:
    """Redact a message in place; only its sender may do so."""
    message = _get_message(message_id)
    if message.sender_id != int(requester_id):
        msg = "You can only delete your own messages."
        raise ForbiddenError(msg)
    if message.is_deleted:
        return message

    message.content = DELETED_MESSAGE_PLACEHOLDER
    message.is_deleted = True
    message.deleted_at = timezone.now()
    message.save(update_fields=["content", "is_deleted", "deleted_at", "updated_at"])
    return message


def chat_messages(chat: Chat) -> QuerySet[Message]:
    """Visible history, newest first. Callers paginate then reverse a page."""
    return (
        Message.objects.filter(chat=chat, is_deleted=False)
        .select_related("sender", "reply_to")
        .prefetch_related("reactions__user")
        .order_by("-created_at", "-id")
    )


# Reactions and receipts
# ------------------------------------------------------------------------------


def add_reaction(message_id, user_id: int, emoji: str) -> MessageReaction:
    """Add ``emoji`` from ``user_id``; repeating it replaces, never duplicates."""
    emoji = (emoji or "").strip()
    if not emoji:
        msg = "Emoji is required."
        raise ValidationError(msg)
    message = _get_message(message_id)
    _require_participant(message.chat, user_id)

    reaction, created = MessageReaction.objects.get_or_create(
        message=message,
        user_id=user_id,
        emoji=emoji,
    )
    if not created:
        reaction.created_at = timezone.now()
        reaction.save(update_fields=["created_at"])
    return reaction


def remove_reaction(message_id, user_id: int, emoji: str | None = None) -> int:
    """Drop the user's reaction(s); returns how many rows went away."""
    message = _get_message(message_id)
    _require_participant(message.chat, user_id)
    qs = MessageReaction.objects.filter(message=message, user_id=user_id)
    if emoji:
        qs = qs.filter(emoji=emoji)
    deleted, _ = qs.delete()
    return deleted


def mark_read(chat_id, user_id: int) -> int:
    """Add a read receipt for every message the user has not read yet.

    Own messages are skipped. Also stamps the user's per-chat last-seen time.
    Returns the number of receipts created.
    """
    chat = _get_chat(chat_id)
    membership = _require_participant(chat, user_id)
    now = timezone.now()

    unread_ids = list(
        Message.objects.filter(chat=chat)
        .exclude(sender_id=user_id)
        .exclude(read_receipts__user_id=user_id)
        .values_list("pk", flat=True)
    )
    with transaction.atomic():
        MessageReadReceipt.objects.bulk_create(
            [
                MessageReadReceipt(message_id=pk, user_id=user_id, read_at=now)
                for pk in unread_ids
            ],
            ignore_conflicts=True,
        )
        membership.last_seen_at = now
        membership.save(update_fields=["last_seen_at"])
    return len(unread_ids)


def unread_count(chat_id, user_id: int) -> int:
    return (
        Message.objects.filter(chat_id=chat_id, is_deleted=False)
        .exclude(sender_id=user_id)
        .exclude(read_receipts__user_id=user_id)
        .count()
    )


def touch_last_seen(chat_id, user_id: int) -> None:
    ChatParticipant.objects.filter(chat_id=chat_id, user_id=user_id).update(
        last_seen_at=timezone.now()
    )


# Chat management
# ------------------------------------------------------------------------------


def list_user_chats(user_id: int, *, archived: bool = False) -> QuerySet[Chat]:
    """Chats the user takes part in, most recently active first.

    Each row is annotated with ``unread_count`` for that user.
    """
    unread = (
        Message.objects.filter(chat=OuterRef("pk"), is_deleted=False)
        .exclude(sender_id=user_id)
        .exclude(read_receipts__user_id=user_id)
        .order_by()
        .values("chat")
        .annotate(total=Count("pk"))
        .values("total")
    )
    return (
        Chat.objects.filter(memberships__user_id=user_id, is_archived=archived)
        .annotate(
            unread_count=Coalesce(
                Subquery(unread, output_field=IntegerField()),
                0,
            )
        )
        .select_related("last_message__sender")
        .prefetch_related("memberships__user")
        .order_by("-last_activity", "-id")
    )


def set_archived(chat_id, user_id: int, *, archived: bool = True) -> Chat:
    chat = get_chat_for_participant(chat_id, user_id)
    if chat.is_archived != archived:
        chat.is_archived = archived
        chat.save(update_fields=["is_archived", "updated_at"])
    return chat


def _require_group_admin(chat: Chat, user_id: int) -> None:
    membership = _require_participant(chat, user_id)
    if chat.is_direct:
        msg = "Participants cannot be changed on a direct chat."
        raise ValidationError(msg)
    if membership.role != ChatParticipant.Role.ADMIN:
        msg = "Only group admins can manage participants."
        raise ForbiddenError(msg)


def add_participant(chat_id, actor_id: int, user_id: int) -> ChatParticipant:
    chat = _get_chat(chat_id)
    _require_group_admin(chat, actor_id)
    if not User.objects.filter(pk=user_id, is_active=True).exists():
        msg = "User not found."
        raise NotFoundError(msg)
    membership, created = ChatParticipant.objects.get_or_create(
        chat=chat,
        user_id=user_id,
    )
    if created:
        chat.save(update_fields=["updated_at"])
    return membership


def remove_participant(chat_id, actor_id: int, user_id: int) -> bool:
    """Group admins remove anyone; any participant may remove themselves."""
    chat = _get_chat(chat_id)
    if int(actor_id) != int(user_id):
        _require_group_admin(chat, actor_id)
    else:
        _require_participant(chat, actor_id)
        if chat.is_direct:
            msg = "Participants cannot be changed on a direct chat."
            raise ValidationError(msg)
    deleted, _ = ChatParticipant.objects.filter(chat=chat, user_id=user_id).delete()
    return bool(deleted)
