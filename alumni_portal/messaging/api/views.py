from __future__ import annotations

from django.db import transaction
from drf_spectacular.utils import OpenApiParameter
from drf_spectacular.utils import extend_schema
from drf_spectacular.utils import extend_schema_view
from rest_framework import mixins
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.viewsets import GenericViewSet

from alumni_portal.core.api import success_response
from alumni_portal.messaging import services
from alumni_portal.messaging.models import Chat
from alumni_portal.messaging.models import Message
from alumni_portal.realtime.events import chat as chat_events

from .serializers import ArchiveSerializer
from .serializers import ChatCreateSerializer
from .serializers import ChatSerializer
from .serializers import MessageCreateSerializer
from .serializers import MessageSerializer
from .serializers import MessageUpdateSerializer
from .serializers import ParticipantInputSerializer
from .serializers import ReactionInputSerializer

PAGE_PARAMS = [OpenApiParameter("page", int), OpenApiParameter("limit", int)]


@extend_schema_view(
    list=extend_schema(
        tags=["Messaging"],
        parameters=[*PAGE_PARAMS, OpenApiParameter("archived", bool)],
    ),
    create=extend_schema(tags=["Messaging"], request=ChatCreateSerializer),
    retrieve=extend_schema(tags=["Messaging"]),
    messages=extend_schema(tags=["Messaging"], parameters=PAGE_PARAMS),
    read=extend_schema(tags=["Messaging"], request=None),
    archive=extend_schema(tags=["Messaging"], request=ArchiveSerializer),
    participants=extend_schema(tags=["Messaging"], request=ParticipantInputSerializer),
)
class ChatViewSet(mixins.ListModelMixin, GenericViewSet):
    """Chats of the authenticated user.

    Every write publishes its realtime event once the transaction commits, so
    REST clients and socket clients see the same stream.
    """

    permission_classes = [IsAuthenticated]
    serializer_class = ChatSerializer
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        archived = self.request.query_params.get("archived", "").lower() == "true"
        return services.list_user_chats(self.request.user.pk, archived=archived)

    def _chat(self, pk) -> Chat:
        return services.get_chat_for_participant(pk, self.request.user.pk)

    def _chat_payload(self, chat: Chat):
        chat = (
            Chat.objects.select_related("last_message__sender")
            .prefetch_related("memberships__user")
            .get(pk=chat.pk)
        )
        return ChatSerializer(chat, context=self.get_serializer_context()).data

    def list(self, request, *args, **kwargs):
        page = self.paginate_queryset(self.get_queryset())
        serializer = self.get_serializer(page, many=True)
        return success_response(
            {
                "chats": serializer.data,
                "pagination": self.paginator.get_pagination_meta(),
            }
        )

    def create(self, request, *args, **kwargs):
        serializer = ChatCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        with transaction.atomic():
            if data["type"] == Chat.Type.DIRECT:
                chat, created = services.create_direct_chat(
                    request.user.pk,
                    data["participant_ids"][0],
                )
            else:
                chat = services.create_group_chat(
                    request.user.pk,
                    data.get("name", ""),
                    data["participant_ids"],
                    description=data.get("description", ""),
                    is_private=data["is_private"],
                    chat_type=data["type"],
                )
                created = True
            if created:
                user = request.user
                transaction.on_commit(lambda: chat_events.publish_new_chat(chat, user))

        return success_response(
            {"chat": self._chat_payload(chat)},
            status_code=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    def retrieve(self, request, pk=None):
        chat = self._chat(pk)
        return success_response({"chat": self._chat_payload(chat)})

    @action(detail=True, methods=["get", "post"])
    def messages(self, request, pk=None):
        chat = self._chat(pk)
        if request.method == "POST":
            return self._send(request, chat)

        page = self.paginate_queryset(services.chat_messages(chat))
        # Newest page first, each page oldest-first for display.
        rows = list(reversed(page))
        services.touch_last_seen(chat.pk, request.user.pk)
        return success_response(
            {
                "messages": MessageSerializer(rows, many=True).data,
                "pagination": self.paginator.get_pagination_meta(),
            }
        )

    def _send(self, request, chat: Chat):
        serializer = MessageCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        with transaction.atomic():
            message = services.send_message(
                chat_id=chat.pk,
                sender_id=request.user.pk,
                content=data.get("content", ""),
                message_type=data["type"],
                reply_to_id=data.get("reply_to"),
                file_url=data.get("file_url", ""),
                file_name=data.get("file_name", ""),
                file_size=data.get("file_size"),
            )
            transaction.on_commit(lambda: chat_events.publish_new_message(message))
        return success_response(
            {"message": MessageSerializer(message).data},
            message="Message sent.",
            status_code=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["put"])
    def read(self, request, pk=None):
        marked = services.mark_read(pk, request.user.pk)
        return success_response({"marked": marked}, message="Messages marked as read.")

    @action(detail=True, methods=["put"])
    def archive(self, request, pk=None):
        serializer = ArchiveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        chat = services.set_archived(
            pk,
            request.user.pk,
            archived=serializer.validated_data["is_archived"],
        )
        return success_response(
            {"chat_id": chat.pk, "is_archived": chat.is_archived},
            message="Chat archived." if chat.is_archived else "Chat unarchived.",
        )

    @action(detail=True, methods=["post", "delete"])
    def participants(self, request, pk=None):
        serializer = ParticipantInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user_id = serializer.validated_data["user_id"]

        if request.method == "POST":
            services.add_participant(pk, request.user.pk, user_id)
            return success_response(
                {"chat_id": int(pk), "user_id": user_id},
                message="Participant added.",
                status_code=status.HTTP_201_CREATED,
            )
        removed = services.remove_participant(pk, request.user.pk, user_id)
        return success_response(
            {"chat_id": int(pk), "user_id": user_id, "removed": removed},
            message="Participant removed.",
        )


@extend_schema_view(
    partial_update=extend_schema(tags=["Messaging"], request=MessageUpdateSerializer),
    destroy=extend_schema(tags=["Messaging"]),
    reactions=extend_schema(tags=["Messaging"], request=ReactionInputSerializer),
)
class MessageViewSet(GenericViewSet):
    permission_classes = [IsAuthenticated]
    serializer_class = MessageSerializer
    queryset = Message.objects.none()
    lookup_value_regex = r"\d+"

    def partial_update(self, request, pk=None):
        serializer = MessageUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        with transaction.atomic():
            message = services.edit_message(
                pk,
                request.user.pk,
                serializer.validated_data["content"],
            )
            transaction.on_commit(lambda: chat_events.publish_message_updated(message))
        return success_response(
            {"message": MessageSerializer(message).data},
            message="Message updated.",
        )

    def destroy(self, request, pk=None):
        with transaction.atomic():
            message = services.soft_delete_message(pk, request.user.pk)
            transaction.on_commit(lambda: chat_events.publish_message_deleted(message))
        return success_response(message="Message deleted successfully.")

    @action(detail=True, methods=["post", "delete"])
    def reactions(self, request, pk=None):
        if request.method == "DELETE":
            emoji = request.query_params.get("emoji") or request.data.get("emoji")
            with transaction.atomic():
                removed = services.remove_reaction(pk, request.user.pk, emoji)
                message = Message.objects.get(pk=pk)
                user = request.user
                if removed:
                    transaction.on_commit(
                        lambda: chat_events.publish_reaction_removed(message, user, emoji)
                    )
            return success_response({"removed": removed}, message="Reaction removed.")

        serializer = ReactionInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        with transaction.atomic():
            reaction = services.add_reaction(
                pk,
                request.user.pk,
                serializer.validated_data["emoji"],
            )
            transaction.on_commit(lambda: chat_events.publish_reaction_added(reaction))
        return success_response(
            {"message_id": reaction.message_id, "emoji": reaction.emoji},
            message="Reaction added.",
        )
