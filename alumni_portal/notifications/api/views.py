from __future__ import annotations

from typing import TYPE_CHECKING
from typing import Any

from django.contrib.auth import get_user_model
from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import OpenApiParameter
from drf_spectacular.utils import extend_schema
from drf_spectacular.utils import extend_schema_view
from rest_framework import mixins
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.permissions import IsAdminUser
from rest_framework.permissions import IsAuthenticated
from rest_framework.viewsets import GenericViewSet

from alumni_portal.core.api import success_response
from alumni_portal.core.exceptions import ValidationError
from alumni_portal.notifications import services

from .filters import NotificationFilter
from .serializers import NotificationCreateSerializer
from .serializers import NotificationSerializer

if TYPE_CHECKING:  # import for type checking only
    from collections.abc import Iterable

User = get_user_model()


def _coerce_receivers_to_user_ids(receivers: Iterable[Any]) -> set[int]:
    user_ids: set[int] = set()
    for r in receivers:
        if isinstance(r, bool) or r is None:
            continue
        if isinstance(r, int):
            user_ids.add(int(r))
            continue
        if isinstance(r, str) and r.strip().isdigit():
            user_ids.add(int(r.strip()))
            continue
    return user_ids


@extend_schema_view(
    list=extend_schema(
        tags=["Notifications"],
        parameters=[
            OpenApiParameter("page", int),
            OpenApiParameter("limit", int),
        ],
    ),
    create=extend_schema(tags=["Notifications"]),
    destroy=extend_schema(tags=["Notifications"]),
    read=extend_schema(tags=["Notifications"]),
    mark_all_read=extend_schema(tags=["Notifications"]),
    unread_count=extend_schema(tags=["Notifications"]),
    clear_read=extend_schema(tags=["Notifications"]),
    stats=extend_schema(tags=["Notifications"]),
)
class NotificationViewSet(
    mixins.ListModelMixin,
    mixins.DestroyModelMixin,
    GenericViewSet,
):
    """Notifications for the authenticated user.

    - list: request.user's live (unexpired) notifications, filterable
    - create: admin message to target recipients (staff only)
    - destroy: deletes a notification (recipient only)
    - read / mark-all-read / read/clear / unread-count / stats
    """

    permission_classes = [IsAuthenticated]
    serializer_class = NotificationSerializer
    lookup_value_regex = r"\d+"
    filter_backends = [DjangoFilterBackend]
    filterset_class = NotificationFilter

    def get_queryset(self):
        return services.inbox(self.request.user.pk).select_related("sender")

    def get_permissions(self):
        if self.action == "create":
            return [IsAuthenticated(), IsAdminUser()]
        return [p() for p in self.permission_classes]

    def list(self, request, *args, **kwargs):
        queryset = self.filter_queryset(self.get_queryset())
        page = self.paginate_queryset(queryset)
        serializer = self.get_serializer(page, many=True)
        return success_response(
            {
                "notifications": serializer.data,
                "pagination": self.paginator.get_pagination_meta(),
                "unread_count": services.unread_count(request.user.pk),
            }
        )

    def create(self, request, *args, **kwargs):
        serializer = NotificationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        recipient_ids: set[int] = set()
        if "recipient_id" in data:
            recipient_ids.add(int(data["recipient_id"]))
        else:
            receivers = data.get("receivers") or []
            # If receivers includes ALL, broadcast to all active users.
            has_all = any(
                isinstance(r, str) and r.strip().upper() == "ALL" for r in receivers
            )
            if has_all:
                recipient_ids.update(
                    User.objects.filter(is_active=True).values_list("id", flat=True)
                )
            recipient_ids.update(_coerce_receivers_to_user_ids(receivers))

        recipient_ids &= set(
            User.objects.filter(pk__in=recipient_ids, is_active=True).values_list(
                "id", flat=True
            )
        )
        if not recipient_ids:
            msg = "No recipients resolved from payload."
            raise ValidationError(msg)

        created = services.notify_admin_message(
            sorted(recipient_ids),
            data["title"],
            data["message"],
            sender_id=request.user.pk,
            priority=data["priority"],
            data=data.get("data") or {},
            action_url=data.get("action_url", ""),
        )
        out = NotificationSerializer(created, many=True).data
        return success_response(
            {"notifications": out, "count": len(created)},
            message="Notification sent.",
            status_code=status.HTTP_201_CREATED,
        )

    def destroy(self, request, *args, **kwargs):
        self.get_object().delete()
        return success_response(message="Notification deleted.")

    @action(detail=True, methods=["put"])
    def read(self, request, pk=None):
        notification = services.mark_read(pk, request.user.pk)
        return success_response(
            {"notification": NotificationSerializer(notification).data},
            message="Notification marked as read.",
        )

    @action(detail=False, methods=["put"], url_path="mark-all-read")
    def mark_all_read(self, request):
        updated = services.mark_all_read(request.user.pk)
        return success_response(
            {"updated": updated},
            message="All notifications marked as read.",
        )

    @action(detail=False, url_path="unread-count")
    def unread_count(self, request):
        return success_response({"unread_count": services.unread_count(request.user.pk)})

    @action(detail=False, methods=["delete"], url_path="read/clear")
    def clear_read(self, request):
        deleted, _ = self.get_queryset().filter(is_read=True).delete()
        return success_response(
            {"deleted": deleted},
            message="Read notifications cleared.",
        )

    @action(detail=False)
    def stats(self, request):
        return success_response(services.notification_stats(request.user.pk))

