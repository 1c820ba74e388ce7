from drf_spectacular.utils import extend_schema
from drf_spectacular.utils import extend_schema_view
from rest_framework.decorators import action
from rest_framework.mixins import RetrieveModelMixin
from rest_framework.viewsets import GenericViewSet

from alumni_portal.core.api import success_response
from alumni_portal.users.models import User

from .serializers import PresenceUserSerializer
from .serializers import UserSerializer


@extend_schema_view(
    retrieve=extend_schema(tags=["Users"]),
    me=extend_schema(tags=["Users"]),
    online=extend_schema(tags=["Users"]),
)
class UserViewSet(RetrieveModelMixin, GenericViewSet):
    serializer_class = PresenceUserSerializer
    queryset = User.objects.filter(is_active=True)

    def retrieve(self, request, *args, **kwargs):
        serializer = self.get_serializer(self.get_object())
        return success_response({"user": serializer.data})

    @action(detail=False)
    def me(self, request):
        serializer = UserSerializer(request.user, context={"request": request})
        return success_response({"user": serializer.data})

    @action(detail=False)
    def online(self, request):
        """Users the relay currently reports online."""
        users = self.get_queryset().filter(is_online=True).order_by("first_name")
        page = self.paginate_queryset(users)
        serializer = self.get_serializer(page, many=True)
        return success_response(
            {
                "users": serializer.data,
                "pagination": self.paginator.get_pagination_meta(),
            }
        )
