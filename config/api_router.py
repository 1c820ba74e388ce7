from django.conf import settings
from django.urls import include
from django.urls import path
from rest_framework.routers import DefaultRouter
from rest_framework.routers import SimpleRouter

from alumni_portal.messaging.api.views import ChatViewSet
from alumni_portal.messaging.api.views import MessageViewSet
from alumni_portal.notifications.api.views import NotificationViewSet
from alumni_portal.users.api.views import UserViewSet

router = DefaultRouter() if settings.DEBUG else SimpleRouter()

router.register("users", UserViewSet)
router.register("chats", ChatViewSet, basename="chats")
router.register("messages", MessageViewSet, basename="messages")
router.register("notifications", NotificationViewSet, basename="notifications")


app_name = "api"
urlpatterns = [
    path(
        "activities/",
        include(
            ("alumni_portal.activities.api.urls", "activities"),
            namespace="activities",
        ),
    ),
    *router.urls,
]
