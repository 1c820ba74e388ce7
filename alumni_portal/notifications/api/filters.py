import django_filters

from alumni_portal.notifications.models import Notification


class NotificationFilter(django_filters.FilterSet):
    type = django_filters.ChoiceFilter(
        field_name="notification_type",
        choices=Notification.Type.choices,
    )
    is_read = django_filters.BooleanFilter(field_name="is_read")
    priority = django_filters.ChoiceFilter(choices=Notification.Priority.choices)

    class Meta:
        model = Notification
        fields = ["type", "is_read", "priority"]
