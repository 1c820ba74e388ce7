from django.contrib import admin

from alumni_portal.notifications import models


@admin.register(models.Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "recipient",
        "notification_type",
        "title",
        "priority",
        "is_read",
        "created_at",
    ]
    list_filter = ["notification_type", "priority", "is_read"]
    search_fields = ["title", "message"]
    raw_id_fields = ["recipient", "sender"]
