from django.contrib import admin

from alumni_portal.activities import models


@admin.register(models.Activity)
class ActivityAdmin(admin.ModelAdmin):
    list_display = ["id", "user", "activity_type", "action", "visibility", "created_at"]
    search_fields = ["action", "description"]
    list_filter = ["activity_type", "visibility", "created_at"]
