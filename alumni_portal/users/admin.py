from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils.translation import gettext_lazy as _

from alumni_portal.users.models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    fieldsets = (
        *BaseUserAdmin.fieldsets,
        (_("Alumni"), {"fields": ("profile_picture", "is_online", "last_seen_at")}),
    )
    list_display = ["username", "email", "name", "is_online", "last_seen_at"]
    list_filter = ["is_online", "is_active", "is_staff"]
    search_fields = ["username", "email", "name"]
    readonly_fields = ["is_online", "last_seen_at"]
