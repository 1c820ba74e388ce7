from django.contrib import admin

from alumni_portal.messaging import models


class ChatParticipantInline(admin.TabularInline):
    model = models.ChatParticipant
    extra = 0
    raw_id_fields = ["user"]


@admin.register(models.Chat)
class ChatAdmin(admin.ModelAdmin):
    list_display = ["id", "type", "name", "last_activity", "is_archived"]
    list_filter = ["type", "is_archived", "is_private"]
    search_fields = ["name", "description"]
    raw_id_fields = ["last_message", "created_by"]
    inlines = [ChatParticipantInline]


@admin.register(models.Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ["id", "chat", "sender", "type", "is_deleted", "created_at"]
    list_filter = ["type", "is_deleted", "is_edited"]
    search_fields = ["content"]
    raw_id_fields = ["chat", "sender", "reply_to"]
