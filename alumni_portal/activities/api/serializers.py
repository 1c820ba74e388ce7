from __future__ import annotations

from rest_framework import serializers

from alumni_portal.activities.models import Activity


class ActivitySerializer(serializers.ModelSerializer):
    class Meta:
        model = Activity
        fields = [
            "id",
            "activity_type",
            "action",
            "description",
            "metadata",
            "visibility",
            "points",
            "created_at",
        ]
