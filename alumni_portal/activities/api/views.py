from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView

from alumni_portal.activities.api.serializers import ActivitySerializer
from alumni_portal.activities.models import Activity
from alumni_portal.core.api import success_response

if TYPE_CHECKING:
    from django.db.models import QuerySet


class RecentActivityView(APIView):
    """The requesting user's own most recent activity records."""

    permission_classes = [IsAuthenticated]

    def get(self, request):
        try:
            limit = int(request.query_params.get("limit", "10"))
        except (TypeError, ValueError):
            limit = 10
        limit = max(1, min(limit, 50))

        qs: QuerySet[Activity] = Activity.objects.filter(user=request.user)
        rows = list(qs[:limit])
        data = ActivitySerializer(rows, many=True).data
        return success_response({"activities": data, "limit": limit})
