from django.urls import path

from alumni_portal.activities.api.views import RecentActivityView

app_name = "activities"

urlpatterns = [
    path("recent/", RecentActivityView.as_view(), name="recent"),
]
