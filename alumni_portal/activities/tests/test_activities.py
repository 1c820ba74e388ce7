from unittest import mock

import pytest
from django.db import DatabaseError
from rest_framework import status

from alumni_portal.activities.models import Activity
from alumni_portal.activities.tasks import record_activity
from alumni_portal.activities.utils import log_activity
from alumni_portal.activities.utils import record_activity_later

pytestmark = pytest.mark.django_db


def test_log_activity_defaults_description_to_action(alice):
    activity = log_activity(
        Activity.Type.LOGIN,
        user_id=alice.pk,
        action="Logged in",
    )
    assert activity.description == "Logged in"
    assert activity.visibility == Activity.Visibility.PUBLIC
    assert activity.metadata == {}


def test_record_activity_later_waits_for_commit(
    alice,
    django_capture_on_commit_callbacks,
):
    with django_capture_on_commit_callbacks(execute=False) as callbacks:
        record_activity_later(
            Activity.Type.CHAT_CREATED,
            user_id=alice.pk,
            action="Started a chat",
        )
    assert not Activity.objects.exists()
    assert len(callbacks) == 1

    callbacks[0]()
    assert Activity.objects.get().action == "Started a chat"


def test_enqueue_failure_is_logged_not_raised(
    alice,
    django_capture_on_commit_callbacks,
    caplog,
):
    failing = mock.Mock()
    failing.delay.side_effect = OSError("down")
    with (
        mock.patch("alumni_portal.activities.tasks.record_activity", failing),
        django_capture_on_commit_callbacks(execute=True),
    ):
        record_activity_later(Activity.Type.LOGIN, user_id=alice.pk, action="x")

    assert not Activity.objects.exists()
    assert "Could not enqueue login activity" in caplog.text


def test_record_task_swallows_database_errors(alice):
    with mock.patch(
        "alumni_portal.activities.tasks.log_activity",
        side_effect=DatabaseError("locked"),
    ):
        assert record_activity(Activity.Type.LOGIN, user_id=alice.pk, action="x") is None


def test_recent_returns_own_activities_newest_first(api_client, alice, bob):
    for n in range(3):
        log_activity(Activity.Type.FORUM_POST, user_id=alice.pk, action=f"Post {n}")
    log_activity(Activity.Type.FORUM_POST, user_id=bob.pk, action="Not mine")
    api_client.force_authenticate(alice)

    r = api_client.get("/api/v1/activities/recent/", {"limit": 2})

    assert r.status_code == status.HTTP_200_OK
    data = r.data["data"]
    assert data["limit"] == 2  # noqa: PLR2004
    assert [a["action"] for a in data["activities"]] == ["Post 2", "Post 1"]


@pytest.mark.parametrize(("raw", "expected"), [("0", 1), ("500", 50), ("abc", 10)])
def test_recent_clamps_limit(api_client, alice, raw, expected):
    api_client.force_authenticate(alice)
    r = api_client.get("/api/v1/activities/recent/", {"limit": raw})
    assert r.data["data"]["limit"] == expected
