"""Sync publishers: called from REST views and on_commit hooks."""

import asyncio
from unittest import mock

import pytest
from asgiref.sync import async_to_sync
from asgiref.sync import sync_to_async

from alumni_portal.messaging import services
from alumni_portal.notifications.models import Notification
from alumni_portal.realtime.channels import room_for_chat
from alumni_portal.realtime.channels import room_for_forum
from alumni_portal.realtime.events import chat as chat_events
from alumni_portal.realtime.events.forums import publish_forum_update
from alumni_portal.realtime.events.notifications import publish_notification_created
from alumni_portal.realtime.socketio import bind_relay_loop
from alumni_portal.realtime.socketio import drain_background_tasks
from alumni_portal.realtime.socketio import emit_event_to_room
from alumni_portal.realtime.socketio import registry
from alumni_portal.realtime.socketio import schedule_event_to_chat
from tests.factories import create_direct_chat
from tests.factories import create_group_chat

pytestmark = pytest.mark.django_db


def deliveries(emit):
    return [(c.kwargs["to"], c.args[0], c.args[1]) for c in emit.call_args_list]


def test_empty_room_is_not_an_error(emit):
    assert emit_event_to_room("chat_404", "new_message", {}) == 0
    emit.assert_not_called()


def test_failed_sid_does_not_stop_the_others(alice, bob, emit, live_socket, caplog):
    live_socket("a1", alice)
    live_socket("b1", bob)
    room = room_for_chat(1)
    registry.join("a1", room)
    registry.join("b1", room)

    async def flaky(event, payload, to):
        if to == "a1":
            msg = "transport closed"
            raise ConnectionError(msg)

    emit.side_effect = flaky
    assert emit_event_to_room(room, "ping", {"n": 1}) == 1
    assert emit.await_count == 2  # noqa: PLR2004
    assert "Failed to deliver ping to a1" in caplog.text


def test_request_thread_does_not_wait_for_the_fan_out(bob, emit, live_socket):
    live_socket("b1", bob)
    registry.join("b1", room_for_chat(7))

    async def scenario():
        delivering = asyncio.Event()
        release = asyncio.Event()

        async def stalled_transport(event, payload, to):
            delivering.set()
            await release.wait()

        emit.side_effect = stalled_transport
        bind_relay_loop()
        # A worker thread, the way Django runs a sync view under ASGI.
        publish = sync_to_async(schedule_event_to_chat, thread_sensitive=False)
        await asyncio.wait_for(publish(7, "new_message", {"id": 1}), timeout=5)
        await asyncio.wait_for(delivering.wait(), timeout=5)
        release.set()
        await drain_background_tasks()

    async_to_sync(scenario)()
    emit.assert_awaited_once_with("new_message", {"id": 1}, to="b1")


class TestChatEvents:
    @pytest.fixture
    def joined(self, alice, bob, live_socket):
        chat = create_direct_chat(alice, bob)
        for sid, user in (("a1", alice), ("b1", bob)):
            live_socket(sid, user)
            registry.join(sid, room_for_chat(chat.pk))
        return chat

    def test_deleted_payload_never_carries_content(self, joined, alice, emit):
        message = services.send_message(
            chat_id=joined.pk,
            sender_id=alice.pk,
            content="secret",
        )
        message = services.soft_delete_message(message.pk, alice.pk)

        chat_events.publish_message_deleted(message)

        expected = {"message_id": message.pk, "chat_id": joined.pk}
        got = deliveries(emit)
        assert sorted(sid for sid, _, _ in got) == ["a1", "b1"]
        assert all(event == "message_deleted" for _, event, _ in got)
        assert all(payload == expected for _, _, payload in got)

    def test_reaction_events(self, joined, alice, bob, emit):
        message = services.send_message(
            chat_id=joined.pk,
            sender_id=alice.pk,
            content="news",
        )
        reaction = services.add_reaction(message.pk, bob.pk, "🎉")

        chat_events.publish_reaction_added(reaction)
        chat_events.publish_reaction_removed(message, bob, "🎉")

        events = [(event, p["emoji"], p["user_id"]) for _, event, p in deliveries(emit)]
        assert events.count(("reaction_added", "🎉", bob.pk)) == 2  # noqa: PLR2004
        assert events.count(("reaction_removed", "🎉", bob.pk)) == 2  # noqa: PLR2004

    def test_publish_failure_is_contained(self, joined, alice, emit, caplog):
        message = services.send_message(
            chat_id=joined.pk,
            sender_id=alice.pk,
            content="hi",
        )
        with mock.patch.object(
            chat_events,
            "schedule_event_to_chat",
            side_effect=RuntimeError("loop gone"),
        ):
            chat_events.publish_new_message(message)
        assert "Failed to publish new_message" in caplog.text

    def test_new_chat_is_announced_to_other_participants(
        self,
        alice,
        bob,
        carol,
        emit,
        live_socket,
    ):
        for sid, user in (("a1", alice), ("b1", bob), ("c1", carol)):
            live_socket(sid, user)
        chat = create_group_chat(alice, [bob, carol], name="Reunion")

        chat_events.publish_new_chat(chat, alice)

        got = deliveries(emit)
        assert sorted(sid for sid, _, _ in got) == ["b1", "c1"]
        _, event, payload = got[0]
        assert event == "new_notification"
        assert payload == {
            "type": "new_chat",
            "title": "New Chat",
            "message": "Alice Ng added you to a chat",
            "data": {"chat_id": chat.pk},
        }


def test_notification_push_goes_to_personal_channel(alice, bob, emit, live_socket):
    live_socket("a1", alice)
    live_socket("a2", alice)
    live_socket("b1", bob)
    notification = Notification.objects.create(
        recipient=alice,
        sender=bob,
        notification_type=Notification.Type.CONNECTION_REQUEST,
        title="New Connection Request",
        message="Bob Okafor wants to connect with you",
    )

    assert publish_notification_created(notification) is True

    got = deliveries(emit)
    assert sorted(sid for sid, _, _ in got) == ["a1", "a2"]
    payload = got[0][2]
    assert payload["id"] == notification.pk
    assert payload["type"] == "connection_request"
    assert payload["sender"] == bob.public_identity()


def test_notification_push_failure_returns_false(alice, emit):
    notification = Notification.objects.create(
        recipient=alice,
        notification_type=Notification.Type.SYSTEM,
        title="t",
        message="m",
    )
    with mock.patch(
        "alumni_portal.realtime.events.notifications.emit_event_to_user",
        side_effect=RuntimeError("loop gone"),
    ):
        assert publish_notification_created(notification) is False


def test_forum_update_reaches_followers(alice, bob, emit, live_socket):
    live_socket("a1", alice)
    live_socket("b1", bob)
    registry.join("a1", room_for_forum("64af0c"))

    delivered = publish_forum_update("64af0c", {"type": "new_post", "post_id": "p1"})

    assert delivered == 1
    assert deliveries(emit) == [
        (
            "a1",
            "forum_update",
            {"forum_id": "64af0c", "type": "new_post", "post_id": "p1"},
        )
    ]
