from datetime import timedelta
from unittest import mock

import pytest
from asgiref.sync import async_to_sync
from django.core.exceptions import ImproperlyConfigured
from rest_framework_simplejwt.tokens import AccessToken

from alumni_portal.messaging.models import Message
from alumni_portal.notifications import services as notifications
from alumni_portal.realtime import handlers
from alumni_portal.realtime.channels import room_for_chat
from alumni_portal.realtime.channels import room_for_forum
from alumni_portal.realtime.channels import room_for_user
from alumni_portal.realtime.handlers import HANDLERS
from alumni_portal.realtime.handlers import InboundEvent
from alumni_portal.realtime.handlers import connect
from alumni_portal.realtime.handlers import disconnect
from alumni_portal.realtime.handlers import dispatch
from alumni_portal.realtime.socketio import drain_background_tasks
from alumni_portal.realtime.socketio import registry
from alumni_portal.realtime.socketio import sio
from tests.factories import access_token_for
from tests.factories import create_direct_chat
from tests.factories import create_user

# The handlers reach the ORM from another thread; the data must be committed.
pytestmark = pytest.mark.django_db(transaction=True)


def run(event, sid, data=None):
    async def scenario():
        result = await dispatch(event, sid, data)
        await drain_background_tasks()
        return result

    return async_to_sync(scenario)()


def sent(emit, event):
    """``(sid, payload)`` for every delivery of ``event``."""
    return [
        (c.kwargs["to"], c.args[1]) for c in emit.call_args_list if c.args[0] == event
    ]


class TestRegistration:
    def test_every_inbound_event_has_a_handler(self):
        assert set(HANDLERS) == set(InboundEvent)
        for event in InboundEvent:
            assert event.value in sio.handlers["/"]
        assert "connect" in sio.handlers["/"]
        assert "disconnect" in sio.handlers["/"]

    def test_missing_handler_refuses_to_start(self):
        server = mock.Mock()
        with (
            mock.patch.dict(handlers.HANDLERS),
            pytest.raises(ImproperlyConfigured, match="typing_stop"),
        ):
            del handlers.HANDLERS[InboundEvent.TYPING_STOP]
            handlers.register_handlers(server)
        server.on.assert_not_called()

    def test_error_channels(self):
        assert InboundEvent.SEND_MESSAGE.error_event == "message_error"
        assert InboundEvent.JOIN_CHAT.error_event == "relay_error"
        assert InboundEvent.TYPING.best_effort
        assert not InboundEvent.SEND_MESSAGE.best_effort


class TestHandshake:
    @pytest.mark.parametrize(
        ("environ", "auth"),
        [
            ({}, {"token": "abc"}),
            ({"HTTP_AUTHORIZATION": "Bearer abc"}, None),
            ({"asgi.scope": {"query_string": b"EIO=4&token=abc"}}, None),
            ({"QUERY_STRING": "token=abc"}, {}),
        ],
    )
    def test_token_sources(self, environ, auth):
        assert handlers._extract_token(environ, auth) == "abc"  # noqa: SLF001

    def test_auth_token_wins_over_header(self):
        environ = {"HTTP_AUTHORIZATION": "Bearer header"}
        token = handlers._extract_token(environ, {"token": "auth"})  # noqa: SLF001
        assert token == "auth"

    def test_valid_token_registers_and_joins_personal_channel(
        self,
        alice,
        socket_transport,
    ):
        async_to_sync(connect)("s1", {}, {"token": access_token_for(alice)})

        conn = registry.get("s1")
        assert conn.user_id == alice.pk
        assert conn.identity["first_name"] == "Alice"
        assert registry.members(room_for_user(alice.pk)) == ("s1",)
        socket_transport.assert_called_once_with("s1", "/")
        alice.refresh_from_db()
        assert alice.is_online is True
        assert alice.last_seen_at is not None

    def test_transport_closed_during_handshake_leaves_nothing(
        self,
        alice,
        socket_transport,
    ):
        token = access_token_for(alice)
        resolve = handlers._resolve_user  # noqa: SLF001

        async def resolve_then_drop(raw):
            user = await resolve(raw)
            # The client goes away while the token is being checked.
            socket_transport.return_value = False
            await disconnect("g2", "transport close")
            return user

        with mock.patch.object(handlers, "_resolve_user", resolve_then_drop):
            accepted = async_to_sync(connect)("g2", {}, {"token": token})

        assert accepted is False
        assert registry.get("g2") is None
        assert registry.members(room_for_user(alice.pk)) == ()
        assert not registry.presence.is_online(alice.pk)
        assert registry.stats()["connections"] == 0
        alice.refresh_from_db()
        assert alice.is_online is False

    @pytest.mark.usefixtures("socket_transport")
    def test_failure_after_registration_is_rolled_back(self, alice):
        with (
            mock.patch.object(
                handlers,
                "mark_online",
                new_callable=mock.AsyncMock,
                side_effect=RuntimeError("presence store down"),
            ),
            pytest.raises(ConnectionRefusedError, match="server_error"),
        ):
            async_to_sync(connect)("g1", {}, {"token": access_token_for(alice)})

        assert registry.get("g1") is None
        assert registry.members(room_for_user(alice.pk)) == ()
        assert not registry.presence.is_online(alice.pk)
        alice.refresh_from_db()
        assert alice.is_online is False

    @pytest.mark.usefixtures("socket_transport")
    def test_rollback_keeps_the_users_other_connections(self, alice, live_socket):
        live_socket("a1", alice)
        with (
            mock.patch.object(
                handlers,
                "mark_online",
                new_callable=mock.AsyncMock,
                side_effect=RuntimeError("presence store down"),
            ),
            pytest.raises(ConnectionRefusedError),
        ):
            async_to_sync(connect)("a2", {}, {"token": access_token_for(alice)})

        assert registry.sids_for_user(alice.pk) == ("a1",)
        assert registry.members(room_for_user(alice.pk)) == ("a1",)
        assert registry.presence.is_online(alice.pk)

    def test_missing_token_is_refused(self):
        with pytest.raises(ConnectionRefusedError, match="unauthorized"):
            async_to_sync(connect)("s1", {}, None)
        assert registry.get("s1") is None

    def test_garbage_token_is_refused(self, db):
        with pytest.raises(ConnectionRefusedError, match="unauthorized"):
            async_to_sync(connect)("s1", {}, {"token": "not-a-jwt"})

    def test_expired_token_is_reported(self, alice):
        token = AccessToken.for_user(alice)
        token.set_exp(lifetime=-timedelta(minutes=5))
        with pytest.raises(ConnectionRefusedError, match="jwt_expired"):
            async_to_sync(connect)("s1", {}, {"token": str(token)})

    def test_inactive_user_is_refused(self, db):
        ghost = create_user("ghost", is_active=False)
        with pytest.raises(ConnectionRefusedError, match="unauthorized"):
            async_to_sync(connect)("s1", {}, {"token": access_token_for(ghost)})

    def test_lookup_failure_is_a_server_error(self, alice):
        with (
            mock.patch.object(
                handlers.JWTAuthentication,
                "get_user",
                side_effect=RuntimeError("db down"),
            ),
            pytest.raises(ConnectionRefusedError, match="server_error"),
        ):
            async_to_sync(connect)("s1", {}, {"token": access_token_for(alice)})


class TestDisconnect:
    def test_peers_hear_about_departure_and_presence_drops(
        self,
        alice,
        bob,
        emit,
        live_socket,
    ):
        chat = create_direct_chat(alice, bob)
        live_socket("a1", alice)
        live_socket("b1", bob)
        registry.join("a1", room_for_chat(chat.pk))
        registry.join("b1", room_for_chat(chat.pk))
        registry.join("a1", room_for_forum("reunion"))
        alice.is_online = True
        alice.save(update_fields=["is_online"])

        async_to_sync(disconnect)("a1", "client disconnect")

        assert not registry.is_member("a1", room_for_chat(chat.pk))
        assert registry.members(room_for_chat(chat.pk)) == ("b1",)
        assert sent(emit, "user_left_chat") == [
            (
                "b1",
                {
                    "chat_id": chat.pk,
                    "user_id": alice.pk,
                    "user": alice.public_identity(),
                },
            )
        ]
        alice.refresh_from_db()
        assert alice.is_online is False

    def test_other_tab_keeps_user_online(self, alice, emit, live_socket):
        live_socket("a1", alice)
        live_socket("a2", alice)
        alice.is_online = True
        alice.save(update_fields=["is_online"])

        async_to_sync(disconnect)("a1")

        alice.refresh_from_db()
        assert alice.is_online is True
        assert registry.sids_for_user(alice.pk) == ("a2",)

    def test_unknown_sid_is_ignored(self, emit):
        async_to_sync(disconnect)("nobody")
        emit.assert_not_called()


class TestDispatch:
    def test_unregistered_connection_gets_an_error(self, emit):
        ack = run(InboundEvent.JOIN_CHAT, "ghost", 1)

        assert ack["success"] is False
        assert ack["message"] == "Not connected."
        [(sid, body)] = sent(emit, "relay_error")
        assert sid == "ghost"
        assert body["code"] == "unauthorized"
        assert body["event"] == "join_chat"

    def test_best_effort_errors_are_only_logged(self, emit, caplog):
        ack = run(InboundEvent.TYPING, "ghost", 1)

        assert ack["success"] is False
        emit.assert_not_called()
        assert "Dropped typing from ghost" in caplog.text

    def test_unexpected_error_becomes_transient(self, alice, emit, live_socket):
        live_socket("a1", alice)
        with mock.patch.dict(
            handlers.HANDLERS,
            {InboundEvent.JOIN_FORUM: mock.AsyncMock(side_effect=KeyError("x"))},
        ):
            ack = run(InboundEvent.JOIN_FORUM, "a1", "alumni")

        assert ack == {"success": False, "message": "Temporary failure, please retry."}
        assert sent(emit, "relay_error")[0][1]["code"] == "transient_error"


class TestChatMembership:
    def test_participant_joins_once(self, alice, bob, emit, live_socket):
        chat = create_direct_chat(alice, bob)
        live_socket("a1", alice)
        live_socket("b1", bob)
        run(InboundEvent.JOIN_CHAT, "b1", chat.pk)

        first = run(InboundEvent.JOIN_CHAT, "a1", {"chat_id": chat.pk})
        second = run(InboundEvent.JOIN_CHAT, "a1", {"chatId": chat.pk})

        assert first == {"success": True, "data": {"chat_id": chat.pk, "joined": True}}
        assert second["data"]["joined"] is False
        joined = sent(emit, "user_joined_chat")
        assert joined == [
            (
                "b1",
                {
                    "chat_id": chat.pk,
                    "user_id": alice.pk,
                    "user": alice.public_identity(),
                },
            )
        ]

    def test_outsider_cannot_join(self, alice, bob, carol, emit, live_socket):
        chat = create_direct_chat(alice, bob)
        live_socket("c1", carol)

        ack = run(InboundEvent.JOIN_CHAT, "c1", chat.pk)

        assert ack["success"] is False
        assert not registry.is_member("c1", room_for_chat(chat.pk))
        [(sid, body)] = sent(emit, "relay_error")
        assert sid == "c1"
        assert body["code"] == "forbidden"

    def test_unknown_chat(self, alice, emit, live_socket):
        live_socket("a1", alice)
        ack = run(InboundEvent.JOIN_CHAT, "a1", 999)
        assert ack["message"] == "Chat not found."

    def test_leave_chat_notifies_remaining_members(
        self,
        alice,
        bob,
        emit,
        live_socket,
    ):
        chat = create_direct_chat(alice, bob)
        live_socket("a1", alice)
        live_socket("b1", bob)
        run(InboundEvent.JOIN_CHAT, "a1", chat.pk)
        run(InboundEvent.JOIN_CHAT, "b1", chat.pk)

        ack = run(InboundEvent.LEAVE_CHAT, "a1", chat.pk)
        again = run(InboundEvent.LEAVE_CHAT, "a1", chat.pk)

        assert ack["data"]["left"] is True
        assert again["data"]["left"] is False
        assert [sid for sid, _ in sent(emit, "user_left_chat")] == ["b1"]


class TestForumMembership:
    def test_forum_join_and_leave(self, alice, bob, emit, live_socket):
        live_socket("a1", alice)
        live_socket("b1", bob)
        run(InboundEvent.JOIN_FORUM, "b1", {"forumId": "64af0c"})

        ack = run(InboundEvent.JOIN_FORUM, "a1", "64af0c")
        assert ack["data"] == {"forum_id": "64af0c", "joined": True}
        assert sent(emit, "user_joined_forum") == [
            (
                "b1",
                {
                    "forum_id": "64af0c",
                    "user_id": alice.pk,
                    "user": alice.public_identity(),
                },
            )
        ]

        run(InboundEvent.LEAVE_FORUM, "a1", "64af0c")
        assert registry.members(room_for_forum("64af0c")) == ("b1",)
        assert [sid for sid, _ in sent(emit, "user_left_forum")] == ["b1"]

    def test_forum_events_name_the_forum_the_same_way(
        self,
        alice,
        bob,
        carol,
        emit,
        live_socket,
    ):
        for sid, user in (("a1", alice), ("b1", bob), ("c1", carol)):
            live_socket(sid, user)
            run(InboundEvent.JOIN_FORUM, sid, {"forum_id": " Class Of 2009 "})

        run(InboundEvent.LEAVE_FORUM, "b1", "class of 2009")
        async_to_sync(disconnect)("c1")

        joined = [p["forum_id"] for _, p in sent(emit, "user_joined_forum")]
        left = [p["forum_id"] for _, p in sent(emit, "user_left_forum")]
        assert set(joined) == {"class_of_2009"}
        assert left == ["class_of_2009"] * 3


class TestSendMessage:
    def test_stored_then_broadcast_to_channel_members(
        self,
        alice,
        bob,
        emit,
        live_socket,
    ):
        chat = create_direct_chat(alice, bob)
        live_socket("a1", alice)
        live_socket("b1", bob)
        run(InboundEvent.JOIN_CHAT, "a1", chat.pk)
        run(InboundEvent.JOIN_CHAT, "b1", chat.pk)

        ack = run(InboundEvent.SEND_MESSAGE, "a1", {"chatId": chat.pk, "content": "hi"})

        assert ack["success"] is True
        payload = ack["data"]["message"]
        assert payload["content"] == "hi"
        assert payload["sender"] == alice.public_identity()
        assert Message.objects.get().pk == payload["id"]
        assert sorted(sid for sid, _ in sent(emit, "new_message")) == ["a1", "b1"]

    def test_validation_failure_reaches_only_the_sender(
        self,
        alice,
        bob,
        emit,
        live_socket,
    ):
        chat = create_direct_chat(alice, bob)
        live_socket("a1", alice)
        live_socket("b1", bob)
        run(InboundEvent.JOIN_CHAT, "b1", chat.pk)

        ack = run(InboundEvent.SEND_MESSAGE, "a1", {"chat_id": chat.pk, "content": " "})

        assert ack["message"] == "Message content is required."
        assert sent(emit, "new_message") == []
        [(sid, body)] = sent(emit, "message_error")
        assert sid == "a1"
        assert body["code"] == "validation_error"
        assert not Message.objects.exists()

    def test_outsider_is_forbidden(self, alice, bob, carol, emit, live_socket):
        chat = create_direct_chat(alice, bob)
        live_socket("b1", bob)
        live_socket("c1", carol)
        run(InboundEvent.JOIN_CHAT, "b1", chat.pk)

        ack = run(InboundEvent.SEND_MESSAGE, "c1", {"chat_id": chat.pk, "content": "x"})

        assert ack["success"] is False
        assert sent(emit, "message_error")[0][1]["code"] == "forbidden"
        assert sent(emit, "new_message") == []
        assert not Message.objects.exists()


class TestTyping:
    def test_others_see_typing_but_not_own_tabs(self, alice, bob, emit, live_socket):
        chat = create_direct_chat(alice, bob)
        for sid, user in (("a1", alice), ("a2", alice), ("b1", bob)):
            live_socket(sid, user)
            run(InboundEvent.JOIN_CHAT, sid, chat.pk)
        emit.reset_mock()

        ack = run(InboundEvent.TYPING_START, "a1", chat.pk)

        assert ack["data"]["delivered"] == 1
        assert sent(emit, "user_typing") == [
            (
                "b1",
                {
                    "chat_id": chat.pk,
                    "is_typing": True,
                    "user_id": alice.pk,
                    "user": alice.public_identity(),
                },
            )
        ]

        run(InboundEvent.TYPING, "b1", {"chatId": chat.pk, "isTyping": False})
        stops = sent(emit, "user_typing")[1:]
        assert sorted(sid for sid, _ in stops) == ["a1", "a2"]
        assert all(p["is_typing"] is False for _, p in stops)

    def test_typing_outside_the_channel_is_dropped(self, alice, bob, emit, live_socket):
        chat = create_direct_chat(alice, bob)
        live_socket("a1", alice)
        live_socket("b1", bob)
        run(InboundEvent.JOIN_CHAT, "b1", chat.pk)
        emit.reset_mock()

        ack = run(InboundEvent.TYPING_STOP, "a1", chat.pk)

        assert ack["success"] is False
        emit.assert_not_called()


class TestNotificationRead:
    def test_marks_own_notification(self, alice, live_socket, emit):
        n = notifications.notify_system([alice.pk], "Hi", "there")[0]
        live_socket("a1", alice)
        emit.reset_mock()

        ack = run(InboundEvent.MARK_NOTIFICATION_READ, "a1", {"notificationId": n.pk})

        assert ack["data"] == {"notification_id": n.pk, "is_read": True}
        n.refresh_from_db()
        assert n.is_read is True

    def test_foreign_notification_is_silently_refused(
        self,
        alice,
        bob,
        live_socket,
        emit,
    ):
        n = notifications.notify_system([bob.pk], "Hi", "there")[0]
        live_socket("a1", alice)
        emit.reset_mock()

        ack = run(InboundEvent.MARK_NOTIFICATION_READ, "a1", n.pk)

        assert ack["success"] is False
        emit.assert_not_called()
        n.refresh_from_db()
        assert n.is_read is False
