from datetime import timedelta

import pytest

from alumni_portal.activities.models import Activity
from alumni_portal.core.exceptions import ForbiddenError
from alumni_portal.core.exceptions import NotFoundError
from alumni_portal.core.exceptions import ValidationError
from alumni_portal.messaging import services
from alumni_portal.messaging.models import DELETED_MESSAGE_PLACEHOLDER
from alumni_portal.messaging.models import MAX_MESSAGE_LENGTH
from alumni_portal.messaging.models import Chat
from alumni_portal.messaging.models import ChatParticipant
from alumni_portal.messaging.models import Message
from alumni_portal.messaging.models import MessageReaction
from tests.factories import create_direct_chat
from tests.factories import create_group_chat

pytestmark = pytest.mark.django_db


class TestDirectChat:
    def test_created_once_for_an_unordered_pair(self, alice, bob):
        chat, created = services.create_direct_chat(alice.pk, bob.pk)
        again, created_again = services.create_direct_chat(bob.pk, alice.pk)

        assert created is True
        assert created_again is False
        assert again.pk == chat.pk
        assert Chat.objects.filter(type=Chat.Type.DIRECT).count() == 1
        assert set(chat.participants.values_list("pk", flat=True)) == {
            alice.pk,
            bob.pk,
        }

    def test_rejects_chat_with_self(self, alice):
        with pytest.raises(ValidationError):
            services.create_direct_chat(alice.pk, alice.pk)

    def test_rejects_unknown_participant(self, alice):
        with pytest.raises(ValidationError):
            services.create_direct_chat(alice.pk, 999_999)


class TestGroupChat:
    def test_creator_is_admin(self, alice, bob, carol):
        chat = services.create_group_chat(alice.pk, "Reunion", [bob.pk, carol.pk])

        roles = dict(chat.memberships.values_list("user_id", "role"))
        assert roles == {
            alice.pk: ChatParticipant.Role.ADMIN,
            bob.pk: ChatParticipant.Role.MEMBER,
            carol.pk: ChatParticipant.Role.MEMBER,
        }

    def test_requires_name(self, alice, bob):
        with pytest.raises(ValidationError):
            services.create_group_chat(alice.pk, "  ", [bob.pk])

    def test_reports_unknown_members(self, alice, bob):
        with pytest.raises(ValidationError) as excinfo:
            services.create_group_chat(alice.pk, "Reunion", [bob.pk, 424_242])
        assert excinfo.value.errors == ["Unknown user id: 424242"]
        assert not Chat.objects.exists()


class TestSendMessage:
    def test_persists_and_moves_chat_summary(self, alice, bob):
        chat = create_direct_chat(alice, bob)

        message = services.send_message(
            chat_id=chat.pk,
            sender_id=alice.pk,
            content="  hi  ",
        )

        chat.refresh_from_db()
        assert message.content == "hi"
        assert message.sender == alice
        assert message.type == Message.Type.TEXT
        assert chat.last_message_id == message.pk
        assert chat.last_activity == message.created_at

    def test_non_participant_is_forbidden_and_nothing_is_written(
        self,
        alice,
        bob,
        carol,
    ):
        chat = create_direct_chat(alice, bob)

        with pytest.raises(ForbiddenError):
            services.send_message(chat_id=chat.pk, sender_id=carol.pk, content="x")
        assert not Message.objects.exists()

    def test_unknown_chat_is_not_found_before_membership(self, carol):
        with pytest.raises(NotFoundError):
            services.send_message(chat_id=12345, sender_id=carol.pk, content="x")

    @pytest.mark.parametrize("content", ["", "   ", "x" * (MAX_MESSAGE_LENGTH + 1)])
    def test_rejects_bad_text(self, alice, bob, content):
        chat = create_direct_chat(alice, bob)
        with pytest.raises(ValidationError):
            services.send_message(chat_id=chat.pk, sender_id=alice.pk, content=content)
        assert not Message.objects.exists()

    def test_file_message_may_be_empty(self, alice, bob):
        chat = create_direct_chat(alice, bob)
        message = services.send_message(
            chat_id=chat.pk,
            sender_id=alice.pk,
            message_type=Message.Type.FILE,
            file_url="https://cdn.example.com/cv.pdf",
            file_name="cv.pdf",
            file_size=1024,
        )
        assert message.file_name == "cv.pdf"

    def test_reply_must_belong_to_same_chat(self, alice, bob, carol):
        chat = create_direct_chat(alice, bob)
        other = create_direct_chat(alice, carol)
        foreign = services.send_message(
            chat_id=other.pk,
            sender_id=carol.pk,
            content="elsewhere",
        )
        with pytest.raises(ValidationError):
            services.send_message(
                chat_id=chat.pk,
                sender_id=alice.pk,
                content="re",
                reply_to_id=foreign.pk,
            )

    def test_last_activity_never_moves_backwards(self, alice, bob):
        chat = create_direct_chat(alice, bob)
        newer = services.send_message(chat_id=chat.pk, sender_id=alice.pk, content="b")
        late = Message.objects.create(
            chat=chat,
            sender=bob,
            content="a",
            created_at=newer.created_at - timedelta(seconds=5),
        )

        services._touch_chat_summary(chat, late)  # noqa: SLF001

        chat.refresh_from_db()
        assert chat.last_message_id == newer.pk

    def test_direct_message_records_private_activity(
        self,
        alice,
        bob,
        django_capture_on_commit_callbacks,
    ):
        chat = create_direct_chat(alice, bob)
        with django_capture_on_commit_callbacks(execute=True):
            services.send_message(chat_id=chat.pk, sender_id=alice.pk, content="yo")

        activity = Activity.objects.get(user=alice)
        assert activity.activity_type == Activity.Type.MESSAGE_SENT
        assert activity.visibility == Activity.Visibility.PRIVATE
        assert activity.action == "Sent a message to Bob Okafor"
        assert activity.metadata["target_user"] == bob.pk
        assert activity.points == 2  # noqa: PLR2004


class TestEditAndDelete:
    def test_only_sender_may_edit(self, alice, bob):
        chat = create_direct_chat(alice, bob)
        message = services.send_message(chat_id=chat.pk, sender_id=alice.pk, content="a")

        with pytest.raises(ForbiddenError):
            services.edit_message(message.pk, bob.pk, "b")

        edited = services.edit_message(message.pk, alice.pk, "b")
        assert edited.content == "b"
        assert edited.is_edited is True
        assert edited.edited_at is not None

    def test_soft_delete_redacts_in_place(self, alice, bob):
        chat = create_direct_chat(alice, bob)
        message = services.send_message(chat_id=chat.pk, sender_id=alice.pk, content="a")

        with pytest.raises(ForbiddenError):
            services.soft_delete_message(message.pk, bob.pk)
        message.refresh_from_db()
        assert message.content == "a"
        assert message.is_deleted is False
        assert message.deleted_at is None

        deleted = services.soft_delete_message(message.pk, alice.pk)
        assert deleted.is_deleted is True
        assert deleted.content == DELETED_MESSAGE_PLACEHOLDER
        assert Message.objects.filter(pk=message.pk).exists()
        assert list(services.chat_messages(chat)) == []

        # Deleting twice is harmless.
        assert services.soft_delete_message(message.pk, alice.pk).is_deleted

    def test_deleted_message_cannot_be_edited(self, alice, bob):
        chat = create_direct_chat(alice, bob)
        message = services.send_message(chat_id=chat.pk, sender_id=alice.pk, content="a")
        services.soft_delete_message(message.pk, alice.pk)
        with pytest.raises(ValidationError):
            services.edit_message(message.pk, alice.pk, "b")


class TestReactions:
    def test_repeat_reaction_does_not_duplicate(self, alice, bob):
        chat = create_direct_chat(alice, bob)
        message = services.send_message(chat_id=chat.pk, sender_id=alice.pk, content="a")

        services.add_reaction(message.pk, bob.pk, "👍")
        services.add_reaction(message.pk, bob.pk, "👍")
        services.add_reaction(message.pk, bob.pk, "🎉")

        assert MessageReaction.objects.filter(message=message).count() == 2  # noqa: PLR2004

    def test_remove_specific_or_all(self, alice, bob):
        chat = create_direct_chat(alice, bob)
        message = services.send_message(chat_id=chat.pk, sender_id=alice.pk, content="a")
        services.add_reaction(message.pk, bob.pk, "👍")
        services.add_reaction(message.pk, bob.pk, "🎉")

        assert services.remove_reaction(message.pk, bob.pk, "👍") == 1
        assert services.remove_reaction(message.pk, bob.pk) == 1
        assert services.remove_reaction(message.pk, bob.pk) == 0

    def test_outsider_cannot_react(self, alice, bob, carol):
        chat = create_direct_chat(alice, bob)
        message = services.send_message(chat_id=chat.pk, sender_id=alice.pk, content="a")
        with pytest.raises(ForbiddenError):
            services.add_reaction(message.pk, carol.pk, "👍")


class TestReadState:
    def test_mark_read_skips_own_messages_and_is_idempotent(self, alice, bob):
        chat = create_direct_chat(alice, bob)
        services.send_message(chat_id=chat.pk, sender_id=alice.pk, content="1")
        services.send_message(chat_id=chat.pk, sender_id=alice.pk, content="2")
        services.send_message(chat_id=chat.pk, sender_id=bob.pk, content="3")

        assert services.unread_count(chat.pk, bob.pk) == 2  # noqa: PLR2004
        assert services.mark_read(chat.pk, bob.pk) == 2  # noqa: PLR2004
        assert services.mark_read(chat.pk, bob.pk) == 0
        assert services.unread_count(chat.pk, bob.pk) == 0

        membership = ChatParticipant.objects.get(chat=chat, user=bob)
        assert membership.last_seen_at is not None

    def test_list_user_chats_annotates_unread(self, alice, bob, carol):
        direct = create_direct_chat(alice, bob)
        group = create_group_chat(carol, [alice])
        services.send_message(chat_id=direct.pk, sender_id=bob.pk, content="hey")
        services.send_message(chat_id=group.pk, sender_id=carol.pk, content="hi")
        services.send_message(chat_id=group.pk, sender_id=carol.pk, content="all")

        rows = {c.pk: c.unread_count for c in services.list_user_chats(alice.pk)}
        assert rows == {direct.pk: 1, group.pk: 2}

    def test_archived_chats_are_listed_separately(self, alice, bob):
        chat = create_direct_chat(alice, bob)
        services.set_archived(chat.pk, alice.pk, archived=True)

        assert list(services.list_user_chats(alice.pk)) == []
        assert [c.pk for c in services.list_user_chats(alice.pk, archived=True)] == [
            chat.pk
        ]


class TestParticipants:
    def test_admin_adds_and_removes(self, alice, bob, carol):
        chat = create_group_chat(alice, [bob])

        services.add_participant(chat.pk, alice.pk, carol.pk)
        assert chat.memberships.filter(user=carol).exists()

        assert services.remove_participant(chat.pk, alice.pk, carol.pk) is True
        assert not chat.memberships.filter(user=carol).exists()

    def test_member_cannot_add_but_may_leave(self, alice, bob, carol):
        chat = create_group_chat(alice, [bob])

        with pytest.raises(ForbiddenError):
            services.add_participant(chat.pk, bob.pk, carol.pk)
        assert services.remove_participant(chat.pk, bob.pk, bob.pk) is True

    def test_direct_chat_membership_is_fixed(self, alice, bob, carol):
        chat = create_direct_chat(alice, bob)
        with pytest.raises(ValidationError):
            services.add_participant(chat.pk, alice.pk, carol.pk)
        with pytest.raises(ValidationError):
            services.remove_participant(chat.pk, alice.pk, alice.pk)
