"""Unit tests for the in-memory entity store."""

from datetime import datetime, timedelta, timezone

import pytest

from clubspace.schemas.conversation import Conversation
from clubspace.schemas.message import Message
from clubspace.services.entity_store import EntityStore

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_conversation(conversation_id="c1", p1="u-a", p2="u-b", **kwargs) -> Conversation:
    return Conversation(
        id=conversation_id, participant_1=p1, participant_2=p2, created_at=T0, **kwargs
    )


def make_message(message_id, seconds=0, sender="u-b", conversation_id="c1", **kwargs) -> Message:
    return Message(
        id=message_id,
        conversation_id=conversation_id,
        sender_id=sender,
        content=kwargs.pop("content", f"msg {message_id}"),
        created_at=T0 + timedelta(seconds=seconds),
        **kwargs,
    )


@pytest.fixture
def store() -> EntityStore:
    store = EntityStore()
    store.upsert_conversation(make_conversation())
    return store


class TestMessages:
    def test_upsert_is_idempotent_by_id(self, store):
        assert store.upsert_message(make_message("m1")) is True
        assert store.upsert_message(make_message("m1", content="changed")) is False

        messages = store.messages("c1")
        assert len(messages) == 1
        assert messages[0].content == "msg m1"

    def test_messages_are_ordered_by_created_at_then_id(self, store):
        store.upsert_message(make_message("m3", seconds=2))
        store.upsert_message(make_message("m2", seconds=1))
        store.upsert_message(make_message("m1b", seconds=1))

        assert [m.id for m in store.messages("c1")] == ["m1b", "m2", "m3"]
        assert store.last_message("c1").id == "m3"

    def test_replace_messages_keeps_pending_local_messages(self, store):
        store.upsert_message(make_message("old", seconds=0))
        store.upsert_message(make_message("local-abc", seconds=5, sender="u-a"))

        store.replace_messages("c1", [make_message("m1", seconds=1), make_message("m2", seconds=2)])

        assert [m.id for m in store.messages("c1")] == ["m1", "m2", "local-abc"]
        assert store.get_message("old") is None
        assert store.has_messages("c1")

    def test_has_messages_only_after_a_full_fetch(self, store):
        store.upsert_message(make_message("m1"))
        assert not store.has_messages("c1")

        store.replace_messages("c1", [])
        assert store.has_messages("c1")
        assert store.messages("c1") == []

    def test_remove_message(self, store):
        store.upsert_message(make_message("m1"))

        removed = store.remove_message("m1")

        assert removed.id == "m1"
        assert store.messages("c1") == []
        assert store.remove_message("m1") is None


class TestReadState:
    def test_mark_read_local_only_touches_other_participants_messages(self, store):
        store.upsert_message(make_message("m1", sender="u-b"))
        store.upsert_message(make_message("m2", seconds=1, sender="u-a"))
        store.upsert_message(make_message("m3", seconds=2, sender="u-b", is_read=True))

        changed = store.mark_read_local("c1", "u-a")

        assert changed == ["m1"]
        assert store.get_message("m2").is_read is False
        assert store.unread_count("c1", "u-a") == 0
        assert store.unread_count("c1", "u-b") == 1

    def test_set_message_read_reports_change(self, store):
        store.upsert_message(make_message("m1"))

        assert store.set_message_read("m1") is True
        assert store.set_message_read("m1") is False
        assert store.set_message_read("missing") is False


class TestConversations:
    def test_remove_for_user_hides_without_deleting(self, store):
        hidden = store.remove_conversation_for_user("c1", "u-a")

        assert hidden.deleted_for == ["u-a"]
        assert store.get_conversation("c1").is_hidden_for("u-a")
        assert not store.get_conversation("c1").is_hidden_for("u-b")

    def test_remove_for_user_twice_does_not_duplicate(self, store):
        store.remove_conversation_for_user("c1", "u-a")
        store.remove_conversation_for_user("c1", "u-a")

        assert store.get_conversation("c1").deleted_for == ["u-a"]

    def test_find_by_pair_is_order_independent(self, store):
        assert store.find_conversation_by_pair("u-b", "u-a").id == "c1"
        assert store.find_conversation_by_pair("u-a", "u-c") is None

    def test_remove_conversation_drops_its_messages(self, store):
        store.upsert_message(make_message("m1"))

        store.remove_conversation("c1")

        assert store.get_conversation("c1") is None
        assert store.get_message("m1") is None

    def test_clear(self, store):
        store.upsert_message(make_message("m1"))
        store.clear()

        assert store.conversations() == []
        assert store.messages("c1") == []
