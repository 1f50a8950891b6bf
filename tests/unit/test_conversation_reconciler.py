"""
Unit tests for ConversationReconciler.

Covers the optimistic mutation lifecycle (begin, confirm, rollback), merging
of pushed rows by identity and the inbox resolution rules.
"""

from datetime import datetime, timedelta, timezone

import pytest

from clubspace.core.ids import is_local_id
from clubspace.schemas.conversation import Conversation
from clubspace.schemas.message import Message
from clubspace.schemas.profile import Profile
from clubspace.services.conversation_reconciler import (
    ConversationReconciler,
    MutationKind,
    MutationState,
)
from clubspace.services.entity_store import EntityStore

ME = "u-a"
THEM = "u-b"
T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def conversation(cid="c1", status="active", seconds=None, **kwargs) -> Conversation:
    if seconds is not None:
        kwargs.setdefault("last_message", "hi")
        kwargs.setdefault("last_message_at", T0 + timedelta(seconds=seconds))
    return Conversation(
        id=cid, participant_1=ME, participant_2=THEM, status=status, created_at=T0, **kwargs
    )


def message(mid, content="hello", sender=THEM, cid="c1", seconds=0, **kwargs) -> Message:
    return Message(
        id=mid,
        conversation_id=cid,
        sender_id=sender,
        content=content,
        created_at=T0 + timedelta(seconds=seconds),
        **kwargs,
    )


@pytest.fixture
def store() -> EntityStore:
    store = EntityStore()
    store.upsert_conversation(conversation())
    return store


@pytest.fixture
def reconciler(store, settings) -> ConversationReconciler:
    return ConversationReconciler(store, settings)


class TestSend:
    def test_begin_send_appends_local_message_and_preview(self, reconciler, store):
        mutation = reconciler.begin_send("c1", ME, "hi there")

        messages = store.messages("c1")
        assert len(messages) == 1
        assert is_local_id(messages[0].id)
        assert messages[0].content == "hi there"
        assert store.get_conversation("c1").last_message == "hi there"
        assert mutation.is_pending
        assert reconciler.has_pending("c1")

    def test_begin_send_never_orders_before_latest_message(self, reconciler, store):
        future = message("a-future", seconds=3600 * 24 * 365 * 50)
        store.upsert_message(future)

        reconciler.begin_send("c1", ME, "after")

        assert store.messages("c1")[-1].content == "after"

    def test_begin_send_resolves_reply_preview(self, reconciler, store):
        store.upsert_message(message("m1", content="original"))

        reconciler.begin_send("c1", ME, "reply", reply_to_id="m1")

        local = store.messages("c1")[-1]
        assert local.reply_to is not None
        assert local.reply_to.content == "original"

    def test_media_preview_text(self, reconciler, store):
        reconciler.begin_send("c1", ME, "", message_type="image", media_url="https://cdn/x.png")

        assert store.get_conversation("c1").last_message == "Sent a image"

    def test_confirm_send_replaces_local_message(self, reconciler, store):
        mutation = reconciler.begin_send("c1", ME, "hi")

        confirmed = reconciler.confirm_send(mutation, message("m1", content="hi", sender=ME))

        assert confirmed.id == "m1"
        assert [m.id for m in store.messages("c1")] == ["m1"]
        assert mutation.state == MutationState.CONFIRMED
        assert mutation.confirmed_id == "m1"
        assert not reconciler.has_pending("c1")

    def test_rollback_restores_snapshot(self, reconciler, store):
        before = store.get_conversation("c1")
        mutation = reconciler.begin_send("c1", ME, "doomed")

        reconciler.rollback(mutation, RuntimeError("network down"))

        assert store.messages("c1") == []
        assert store.get_conversation("c1") == before
        assert mutation.state == MutationState.ROLLED_BACK
        assert mutation.error == "network down"
        assert reconciler.history[-1] is mutation

    def test_rollback_after_confirm_is_noop(self, reconciler, store):
        mutation = reconciler.begin_send("c1", ME, "hi")
        reconciler.confirm_send(mutation, message("m1", content="hi", sender=ME))

        reconciler.rollback(mutation)

        assert [m.id for m in store.messages("c1")] == ["m1"]
        assert mutation.state == MutationState.CONFIRMED


class TestRemoteMessages:
    def test_echo_of_own_send_confirms_it_once(self, reconciler, store):
        mutation = reconciler.begin_send("c1", ME, "hi")
        row = message("m1", content="hi", sender=ME)

        assert reconciler.apply_remote_message(row, ME) is True
        # The gateway response arriving afterwards changes nothing
        reconciler.confirm_send(mutation, row)

        assert [m.id for m in store.messages("c1")] == ["m1"]
        assert mutation.state == MutationState.CONFIRMED

    def test_echo_matches_the_send_that_issued_it(self, reconciler, store):
        first = reconciler.begin_send("c1", ME, "hi")
        second = reconciler.begin_send("c1", ME, "hi")
        row = message("m2", content="hi", sender=ME, client_id=second.local_message.id)

        reconciler.apply_remote_message(row, ME)

        assert second.state == MutationState.CONFIRMED
        assert first.is_pending
        assert {m.id for m in store.messages("c1")} == {first.local_message.id, "m2"}

    def test_same_text_from_another_device_does_not_confirm(self, reconciler, store):
        mutation = reconciler.begin_send("c1", ME, "hi")
        row = message("m1", content="hi", sender=ME, client_id="local-elsewhere")

        assert reconciler.apply_remote_message(row, ME) is True

        assert mutation.is_pending
        assert {m.id for m in store.messages("c1")} == {mutation.local_message.id, "m1"}

    def test_gateway_response_before_echo(self, reconciler, store):
        mutation = reconciler.begin_send("c1", ME, "hi")
        row = message("m1", content="hi", sender=ME)

        reconciler.confirm_send(mutation, row)
        assert reconciler.apply_remote_message(row, ME) is False

        assert [m.id for m in store.messages("c1")] == ["m1"]

    def test_duplicate_push_is_ignored(self, reconciler, store):
        row = message("m1")

        assert reconciler.apply_remote_message(row, ME) is True
        assert reconciler.apply_remote_message(row, ME) is False
        assert len(store.messages("c1")) == 1

    def test_remote_message_unhides_conversation(self, reconciler, store):
        store.remove_conversation_for_user("c1", ME)

        reconciler.apply_remote_message(message("m1", content="you there?"), ME)

        current = store.get_conversation("c1")
        assert current.deleted_for == []
        assert current.last_message == "you there?"

    def test_older_remote_message_keeps_newer_preview(self, reconciler, store):
        reconciler.apply_remote_message(message("m2", content="newer", seconds=10), ME)
        reconciler.apply_remote_message(message("m1", content="older", seconds=5), ME)

        assert store.get_conversation("c1").last_message == "newer"
        assert [m.id for m in store.messages("c1")] == ["m1", "m2"]

    def test_remote_reply_gets_parent_preview(self, reconciler, store):
        store.upsert_message(message("m1", content="question"))

        reconciler.apply_remote_message(
            message("m2", content="answer", sender=ME, seconds=1, reply_to_id="m1"), ME
        )

        assert store.get_message("m2").reply_to.content == "question"


class TestConversationMutations:
    def test_accept_then_rollback(self, reconciler, store):
        store.upsert_conversation(conversation(status="request"))

        mutation = reconciler.begin_accept("c1")
        assert store.get_conversation("c1").status == "active"

        reconciler.rollback(mutation)
        assert store.get_conversation("c1").status == "request"

    def test_delete_hides_for_user_only(self, reconciler, store):
        mutation = reconciler.begin_delete("c1", ME)

        assert store.get_conversation("c1").is_hidden_for(ME)
        reconciler.confirm_conversation(mutation, conversation(deleted_for=[ME]))
        assert mutation.state == MutationState.CONFIRMED
        assert not store.get_conversation("c1").is_hidden_for(THEM)

    def test_start_placeholder_is_replaced_by_backend_row(self, reconciler, store):
        store.remove_conversation("c1")
        mutation = reconciler.begin_start(ME, THEM)
        placeholder_id = mutation.conversation_id
        assert is_local_id(placeholder_id)
        assert store.get_conversation(placeholder_id) is not None

        reconciler.confirm_conversation(mutation, conversation("c-real"))

        assert store.get_conversation(placeholder_id) is None
        assert store.get_conversation("c-real") is not None
        assert mutation.kind == MutationKind.START_CONVERSATION

    def test_start_rollback_removes_placeholder(self, reconciler, store):
        mutation = reconciler.begin_start(ME, "u-c")

        reconciler.rollback(mutation)

        assert store.get_conversation(mutation.conversation_id) is None

    def test_remote_row_does_not_override_pending_local_change(self, reconciler, store):
        store.upsert_conversation(conversation(status="request"))
        reconciler.begin_accept("c1")

        applied = reconciler.apply_remote_conversation(conversation(status="request"))

        assert applied is False
        assert store.get_conversation("c1").status == "active"

    def test_remote_row_with_stale_preview_keeps_newer_preview(self, reconciler, store):
        store.upsert_conversation(conversation(seconds=10, last_message="newest"))

        reconciler.apply_remote_conversation(
            conversation(seconds=5, last_message="older", status="active")
        )

        assert store.get_conversation("c1").last_message == "newest"

    def test_reset_forgets_mutations(self, reconciler):
        reconciler.begin_send("c1", ME, "hi")

        reconciler.reset()

        assert reconciler.pending_mutations() == []
        assert len(reconciler.history) == 0

    def test_reset_turns_late_responses_into_noops(self, reconciler, store):
        send = reconciler.begin_send("c1", ME, "hi")
        delete = reconciler.begin_delete("c1", ME)
        store.clear()

        reconciler.reset()
        reconciler.confirm_send(send, message("m1", content="hi", sender=ME))
        reconciler.rollback(delete)

        assert send.state == MutationState.ROLLED_BACK
        assert delete.state == MutationState.ROLLED_BACK
        assert store.messages("c1") == []
        assert store.get_conversation("c1") is None


class TestResolve:
    def _unread(self, counts):
        return lambda cid: counts.get(cid, 0)

    def test_orders_by_activity_then_id(self, reconciler):
        rows = [
            conversation("c-b", seconds=5),
            conversation("c-a", seconds=5),
            conversation("c-new", seconds=50),
            conversation("c-none"),
        ]

        views = reconciler.resolve(ME, "active", rows, self._unread({}))

        assert [v.id for v in views] == ["c-new", "c-a", "c-b", "c-none"]

    def test_filters_tab_hidden_and_foreign_rows(self, reconciler):
        foreign = Conversation(id="c-x", participant_1="u-x", participant_2="u-y", created_at=T0)
        rows = [
            conversation("c-active"),
            conversation("c-request", status="request"),
            conversation("c-hidden", deleted_for=[ME]),
            conversation("c-hidden-for-them", deleted_for=[THEM]),
            foreign,
        ]

        active = reconciler.resolve(ME, "active", rows, self._unread({}))
        requests = reconciler.resolve(ME, "request", rows, self._unread({}))

        assert [v.id for v in active] == ["c-active", "c-hidden-for-them"]
        assert [v.id for v in requests] == ["c-request"]

    def test_pending_local_version_wins(self, reconciler, store):
        store.upsert_conversation(conversation(status="request"))
        reconciler.begin_accept("c1")

        views = reconciler.resolve(ME, "active", [conversation(status="request")], self._unread({}))

        assert [v.id for v in views] == ["c1"]
        assert views[0].pending is True

    def test_pending_delete_hides_backend_row(self, reconciler):
        reconciler.begin_delete("c1", ME)

        views = reconciler.resolve(ME, "active", [conversation()], self._unread({}))

        assert views == []

    def test_views_carry_profile_and_unread(self, reconciler):
        profile = Profile(id=THEM, email="b@uni.edu", full_name="Bee", created_at=T0)

        views = reconciler.resolve(
            ME, "active", [conversation()], self._unread({"c1": 3}), {THEM: profile}
        )

        assert views[0].other_user.full_name == "Bee"
        assert views[0].unread_count == 3
        assert views[0].pending is False

    def test_unknown_profile_falls_back_to_id(self, reconciler):
        views = reconciler.resolve(ME, "active", [conversation()], self._unread({}))

        assert views[0].other_user.id == THEM
