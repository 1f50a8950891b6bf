"""Unit tests for UnreadTracker with a mocked gateway."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from clubspace.core.exceptions import (
    NetworkFailureException,
    NotFoundException,
    UnauthorizedException,
)
from clubspace.core.session import AuthSession, SessionContext
from clubspace.schemas.conversation import Conversation
from clubspace.schemas.message import Message
from clubspace.schemas.realtime import ChangeEvent
from clubspace.services.entity_store import EntityStore
from clubspace.services.unread_tracker import UnreadTracker

ME = "u-a"
THEM = "u-b"
T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def message(mid, cid="c1", sender=THEM, seconds=0, **kwargs) -> Message:
    return Message(
        id=mid,
        conversation_id=cid,
        sender_id=sender,
        content="hi",
        created_at=T0 + timedelta(seconds=seconds),
        **kwargs,
    )


@pytest.fixture
def gateway():
    gateway = MagicMock()
    gateway.mark_read = AsyncMock(return_value=[])
    gateway.count_unread_notifications = AsyncMock(return_value=0)
    gateway.mark_all_notifications_read = AsyncMock(return_value=["n1", "n2"])
    gateway.mark_notification_read = AsyncMock()
    return gateway


@pytest_asyncio.fixture
async def session() -> SessionContext:
    session = SessionContext()
    await session.sign_in(AuthSession(user_id=ME))
    return session


@pytest.fixture
def store() -> EntityStore:
    store = EntityStore()
    for cid in ("c1", "c2"):
        store.upsert_conversation(
            Conversation(id=cid, participant_1=ME, participant_2=THEM, created_at=T0)
        )
    return store


@pytest_asyncio.fixture
async def tracker(store, gateway, session, settings):
    tracker = UnreadTracker(store, gateway, session, settings)
    yield tracker
    await tracker.close()


class TestConversationCounts:
    @pytest.mark.asyncio
    async def test_seed_uses_backend_counts_for_unloaded_conversations(self, tracker):
        tracker.seed({"c1": 2, "c2": 5}, ME)

        assert tracker.counts() == {"c1": 2, "c2": 5}
        assert tracker.total_unread_messages == 7

    @pytest.mark.asyncio
    async def test_seed_recounts_loaded_conversations(self, tracker, store):
        store.replace_messages("c1", [message("m1"), message("m2", seconds=1, is_read=True)])

        tracker.seed({"c1": 9}, ME)

        assert tracker.count_for("c1") == 1

    @pytest.mark.asyncio
    async def test_forget(self, tracker):
        tracker.seed({"c1": 2, "c2": 1}, ME)

        tracker.forget(["c1"])

        assert tracker.counts() == {"c2": 1}

    @pytest.mark.asyncio
    async def test_open_conversation_marks_read_and_zeroes(self, tracker, store, gateway):
        store.replace_messages("c1", [message("m1"), message("m2", seconds=1)])
        tracker.seed({"c1": 2}, ME)

        changed = tracker.open_conversation("c1", ME)
        assert changed == ["m1", "m2"]
        assert tracker.count_for("c1") == 0
        assert tracker.open_conversation_id == "c1"

        await tracker.flush()
        gateway.mark_read.assert_awaited_once_with("c1", ME)

    @pytest.mark.asyncio
    async def test_message_in_open_conversation_is_read_on_arrival(self, tracker, store, gateway):
        store.replace_messages("c1", [])
        tracker.open_conversation("c1", ME)
        await tracker.flush()

        incoming = message("m1")
        store.upsert_message(incoming)
        tracker.on_message(incoming, ME)
        await tracker.flush()

        assert store.get_message("m1").is_read is True
        assert tracker.count_for("c1") == 0
        assert gateway.mark_read.await_count == 2

    @pytest.mark.asyncio
    async def test_message_elsewhere_increments(self, tracker, store):
        tracker.seed({"c2": 1}, ME)

        incoming = message("m1", cid="c2")
        store.upsert_message(incoming)
        tracker.on_message(incoming, ME)

        assert tracker.count_for("c2") == 2
        assert store.get_message("m1").is_read is False

    @pytest.mark.asyncio
    async def test_message_elsewhere_recounts_loaded_conversation(self, tracker, store):
        store.replace_messages("c2", [message("m0", cid="c2")])
        tracker.seed({"c2": 1}, ME)

        incoming = message("m1", cid="c2", seconds=1)
        store.upsert_message(incoming)
        tracker.on_message(incoming, ME)

        assert tracker.count_for("c2") == 2

    @pytest.mark.asyncio
    async def test_own_messages_do_not_count(self, tracker, store):
        mine = message("m1", sender=ME)
        store.upsert_message(mine)

        tracker.on_message(mine, ME)

        assert tracker.count_for("c1") == 0

    @pytest.mark.asyncio
    async def test_read_receipt_updates_count(self, tracker, store):
        store.replace_messages("c1", [message("m1"), message("m2", seconds=1)])
        tracker.seed({"c1": 2}, ME)

        assert tracker.on_read_receipt("m1") is True
        assert tracker.count_for("c1") == 1
        assert tracker.on_read_receipt("m1") is False
        assert tracker.on_read_receipt("unknown") is False


class TestMarkReadRetry:
    @pytest.mark.asyncio
    async def test_retries_transient_failures(self, tracker, gateway, store):
        gateway.mark_read.side_effect = [
            NetworkFailureException("offline"),
            NetworkFailureException("offline"),
            [],
        ]

        tracker.open_conversation("c1", ME)
        await tracker.flush()

        assert gateway.mark_read.await_count == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, tracker, gateway, settings):
        gateway.mark_read.side_effect = NetworkFailureException("offline")

        tracker.open_conversation("c1", ME)
        await tracker.flush()

        assert gateway.mark_read.await_count == settings.mark_read_max_attempts
        # Local state stays read
        assert tracker.count_for("c1") == 0

    @pytest.mark.asyncio
    async def test_does_not_retry_rejections(self, tracker, gateway):
        gateway.mark_read.side_effect = UnauthorizedException("denied")

        tracker.open_conversation("c1", ME)
        await tracker.flush()

        assert gateway.mark_read.await_count == 1

    @pytest.mark.asyncio
    async def test_stops_when_user_changes(self, tracker, gateway, session):
        await session.sign_out()

        tracker.open_conversation("c1", ME)
        await tracker.flush()

        gateway.mark_read.assert_not_awaited()


class TestNotificationBadge:
    @pytest.mark.asyncio
    async def test_refresh(self, tracker, gateway):
        gateway.count_unread_notifications.return_value = 4

        assert await tracker.refresh_notification_badge(ME) == 4
        assert tracker.notification_badge == 4

    @pytest.mark.asyncio
    async def test_insert_event_bumps_then_resyncs(self, tracker, gateway):
        gateway.count_unread_notifications.return_value = 3
        event = ChangeEvent(table="notifications", type="INSERT", record={"is_read": False})

        tracker.on_notification_event(event)
        assert tracker.notification_badge == 1

        await tracker.flush()
        assert tracker.notification_badge == 3

    @pytest.mark.asyncio
    async def test_concurrent_sync_requests_coalesce(self, tracker, gateway):
        started = asyncio.Event()
        release = asyncio.Event()
        results = iter([1, 2])

        async def slow_count(user_id):
            started.set()
            await release.wait()
            return next(results)

        gateway.count_unread_notifications.side_effect = slow_count

        tracker.request_badge_sync()
        await started.wait()
        tracker.request_badge_sync()
        tracker.request_badge_sync()
        release.set()
        await tracker.flush()

        # First answer superseded by a request made while it was in flight
        assert gateway.count_unread_notifications.await_count == 2
        assert tracker.notification_badge == 2

    @pytest.mark.asyncio
    async def test_mark_all_read_is_optimistic(self, tracker, gateway):
        tracker.set_notification_badge(5)

        marked = await tracker.mark_all_notifications_read(ME)

        assert marked == ["n1", "n2"]
        assert tracker.notification_badge == 0

    @pytest.mark.asyncio
    async def test_mark_all_read_rolls_back_on_failure(self, tracker, gateway):
        tracker.set_notification_badge(5)
        gateway.mark_all_notifications_read.side_effect = NetworkFailureException("offline")

        with pytest.raises(NetworkFailureException):
            await tracker.mark_all_notifications_read(ME)

        assert tracker.notification_badge == 5

    @pytest.mark.asyncio
    async def test_mark_one_read_decrements_and_resyncs(self, tracker, gateway):
        tracker.set_notification_badge(2)
        gateway.count_unread_notifications.return_value = 1

        await tracker.mark_notification_read("n1")
        assert tracker.notification_badge == 1

        await tracker.flush()
        assert tracker.notification_badge == 1
        gateway.mark_notification_read.assert_awaited_once_with("n1")

    @pytest.mark.asyncio
    async def test_mark_one_read_rolls_back(self, tracker, gateway):
        tracker.set_notification_badge(2)
        gateway.mark_notification_read.side_effect = NotFoundException("gone")

        with pytest.raises(NotFoundException):
            await tracker.mark_notification_read("n1")

        assert tracker.notification_badge == 2

    @pytest.mark.asyncio
    async def test_badge_never_negative(self, tracker):
        tracker.set_notification_badge(-3)
        assert tracker.notification_badge == 0


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_reset_clears_counters(self, tracker):
        tracker.seed({"c1": 3}, ME)
        tracker.set_notification_badge(2)
        tracker.open_conversation("c2", ME)
        await tracker.flush()

        tracker.reset()

        assert tracker.counts() == {}
        assert tracker.notification_badge == 0
        assert tracker.open_conversation_id is None

    @pytest.mark.asyncio
    async def test_close_cancels_background_work(self, tracker, gateway):
        never = asyncio.Event()

        async def hang(*args):
            await never.wait()

        gateway.mark_read.side_effect = hang
        tracker.open_conversation("c1", ME)
        await asyncio.sleep(0)
        assert tracker.background_tasks == 1

        await tracker.close()

        assert tracker.background_tasks == 0
