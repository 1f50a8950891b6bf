# clubspace/services/unread_tracker.py
"""
Unread counters, read receipts and the notification badge.

Two independent counters live here and never feed each other:

- Conversation unread counts: messages from the other participant with
  ``is_read = false``, per conversation, plus their sum
  (``total_unread_messages``)
- Notification badge: unread Notification rows for the user

Backend read writes are fire-and-forget: ``open_conversation`` updates local
state synchronously and schedules ``mark_read`` in the background, retried
with exponential backoff. The tracker owns those tasks; ``flush`` waits for
them and ``close`` cancels them.
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Set

from ..core.config import Settings
from ..core.exceptions import DomainException, NetworkFailureException, ServiceException
from ..core.session import SessionContext
from ..gateway.base import BackendGateway
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..schemas.message import Message
from ..schemas.realtime import ChangeEvent
from .base import BaseService
from .entity_store import EntityStore

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (NetworkFailureException, ServiceException)


class UnreadTracker(BaseService):
    def __init__(
        self,
        store: EntityStore,
        gateway: BackendGateway,
        session: SessionContext,
        settings: Optional[Settings] = None,
    ) -> None:
        super().__init__(settings)
        self.store = store
        self.gateway = gateway
        self.session = session
        self._counts: Dict[str, int] = {}
        self._notification_badge = 0
        self._open_conversation_id: Optional[str] = None
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._badge_sync_task: Optional["asyncio.Task[None]"] = None
        self._badge_sync_again = False
        self._badge_ops_in_flight = 0

    # Conversation counters

    @property
    def open_conversation_id(self) -> Optional[str]:
        return self._open_conversation_id

    @property
    def total_unread_messages(self) -> int:
        return sum(self._counts.values())

    def count_for(self, conversation_id: str) -> int:
        return self._counts.get(conversation_id, 0)

    def counts(self) -> Dict[str, int]:
        return dict(self._counts)

    def seed(self, counts: Mapping[str, int], user_id: str) -> None:
        """
        Install backend counts.

        Conversations whose messages are loaded are recounted from the store
        instead, which already reflects local reads.
        """
        for conversation_id, count in counts.items():
            if self.store.has_messages(conversation_id):
                self.recount(conversation_id, user_id)
            elif conversation_id == self._open_conversation_id:
                self._counts[conversation_id] = 0
            else:
                self._counts[conversation_id] = count

    def recount(self, conversation_id: str, user_id: str) -> int:
        count = self.store.unread_count(conversation_id, user_id)
        self._counts[conversation_id] = count
        return count

    def forget(self, conversation_ids: Iterable[str]) -> None:
        for conversation_id in conversation_ids:
            self._counts.pop(conversation_id, None)

    def open_conversation(self, conversation_id: str, user_id: str) -> List[str]:
        """
        Mark the conversation read locally and schedule the backend write.

        Returns the ids of messages that flipped to read locally.
        """
        self._open_conversation_id = conversation_id
        changed = self.store.mark_read_local(conversation_id, user_id)
        self._counts[conversation_id] = 0
        self._schedule_mark_read(conversation_id, user_id)
        return changed

    def close_conversation(self) -> None:
        self._open_conversation_id = None

    def on_message(self, message: Message, user_id: str) -> None:
        """
        Account for a newly stored message from the other participant.

        In the open conversation it is read on arrival; elsewhere it adds to
        that conversation's counter and leaves ``is_read`` alone.
        """
        if message.sender_id == user_id:
            return
        if message.conversation_id == self._open_conversation_id:
            self.store.set_message_read(message.id)
            self._counts[message.conversation_id] = 0
            self._schedule_mark_read(message.conversation_id, user_id)
            return
        if self.store.has_messages(message.conversation_id):
            self.recount(message.conversation_id, user_id)
        else:
            self._counts[message.conversation_id] = self.count_for(message.conversation_id) + 1

    def on_read_receipt(self, message_id: str) -> bool:
        """A message we hold was marked read by the backend."""
        message = self.store.get_message(message_id)
        if message is None:
            return False
        changed = self.store.set_message_read(message_id)
        user_id = self.session.user_id
        if changed and user_id and message.sender_id != user_id:
            self.recount(message.conversation_id, user_id)
        return changed

    def _schedule_mark_read(self, conversation_id: str, user_id: str) -> None:
        self._spawn(self._mark_read_with_retry(conversation_id, user_id))

    async def _mark_read_with_retry(self, conversation_id: str, user_id: str) -> None:
        max_attempts = self.settings.mark_read_max_attempts
        for attempt in range(1, max_attempts + 1):
            if self.session.user_id != user_id:
                return
            try:
                await self.gateway.mark_read(conversation_id, user_id)
                prometheus_metrics.record_mark_read_attempt("success")
                return
            except RETRYABLE_ERRORS as e:
                if attempt == max_attempts:
                    prometheus_metrics.record_mark_read_attempt("failed")
                    self.logger.error(
                        f"[UNREAD] mark_read gave up after {attempt} attempts: {e.message}",
                        extra={"conversation_id": conversation_id},
                    )
                    return
                prometheus_metrics.record_mark_read_attempt("retry")
                delay = self.settings.mark_read_backoff_seconds * (2 ** (attempt - 1))
                self.logger.warning(
                    f"[UNREAD] mark_read attempt {attempt} failed, retrying in {delay:.2f}s",
                    extra={"conversation_id": conversation_id, "error": e.message},
                )
                await asyncio.sleep(delay)
            except DomainException as e:
                prometheus_metrics.record_mark_read_attempt("failed")
                self.logger.warning(
                    f"[UNREAD] mark_read rejected: {e.message}",
                    extra={"conversation_id": conversation_id, "code": e.code},
                )
                return

    # Notification badge

    @property
    def notification_badge(self) -> int:
        return self._notification_badge

    def set_notification_badge(self, count: int) -> None:
        self._notification_badge = max(count, 0)

    async def refresh_notification_badge(self, user_id: str) -> int:
        count = await self.gateway.count_unread_notifications(user_id)
        self.set_notification_badge(count)
        return count

    def on_notification_event(self, event: ChangeEvent) -> None:
        """
        Any notification change resyncs the badge from the backend.

        Inserts and reads can race with optimistic updates and with each
        other; the backend count settles them.
        """
        if event.type == "INSERT" and not event.record.get("is_read", False):
            self._notification_badge += 1
        self.request_badge_sync()

    def request_badge_sync(self) -> None:
        if self._badge_sync_task is not None and not self._badge_sync_task.done():
            self._badge_sync_again = True
            return
        self._badge_sync_task = self._spawn(self._sync_badge())

    async def _sync_badge(self) -> None:
        while True:
            self._badge_sync_again = False
            user_id = self.session.user_id
            if user_id is None:
                return
            try:
                count = await self.gateway.count_unread_notifications(user_id)
            except DomainException as e:
                self.logger.warning(f"[UNREAD] Badge sync failed: {e.message}")
                return
            if self._badge_sync_again:
                continue
            if self._badge_ops_in_flight == 0 and self.session.user_id == user_id:
                self.set_notification_badge(count)
            return

    async def mark_all_notifications_read(self, user_id: str) -> List[str]:
        """Zero the badge now; restore it if the backend refuses."""
        previous = self._notification_badge
        self._notification_badge = 0
        self._badge_ops_in_flight += 1
        try:
            return await self.gateway.mark_all_notifications_read(user_id)
        except DomainException:
            self._notification_badge = previous
            raise
        finally:
            self._badge_ops_in_flight -= 1

    async def mark_notification_read(self, notification_id: str, was_unread: bool = True) -> None:
        previous = self._notification_badge
        if was_unread:
            self._notification_badge = max(previous - 1, 0)
        self._badge_ops_in_flight += 1
        try:
            await self.gateway.mark_notification_read(notification_id)
        except DomainException:
            self._notification_badge = previous
            raise
        finally:
            self._badge_ops_in_flight -= 1
        self.request_badge_sync()

    # Lifecycle

    def _spawn(self, coro) -> "asyncio.Task[None]":
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def background_tasks(self) -> int:
        return len(self._tasks)

    async def flush(self) -> None:
        """Wait for every background task, including ones they schedule."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    def reset(self) -> None:
        self._counts.clear()
        self._notification_badge = 0
        self._open_conversation_id = None
