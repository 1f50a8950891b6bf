# clubspace/services/realtime_router.py
"""
Realtime Event Router.

Holds the change-feed subscriptions of the signed-in user and routes pushed
rows to the reconciler and the unread tracker:

    notifications  user_id=eq.<me>         -> tracker (badge resync)
    conversations  participant_id=eq.<me>  -> reconciler
    messages       participant_id=eq.<me>  -> reconciler, tracker
                   (or the global table stream, filtered by membership)

Subscriptions follow the session: they are torn down and rebuilt whenever the
signed-in user changes. A failing subscription is logged and re-opened after
``realtime_resubscribe_delay`` seconds; users never see feed errors.
"""

import asyncio
from collections import deque
import logging
from typing import Callable, Deque, Dict, List, Optional, Set

from pydantic import ValidationError

from ..core.config import Settings
from ..core.exceptions import DomainException, NotFoundException, UnauthorizedException
from ..core.session import SessionContext
from ..gateway.base import BackendGateway, EventHandler, Subscription
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..schemas.conversation import Conversation
from ..schemas.diagnostics import SubscriptionStatus
from ..schemas.message import Message
from ..schemas.realtime import ChangeEvent, ChangeFeedSpec
from .base import BaseService
from .conversation_reconciler import ConversationReconciler
from .unread_tracker import UnreadTracker

logger = logging.getLogger(__name__)

SEEN_EVENTS_LIMIT = 1000

ChangeListener = Callable[[ChangeEvent], None]


class RealtimeEventRouter(BaseService):
    def __init__(
        self,
        gateway: BackendGateway,
        session: SessionContext,
        reconciler: ConversationReconciler,
        tracker: UnreadTracker,
        settings: Optional[Settings] = None,
    ) -> None:
        super().__init__(settings)
        self.gateway = gateway
        self.session = session
        self.reconciler = reconciler
        self.tracker = tracker
        self.store = reconciler.store
        self._subscriptions: Dict[str, Subscription] = {}
        self._user_id: Optional[str] = None
        # Bumped on every teardown; stale resubscribe tasks compare against it
        self._generation = 0
        self._resubscribe_tasks: Set["asyncio.Task[None]"] = set()
        self._membership: Dict[str, bool] = {}
        self._seen_events: Set[str] = set()
        self._seen_order: Deque[str] = deque()
        self._listeners: List[ChangeListener] = []
        self._remove_session_listener: Optional[Callable[[], None]] = None

    # Lifecycle

    async def start(self) -> None:
        """Follow the session: subscribe now if signed in and on every identity change."""
        if self._remove_session_listener is None:
            self._remove_session_listener = self.session.add_listener(self._on_identity_change)
        if self.session.user_id is not None and self.session.user_id != self._user_id:
            await self.setup(self.session.user_id)

    async def stop(self) -> None:
        if self._remove_session_listener is not None:
            self._remove_session_listener()
            self._remove_session_listener = None
        await self.teardown()

    async def _on_identity_change(
        self, previous_user_id: Optional[str], user_id: Optional[str]
    ) -> None:
        await self.teardown()
        if user_id is not None:
            await self.setup(user_id)

    def add_listener(self, listener: ChangeListener) -> None:
        """Call ``listener`` after each applied event, e.g. to refresh a view."""
        self._listeners.append(listener)

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    def _feed_specs(self, user_id: str) -> Dict[str, ChangeFeedSpec]:
        if self.settings.realtime_message_scope == "global":
            messages = ChangeFeedSpec(table="messages", name="messages")
        else:
            messages = ChangeFeedSpec(
                table="messages", column="participant_id", value=user_id, name="messages"
            )
        return {
            "notifications": ChangeFeedSpec(
                table="notifications", column="user_id", value=user_id, name="notifications"
            ),
            "conversations": ChangeFeedSpec(
                table="conversations",
                column="participant_id",
                value=user_id,
                name="conversations",
            ),
            "messages": messages,
        }

    def _handler_for(self, key: str) -> EventHandler:
        return {
            "notifications": self._handle_notification_event,
            "conversations": self._handle_conversation_event,
            "messages": self._handle_message_event,
        }[key]

    async def setup(self, user_id: str) -> None:
        """Open every feed for ``user_id``."""
        self._user_id = user_id
        generation = self._generation
        for key, spec in self._feed_specs(user_id).items():
            await self._open(key, spec, generation)
        self._update_gauge()
        self.logger.info(
            f"[REALTIME] {len(self._subscriptions)} subscriptions open",
            extra={"user_id": user_id},
        )

    async def _open(self, key: str, spec: ChangeFeedSpec, generation: int) -> None:
        async def on_error(subscription: Subscription, error: BaseException) -> None:
            self._schedule_resubscribe(key, generation)

        try:
            subscription = await self.gateway.subscribe(spec, self._handler_for(key), on_error)
        except DomainException as e:
            self.logger.warning(
                f"[REALTIME] Could not subscribe to {spec.label}: {e.message}",
                extra={"code": e.code},
            )
            self._schedule_resubscribe(key, generation)
            return
        if generation != self._generation:
            await self.gateway.unsubscribe(subscription)
            return
        self._subscriptions[key] = subscription

    async def teardown(self) -> None:
        """Close every subscription and forget per-user routing state."""
        self._generation += 1
        self._user_id = None
        tasks = list(self._resubscribe_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._resubscribe_tasks.clear()

        subscriptions = list(self._subscriptions.values())
        self._subscriptions.clear()
        for subscription in subscriptions:
            await self.gateway.unsubscribe(subscription)

        self._membership.clear()
        self._seen_events.clear()
        self._seen_order.clear()
        self._update_gauge()
        if subscriptions:
            self.logger.info(f"[REALTIME] Closed {len(subscriptions)} subscriptions")

    def _schedule_resubscribe(self, key: str, generation: int) -> None:
        if generation != self._generation:
            return
        task = asyncio.create_task(self._resubscribe(key, generation))
        self._resubscribe_tasks.add(task)
        task.add_done_callback(self._resubscribe_tasks.discard)

    async def _resubscribe(self, key: str, generation: int) -> None:
        await asyncio.sleep(self.settings.realtime_resubscribe_delay)
        if generation != self._generation or self._user_id is None:
            return
        old = self._subscriptions.pop(key, None)
        if old is not None:
            await self.gateway.unsubscribe(old)
        prometheus_metrics.record_resubscribe()
        self.logger.info(f"[REALTIME] Re-subscribing to {key}")
        await self._open(key, self._feed_specs(self._user_id)[key], generation)
        self._update_gauge()

    def _update_gauge(self) -> None:
        prometheus_metrics.set_active_subscriptions(
            sum(1 for s in self._subscriptions.values() if s.is_active)
        )

    def status(self) -> List[SubscriptionStatus]:
        return [
            SubscriptionStatus(name=s.name, topic=s.topic, state=s.state.value)
            for s in self._subscriptions.values()
        ]

    # Routing

    def _first_sighting(self, event: ChangeEvent) -> bool:
        if event.id in self._seen_events:
            return False
        self._seen_events.add(event.id)
        self._seen_order.append(event.id)
        if len(self._seen_order) > SEEN_EVENTS_LIMIT:
            self._seen_events.discard(self._seen_order.popleft())
        return True

    def _notify(self, event: ChangeEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    async def _handle_notification_event(self, event: ChangeEvent) -> None:
        if not self._first_sighting(event):
            prometheus_metrics.record_realtime_event(event.table, "duplicate")
            return
        if event.row.get("user_id") != self._user_id:
            prometheus_metrics.record_realtime_event(event.table, "filtered")
            return
        self.tracker.on_notification_event(event)
        prometheus_metrics.record_realtime_event(event.table, "applied")
        self._notify(event)

    async def _handle_conversation_event(self, event: ChangeEvent) -> None:
        if not self._first_sighting(event):
            prometheus_metrics.record_realtime_event(event.table, "duplicate")
            return
        user_id = self._user_id
        if event.type == "DELETE":
            conversation_id = event.row.get("id")
            if conversation_id and self.store.get_conversation(conversation_id) is not None:
                self.store.remove_conversation(conversation_id)
                self.tracker.forget([conversation_id])
                self._membership.pop(conversation_id, None)
            prometheus_metrics.record_realtime_event(event.table, "applied")
            self._notify(event)
            return

        conversation = self._parse(event, Conversation)
        if conversation is None:
            return
        if not conversation.is_participant(user_id):
            prometheus_metrics.record_realtime_event(event.table, "filtered")
            return
        self._membership[conversation.id] = True
        changed = self.reconciler.apply_remote_conversation(conversation)
        prometheus_metrics.record_realtime_event(
            event.table, "applied" if changed else "duplicate"
        )
        if changed:
            self._notify(event)

    async def _handle_message_event(self, event: ChangeEvent) -> None:
        if not self._first_sighting(event):
            prometheus_metrics.record_realtime_event(event.table, "duplicate")
            return
        user_id = self._user_id
        if user_id is None:
            return
        conversation_id = event.row.get("conversation_id")
        if not conversation_id or not await self._is_member(conversation_id):
            prometheus_metrics.record_realtime_event(event.table, "filtered")
            return

        if event.type == "UPDATE":
            applied = bool(event.record.get("is_read")) and self.tracker.on_read_receipt(
                event.record["id"]
            )
            prometheus_metrics.record_realtime_event(
                event.table, "applied" if applied else "duplicate"
            )
            if applied:
                self._notify(event)
            return
        if event.type != "INSERT":
            return

        message = self._parse(event, Message)
        if message is None:
            return
        if self.store.get_conversation(conversation_id) is None:
            await self._load_conversation(conversation_id)
        changed = self.reconciler.apply_remote_message(message, user_id)
        if not changed:
            prometheus_metrics.record_realtime_event(event.table, "duplicate")
            return
        self.tracker.on_message(message, user_id)
        prometheus_metrics.record_realtime_event(event.table, "applied")
        self.logger.debug(
            "[REALTIME] Message applied",
            extra={"conversation_id": conversation_id, "message_id": message.id},
        )
        self._notify(event)

    async def _is_member(self, conversation_id: str) -> bool:
        """Whether the signed-in user participates in the conversation."""
        conversation = self.store.get_conversation(conversation_id)
        if conversation is not None:
            return conversation.is_participant(self._user_id)
        if self.settings.realtime_message_scope == "user":
            # The topic is already scoped to the user server-side
            return True
        if conversation_id in self._membership:
            return self._membership[conversation_id]
        try:
            await self.gateway.get_conversation(conversation_id)
            member = True
        except (UnauthorizedException, NotFoundException):
            member = False
        self._membership[conversation_id] = member
        return member

    async def _load_conversation(self, conversation_id: str) -> None:
        """Bring a conversation we had not seen yet (new chat, or revived) into the store."""
        try:
            conversation = await self.gateway.get_conversation(conversation_id)
        except DomainException as e:
            self.logger.warning(
                f"[REALTIME] Could not load conversation for pushed message: {e.message}",
                extra={"conversation_id": conversation_id},
            )
            return
        self.reconciler.apply_remote_conversation(conversation)

    def _parse(self, event: ChangeEvent, model):
        try:
            return model.model_validate(event.record)
        except ValidationError as e:
            prometheus_metrics.record_realtime_event(event.table, "failed")
            self.logger.error(
                f"[REALTIME] Malformed {event.table} record: {e}",
                extra={"event_id": event.id},
            )
            return None
