# clubspace/services/messaging_client.py
"""
Messaging client facade.

Wires the entity store, reconciler, request workflow, unread tracker and
realtime router to one gateway and one session, and exposes the user actions
of the messages screen.

Every write follows the same shape:

    mutation = reconciler.begin_*(...)      # optimistic, synchronous
    try:
        row = await gateway.<write>(...)
        reconciler.confirm_*(mutation, row)
    except DomainException as e:
        reconciler.rollback(mutation, e)
        -> Notice

Actions never raise gateway errors to the caller. Failures come back as an
``ActionResult`` carrying a ``Notice``, which also lands in ``notices`` until
dismissed.

A response that arrives after a sign-out or user switch is dropped as
``stale`` without touching the new user's state.
"""

from dataclasses import dataclass
import logging
from typing import Callable, Dict, List, Optional, Sequence

from ..core.config import Settings
from ..core.exceptions import DomainException, NotFoundException, ValidationException
from ..core.ids import is_local_id
from ..core.session import AuthSession, SessionContext
from ..gateway.base import BackendGateway
from ..integrations.media_uploader import detect_media_type
from ..schemas.client import ActionResult, BadgeCounts, ConversationDetail, Notice
from ..schemas.conversation import Conversation, ConversationView, InboxTab
from ..schemas.message import Message, MessageType
from ..schemas.profile import Profile, ProfileSummary
from ..schemas.social import Block
from .base import BaseService
from .conversation_reconciler import ConversationReconciler
from .entity_store import EntityStore
from .realtime_router import RealtimeEventRouter
from .request_workflow import RequestWorkflow, policy_from_settings
from .unread_tracker import UnreadTracker

logger = logging.getLogger(__name__)


@dataclass
class Attachment:
    """A file picked for sending; uploaded before the message is created."""

    data: bytes
    filename: str
    content_type: str


class MessagingClient(BaseService):
    """
    One signed-in user's messaging state and actions.

    Usage:
        client = MessagingClient(gateway, session)
        await client.start()
        await client.sign_in(AuthSession(user_id=...))
        inbox = await client.load_inbox("active")
        await client.open_conversation(inbox.value[0].id)
        await client.send_message("hi")
    """

    def __init__(
        self,
        gateway: BackendGateway,
        session: SessionContext,
        settings: Optional[Settings] = None,
        workflow: Optional[RequestWorkflow] = None,
    ) -> None:
        super().__init__(settings)
        self.gateway = gateway
        self.session = session
        self.store = EntityStore()
        self.reconciler = ConversationReconciler(self.store, self.settings)
        self.workflow = workflow or RequestWorkflow(policy_from_settings(self.settings))
        self.tracker = UnreadTracker(self.store, gateway, session, self.settings)
        self.router = RealtimeEventRouter(
            gateway, session, self.reconciler, self.tracker, self.settings
        )
        self.notices: List[Notice] = []
        self.tab: InboxTab = "active"
        self.active_conversation_id: Optional[str] = None
        self._profiles: Dict[str, Profile] = {}
        # Incremented whenever the open conversation changes; tags in-flight reads
        self._view_token = 0
        # Incremented on every sign-in, sign-out and user switch; tags in-flight writes
        self._session_generation = 0
        self._remove_session_listener: Optional[Callable[[], None]] = None

    # Lifecycle

    async def start(self) -> None:
        # Registered before the router's listener so per-user state is cleared
        # before the new user's subscriptions open
        if self._remove_session_listener is None:
            self._remove_session_listener = self.session.add_listener(self._on_identity_change)
        await self.router.start()

    async def close(self) -> None:
        if self._remove_session_listener is not None:
            self._remove_session_listener()
            self._remove_session_listener = None
        await self.router.stop()
        await self.tracker.close()

    async def sign_in(self, session: AuthSession) -> None:
        await self.session.sign_in(session)

    async def sign_out(self) -> None:
        await self.session.sign_out()

    async def _on_identity_change(
        self, previous_user_id: Optional[str], user_id: Optional[str]
    ) -> None:
        await self.tracker.close()
        self.tracker.reset()
        self.reconciler.reset()
        self.store.clear()
        self._profiles.clear()
        self.notices.clear()
        self.active_conversation_id = None
        self.tab = "active"
        self._view_token += 1
        self._session_generation += 1
        self.logger.info(
            "[CLIENT] Session changed, local state cleared",
            extra={"previous_user_id": previous_user_id, "user_id": user_id},
        )

    # Notices

    def _fail(self, action: str, error: DomainException) -> ActionResult:
        notice = Notice(
            action=action,
            code=error.code,
            message=error.message,
            details=error.details,
            status_code=error.status_code,
        )
        self.notices.append(notice)
        self.logger.warning(
            f"[CLIENT] {action} failed: {error.message}",
            extra={"code": error.code, "notice_id": notice.id},
        )
        return ActionResult(notice=notice)

    def dismiss_notice(self, notice_id: str) -> bool:
        remaining = [n for n in self.notices if n.id != notice_id]
        dismissed = len(remaining) != len(self.notices)
        self.notices = remaining
        return dismissed

    def _is_current(self, token: int, user_id: str) -> bool:
        return token == self._view_token and self.session.user_id == user_id

    def _session_changed(self, generation: int, action: str) -> bool:
        """True when the user signed out or switched while ``action`` was in flight."""
        if generation == self._session_generation:
            return False
        self.logger.debug(f"[CLIENT] Discarding {action} response from a previous session")
        return True

    # Inbox

    def _unread_for(self, user_id: str) -> Callable[[str], int]:
        def unread(conversation_id: str) -> int:
            if self.store.has_messages(conversation_id):
                return self.store.unread_count(conversation_id, user_id)
            return self.tracker.count_for(conversation_id)

        return unread

    async def _profiles_for(self, user_ids: Sequence[str]) -> Dict[str, Profile]:
        missing = sorted({u for u in user_ids if u not in self._profiles})
        if missing:
            self._profiles.update(await self.gateway.get_profiles(missing))
        return {u: self._profiles[u] for u in user_ids if u in self._profiles}

    def _summary(self, user_id: str) -> ProfileSummary:
        profile = self._profiles.get(user_id)
        return profile.summary() if profile else ProfileSummary(id=user_id)

    @BaseService.measure_operation("load_inbox")
    async def load_inbox(self, tab: InboxTab = "active") -> ActionResult:
        """Fetch one inbox tab and seed its unread counters."""
        self.tab = tab
        generation = self._session_generation
        try:
            user_id = self.session.require_user()
            rows = await self.gateway.list_conversations(user_id, tab)
            counts = await self.gateway.count_unread([row.id for row in rows], user_id)
            profiles = await self._profiles_for([row.other_participant(user_id) for row in rows])
        except DomainException as e:
            if self._session_changed(generation, "load_inbox"):
                return ActionResult(stale=True)
            return self._fail("load_inbox", e)
        if self._session_changed(generation, "load_inbox") or self.session.user_id != user_id:
            return ActionResult(stale=True)

        for row in rows:
            self.reconciler.apply_remote_conversation(row)
        self.tracker.seed(counts, user_id)
        merged = [self.store.get_conversation(row.id) or row for row in rows]
        views = self.reconciler.resolve(user_id, tab, merged, self._unread_for(user_id), profiles)
        return ActionResult(value=views)

    def inbox(self, tab: Optional[InboxTab] = None) -> List[ConversationView]:
        """The inbox as currently known locally, without any I/O."""
        user_id = self.session.user_id
        if user_id is None:
            return []
        return self.reconciler.resolve(
            user_id,
            tab or self.tab,
            self.store.conversations(),
            self._unread_for(user_id),
            self._profiles,
        )

    # Conversation view

    @BaseService.measure_operation("open_conversation")
    async def open_conversation(self, conversation_id: str) -> ActionResult:
        """
        Load a conversation's messages and mark them read.

        A response arriving after the user opened another conversation or
        signed out is discarded.
        """
        self._view_token += 1
        token = self._view_token
        generation = self._session_generation
        self.active_conversation_id = conversation_id
        self.tracker.close_conversation()
        try:
            user_id = self.session.require_user()
            conversation = self.store.get_conversation(conversation_id)
            if conversation is None or is_local_id(conversation_id):
                conversation = await self.gateway.get_conversation(conversation_id)
            messages = await self.gateway.list_messages(conversation_id)
            await self._profiles_for([conversation.other_participant(user_id)])
        except DomainException as e:
            if self._session_changed(generation, "open_conversation"):
                return ActionResult(stale=True)
            if self._view_token == token:
                self.active_conversation_id = None
            return self._fail("open_conversation", e)

        if not self._is_current(token, user_id):
            self.logger.debug(
                "[CLIENT] Discarding stale conversation response",
                extra={"conversation_id": conversation_id},
            )
            return ActionResult(stale=True)

        self.reconciler.apply_remote_conversation(conversation)
        self.store.replace_messages(conversation_id, messages)
        self.tracker.open_conversation(conversation_id, user_id)
        return ActionResult(value=self._detail(conversation_id, user_id))

    def _detail(self, conversation_id: str, user_id: str) -> Optional[ConversationDetail]:
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            return None
        return ConversationDetail(
            conversation=conversation,
            other_user=self._summary(conversation.other_participant(user_id)),
            messages=self.store.messages(conversation_id),
        )

    def close_conversation(self) -> None:
        self._view_token += 1
        self.active_conversation_id = None
        self.tracker.close_conversation()

    def active_conversation(self) -> Optional[Conversation]:
        if self.active_conversation_id is None:
            return None
        return self.store.get_conversation(self.active_conversation_id)

    def messages(self, conversation_id: Optional[str] = None) -> List[Message]:
        target = conversation_id or self.active_conversation_id
        return self.store.messages(target) if target else []

    def _require_conversation(self, conversation_id: Optional[str]) -> Conversation:
        target = conversation_id or self.active_conversation_id
        conversation = self.store.get_conversation(target) if target else None
        if conversation is None:
            raise NotFoundException(
                "Conversation not found",
                code="CONVERSATION_NOT_FOUND",
                details={"conversation_id": target},
            )
        return conversation

    # Writes

    @BaseService.measure_operation("send_message")
    async def send_message(
        self,
        content: str = "",
        message_type: MessageType = "text",
        media_url: Optional[str] = None,
        reply_to_id: Optional[str] = None,
        attachment: Optional[Attachment] = None,
    ) -> ActionResult:
        """Send into the open conversation; an attachment is uploaded first."""
        content = content.strip()
        generation = self._session_generation
        try:
            user_id = self.session.require_user()
            conversation = self._require_conversation(None)
            if not content and attachment is None and not media_url:
                raise ValidationException("Message is empty", code="EMPTY_MESSAGE")
            if attachment is not None:
                message_type = detect_media_type(attachment.content_type)
                media_url = await self.gateway.upload_media(
                    attachment.data, attachment.filename, attachment.content_type
                )
                self.logger.info(
                    "[CLIENT] Attachment uploaded",
                    extra={"conversation_id": conversation.id, "type": message_type},
                )
        except DomainException as e:
            if self._session_changed(generation, "send_message"):
                return ActionResult(stale=True)
            return self._fail("send_message", e)
        if self._session_changed(generation, "send_message"):
            return ActionResult(stale=True)

        mutation = self.reconciler.begin_send(
            conversation.id, user_id, content, message_type, media_url, reply_to_id
        )
        try:
            message = await self.gateway.send_message(
                conversation.id,
                user_id,
                content,
                message_type,
                media_url,
                reply_to_id,
                client_id=mutation.local_message.id,
            )
        except DomainException as e:
            if self._session_changed(generation, "send_message"):
                return ActionResult(stale=True)
            self.reconciler.rollback(mutation, e)
            return self._fail("send_message", e)
        if self._session_changed(generation, "send_message"):
            return ActionResult(stale=True)
        return ActionResult(value=self.reconciler.confirm_send(mutation, message))

    @BaseService.measure_operation("start_conversation")
    async def start_conversation(self, other_user_id: str) -> ActionResult:
        """Get or create the conversation with ``other_user_id`` and open it."""
        generation = self._session_generation
        try:
            user_id = self.session.require_user()
            if other_user_id == user_id:
                raise ValidationException(
                    "Cannot start a conversation with yourself", code="SELF_CHAT"
                )
            status = await self.workflow.initial_status(self.gateway, user_id, other_user_id)
        except DomainException as e:
            if self._session_changed(generation, "start_conversation"):
                return ActionResult(stale=True)
            return self._fail("start_conversation", e)
        if self._session_changed(generation, "start_conversation"):
            return ActionResult(stale=True)

        mutation = None
        if self.store.find_conversation_by_pair(user_id, other_user_id) is None:
            mutation = self.reconciler.begin_start(user_id, other_user_id, status)
        try:
            conversation = await self.gateway.get_or_create_conversation(
                user_id, other_user_id, status
            )
        except DomainException as e:
            if self._session_changed(generation, "start_conversation"):
                return ActionResult(stale=True)
            if mutation is not None:
                self.reconciler.rollback(mutation, e)
            return self._fail("start_conversation", e)

        if self._session_changed(generation, "start_conversation"):
            return ActionResult(stale=True)
        if mutation is not None:
            self.reconciler.confirm_conversation(mutation, conversation)
        else:
            self.store.upsert_conversation(conversation)
        self.tab = conversation.status
        return await self.open_conversation(conversation.id)

    @BaseService.measure_operation("accept_request")
    async def accept_request(self, conversation_id: Optional[str] = None) -> ActionResult:
        """Move a message request to the primary inbox."""
        try:
            user_id = self.session.require_user()
            conversation = self._require_conversation(conversation_id)
            messages = self.store.messages(conversation.id)
            opener_id = messages[0].sender_id if messages else None
            if not self.workflow.check_accept(conversation, user_id, opener_id):
                return ActionResult(value=conversation)
        except DomainException as e:
            return self._fail("accept_request", e)

        generation = self._session_generation
        mutation = self.reconciler.begin_accept(conversation.id)
        try:
            updated = await self.gateway.update_conversation_status(conversation.id, "active")
        except DomainException as e:
            if self._session_changed(generation, "accept_request"):
                return ActionResult(stale=True)
            self.reconciler.rollback(mutation, e)
            return self._fail("accept_request", e)
        if self._session_changed(generation, "accept_request"):
            return ActionResult(stale=True)
        self.tab = "active"
        return ActionResult(value=self.reconciler.confirm_conversation(mutation, updated))

    @BaseService.measure_operation("delete_conversation")
    async def delete_conversation(self, conversation_id: Optional[str] = None) -> ActionResult:
        """Hide a conversation for the current user only."""
        try:
            user_id = self.session.require_user()
            conversation = self._require_conversation(conversation_id)
            self.workflow.check_hide(conversation, user_id)
        except DomainException as e:
            return self._fail("delete_conversation", e)

        generation = self._session_generation
        mutation = self.reconciler.begin_delete(conversation.id, user_id)
        try:
            hidden = await self.gateway.soft_delete_conversation(conversation.id, user_id)
        except DomainException as e:
            if self._session_changed(generation, "delete_conversation"):
                return ActionResult(stale=True)
            self.reconciler.rollback(mutation, e)
            return self._fail("delete_conversation", e)
        if self._session_changed(generation, "delete_conversation"):
            return ActionResult(stale=True)
        self.reconciler.confirm_conversation(mutation, hidden)
        if self.active_conversation_id == conversation.id:
            self.close_conversation()
        return ActionResult(value=hidden)

    @BaseService.measure_operation("block_other_participant")
    async def block_other_participant(self) -> ActionResult:
        """Block the other participant of the open conversation and close it."""
        generation = self._session_generation
        try:
            user_id = self.session.require_user()
            conversation = self._require_conversation(None)
            block: Block = await self.gateway.block_user(
                user_id, conversation.other_participant(user_id)
            )
        except DomainException as e:
            if self._session_changed(generation, "block_other_participant"):
                return ActionResult(stale=True)
            return self._fail("block_other_participant", e)
        if self._session_changed(generation, "block_other_participant"):
            return ActionResult(stale=True)
        self.close_conversation()
        return ActionResult(value=block)

    # Badges

    def badges(self) -> BadgeCounts:
        return BadgeCounts(
            messages=self.tracker.total_unread_messages,
            notifications=self.tracker.notification_badge,
        )

    async def refresh_badges(self) -> ActionResult:
        try:
            user_id = self.session.require_user()
            await self.tracker.refresh_notification_badge(user_id)
        except DomainException as e:
            return self._fail("refresh_badges", e)
        return ActionResult(value=self.badges())

    async def mark_all_notifications_read(self) -> ActionResult:
        try:
            user_id = self.session.require_user()
            ids = await self.tracker.mark_all_notifications_read(user_id)
        except DomainException as e:
            return self._fail("mark_all_notifications_read", e)
        return ActionResult(value=ids)

    async def flush(self) -> None:
        """Wait for background read receipts and badge syncs."""
        await self.tracker.flush()
