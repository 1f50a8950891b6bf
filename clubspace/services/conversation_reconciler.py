# clubspace/services/conversation_reconciler.py
"""
Conversation Reconciler.

Single authority over optimistic mutations. Every user write goes through
``begin_*`` (apply locally, remember the pre-mutation snapshot), then exactly
one of ``confirm_*`` or ``rollback``. Realtime rows enter through
``apply_remote_*`` and are merged by identity, so a row delivered both as a
gateway response and as a push event is applied once, whichever arrives first.

Mutation lifecycle:
    pending -> confirmed
    pending -> rolled_back
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import logging
from typing import Callable, Deque, Dict, List, Mapping, Optional

from ..core.config import Settings
from ..core.ids import generate_local_id, is_local_id
from ..core.time_utils import utcnow
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..schemas.conversation import Conversation, ConversationView, InboxTab, normalize_pair
from ..schemas.message import Message, MessageType, preview_text
from ..schemas.profile import Profile, ProfileSummary
from .base import BaseService
from .entity_store import EntityStore

logger = logging.getLogger(__name__)


class MutationKind(str, Enum):
    SEND_MESSAGE = "send_message"
    ACCEPT_REQUEST = "accept_request"
    DELETE_CONVERSATION = "delete_conversation"
    START_CONVERSATION = "start_conversation"


class MutationState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


@dataclass
class PendingMutation:
    kind: MutationKind
    conversation_id: str
    snapshot: Optional[Conversation] = None
    local_message: Optional[Message] = None
    id: str = field(default_factory=generate_local_id)
    state: MutationState = MutationState.PENDING
    confirmed_id: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_pending(self) -> bool:
        return self.state == MutationState.PENDING


class ConversationReconciler(BaseService):
    """Merges optimistic, confirmed and pushed state into the entity store."""

    def __init__(self, store: EntityStore, settings: Optional[Settings] = None) -> None:
        super().__init__(settings)
        self.store = store
        self._pending: Dict[str, PendingMutation] = {}
        self.history: Deque[PendingMutation] = deque(maxlen=100)

    # Bookkeeping

    def pending_mutations(self, conversation_id: Optional[str] = None) -> List[PendingMutation]:
        mutations = sorted(self._pending.values(), key=lambda m: m.created_at)
        if conversation_id is None:
            return mutations
        return [m for m in mutations if m.conversation_id == conversation_id]

    def has_pending(self, conversation_id: str) -> bool:
        return any(m.conversation_id == conversation_id for m in self._pending.values())

    def _track(self, mutation: PendingMutation) -> PendingMutation:
        self._pending[mutation.id] = mutation
        prometheus_metrics.record_mutation(mutation.kind.value, mutation.state.value)
        return mutation

    def _finish(self, mutation: PendingMutation, state: MutationState) -> None:
        mutation.state = state
        self._pending.pop(mutation.id, None)
        self.history.append(mutation)
        prometheus_metrics.record_mutation(mutation.kind.value, state.value)

    def reset(self) -> None:
        """
        Forget all mutations; used when the signed-in user changes.

        Pending mutations are marked rolled back without touching the store,
        so a response arriving later can neither confirm nor restore them.
        """
        for mutation in self._pending.values():
            mutation.state = MutationState.ROLLED_BACK
            prometheus_metrics.record_mutation(mutation.kind.value, mutation.state.value)
        self._pending.clear()
        self.history.clear()

    # Send

    def begin_send(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        message_type: MessageType = "text",
        media_url: Optional[str] = None,
        reply_to_id: Optional[str] = None,
    ) -> PendingMutation:
        """Append a local message and update the conversation preview."""
        reply_to = None
        if reply_to_id is not None:
            parent = self.store.get_message(reply_to_id)
            reply_to = parent.preview() if parent is not None else None

        latest = self.store.last_message(conversation_id)
        created_at = utcnow()
        if latest is not None and created_at < latest.created_at:
            created_at = latest.created_at

        local = Message(
            id=generate_local_id(),
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            type=message_type,
            media_url=media_url,
            reply_to_id=reply_to_id,
            reply_to=reply_to,
            is_read=False,
            created_at=created_at,
        )
        snapshot = self.store.get_conversation(conversation_id)
        self.store.upsert_message(local)
        if snapshot is not None:
            self.store.upsert_conversation(_with_message(snapshot, local))

        mutation = self._track(
            PendingMutation(
                kind=MutationKind.SEND_MESSAGE,
                conversation_id=conversation_id,
                snapshot=snapshot,
                local_message=local,
            )
        )
        self.logger.debug(
            "[RECONCILER] Optimistic send",
            extra={"conversation_id": conversation_id, "local_id": local.id},
        )
        return mutation

    def confirm_send(self, mutation: PendingMutation, message: Message) -> Message:
        """
        Replace the local message with the backend row.

        A no-op when the realtime echo already confirmed this mutation.
        """
        if not mutation.is_pending:
            return self.store.get_message(message.id) or message
        if mutation.local_message is not None:
            self.store.remove_message(mutation.local_message.id)
        self.store.upsert_message(message)
        conversation = self.store.get_conversation(mutation.conversation_id)
        if conversation is not None:
            self.store.upsert_conversation(_with_message(conversation, message))
        mutation.confirmed_id = message.id
        self._finish(mutation, MutationState.CONFIRMED)
        self.logger.debug(
            "[RECONCILER] Send confirmed",
            extra={"conversation_id": mutation.conversation_id, "message_id": message.id},
        )
        return self.store.get_message(message.id) or message

    # Conversation-level mutations

    def begin_accept(self, conversation_id: str) -> PendingMutation:
        snapshot = self.store.get_conversation(conversation_id)
        if snapshot is not None:
            self.store.upsert_conversation(snapshot.model_copy(update={"status": "active"}))
        return self._track(
            PendingMutation(
                kind=MutationKind.ACCEPT_REQUEST,
                conversation_id=conversation_id,
                snapshot=snapshot,
            )
        )

    def begin_delete(self, conversation_id: str, user_id: str) -> PendingMutation:
        snapshot = self.store.get_conversation(conversation_id)
        self.store.remove_conversation_for_user(conversation_id, user_id)
        return self._track(
            PendingMutation(
                kind=MutationKind.DELETE_CONVERSATION,
                conversation_id=conversation_id,
                snapshot=snapshot,
            )
        )

    def begin_start(
        self, user_id: str, other_user_id: str, status: str = "active"
    ) -> PendingMutation:
        """Show a placeholder conversation until get-or-create answers."""
        participant_1, participant_2 = normalize_pair(user_id, other_user_id)
        placeholder = Conversation(
            id=generate_local_id(),
            participant_1=participant_1,
            participant_2=participant_2,
            status=status,
            created_at=utcnow(),
        )
        self.store.upsert_conversation(placeholder)
        return self._track(
            PendingMutation(
                kind=MutationKind.START_CONVERSATION,
                conversation_id=placeholder.id,
            )
        )

    def confirm_conversation(
        self, mutation: PendingMutation, conversation: Conversation
    ) -> Conversation:
        """
        Install the backend's version of the conversation.

        For a start mutation the backend may return a row that already
        existed; that is success, the placeholder is simply replaced.
        """
        if not mutation.is_pending:
            return self.store.get_conversation(conversation.id) or conversation
        if mutation.kind == MutationKind.START_CONVERSATION:
            self.store.remove_conversation(mutation.conversation_id)
        self.store.upsert_conversation(conversation)
        mutation.confirmed_id = conversation.id
        self._finish(mutation, MutationState.CONFIRMED)
        return conversation

    def rollback(self, mutation: PendingMutation, error: Optional[BaseException] = None) -> None:
        """Restore the pre-mutation snapshot."""
        if not mutation.is_pending:
            return
        if mutation.kind == MutationKind.START_CONVERSATION:
            self.store.remove_conversation(mutation.conversation_id)
        else:
            if mutation.local_message is not None:
                self.store.remove_message(mutation.local_message.id)
            if mutation.snapshot is not None:
                self.store.upsert_conversation(mutation.snapshot)
        mutation.error = str(error) if error is not None else None
        self._finish(mutation, MutationState.ROLLED_BACK)
        self.logger.info(
            f"[RECONCILER] Rolled back {mutation.kind.value}",
            extra={"conversation_id": mutation.conversation_id, "error": mutation.error},
        )

    # Pushed rows

    def _matching_send(self, message: Message) -> Optional[PendingMutation]:
        """
        The pending send this pushed row confirms.

        Rows carrying a ``client_id`` match only the send that issued it, so a
        copy sent from another device never confirms ours. Rows without one
        fall back to the oldest pending send with the same payload.
        """
        for mutation in self.pending_mutations(message.conversation_id):
            local = mutation.local_message
            if mutation.kind != MutationKind.SEND_MESSAGE or local is None:
                continue
            if message.client_id is not None:
                if local.id == message.client_id:
                    return mutation
                continue
            if (
                local.sender_id == message.sender_id
                and local.content == message.content
                and local.type == message.type
                and local.media_url == message.media_url
                and local.reply_to_id == message.reply_to_id
            ):
                return mutation
        return None

    def apply_remote_message(self, message: Message, current_user_id: Optional[str]) -> bool:
        """
        Merge a pushed message.

        Returns True when the store changed. An echo of one of our own pending
        sends confirms that send here; the later gateway response is a no-op.
        """
        if self.store.get_message(message.id) is not None:
            return False

        if message.sender_id == current_user_id:
            mutation = self._matching_send(message)
            if mutation is not None:
                self.confirm_send(mutation, message)
                return True

        if message.reply_to is None and message.reply_to_id is not None:
            parent = self.store.get_message(message.reply_to_id)
            if parent is not None:
                message = message.model_copy(update={"reply_to": parent.preview()})

        self.store.upsert_message(message)
        conversation = self.store.get_conversation(message.conversation_id)
        if conversation is not None:
            self.store.upsert_conversation(_with_message(conversation, message))
        return True

    def apply_remote_conversation(self, conversation: Conversation) -> bool:
        """
        Merge a pushed or fetched conversation row.

        A conversation with a pending local mutation keeps its local version
        until that mutation resolves.
        """
        if self.has_pending(conversation.id):
            return False
        current = self.store.get_conversation(conversation.id)
        if current is not None and current == conversation:
            return False
        if (
            current is not None
            and current.last_message_at is not None
            and conversation.last_message_at is not None
            and conversation.last_message_at < current.last_message_at
        ):
            # Older preview than what we already show; keep ours, take the rest
            conversation = conversation.model_copy(
                update={
                    "last_message": current.last_message,
                    "last_message_at": current.last_message_at,
                }
            )
        self.store.upsert_conversation(conversation)
        return True

    # Inbox

    def resolve(
        self,
        user_id: str,
        tab: InboxTab,
        rows: List[Conversation],
        unread_for: Callable[[str], int],
        profiles: Optional[Mapping[str, Profile]] = None,
    ) -> List[ConversationView]:
        """
        Ordered inbox for one tab.

        Backend rows are combined with conversations that have pending local
        mutations (the local version wins). Rows the user is not part of, rows
        of the other tab and rows hidden for the user are dropped. Order is
        most recent activity first, ties by id ascending.
        """
        with self.measure_operation_context("resolve_inbox"):
            merged: Dict[str, Conversation] = {row.id: row for row in rows}
            for mutation in self.pending_mutations():
                local = self.store.get_conversation(mutation.conversation_id)
                if local is not None:
                    merged[local.id] = local
                elif mutation.kind == MutationKind.DELETE_CONVERSATION:
                    merged.pop(mutation.conversation_id, None)

            visible = [
                conversation
                for conversation in merged.values()
                if conversation.is_participant(user_id)
                and conversation.status == tab
                and not conversation.is_hidden_for(user_id)
            ]
            visible.sort(key=lambda c: c.id)
            visible.sort(key=lambda c: c.activity_at, reverse=True)

            profiles = profiles or {}
            views = []
            for conversation in visible:
                other_id = conversation.other_participant(user_id)
                profile = profiles.get(other_id)
                views.append(
                    ConversationView(
                        conversation=conversation,
                        other_user=profile.summary() if profile else ProfileSummary(id=other_id),
                        unread_count=unread_for(conversation.id),
                        pending=self.has_pending(conversation.id) or is_local_id(conversation.id),
                    )
                )
            return views


def _with_message(conversation: Conversation, message: Message) -> Conversation:
    """Conversation after ``message`` was sent: new preview, visible to both."""
    update: Dict[str, object] = {"deleted_for": []}
    if conversation.last_message_at is None or message.created_at >= conversation.last_message_at:
        update["last_message"] = preview_text(message.content, message.type)
        update["last_message_at"] = message.created_at
    return conversation.model_copy(update=update)
