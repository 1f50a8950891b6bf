# clubspace/services/entity_store.py
"""
In-memory working set of conversations and messages for the signed-in user.

The store does no I/O and makes no decisions: the reconciler, the tracker and
the router decide what to write, the store keeps it indexed and ordered.

Invariants:
- At most one message per id; re-applying a known id is a no-op
- Messages of a conversation are kept ordered by (created_at, id)
- A stored message's content, type and media never change; only ``is_read``
"""

from bisect import insort
import logging
from typing import Dict, List, Optional, Set

from ..core.ids import is_local_id
from ..schemas.conversation import Conversation
from ..schemas.message import Message

logger = logging.getLogger(__name__)


class EntityStore:
    def __init__(self) -> None:
        self._conversations: Dict[str, Conversation] = {}
        self._messages: Dict[str, List[Message]] = {}
        self._message_index: Dict[str, Message] = {}
        # Conversations whose full message list has been fetched at least once
        self._loaded: Set[str] = set()

    # Conversations

    def upsert_conversation(self, conversation: Conversation) -> Conversation:
        self._conversations[conversation.id] = conversation
        return conversation

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return self._conversations.get(conversation_id)

    def conversations(self) -> List[Conversation]:
        return list(self._conversations.values())

    def find_conversation_by_pair(self, user_a: str, user_b: str) -> Optional[Conversation]:
        pair = {user_a, user_b}
        for conversation in self._conversations.values():
            if set(conversation.participants) == pair:
                return conversation
        return None

    def remove_conversation(self, conversation_id: str) -> None:
        """Drop a conversation and its messages from the working set."""
        self._conversations.pop(conversation_id, None)
        for message in self._messages.pop(conversation_id, []):
            self._message_index.pop(message.id, None)
        self._loaded.discard(conversation_id)

    def remove_conversation_for_user(
        self, conversation_id: str, user_id: str
    ) -> Optional[Conversation]:
        """Hide a conversation for ``user_id``; the record stays in the store."""
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return None
        if user_id in conversation.deleted_for:
            return conversation
        hidden = conversation.model_copy(
            update={"deleted_for": [*conversation.deleted_for, user_id]}
        )
        self._conversations[conversation_id] = hidden
        return hidden

    # Messages

    def upsert_message(self, message: Message) -> bool:
        """
        Insert a message in order.

        Returns False, changing nothing, when the id is already stored.
        """
        if message.id in self._message_index:
            return False
        insort(self._messages.setdefault(message.conversation_id, []), message, key=_sort_key)
        self._message_index[message.id] = message
        return True

    def replace_messages(self, conversation_id: str, messages: List[Message]) -> None:
        """
        Install a full fetch result for a conversation.

        Optimistic (local-id) messages that are still pending are kept.
        """
        for old in self._messages.get(conversation_id, []):
            self._message_index.pop(old.id, None)
        pending = [m for m in self._messages.get(conversation_id, []) if is_local_id(m.id)]
        self._messages[conversation_id] = []
        for message in [*messages, *pending]:
            self.upsert_message(message)
        self._messages.setdefault(conversation_id, [])
        self._loaded.add(conversation_id)

    def remove_message(self, message_id: str) -> Optional[Message]:
        message = self._message_index.pop(message_id, None)
        if message is None:
            return None
        bucket = self._messages.get(message.conversation_id, [])
        self._messages[message.conversation_id] = [m for m in bucket if m.id != message_id]
        return message

    def get_message(self, message_id: str) -> Optional[Message]:
        return self._message_index.get(message_id)

    def messages(self, conversation_id: str) -> List[Message]:
        """Messages of a conversation, oldest first."""
        return list(self._messages.get(conversation_id, []))

    def has_messages(self, conversation_id: str) -> bool:
        """Whether the conversation's messages were fetched from the backend."""
        return conversation_id in self._loaded

    def last_message(self, conversation_id: str) -> Optional[Message]:
        bucket = self._messages.get(conversation_id)
        return bucket[-1] if bucket else None

    def set_message_read(self, message_id: str) -> bool:
        message = self._message_index.get(message_id)
        if message is None or message.is_read:
            return False
        message.is_read = True
        return True

    def mark_read_local(self, conversation_id: str, reader_id: str) -> List[str]:
        """Mark messages from the other participant read; returns the changed ids."""
        changed = []
        for message in self._messages.get(conversation_id, []):
            if message.is_unread_for(reader_id):
                message.is_read = True
                changed.append(message.id)
        return changed

    def unread_count(self, conversation_id: str, user_id: str) -> int:
        return sum(1 for m in self._messages.get(conversation_id, []) if m.is_unread_for(user_id))

    def clear(self) -> None:
        self._conversations.clear()
        self._messages.clear()
        self._message_index.clear()
        self._loaded.clear()
        logger.debug("[STORE] Cleared")


def _sort_key(message: Message):
    return message.sort_key
