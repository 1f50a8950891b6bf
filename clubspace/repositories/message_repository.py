# clubspace/repositories/message_repository.py
"""
Message Repository for direct conversations.

Implements all data access operations for messages and read flags.
"""

from datetime import datetime, timedelta
import logging
from typing import Dict, List, Optional, Sequence, cast

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..core.time_utils import as_utc, utcnow
from ..models.message import Message
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

# Smallest step used to keep created_at strictly increasing within a conversation
_TICK = timedelta(microseconds=1)


class MessageRepository(BaseRepository[Message]):
    def __init__(self, db: Session):
        super().__init__(db, Message)

    def find_by_conversation(self, conversation_id: str) -> List[Message]:
        """
        Messages of a conversation, oldest first.

        ``reply_to`` is joined-loaded one level deep by the model mapping.
        """
        try:
            return cast(
                List[Message],
                self.db.query(Message)
                .filter(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.asc(), Message.id.asc())
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error fetching messages for conversation: {str(e)}")
            raise RepositoryException(f"Failed to fetch messages: {str(e)}") from e

    def latest_created_at(self, conversation_id: str) -> Optional[datetime]:
        value = (
            self.db.query(func.max(Message.created_at))
            .filter(Message.conversation_id == conversation_id)
            .scalar()
        )
        return as_utc(value)

    def create_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        message_type: str,
        media_url: Optional[str] = None,
        reply_to_id: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> Message:
        """
        Insert a message with a creation time after every earlier message.

        Clock skew between writers could otherwise order two messages by
        insertion rather than by time.
        """
        created_at = utcnow()
        latest = self.latest_created_at(conversation_id)
        if latest is not None and created_at <= latest:
            created_at = latest + _TICK

        message = self.create(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            type=message_type,
            media_url=media_url,
            reply_to_id=reply_to_id,
            is_read=False,
            client_id=client_id,
            created_at=created_at,
        )
        self.logger.info(
            f"Created message {message.id} in conversation {conversation_id}",
            extra={"conversation_id": conversation_id, "sender_id": sender_id},
        )
        return message

    def find_unread_for_reader(self, conversation_id: str, reader_id: str) -> List[Message]:
        return cast(
            List[Message],
            self.db.query(Message)
            .filter(
                Message.conversation_id == conversation_id,
                Message.sender_id != reader_id,
                Message.is_read.is_(False),
            )
            .order_by(Message.created_at.asc())
            .all(),
        )

    def mark_read(self, conversation_id: str, reader_id: str) -> List[Message]:
        """
        Set ``is_read`` on every message not sent by ``reader_id``.

        Returns the messages that changed; already-read messages are untouched.
        """
        try:
            messages = self.find_unread_for_reader(conversation_id, reader_id)
            for message in messages:
                message.is_read = True
            self.db.flush()
            if messages:
                self.logger.info(
                    f"Marked {len(messages)} messages as read for user {reader_id}",
                    extra={"conversation_id": conversation_id},
                )
            return messages
        except SQLAlchemyError as e:
            self.logger.error(f"Error marking messages as read: {str(e)}")
            raise RepositoryException(f"Failed to mark messages as read: {str(e)}") from e

    def count_unread(self, conversation_ids: Sequence[str], user_id: str) -> Dict[str, int]:
        """Unread messages from the other participant, per conversation."""
        if not conversation_ids:
            return {}
        try:
            rows = (
                self.db.query(Message.conversation_id, func.count(Message.id))
                .filter(
                    Message.conversation_id.in_(list(conversation_ids)),
                    Message.sender_id != user_id,
                    Message.is_read.is_(False),
                )
                .group_by(Message.conversation_id)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error counting unread messages: {str(e)}")
            raise RepositoryException(f"Failed to count unread messages: {str(e)}") from e
        counts = {conversation_id: 0 for conversation_id in conversation_ids}
        counts.update({conversation_id: int(count) for conversation_id, count in rows})
        return counts
