# clubspace/repositories/conversation_repository.py
"""
Conversation Repository for direct messaging.

Pairs are stored sorted, so every lookup normalizes the two ids first and a
single equality match finds the row regardless of who asks.
"""

from datetime import datetime
from typing import List, Optional, Tuple, cast

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import DuplicateRowException, RepositoryException
from ..core.time_utils import as_utc
from ..models.conversation import Conversation
from ..schemas.conversation import normalize_pair
from .base_repository import BaseRepository


class ConversationRepository(BaseRepository[Conversation]):
    """
    Repository for Conversation entity operations.

    Handles:
    - Finding or creating the conversation for a user pair
    - Listing a user's conversations for one inbox tab
    - Per-user soft delete and revive
    - Denormalized last-message preview updates
    """

    def __init__(self, db: Session):
        super().__init__(db, Conversation)

    def find_by_pair(self, user_a: str, user_b: str) -> Optional[Conversation]:
        participant_1, participant_2 = normalize_pair(user_a, user_b)
        return self.find_one_by(participant_1=participant_1, participant_2=participant_2)

    def get_or_create(
        self, user_a: str, user_b: str, status: str = "active"
    ) -> Tuple[Conversation, bool]:
        """
        Get an existing conversation or create a new one.

        Safe to call concurrently from several clients: losing the insert race
        on the unique pair index re-reads the winner's row.

        Returns:
            Tuple of (conversation, created) where created is True if new
        """
        existing = self.find_by_pair(user_a, user_b)
        if existing:
            return existing, False

        participant_1, participant_2 = normalize_pair(user_a, user_b)
        try:
            conversation = self.create(
                participant_1=participant_1,
                participant_2=participant_2,
                status=status,
                deleted_for=[],
            )
        except DuplicateRowException:
            winner = self.find_by_pair(user_a, user_b)
            if winner is None:
                raise
            self.logger.info(
                "Conversation insert lost race, returning existing row",
                extra={"conversation_id": winner.id},
            )
            return winner, False
        return conversation, True

    def find_for_user(self, user_id: str, status: Optional[str] = None) -> List[Conversation]:
        """
        Conversations the user participates in and has not hidden.

        Ordered by most recent activity first, ties by id. ``deleted_for`` is a
        JSON array, so the hidden filter runs after the query.
        """
        try:
            query = self.db.query(Conversation).filter(
                or_(
                    Conversation.participant_1 == user_id,
                    Conversation.participant_2 == user_id,
                )
            )
            if status is not None:
                query = query.filter(Conversation.status == status)
            query = query.order_by(
                func.coalesce(Conversation.last_message_at, Conversation.created_at).desc(),
                Conversation.id.asc(),
            )
            rows = cast(List[Conversation], query.all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing conversations for user: {str(e)}")
            raise RepositoryException(f"Failed to list conversations: {str(e)}") from e
        return [row for row in rows if user_id not in (row.deleted_for or [])]

    def update_status(self, conversation: Conversation, status: str) -> Conversation:
        conversation.status = status
        self.db.flush()
        return conversation

    def hide_for(self, conversation: Conversation, user_id: str) -> bool:
        """Add ``user_id`` to ``deleted_for``. Returns False if already hidden."""
        current = list(conversation.deleted_for or [])
        if user_id in current:
            return False
        # Reassign so the JSON column is marked dirty
        conversation.deleted_for = current + [user_id]
        self.db.flush()
        return True

    def reveal_for(self, conversation: Conversation, user_id: str) -> bool:
        current = list(conversation.deleted_for or [])
        if user_id not in current:
            return False
        conversation.deleted_for = [uid for uid in current if uid != user_id]
        self.db.flush()
        return True

    def record_message(
        self, conversation: Conversation, preview: str, sent_at: datetime
    ) -> Conversation:
        """Update the preview fields and revive the conversation for everyone."""
        previous = as_utc(conversation.last_message_at)
        conversation.last_message = preview
        if previous is None or sent_at > previous:
            conversation.last_message_at = sent_at
        conversation.deleted_for = []
        self.db.flush()
        return conversation
