# clubspace/models/conversation.py
"""
Conversation model for direct messaging between two members.

Design decisions:
- One conversation per unordered pair; participants are stored sorted
  (participant_1 < participant_2) and the pair is unique
- Soft delete is per user: ``deleted_for`` lists the participants who hid the
  conversation from their inbox, the row itself is kept for the other one
- ``status`` places the conversation in the Primary (active) or Requests tab
"""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.types import JSON as SAJSON

from ..core.ids import generate_id
from ..database import Base

CONVERSATION_STATUS_ACTIVE = "active"


class Conversation(Base):
    """
    Conversation between two profiles.

    Attributes:
        id: Primary key
        participant_1: Lexicographically smaller participant id
        participant_2: Lexicographically larger participant id
        status: active | request
        last_message: Denormalized preview of the latest message
        last_message_at: When the latest message was sent
        deleted_for: Participant ids that hid this conversation
        created_at: When the conversation was created
    """

    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=generate_id)
    participant_1 = Column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    participant_2 = Column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    status = Column(String(16), nullable=False, default=CONVERSATION_STATUS_ACTIVE)
    last_message = Column(Text, nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    # Array of participant ids
    deleted_for = Column(SAJSON, nullable=False, default=list)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    messages = relationship(
        "Message",
        back_populates="conversation",
        order_by="Message.created_at",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("uq_conversations_pair", "participant_1", "participant_2", unique=True),
        Index("idx_conversations_participant_2", "participant_2"),
        Index("idx_conversations_last_message", "last_message_at"),
        CheckConstraint("participant_1 < participant_2", name="ck_conversations_sorted_pair"),
        CheckConstraint("status IN ('active', 'request')", name="ck_conversations_status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Conversation(id={self.id}, participants=({self.participant_1}, "
            f"{self.participant_2}), status={self.status})>"
        )

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.participant_1, self.participant_2)
