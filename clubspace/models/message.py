# clubspace/models/message.py
"""
Message model for direct conversations.

Content, type and media are immutable after insert; ``is_read`` is the only
column that changes, and only the non-sending participant flips it.
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship

from ..core.ids import generate_id
from ..database import Base

MESSAGE_TYPE_TEXT = "text"


class Message(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=generate_id)
    conversation_id = Column(
        String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    sender_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False, default="")
    type = Column(String(16), nullable=False, default=MESSAGE_TYPE_TEXT)
    media_url = Column(Text, nullable=True)
    reply_to_id = Column(String(36), ForeignKey("messages.id", ondelete="SET NULL"), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    # Local id of the optimistic copy on the sending client, echoed back in change events
    client_id = Column(String(64), nullable=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    conversation = relationship("Conversation", back_populates="messages")
    # One level only; the replied-to message's own reply_to is never loaded
    reply_to = relationship("Message", remote_side=[id], uselist=False, lazy="joined", join_depth=1)

    __table_args__ = (
        Index("idx_messages_conversation_created", "conversation_id", "created_at"),
        Index("idx_messages_unread", "conversation_id", "is_read"),
    )

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, conversation={self.conversation_id}, type={self.type})>"
