# clubspace/models/social.py
"""Social graph and engagement rows: follows, blocks, reactions, notifications."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text, UniqueConstraint

from ..core.ids import generate_id
from ..database import Base

FOLLOW_STATUS_PENDING = "pending"
FOLLOW_STATUS_ACCEPTED = "accepted"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Follow(Base):
    """Directed follow edge; at most one per (follower, following)."""

    __tablename__ = "follows"

    id = Column(String(36), primary_key=True, default=generate_id)
    follower_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    following_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(16), nullable=False, default=FOLLOW_STATUS_ACCEPTED)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (
        UniqueConstraint("follower_id", "following_id", name="uq_follows_pair"),
        Index("idx_follows_following_status", "following_id", "status"),
    )


class Block(Base):
    __tablename__ = "blocks"

    id = Column(String(36), primary_key=True, default=generate_id)
    blocker_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    blocked_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (UniqueConstraint("blocker_id", "blocked_id", name="uq_blocks_pair"),)


class Reaction(Base):
    """
    One reaction per (post, user).

    Posts live in the feed service, so ``post_id`` is an opaque reference.
    """

    __tablename__ = "reactions"

    id = Column(String(36), primary_key=True, default=generate_id)
    post_id = Column(String(36), nullable=False)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    reaction_type = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (UniqueConstraint("post_id", "user_id", name="uq_reactions_post_user"),)


class Notification(Base):
    """User-scoped notification created by follow/reaction side effects."""

    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    actor_id = Column(String(36), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    type = Column(String(16), nullable=False)  # follow | like | comment | system
    title = Column(String(255), nullable=True)
    message = Column(Text, nullable=False)
    resource_id = Column(String(36), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (Index("idx_notifications_user_read", "user_id", "is_read"),)
