# clubspace/schemas/social.py
"""Follow, block, reaction and notification entities."""

from datetime import datetime
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

from ..core.time_utils import as_utc

FollowStatus = Literal["pending", "accepted"]
NotificationType = Literal["follow", "like", "comment", "system"]
ReactionType = Literal[
    "creative_idea",
    "strong_composition",
    "editing_quality",
    "emotional_impact",
    "needs_improvement",
]

REACTION_TYPES: Tuple[str, ...] = (
    "creative_idea",
    "strong_composition",
    "editing_quality",
    "emotional_impact",
    "needs_improvement",
)


class _Row(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at", check_fields=False)
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class Follow(_Row):
    id: str
    follower_id: str
    following_id: str
    status: FollowStatus = "accepted"
    created_at: datetime


class Block(_Row):
    id: str
    blocker_id: str
    blocked_id: str
    created_at: datetime


class Reaction(_Row):
    id: str
    post_id: str
    user_id: str
    reaction_type: ReactionType
    created_at: datetime


class Notification(_Row):
    id: str
    user_id: str
    actor_id: Optional[str] = None
    type: NotificationType
    title: Optional[str] = None
    message: str
    resource_id: Optional[str] = None
    is_read: bool = False
    created_at: datetime


class FollowState(BaseModel):
    """Relationship of the current user to another profile."""

    following: bool = False
    status: Optional[FollowStatus] = None
    blocked: bool = False
