# clubspace/schemas/client.py
"""Shapes the messaging client hands to its views."""

from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

from ..core.ids import generate_id
from ..core.time_utils import utcnow
from .conversation import Conversation
from .message import Message
from .profile import ProfileSummary

T = TypeVar("T")


class Notice(BaseModel):
    """Dismissible inline message shown for a failed action."""

    id: str = Field(default_factory=generate_id)
    action: str
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    status_code: int = 500
    created_at: datetime = Field(default_factory=utcnow)


class ActionResult(BaseModel, Generic[T]):
    """
    Outcome of a user action.

    ``value`` is set on success, ``notice`` on failure. ``stale`` marks a
    response that was discarded because the user moved on or signed out meanwhile.
    """

    value: Optional[T] = None
    notice: Optional[Notice] = None
    stale: bool = False

    @property
    def ok(self) -> bool:
        return self.notice is None and not self.stale


class ConversationDetail(BaseModel):
    conversation: Conversation
    other_user: ProfileSummary
    messages: List[Message] = Field(default_factory=list)


class BadgeCounts(BaseModel):
    """Two independent counters: unread messages and unread notifications."""

    messages: int = 0
    notifications: int = 0
