# clubspace/schemas/conversation.py
"""
Conversation entities.

``Conversation`` is the single mapped shape of a backend conversation row;
the gateway builds it once with ``model_validate(row)``.
"""

from datetime import datetime
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..core.time_utils import as_utc
from .profile import ProfileSummary

ConversationStatus = Literal["active", "request"]
InboxTab = Literal["active", "request"]

CONVERSATION_STATUSES: Tuple[str, ...] = ("active", "request")


def normalize_pair(user_a: str, user_b: str) -> Tuple[str, str]:
    """Return the participant pair in stored (sorted) order."""
    if user_a == user_b:
        raise ValueError("A conversation needs two distinct participants")
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


class Conversation(BaseModel):
    id: str
    participant_1: str
    participant_2: str
    status: ConversationStatus = "active"
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    created_at: datetime
    deleted_for: List[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    @field_validator("last_message_at", "created_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @field_validator("deleted_for", mode="before")
    @classmethod
    def _deleted_for_list(cls, value: Optional[List[str]]) -> List[str]:
        return list(value or [])

    @model_validator(mode="after")
    def _check_participants(self) -> "Conversation":
        if self.participant_1 == self.participant_2:
            raise ValueError("participants must be distinct")
        strangers = set(self.deleted_for) - {self.participant_1, self.participant_2}
        if strangers:
            raise ValueError(f"deleted_for contains non-participants: {sorted(strangers)}")
        return self

    @property
    def participants(self) -> Tuple[str, str]:
        return (self.participant_1, self.participant_2)

    @property
    def activity_at(self) -> datetime:
        """Timestamp the inbox sorts by."""
        return self.last_message_at or self.created_at

    def is_participant(self, user_id: Optional[str]) -> bool:
        return user_id in self.participants

    def other_participant(self, user_id: str) -> str:
        if user_id == self.participant_1:
            return self.participant_2
        if user_id == self.participant_2:
            return self.participant_1
        raise ValueError(f"{user_id} is not a participant of conversation {self.id}")

    def is_hidden_for(self, user_id: str) -> bool:
        return user_id in self.deleted_for


class ConversationView(BaseModel):
    """One inbox entry: the conversation plus what the list row displays."""

    conversation: Conversation
    other_user: ProfileSummary
    unread_count: int = 0
    pending: bool = False

    @property
    def id(self) -> str:
        return self.conversation.id
