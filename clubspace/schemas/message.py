# clubspace/schemas/message.py
"""Message entities and the preview text derived from them."""

from datetime import datetime
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

from ..core.time_utils import as_utc

MessageType = Literal["text", "image", "video", "audio", "post"]

MESSAGE_TYPES: Tuple[str, ...] = ("text", "image", "video", "audio", "post")


class MessagePreview(BaseModel):
    """The replied-to message, resolved one level deep."""

    id: str
    sender_id: str
    content: str = ""
    type: MessageType = "text"
    media_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class Message(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    content: str = ""
    type: MessageType = "text"
    media_url: Optional[str] = None
    reply_to_id: Optional[str] = None
    reply_to: Optional[MessagePreview] = None
    is_read: bool = False
    client_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        return (self.created_at, self.id)

    def is_unread_for(self, user_id: str) -> bool:
        return not self.is_read and self.sender_id != user_id

    def preview(self) -> MessagePreview:
        return MessagePreview(
            id=self.id,
            sender_id=self.sender_id,
            content=self.content,
            type=self.type,
            media_url=self.media_url,
        )


def preview_text(content: str, message_type: str) -> str:
    """Text stored in ``Conversation.last_message`` for a new message."""
    if message_type == "text":
        return content
    return f"Sent a {message_type}"
