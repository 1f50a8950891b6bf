# clubspace/schemas/requests.py
"""Request bodies of the HTTP surface."""

from typing import Optional

from pydantic import BaseModel, Field

from .message import MessageType
from .profile import ProfileRole


class SignInRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    email: Optional[str] = None


class CreateProfileRequest(BaseModel):
    email: str
    full_name: str
    is_private: bool = False
    role: ProfileRole = "student"
    department: Optional[str] = None
    avatar_url: Optional[str] = None
    id: Optional[str] = None


class StartConversationRequest(BaseModel):
    user_id: str = Field(..., min_length=1, description="The other participant")


class SendMessageRequest(BaseModel):
    content: str = ""
    type: MessageType = "text"
    media_url: Optional[str] = None
    reply_to_id: Optional[str] = None
