# clubspace/schemas/profile.py
"""Profile entities as seen by the messaging client."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from ..core.time_utils import as_utc

ProfileRole = Literal["student", "mentor", "admin"]


class ProfileSummary(BaseModel):
    """Minimal profile info shown next to a conversation."""

    id: str
    full_name: str = ""
    avatar_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class Profile(ProfileSummary):
    email: Optional[str] = None
    bio: Optional[str] = None
    department: Optional[str] = None
    role: ProfileRole = "student"
    is_private: bool = False
    created_at: Optional[datetime] = None

    @field_validator("created_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    def summary(self) -> ProfileSummary:
        return ProfileSummary(id=self.id, full_name=self.full_name, avatar_url=self.avatar_url)
