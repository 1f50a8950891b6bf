# clubspace/models/profile.py
"""Profile rows: one per ClubSpace account."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, String, Text

from ..core.ids import generate_id
from ..database import Base


class Profile(Base):
    """
    Public profile of a ClubSpace member.

    ``is_private`` gates follows: following a private profile starts as a
    pending request.
    """

    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=generate_id)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(255), nullable=False, default="")
    avatar_url = Column(Text, nullable=True)
    bio = Column(Text, nullable=True)
    department = Column(String(255), nullable=True)
    role = Column(String(16), nullable=False, default="student")  # student | mentor | admin
    is_private = Column(Boolean, nullable=False, default=False)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, full_name={self.full_name!r})>"
