"""
Database models for the ClubSpace backend platform.

These rows back ``SqlBackendGateway``; the client core only ever sees the
pydantic entities in ``clubspace.schemas``.
"""

from .conversation import Conversation
from .message import Message
from .profile import Profile
from .social import Block, Follow, Notification, Reaction

__all__ = [
    "Block",
    "Conversation",
    "Follow",
    "Message",
    "Notification",
    "Profile",
    "Reaction",
]
