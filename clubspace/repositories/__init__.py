"""
Repository layer for the ClubSpace backend platform.

Repositories wrap SQLAlchemy queries and translate failures into
RepositoryException; only ``SqlBackendGateway`` uses them.
"""

from .base_repository import BaseRepository
from .conversation_repository import ConversationRepository
from .message_repository import MessageRepository
from .profile_repository import ProfileRepository
from .social_repository import (
    BlockRepository,
    FollowRepository,
    NotificationRepository,
    ReactionRepository,
)

__all__ = [
    "BaseRepository",
    "BlockRepository",
    "ConversationRepository",
    "FollowRepository",
    "MessageRepository",
    "NotificationRepository",
    "ProfileRepository",
    "ReactionRepository",
]
