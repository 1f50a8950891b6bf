"""
Pydantic entities for the ClubSpace messaging client.

These are the only shapes that cross the gateway boundary: backend rows are
mapped to them once, inside the gateway.
"""

from .client import ActionResult, BadgeCounts, ConversationDetail, Notice
from .conversation import (
    CONVERSATION_STATUSES,
    Conversation,
    ConversationStatus,
    ConversationView,
    InboxTab,
    normalize_pair,
)
from .diagnostics import DiagnosticsReport, SubscriptionStatus
from .message import MESSAGE_TYPES, Message, MessagePreview, MessageType, preview_text
from .profile import Profile, ProfileSummary
from .realtime import ChangeEvent, ChangeFeedSpec, ChangeType
from .social import (
    REACTION_TYPES,
    Block,
    Follow,
    FollowState,
    FollowStatus,
    Notification,
    NotificationType,
    Reaction,
    ReactionType,
)

__all__ = [
    "ActionResult",
    "BadgeCounts",
    "Block",
    "CONVERSATION_STATUSES",
    "ChangeEvent",
    "ChangeFeedSpec",
    "ChangeType",
    "Conversation",
    "ConversationStatus",
    "ConversationDetail",
    "ConversationView",
    "DiagnosticsReport",
    "Follow",
    "FollowState",
    "FollowStatus",
    "InboxTab",
    "MESSAGE_TYPES",
    "Message",
    "MessagePreview",
    "MessageType",
    "Notice",
    "Notification",
    "NotificationType",
    "Profile",
    "ProfileSummary",
    "REACTION_TYPES",
    "Reaction",
    "ReactionType",
    "SubscriptionStatus",
    "normalize_pair",
]
