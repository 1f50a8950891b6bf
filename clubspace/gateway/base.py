# clubspace/gateway/base.py
"""
Backend gateway contract.

The messaging core talks to the hosted platform (database, auth, realtime,
media CDN) only through this interface. Every method either returns mapped
entities from ``clubspace.schemas`` or raises a ``DomainException`` subclass:

- UnauthorizedException: no session, or the platform refused access
- NotFoundException: the id no longer resolves
- NetworkFailureException: transient I/O failure
- ValidationException: the request was rejected before reaching the platform
- ServiceException: any other platform failure
"""

from abc import ABC, abstractmethod
import asyncio
from enum import Enum
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from ..core.ids import generate_id
from ..schemas.conversation import Conversation, ConversationStatus
from ..schemas.message import Message, MessageType
from ..schemas.profile import Profile
from ..schemas.realtime import ChangeEvent, ChangeFeedSpec
from ..schemas.social import (
    Block,
    Follow,
    FollowState,
    Notification,
    Reaction,
    ReactionType,
)

logger = logging.getLogger(__name__)

EventHandler = Callable[[ChangeEvent], Awaitable[None]]
ErrorHandler = Callable[["Subscription", BaseException], Awaitable[None]]


class SubscriptionState(str, Enum):
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    ERRORED = "errored"
    CLOSED = "closed"


class Subscription:
    """
    Handle for one live change-feed subscription.

    Owned by whoever called ``subscribe``; released with ``unsubscribe``.
    """

    def __init__(self, spec: ChangeFeedSpec, topic: str) -> None:
        self.id = generate_id()
        self.spec = spec
        self.topic = topic
        self.state = SubscriptionState.CONNECTING
        self.error: Optional[BaseException] = None
        self.delivered = 0
        self.ready = asyncio.Event()
        self.task: Optional["asyncio.Task[None]"] = None

    @property
    def name(self) -> str:
        return self.spec.label

    @property
    def is_active(self) -> bool:
        return self.state in (SubscriptionState.CONNECTING, SubscriptionState.SUBSCRIBED)

    def __repr__(self) -> str:
        return f"<Subscription(name={self.name}, state={self.state.value})>"


class BackendGateway(ABC):
    """Abstract async interface to the backend platform."""

    # Conversations

    @abstractmethod
    async def list_conversations(
        self, user_id: str, status: Optional[ConversationStatus] = None
    ) -> List[Conversation]:
        """Conversations of ``user_id`` not hidden for them, most recent first."""

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Conversation:
        """Raises NotFoundException when the id does not resolve."""

    @abstractmethod
    async def get_or_create_conversation(
        self,
        user_id: str,
        other_user_id: str,
        initial_status: ConversationStatus = "active",
    ) -> Conversation:
        """
        Return the pair's conversation, creating it if needed.

        Idempotent and order-independent. If ``user_id`` had hidden an existing
        conversation, it is restored for them.
        """

    @abstractmethod
    async def update_conversation_status(
        self, conversation_id: str, status: ConversationStatus
    ) -> Conversation:
        pass

    @abstractmethod
    async def soft_delete_conversation(self, conversation_id: str, user_id: str) -> Conversation:
        pass

    # Messages

    @abstractmethod
    async def list_messages(self, conversation_id: str) -> List[Message]:
        """Messages oldest first, each with ``reply_to`` resolved one level."""

    @abstractmethod
    async def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        message_type: MessageType = "text",
        media_url: Optional[str] = None,
        reply_to_id: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> Message:
        """
        Insert a message.

        Side effects: updates the conversation's ``last_message`` and
        ``last_message_at`` and clears ``deleted_for``. ``client_id`` is
        stored and echoed in the change event so the sender can match the
        push to its optimistic copy.
        """

    @abstractmethod
    async def mark_read(self, conversation_id: str, reader_id: str) -> List[str]:
        """Mark every message not sent by ``reader_id`` read; returns the changed ids."""

    @abstractmethod
    async def count_unread(
        self, conversation_ids: Sequence[str], user_id: str
    ) -> Dict[str, int]:
        pass

    # Profiles

    @abstractmethod
    async def get_profile(self, user_id: str) -> Profile:
        pass

    @abstractmethod
    async def get_profiles(self, user_ids: Sequence[str]) -> Dict[str, Profile]:
        pass

    # Follows and blocks

    @abstractmethod
    async def follow(self, follower_id: str, following_id: str) -> Follow:
        pass

    @abstractmethod
    async def unfollow(self, follower_id: str, following_id: str) -> None:
        pass

    @abstractmethod
    async def remove_follower(self, user_id: str, follower_id: str) -> None:
        """Remove ``follower_id`` from the followers of ``user_id``."""

    @abstractmethod
    async def get_follow_state(self, user_id: str, other_user_id: str) -> FollowState:
        pass

    @abstractmethod
    async def list_followers(self, user_id: str) -> List[Profile]:
        pass

    @abstractmethod
    async def list_following(self, user_id: str) -> List[Profile]:
        pass

    @abstractmethod
    async def list_follow_requests(self, user_id: str) -> List[Follow]:
        pass

    @abstractmethod
    async def accept_follow_request(self, follow_id: str) -> Follow:
        pass

    @abstractmethod
    async def reject_follow_request(self, follow_id: str) -> None:
        pass

    @abstractmethod
    async def block_user(self, blocker_id: str, blocked_id: str) -> Block:
        pass

    @abstractmethod
    async def unblock_user(self, blocker_id: str, blocked_id: str) -> None:
        pass

    @abstractmethod
    async def list_blocked(self, blocker_id: str) -> List[Profile]:
        pass

    # Reactions

    @abstractmethod
    async def set_reaction(
        self, post_id: str, user_id: str, reaction_type: ReactionType
    ) -> Reaction:
        """Replace any prior reaction by the user on the post, atomically."""

    @abstractmethod
    async def remove_reaction(self, post_id: str, user_id: str) -> None:
        pass

    @abstractmethod
    async def get_reaction(self, post_id: str, user_id: str) -> Optional[Reaction]:
        pass

    @abstractmethod
    async def list_reactions(self, post_id: str) -> List[Reaction]:
        pass

    # Notifications

    @abstractmethod
    async def list_notifications(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> List[Notification]:
        pass

    @abstractmethod
    async def mark_notification_read(self, notification_id: str) -> Notification:
        pass

    @abstractmethod
    async def mark_all_notifications_read(self, user_id: str) -> List[str]:
        pass

    @abstractmethod
    async def count_unread_notifications(self, user_id: str) -> int:
        pass

    # Realtime

    @abstractmethod
    async def subscribe(
        self,
        spec: ChangeFeedSpec,
        handler: EventHandler,
        on_error: Optional[ErrorHandler] = None,
    ) -> Subscription:
        """
        Start delivering change events matching ``spec`` to ``handler``.

        Returns once the subscription is live, so events committed afterwards
        are delivered.
        """

    @abstractmethod
    async def unsubscribe(self, subscription: Subscription) -> None:
        pass

    @abstractmethod
    def subscriptions(self) -> List[Subscription]:
        """Subscriptions currently held open by this gateway."""

    # Media and health

    @abstractmethod
    async def upload_media(self, data: bytes, filename: str, content_type: str) -> str:
        """Upload through the media CDN and return a durable URL."""

    @abstractmethod
    async def ping(self) -> bool:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass
