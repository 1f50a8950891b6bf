# clubspace/services/social_service.py
"""
Social graph, reactions and notifications for the signed-in user.

Thin layer over the gateway: it resolves "me" from the session so callers
never pass their own id, and routes notification reads through the unread
tracker so the badge updates optimistically. Errors propagate as
DomainException subclasses.
"""

import logging
from typing import List, Optional

from ..core.config import Settings
from ..core.exceptions import ValidationException
from ..core.session import SessionContext
from ..gateway.base import BackendGateway
from ..schemas.profile import Profile
from ..schemas.social import (
    REACTION_TYPES,
    Block,
    Follow,
    FollowState,
    Notification,
    Reaction,
    ReactionType,
)
from .base import BaseService
from .unread_tracker import UnreadTracker

logger = logging.getLogger(__name__)


class SocialService(BaseService):
    def __init__(
        self,
        gateway: BackendGateway,
        session: SessionContext,
        tracker: UnreadTracker,
        settings: Optional[Settings] = None,
    ) -> None:
        super().__init__(settings)
        self.gateway = gateway
        self.session = session
        self.tracker = tracker

    # Follows

    @BaseService.measure_operation("follow")
    async def follow(self, user_id: str) -> Follow:
        """Follow a profile; private profiles get a pending request."""
        follow = await self.gateway.follow(self.session.require_user(), user_id)
        self.logger.info(f"[SOCIAL] Follow {follow.status}", extra={"following_id": user_id})
        return follow

    async def unfollow(self, user_id: str) -> None:
        await self.gateway.unfollow(self.session.require_user(), user_id)

    async def remove_follower(self, follower_id: str) -> None:
        await self.gateway.remove_follower(self.session.require_user(), follower_id)

    async def follow_status(self, user_id: str) -> FollowState:
        return await self.gateway.get_follow_state(self.session.require_user(), user_id)

    async def followers(self, user_id: Optional[str] = None) -> List[Profile]:
        return await self.gateway.list_followers(user_id or self.session.require_user())

    async def following(self, user_id: Optional[str] = None) -> List[Profile]:
        return await self.gateway.list_following(user_id or self.session.require_user())

    async def follow_requests(self) -> List[Follow]:
        return await self.gateway.list_follow_requests(self.session.require_user())

    async def accept_follow_request(self, follow_id: str) -> Follow:
        return await self.gateway.accept_follow_request(follow_id)

    async def reject_follow_request(self, follow_id: str) -> None:
        await self.gateway.reject_follow_request(follow_id)

    # Blocks

    @BaseService.measure_operation("block")
    async def block(self, user_id: str) -> Block:
        return await self.gateway.block_user(self.session.require_user(), user_id)

    async def unblock(self, user_id: str) -> None:
        await self.gateway.unblock_user(self.session.require_user(), user_id)

    async def blocked(self) -> List[Profile]:
        return await self.gateway.list_blocked(self.session.require_user())

    # Reactions

    async def set_reaction(self, post_id: str, reaction_type: ReactionType) -> Reaction:
        """Set the user's one reaction on a post, replacing any previous one."""
        if reaction_type not in REACTION_TYPES:
            raise ValidationException(
                f"Unknown reaction type: {reaction_type}",
                code="INVALID_REACTION",
                details={"allowed": list(REACTION_TYPES)},
            )
        return await self.gateway.set_reaction(post_id, self.session.require_user(), reaction_type)

    async def remove_reaction(self, post_id: str) -> None:
        await self.gateway.remove_reaction(post_id, self.session.require_user())

    async def my_reaction(self, post_id: str) -> Optional[Reaction]:
        return await self.gateway.get_reaction(post_id, self.session.require_user())

    async def reactions(self, post_id: str) -> List[Reaction]:
        return await self.gateway.list_reactions(post_id)

    # Notifications

    async def notifications(self, page: int = 0) -> List[Notification]:
        size = self.settings.notifications_page_size
        return await self.gateway.list_notifications(
            self.session.require_user(), limit=size, offset=page * size
        )

    async def mark_notification_read(self, notification: Notification) -> None:
        await self.tracker.mark_notification_read(
            notification.id, was_unread=not notification.is_read
        )

    async def mark_all_notifications_read(self) -> List[str]:
        return await self.tracker.mark_all_notifications_read(self.session.require_user())

    async def unread_notifications(self) -> int:
        return await self.tracker.refresh_notification_badge(self.session.require_user())
