# clubspace/repositories/social_repository.py
"""
Repositories for the social graph: follows, blocks, reactions, notifications.
"""

from typing import List, Optional, Tuple, cast

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.social import FOLLOW_STATUS_ACCEPTED, Block, Follow, Notification, Reaction
from .base_repository import BaseRepository


class FollowRepository(BaseRepository[Follow]):
    def __init__(self, db: Session):
        super().__init__(db, Follow)

    def find_edge(self, follower_id: str, following_id: str) -> Optional[Follow]:
        return self.find_one_by(follower_id=follower_id, following_id=following_id)

    def followers_of(self, user_id: str, status: str = FOLLOW_STATUS_ACCEPTED) -> List[Follow]:
        return cast(
            List[Follow],
            self.db.query(Follow)
            .filter(Follow.following_id == user_id, Follow.status == status)
            .order_by(Follow.created_at.desc())
            .all(),
        )

    def following_of(self, user_id: str) -> List[Follow]:
        return cast(
            List[Follow],
            self.db.query(Follow)
            .filter(Follow.follower_id == user_id, Follow.status == FOLLOW_STATUS_ACCEPTED)
            .order_by(Follow.created_at.desc())
            .all(),
        )

    def delete_between(self, user_a: str, user_b: str) -> List[Follow]:
        """Remove follow edges in both directions; returns the removed rows."""
        try:
            edges = cast(
                List[Follow],
                self.db.query(Follow)
                .filter(
                    or_(
                        and_(Follow.follower_id == user_a, Follow.following_id == user_b),
                        and_(Follow.follower_id == user_b, Follow.following_id == user_a),
                    )
                )
                .all(),
            )
            for edge in edges:
                self.db.delete(edge)
            self.db.flush()
            return edges
        except SQLAlchemyError as e:
            self.logger.error(f"Error removing follow edges: {str(e)}")
            raise RepositoryException(f"Failed to remove follow edges: {str(e)}") from e


class BlockRepository(BaseRepository[Block]):
    def __init__(self, db: Session):
        super().__init__(db, Block)

    def find_block(self, blocker_id: str, blocked_id: str) -> Optional[Block]:
        return self.find_one_by(blocker_id=blocker_id, blocked_id=blocked_id)

    def is_blocked_between(self, user_a: str, user_b: str) -> bool:
        return (
            self.db.query(Block)
            .filter(
                or_(
                    and_(Block.blocker_id == user_a, Block.blocked_id == user_b),
                    and_(Block.blocker_id == user_b, Block.blocked_id == user_a),
                )
            )
            .first()
            is not None
        )


class ReactionRepository(BaseRepository[Reaction]):
    def __init__(self, db: Session):
        super().__init__(db, Reaction)

    def find_for_user(self, post_id: str, user_id: str) -> Optional[Reaction]:
        return self.find_one_by(post_id=post_id, user_id=user_id)

    def find_for_post(self, post_id: str) -> List[Reaction]:
        return cast(
            List[Reaction],
            self.db.query(Reaction)
            .filter(Reaction.post_id == post_id)
            .order_by(Reaction.created_at.asc())
            .all(),
        )

    def replace(
        self, post_id: str, user_id: str, reaction_type: str
    ) -> Tuple[Reaction, Optional[Reaction]]:
        """
        Delete any prior reaction by the user on the post, then insert the new one.

        Runs inside the caller's transaction so readers never see zero or two rows.

        Returns:
            Tuple of (new reaction, removed reaction or None)
        """
        previous = self.find_for_user(post_id, user_id)
        if previous is not None:
            self.delete_entity(previous)
        reaction = self.create(post_id=post_id, user_id=user_id, reaction_type=reaction_type)
        return reaction, previous


class NotificationRepository(BaseRepository[Notification]):
    def __init__(self, db: Session):
        super().__init__(db, Notification)

    def find_for_user(self, user_id: str, limit: int = 20, offset: int = 0) -> List[Notification]:
        try:
            return cast(
                List[Notification],
                self.db.query(Notification)
                .filter(Notification.user_id == user_id)
                .order_by(Notification.created_at.desc(), Notification.id.asc())
                .offset(offset)
                .limit(limit)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error fetching notifications: {str(e)}")
            raise RepositoryException(f"Failed to fetch notifications: {str(e)}") from e

    def count_unread(self, user_id: str) -> int:
        return self.count(user_id=user_id, is_read=False)

    def mark_all_read(self, user_id: str) -> List[Notification]:
        rows = self.find_by(user_id=user_id, is_read=False)
        for row in rows:
            row.is_read = True
        self.db.flush()
        return rows
