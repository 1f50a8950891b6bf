# clubspace/gateway/sql_gateway.py
"""
SQL implementation of the backend gateway.

``BackendPlatform`` stands in for the hosted platform: one database engine,
one change feed and one media uploader shared by every connected client.
Each client gets its own ``SqlBackendGateway`` bound to its SessionContext.

Design decisions:
- Blocking SQLAlchemy work runs in ``asyncio.to_thread``; a platform-wide
  asyncio.Lock serializes units of work, so commit order is event order
- One session per operation; change events are published after commit
- Access rules emulate row-level security: no session means Unauthorized,
  and conversation-scoped reads/writes by non-participants are Unauthorized
- Rows are mapped to ``clubspace.schemas`` entities inside the session,
  never at call sites
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import (
    ConflictException,
    DomainException,
    DuplicateRowException,
    NetworkFailureException,
    NotFoundException,
    RepositoryException,
    ServiceException,
    UnauthorizedException,
    ValidationException,
)
from ..core.ids import generate_id
from ..core.session import SessionContext
from ..database import create_backend_engine, create_session_factory, init_schema
from ..integrations.media_uploader import MediaUploader, create_media_uploader
from ..models.conversation import Conversation as ConversationRow
from ..models.social import FOLLOW_STATUS_ACCEPTED, FOLLOW_STATUS_PENDING
from ..repositories import (
    BlockRepository,
    ConversationRepository,
    FollowRepository,
    MessageRepository,
    NotificationRepository,
    ProfileRepository,
    ReactionRepository,
)
from ..schemas.conversation import CONVERSATION_STATUSES, Conversation, ConversationStatus
from ..schemas.message import MESSAGE_TYPES, Message, MessageType, preview_text
from ..schemas.profile import Profile
from ..schemas.realtime import ChangeEvent, ChangeFeedSpec
from ..schemas.social import (
    REACTION_TYPES,
    Block,
    Follow,
    FollowState,
    Notification,
    Reaction,
    ReactionType,
)
from ..services.base import BaseService
from .base import BackendGateway, ErrorHandler, EventHandler, Subscription, SubscriptionState
from .change_feed import ChangeFeed, create_change_feed
from .events import build_change_event, fanout_topics, row_to_record, topic_for_spec

logger = logging.getLogger(__name__)

R = TypeVar("R")

# (event, conversation participants) pairs collected during a unit of work
PendingEvents = List[Tuple[ChangeEvent, Tuple[str, ...]]]

USER_SCOPED_COLUMNS = ("user_id", "participant_id", "follower_id", "following_id")


class BackendPlatform:
    """
    Shared backend state: database, change feed and media uploader.

    Usage:
        platform = BackendPlatform.from_settings(settings)
        gateway = platform.gateway(session_context)
    """

    def __init__(
        self,
        engine: Engine,
        change_feed: ChangeFeed,
        media_uploader: MediaUploader,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or default_settings
        self.engine = engine
        self.session_factory = create_session_factory(engine)
        self.change_feed = change_feed
        self.media_uploader = media_uploader
        self.lock = asyncio.Lock()
        self._gateways: List["SqlBackendGateway"] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        change_feed: Optional[ChangeFeed] = None,
        media_uploader: Optional[MediaUploader] = None,
    ) -> "BackendPlatform":
        engine = create_backend_engine(settings)
        init_schema(engine)
        return cls(
            engine,
            change_feed or create_change_feed(settings),
            media_uploader or create_media_uploader(settings),
            settings=settings,
        )

    def gateway(self, session: SessionContext) -> "SqlBackendGateway":
        gateway = SqlBackendGateway(self, session)
        self._gateways.append(gateway)
        return gateway

    async def run(
        self, operation_name: str, work: Callable[[Session, PendingEvents], R]
    ) -> R:
        """
        Run one unit of work in a worker thread and publish its events.

        ``work`` receives a fresh session and a list to append change events
        to. The session is committed when ``work`` returns; events are
        published only after that commit succeeds.
        """
        async with self.lock:
            events: PendingEvents = []
            try:
                result = await asyncio.to_thread(self._in_session, work, events)
            except DomainException:
                raise
            except RepositoryException as e:
                raise self._map_repository_error(operation_name, e) from e
            except OperationalError as e:
                logger.error(f"[GATEWAY] {operation_name} failed to reach the database: {e}")
                raise NetworkFailureException(
                    "The backend is unreachable", code="DATABASE_UNAVAILABLE"
                ) from e
            except SQLAlchemyError as e:
                logger.error(f"[GATEWAY] {operation_name} failed: {e}")
                raise ServiceException(
                    f"Database operation failed: {operation_name}", code="DATABASE_ERROR"
                ) from e
            for event, participants in events:
                topics = fanout_topics(
                    self.settings.realtime_channel_prefix, event, participants
                )
                await self.change_feed.publish_many(topics, event)
            return result

    def _in_session(self, work: Callable[[Session, PendingEvents], R], events: PendingEvents) -> R:
        with self.session_factory() as db:
            try:
                result = work(db, events)
                db.commit()
                return result
            except Exception:
                db.rollback()
                events.clear()
                raise

    @staticmethod
    def _map_repository_error(operation_name: str, error: RepositoryException) -> DomainException:
        if isinstance(error, DuplicateRowException):
            logger.info(f"[GATEWAY] {operation_name} hit a uniqueness constraint")
            return ConflictException("The record already exists", code="DUPLICATE")
        if isinstance(error.__cause__, OperationalError):
            logger.error(f"[GATEWAY] {operation_name} failed to reach the database: {error}")
            return NetworkFailureException(
                "The backend is unreachable", code="DATABASE_UNAVAILABLE"
            )
        logger.error(f"[GATEWAY] {operation_name} failed: {error}")
        return ServiceException(str(error), code="REPOSITORY_ERROR")

    # Platform-side provisioning, outside any user's session

    async def create_profile(
        self,
        email: str,
        full_name: str,
        *,
        is_private: bool = False,
        role: str = "student",
        department: Optional[str] = None,
        avatar_url: Optional[str] = None,
        profile_id: Optional[str] = None,
    ) -> Profile:
        def work(db: Session, events: PendingEvents) -> Profile:
            row = ProfileRepository(db).create(
                id=profile_id or generate_id(),
                email=email,
                full_name=full_name,
                is_private=is_private,
                role=role,
                department=department,
                avatar_url=avatar_url,
            )
            return Profile.model_validate(row)

        return await self.run("create_profile", work)

    async def emit_notification(
        self,
        user_id: str,
        notification_type: str,
        message: str,
        *,
        actor_id: Optional[str] = None,
        title: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> Notification:
        """Insert a notification the way the platform's triggers do."""

        def work(db: Session, events: PendingEvents) -> Notification:
            return _insert_notification(
                db, events, user_id, notification_type, message, actor_id, title, resource_id
            )

        return await self.run("emit_notification", work)

    async def ping(self) -> bool:
        def work(db: Session, events: PendingEvents) -> bool:
            db.execute(text("SELECT 1"))
            return True

        try:
            return await self.run("ping", work)
        except DomainException as e:
            logger.warning(f"[GATEWAY] Database ping failed: {e.message}")
            return False

    async def close(self) -> None:
        for gateway in list(self._gateways):
            await gateway.close()
        await self.change_feed.close()
        await self.media_uploader.aclose()
        self.engine.dispose()
        logger.info("[GATEWAY] Backend platform closed")


def _insert_notification(
    db: Session,
    events: PendingEvents,
    user_id: str,
    notification_type: str,
    message: str,
    actor_id: Optional[str] = None,
    title: Optional[str] = None,
    resource_id: Optional[str] = None,
) -> Notification:
    row = NotificationRepository(db).create(
        user_id=user_id,
        actor_id=actor_id,
        type=notification_type,
        title=title,
        message=message,
        resource_id=resource_id,
        is_read=False,
    )
    events.append((build_change_event("notifications", "INSERT", row_to_record(row)), ()))
    return Notification.model_validate(row)


def _conversation_participants(row: ConversationRow) -> Tuple[str, ...]:
    return (str(row.participant_1), str(row.participant_2))


class SqlBackendGateway(BaseService, BackendGateway):
    """One client's connection to the backend platform."""

    def __init__(self, platform: BackendPlatform, session: SessionContext) -> None:
        super().__init__(platform.settings)
        self.platform = platform
        self.session = session
        self._subscriptions: Dict[str, Subscription] = {}

    # Access checks

    def _viewer(self) -> str:
        return self.session.require_user()

    def _require_self(self, user_id: str) -> str:
        viewer = self._viewer()
        if user_id != viewer:
            raise UnauthorizedException(
                "Operation not permitted for another user",
                code="RLS_DENIED",
                details={"user_id": user_id},
            )
        return viewer

    @staticmethod
    def _load_conversation(db: Session, conversation_id: str, viewer: str) -> ConversationRow:
        row = ConversationRepository(db).get_by_id(conversation_id)
        if row is None:
            raise NotFoundException(
                "Conversation not found",
                code="CONVERSATION_NOT_FOUND",
                details={"conversation_id": conversation_id},
            )
        if not row.is_participant(viewer):
            raise UnauthorizedException(
                "Not a participant of this conversation",
                code="RLS_DENIED",
                details={"conversation_id": conversation_id},
            )
        return row

    @staticmethod
    def _conversation_event(
        events: PendingEvents,
        row: ConversationRow,
        change_type: str = "UPDATE",
        old_record: Optional[Dict[str, Any]] = None,
    ) -> None:
        events.append(
            (
                build_change_event("conversations", change_type, row_to_record(row), old_record),
                _conversation_participants(row),
            )
        )

    # Conversations

    @BaseService.measure_operation("list_conversations")
    async def list_conversations(
        self, user_id: str, status: Optional[ConversationStatus] = None
    ) -> List[Conversation]:
        self._require_self(user_id)

        def work(db: Session, events: PendingEvents) -> List[Conversation]:
            rows = ConversationRepository(db).find_for_user(user_id, status)
            return [Conversation.model_validate(row) for row in rows]

        return await self.platform.run("list_conversations", work)

    @BaseService.measure_operation("get_conversation")
    async def get_conversation(self, conversation_id: str) -> Conversation:
        viewer = self._viewer()

        def work(db: Session, events: PendingEvents) -> Conversation:
            return Conversation.model_validate(self._load_conversation(db, conversation_id, viewer))

        return await self.platform.run("get_conversation", work)

    @BaseService.measure_operation("get_or_create_conversation")
    async def get_or_create_conversation(
        self,
        user_id: str,
        other_user_id: str,
        initial_status: ConversationStatus = "active",
    ) -> Conversation:
        self._require_self(user_id)
        if user_id == other_user_id:
            raise ValidationException("Cannot start a conversation with yourself", code="SELF_CHAT")
        if initial_status not in CONVERSATION_STATUSES:
            raise ValidationException(f"Unknown conversation status: {initial_status}")

        def work(db: Session, events: PendingEvents) -> Conversation:
            if ProfileRepository(db).get_by_id(other_user_id) is None:
                raise NotFoundException(
                    "User not found", code="PROFILE_NOT_FOUND", details={"user_id": other_user_id}
                )
            if BlockRepository(db).is_blocked_between(user_id, other_user_id):
                raise UnauthorizedException("Messaging is blocked", code="BLOCKED")

            repo = ConversationRepository(db)
            row, created = repo.get_or_create(user_id, other_user_id, status=initial_status)
            if created:
                self._conversation_event(events, row, "INSERT")
                self.logger.info(
                    "[GATEWAY] Conversation created",
                    extra={"conversation_id": row.id, "status": row.status},
                )
            else:
                old_record = row_to_record(row)
                if repo.reveal_for(row, user_id):
                    self._conversation_event(events, row, old_record=old_record)
            return Conversation.model_validate(row)

        return await self.platform.run("get_or_create_conversation", work)

    @BaseService.measure_operation("update_conversation_status")
    async def update_conversation_status(
        self, conversation_id: str, status: ConversationStatus
    ) -> Conversation:
        viewer = self._viewer()
        if status not in CONVERSATION_STATUSES:
            raise ValidationException(f"Unknown conversation status: {status}")

        def work(db: Session, events: PendingEvents) -> Conversation:
            row = self._load_conversation(db, conversation_id, viewer)
            if row.status != status:
                old_record = row_to_record(row)
                ConversationRepository(db).update_status(row, status)
                self._conversation_event(events, row, old_record=old_record)
            return Conversation.model_validate(row)

        return await self.platform.run("update_conversation_status", work)

    @BaseService.measure_operation("soft_delete_conversation")
    async def soft_delete_conversation(self, conversation_id: str, user_id: str) -> Conversation:
        self._require_self(user_id)

        def work(db: Session, events: PendingEvents) -> Conversation:
            row = self._load_conversation(db, conversation_id, user_id)
            old_record = row_to_record(row)
            if ConversationRepository(db).hide_for(row, user_id):
                self._conversation_event(events, row, old_record=old_record)
            return Conversation.model_validate(row)

        return await self.platform.run("soft_delete_conversation", work)

    # Messages

    @BaseService.measure_operation("list_messages")
    async def list_messages(self, conversation_id: str) -> List[Message]:
        viewer = self._viewer()

        def work(db: Session, events: PendingEvents) -> List[Message]:
            self._load_conversation(db, conversation_id, viewer)
            rows = MessageRepository(db).find_by_conversation(conversation_id)
            return [Message.model_validate(row) for row in rows]

        return await self.platform.run("list_messages", work)

    @BaseService.measure_operation("send_message")
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
        self._require_self(sender_id)
        if message_type not in MESSAGE_TYPES:
            raise ValidationException(f"Unknown message type: {message_type}")
        if not content and not media_url:
            raise ValidationException("Message is empty", code="EMPTY_MESSAGE")

        def work(db: Session, events: PendingEvents) -> Message:
            conversation = self._load_conversation(db, conversation_id, sender_id)
            messages = MessageRepository(db)
            if reply_to_id is not None:
                parent = messages.get_by_id(reply_to_id)
                if parent is None or parent.conversation_id != conversation_id:
                    raise ValidationException(
                        "Replied-to message is not in this conversation",
                        code="INVALID_REPLY",
                        details={"reply_to_id": reply_to_id},
                    )

            row = messages.create_message(
                conversation_id,
                sender_id,
                content,
                message_type,
                media_url=media_url,
                reply_to_id=reply_to_id,
                client_id=client_id,
            )
            old_conversation = row_to_record(conversation)
            ConversationRepository(db).record_message(
                conversation, preview_text(content, message_type), row.created_at
            )
            participants = _conversation_participants(conversation)
            events.append(
                (build_change_event("messages", "INSERT", row_to_record(row)), participants)
            )
            self._conversation_event(events, conversation, old_record=old_conversation)
            return Message.model_validate(row)

        return await self.platform.run("send_message", work)

    @BaseService.measure_operation("mark_read")
    async def mark_read(self, conversation_id: str, reader_id: str) -> List[str]:
        self._require_self(reader_id)

        def work(db: Session, events: PendingEvents) -> List[str]:
            conversation = self._load_conversation(db, conversation_id, reader_id)
            participants = _conversation_participants(conversation)
            changed = MessageRepository(db).mark_read(conversation_id, reader_id)
            for row in changed:
                record = row_to_record(row)
                events.append(
                    (
                        build_change_event(
                            "messages", "UPDATE", record, old_record={**record, "is_read": False}
                        ),
                        participants,
                    )
                )
            return [str(row.id) for row in changed]

        return await self.platform.run("mark_read", work)

    @BaseService.measure_operation("count_unread")
    async def count_unread(self, conversation_ids: Sequence[str], user_id: str) -> Dict[str, int]:
        self._require_self(user_id)
        ids = list(conversation_ids)

        def work(db: Session, events: PendingEvents) -> Dict[str, int]:
            return MessageRepository(db).count_unread(ids, user_id)

        return await self.platform.run("count_unread", work)

    # Profiles

    async def get_profile(self, user_id: str) -> Profile:
        self._viewer()

        def work(db: Session, events: PendingEvents) -> Profile:
            row = ProfileRepository(db).get_by_id(user_id)
            if row is None:
                raise NotFoundException(
                    "User not found", code="PROFILE_NOT_FOUND", details={"user_id": user_id}
                )
            return Profile.model_validate(row)

        return await self.platform.run("get_profile", work)

    async def get_profiles(self, user_ids: Sequence[str]) -> Dict[str, Profile]:
        self._viewer()
        ids = list(user_ids)

        def work(db: Session, events: PendingEvents) -> Dict[str, Profile]:
            return {
                str(row.id): Profile.model_validate(row)
                for row in ProfileRepository(db).get_many(ids)
            }

        return await self.platform.run("get_profiles", work)

    # Follows

    @BaseService.measure_operation("follow")
    async def follow(self, follower_id: str, following_id: str) -> Follow:
        self._require_self(follower_id)
        if follower_id == following_id:
            raise ValidationException("Cannot follow yourself", code="SELF_FOLLOW")

        def work(db: Session, events: PendingEvents) -> Follow:
            profiles = ProfileRepository(db)
            target = profiles.get_by_id(following_id)
            if target is None:
                raise NotFoundException(
                    "User not found", code="PROFILE_NOT_FOUND", details={"user_id": following_id}
                )
            if BlockRepository(db).is_blocked_between(follower_id, following_id):
                raise UnauthorizedException("Following is blocked", code="BLOCKED")

            follows = FollowRepository(db)
            existing = follows.find_edge(follower_id, following_id)
            if existing is not None:
                return Follow.model_validate(existing)

            status = FOLLOW_STATUS_PENDING if target.is_private else FOLLOW_STATUS_ACCEPTED
            row = follows.create(follower_id=follower_id, following_id=following_id, status=status)
            events.append((build_change_event("follows", "INSERT", row_to_record(row)), ()))

            actor = profiles.get_by_id(follower_id)
            actor_name = actor.full_name if actor is not None else "Someone"
            message = (
                f"{actor_name} requested to follow you"
                if status == FOLLOW_STATUS_PENDING
                else f"{actor_name} started following you"
            )
            _insert_notification(
                db, events, following_id, "follow", message, actor_id=follower_id
            )
            return Follow.model_validate(row)

        return await self.platform.run("follow", work)

    async def _delete_follow_edge(
        self, operation: str, follower_id: str, following_id: str
    ) -> None:
        def work(db: Session, events: PendingEvents) -> None:
            follows = FollowRepository(db)
            edge = follows.find_edge(follower_id, following_id)
            if edge is None:
                return
            record = row_to_record(edge)
            follows.delete_entity(edge)
            events.append((build_change_event("follows", "DELETE", {}, old_record=record), ()))

        await self.platform.run(operation, work)

    @BaseService.measure_operation("unfollow")
    async def unfollow(self, follower_id: str, following_id: str) -> None:
        self._require_self(follower_id)
        await self._delete_follow_edge("unfollow", follower_id, following_id)

    @BaseService.measure_operation("remove_follower")
    async def remove_follower(self, user_id: str, follower_id: str) -> None:
        self._require_self(user_id)
        await self._delete_follow_edge("remove_follower", follower_id, user_id)

    async def get_follow_state(self, user_id: str, other_user_id: str) -> FollowState:
        self._require_self(user_id)

        def work(db: Session, events: PendingEvents) -> FollowState:
            edge = FollowRepository(db).find_edge(user_id, other_user_id)
            blocked = BlockRepository(db).find_block(user_id, other_user_id) is not None
            if edge is None:
                return FollowState(following=False, status=None, blocked=blocked)
            return FollowState(
                following=edge.status == FOLLOW_STATUS_ACCEPTED,
                status=edge.status,
                blocked=blocked,
            )

        return await self.platform.run("get_follow_state", work)

    async def list_followers(self, user_id: str) -> List[Profile]:
        self._viewer()

        def work(db: Session, events: PendingEvents) -> List[Profile]:
            ids = [edge.follower_id for edge in FollowRepository(db).followers_of(user_id)]
            return _profiles_in_order(db, ids)

        return await self.platform.run("list_followers", work)

    async def list_following(self, user_id: str) -> List[Profile]:
        self._viewer()

        def work(db: Session, events: PendingEvents) -> List[Profile]:
            ids = [edge.following_id for edge in FollowRepository(db).following_of(user_id)]
            return _profiles_in_order(db, ids)

        return await self.platform.run("list_following", work)

    async def list_follow_requests(self, user_id: str) -> List[Follow]:
        self._require_self(user_id)

        def work(db: Session, events: PendingEvents) -> List[Follow]:
            rows = FollowRepository(db).followers_of(user_id, status=FOLLOW_STATUS_PENDING)
            return [Follow.model_validate(row) for row in rows]

        return await self.platform.run("list_follow_requests", work)

    def _load_follow_request(self, db: Session, follow_id: str, viewer: str) -> Any:
        row = FollowRepository(db).get_by_id(follow_id)
        if row is None or row.status != FOLLOW_STATUS_PENDING:
            raise NotFoundException(
                "Follow request not found",
                code="FOLLOW_REQUEST_NOT_FOUND",
                details={"follow_id": follow_id},
            )
        if row.following_id != viewer:
            raise UnauthorizedException("Not your follow request", code="RLS_DENIED")
        return row

    @BaseService.measure_operation("accept_follow_request")
    async def accept_follow_request(self, follow_id: str) -> Follow:
        viewer = self._viewer()

        def work(db: Session, events: PendingEvents) -> Follow:
            row = self._load_follow_request(db, follow_id, viewer)
            old_record = row_to_record(row)
            FollowRepository(db).update(follow_id, status=FOLLOW_STATUS_ACCEPTED)
            events.append(
                (build_change_event("follows", "UPDATE", row_to_record(row), old_record), ())
            )
            actor = ProfileRepository(db).get_by_id(viewer)
            actor_name = actor.full_name if actor is not None else "Someone"
            _insert_notification(
                db,
                events,
                row.follower_id,
                "follow",
                f"{actor_name} accepted your follow request",
                actor_id=viewer,
            )
            return Follow.model_validate(row)

        return await self.platform.run("accept_follow_request", work)

    @BaseService.measure_operation("reject_follow_request")
    async def reject_follow_request(self, follow_id: str) -> None:
        viewer = self._viewer()

        def work(db: Session, events: PendingEvents) -> None:
            row = self._load_follow_request(db, follow_id, viewer)
            record = row_to_record(row)
            FollowRepository(db).delete_entity(row)
            events.append((build_change_event("follows", "DELETE", {}, old_record=record), ()))

        await self.platform.run("reject_follow_request", work)

    # Blocks

    @BaseService.measure_operation("block_user")
    async def block_user(self, blocker_id: str, blocked_id: str) -> Block:
        self._require_self(blocker_id)
        if blocker_id == blocked_id:
            raise ValidationException("Cannot block yourself", code="SELF_BLOCK")

        def work(db: Session, events: PendingEvents) -> Block:
            blocks = BlockRepository(db)
            existing = blocks.find_block(blocker_id, blocked_id)
            if existing is not None:
                return Block.model_validate(existing)
            row = blocks.create(blocker_id=blocker_id, blocked_id=blocked_id)
            events.append((build_change_event("blocks", "INSERT", row_to_record(row)), ()))
            for edge in FollowRepository(db).delete_between(blocker_id, blocked_id):
                record = row_to_record(edge)
                events.append((build_change_event("follows", "DELETE", {}, old_record=record), ()))
            self.logger.info(
                "[GATEWAY] User blocked", extra={"blocker_id": blocker_id, "blocked_id": blocked_id}
            )
            return Block.model_validate(row)

        return await self.platform.run("block_user", work)

    @BaseService.measure_operation("unblock_user")
    async def unblock_user(self, blocker_id: str, blocked_id: str) -> None:
        self._require_self(blocker_id)

        def work(db: Session, events: PendingEvents) -> None:
            blocks = BlockRepository(db)
            row = blocks.find_block(blocker_id, blocked_id)
            if row is None:
                return
            record = row_to_record(row)
            blocks.delete_entity(row)
            events.append((build_change_event("blocks", "DELETE", {}, old_record=record), ()))

        await self.platform.run("unblock_user", work)

    async def list_blocked(self, blocker_id: str) -> List[Profile]:
        self._require_self(blocker_id)

        def work(db: Session, events: PendingEvents) -> List[Profile]:
            ids = [row.blocked_id for row in BlockRepository(db).find_by(blocker_id=blocker_id)]
            return _profiles_in_order(db, ids)

        return await self.platform.run("list_blocked", work)

    # Reactions

    @BaseService.measure_operation("set_reaction")
    async def set_reaction(
        self, post_id: str, user_id: str, reaction_type: ReactionType
    ) -> Reaction:
        self._require_self(user_id)
        if reaction_type not in REACTION_TYPES:
            raise ValidationException(f"Unknown reaction type: {reaction_type}")

        def work(db: Session, events: PendingEvents) -> Reaction:
            row, previous = ReactionRepository(db).replace(post_id, user_id, reaction_type)
            if previous is not None:
                events.append(
                    (
                        build_change_event(
                            "reactions", "DELETE", {}, old_record=row_to_record(previous)
                        ),
                        (),
                    )
                )
            events.append((build_change_event("reactions", "INSERT", row_to_record(row)), ()))
            return Reaction.model_validate(row)

        return await self.platform.run("set_reaction", work)

    @BaseService.measure_operation("remove_reaction")
    async def remove_reaction(self, post_id: str, user_id: str) -> None:
        self._require_self(user_id)

        def work(db: Session, events: PendingEvents) -> None:
            reactions = ReactionRepository(db)
            row = reactions.find_for_user(post_id, user_id)
            if row is None:
                return
            record = row_to_record(row)
            reactions.delete_entity(row)
            events.append((build_change_event("reactions", "DELETE", {}, old_record=record), ()))

        await self.platform.run("remove_reaction", work)

    async def get_reaction(self, post_id: str, user_id: str) -> Optional[Reaction]:
        self._require_self(user_id)

        def work(db: Session, events: PendingEvents) -> Optional[Reaction]:
            row = ReactionRepository(db).find_for_user(post_id, user_id)
            return Reaction.model_validate(row) if row is not None else None

        return await self.platform.run("get_reaction", work)

    async def list_reactions(self, post_id: str) -> List[Reaction]:
        self._viewer()

        def work(db: Session, events: PendingEvents) -> List[Reaction]:
            rows = ReactionRepository(db).find_for_post(post_id)
            return [Reaction.model_validate(row) for row in rows]

        return await self.platform.run("list_reactions", work)

    # Notifications

    async def list_notifications(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> List[Notification]:
        self._require_self(user_id)

        def work(db: Session, events: PendingEvents) -> List[Notification]:
            rows = NotificationRepository(db).find_for_user(user_id, limit=limit, offset=offset)
            return [Notification.model_validate(row) for row in rows]

        return await self.platform.run("list_notifications", work)

    @BaseService.measure_operation("mark_notification_read")
    async def mark_notification_read(self, notification_id: str) -> Notification:
        viewer = self._viewer()

        def work(db: Session, events: PendingEvents) -> Notification:
            repo = NotificationRepository(db)
            row = repo.get_by_id(notification_id)
            if row is None:
                raise NotFoundException(
                    "Notification not found",
                    code="NOTIFICATION_NOT_FOUND",
                    details={"notification_id": notification_id},
                )
            if row.user_id != viewer:
                raise UnauthorizedException("Not your notification", code="RLS_DENIED")
            if not row.is_read:
                old_record = row_to_record(row)
                repo.update(notification_id, is_read=True)
                events.append(
                    (
                        build_change_event(
                            "notifications", "UPDATE", row_to_record(row), old_record
                        ),
                        (),
                    )
                )
            return Notification.model_validate(row)

        return await self.platform.run("mark_notification_read", work)

    @BaseService.measure_operation("mark_all_notifications_read")
    async def mark_all_notifications_read(self, user_id: str) -> List[str]:
        self._require_self(user_id)

        def work(db: Session, events: PendingEvents) -> List[str]:
            rows = NotificationRepository(db).mark_all_read(user_id)
            for row in rows:
                record = row_to_record(row)
                events.append(
                    (
                        build_change_event(
                            "notifications", "UPDATE", record, {**record, "is_read": False}
                        ),
                        (),
                    )
                )
            return [str(row.id) for row in rows]

        return await self.platform.run("mark_all_notifications_read", work)

    async def count_unread_notifications(self, user_id: str) -> int:
        self._require_self(user_id)

        def work(db: Session, events: PendingEvents) -> int:
            return NotificationRepository(db).count_unread(user_id)

        return await self.platform.run("count_unread_notifications", work)

    # Realtime

    async def _check_subscription_access(self, spec: ChangeFeedSpec) -> None:
        viewer = self._viewer()
        if spec.column in USER_SCOPED_COLUMNS and spec.value != viewer:
            raise UnauthorizedException(
                "Cannot subscribe to another user's events",
                code="RLS_DENIED",
                details={"filter": spec.filter},
            )
        if spec.column == "conversation_id" and spec.value is not None:
            await self.get_conversation(spec.value)

    async def subscribe(
        self,
        spec: ChangeFeedSpec,
        handler: EventHandler,
        on_error: Optional[ErrorHandler] = None,
    ) -> Subscription:
        await self._check_subscription_access(spec)
        topic = topic_for_spec(self.settings.realtime_channel_prefix, spec)
        subscription = Subscription(spec, topic)
        self._subscriptions[subscription.id] = subscription
        subscription.task = asyncio.create_task(
            self._pump(subscription, handler, on_error),
            name=f"subscription:{subscription.name}",
        )
        await subscription.ready.wait()
        self.logger.info(
            f"[REALTIME] Subscription {subscription.name} is {subscription.state.value}",
            extra={"topic": subscription.topic},
        )
        return subscription

    async def _pump(
        self,
        subscription: Subscription,
        handler: EventHandler,
        on_error: Optional[ErrorHandler],
    ) -> None:
        try:
            async with self.platform.change_feed.channel(subscription.topic) as channel:
                subscription.state = SubscriptionState.SUBSCRIBED
                subscription.ready.set()
                while True:
                    event = await channel.get()
                    try:
                        if subscription.spec.accepts(event):
                            subscription.delivered += 1
                            await handler(event)
                    except Exception as e:
                        self.logger.error(
                            f"[REALTIME] Handler failed on {subscription.name}: {e}",
                            exc_info=True,
                            extra={"event_id": event.id, "table": event.table},
                        )
                    finally:
                        channel.done()
        except asyncio.CancelledError:
            subscription.state = SubscriptionState.CLOSED
            raise
        except Exception as e:
            subscription.state = SubscriptionState.ERRORED
            subscription.error = e
            self.logger.warning(
                f"[REALTIME] Subscription {subscription.name} failed: {e}",
                extra={"topic": subscription.topic},
            )
            if on_error is not None:
                try:
                    await on_error(subscription, e)
                except Exception as callback_error:
                    self.logger.error(
                        f"[REALTIME] Error callback failed: {callback_error}", exc_info=True
                    )
        finally:
            subscription.ready.set()

    async def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.id, None)
        task = subscription.task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        subscription.state = SubscriptionState.CLOSED
        self.logger.debug(f"[REALTIME] Unsubscribed {subscription.name}")

    def subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions.values())

    # Media and health

    @BaseService.measure_operation("upload_media")
    async def upload_media(self, data: bytes, filename: str, content_type: str) -> str:
        self._viewer()
        return await self.platform.media_uploader.upload(data, filename, content_type)

    async def ping(self) -> bool:
        return await self.platform.ping()

    async def close(self) -> None:
        for subscription in self.subscriptions():
            await self.unsubscribe(subscription)


def _profiles_in_order(db: Session, ids: List[str]) -> List[Profile]:
    rows = {str(row.id): row for row in ProfileRepository(db).get_many(ids)}
    return [Profile.model_validate(rows[user_id]) for user_id in ids if user_id in rows]
