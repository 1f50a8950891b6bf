# clubspace/services/request_workflow.py
"""
Request/accept workflow for conversations.

States:
    request -> active   (accept by the receiving participant; one way)

There is no transition back to ``request``. Hiding a conversation
(``deleted_for``) is orthogonal to status and allowed in either state.

The initial status of a new conversation comes from a policy:
- AlwaysActivePolicy (default): every conversation starts ``active``
- PrivacyGatedPolicy: a private recipient who does not follow the sender
  receives the conversation as a ``request``. Shipped but disabled; select it
  with ``CLUBSPACE_CONVERSATION_STATUS_POLICY=privacy_gated``.
"""

from abc import ABC, abstractmethod
import logging
from typing import TYPE_CHECKING, Optional

from ..core.config import Settings
from ..core.exceptions import UnauthorizedException, ValidationException
from ..schemas.conversation import Conversation, ConversationStatus

if TYPE_CHECKING:
    from ..gateway.base import BackendGateway

logger = logging.getLogger(__name__)


class ConversationStatusPolicy(ABC):
    name: str = "abstract"

    @abstractmethod
    async def initial_status(
        self, gateway: "BackendGateway", sender_id: str, recipient_id: str
    ) -> ConversationStatus:
        pass


class AlwaysActivePolicy(ConversationStatusPolicy):
    name = "always_active"

    async def initial_status(
        self, gateway: "BackendGateway", sender_id: str, recipient_id: str
    ) -> ConversationStatus:
        return "active"


class PrivacyGatedPolicy(ConversationStatusPolicy):
    """Private recipients get unsolicited conversations as requests."""

    name = "privacy_gated"

    async def initial_status(
        self, gateway: "BackendGateway", sender_id: str, recipient_id: str
    ) -> ConversationStatus:
        recipient = await gateway.get_profile(recipient_id)
        if not recipient.is_private:
            return "active"
        following = await gateway.list_following(recipient_id)
        if any(profile.id == sender_id for profile in following):
            return "active"
        return "request"


def policy_from_settings(settings: Settings) -> ConversationStatusPolicy:
    if settings.conversation_status_policy == "privacy_gated":
        return PrivacyGatedPolicy()
    return AlwaysActivePolicy()


class RequestWorkflow:
    """Status state machine and the rules for who may move it."""

    def __init__(self, policy: Optional[ConversationStatusPolicy] = None) -> None:
        self.policy = policy or AlwaysActivePolicy()

    async def initial_status(
        self, gateway: "BackendGateway", sender_id: str, recipient_id: str
    ) -> ConversationStatus:
        status = await self.policy.initial_status(gateway, sender_id, recipient_id)
        logger.debug(
            f"[WORKFLOW] Initial status {status} by {self.policy.name}",
            extra={"sender_id": sender_id, "recipient_id": recipient_id},
        )
        return status

    @staticmethod
    def check_transition(current: ConversationStatus, target: ConversationStatus) -> bool:
        """
        Validate a status change.

        Returns False when there is nothing to do (already in ``target``).
        """
        if current == target:
            return False
        if current == "request" and target == "active":
            return True
        raise ValidationException(
            f"Cannot move a conversation from {current} to {target}",
            code="INVALID_TRANSITION",
            details={"from": current, "to": target},
        )

    def check_accept(
        self, conversation: Conversation, user_id: str, opener_id: Optional[str] = None
    ) -> bool:
        """
        Validate that ``user_id`` may accept ``conversation``.

        ``opener_id`` is the sender of the first message, when known; they
        cannot accept their own request. Returns False when the conversation
        is already active (accepting is a no-op).
        """
        if not conversation.is_participant(user_id):
            raise UnauthorizedException(
                "Only participants can accept a message request",
                code="NOT_PARTICIPANT",
                details={"conversation_id": conversation.id},
            )
        if conversation.status == "active":
            return False
        if opener_id is not None and opener_id == user_id:
            raise ValidationException(
                "You cannot accept your own message request",
                code="OWN_REQUEST",
                details={"conversation_id": conversation.id},
            )
        return self.check_transition(conversation.status, "active")

    @staticmethod
    def check_hide(conversation: Conversation, user_id: str) -> None:
        if not conversation.is_participant(user_id):
            raise UnauthorizedException(
                "Only participants can delete a conversation",
                code="NOT_PARTICIPANT",
                details={"conversation_id": conversation.id},
            )
