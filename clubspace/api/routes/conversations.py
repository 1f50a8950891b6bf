# clubspace/api/routes/conversations.py
"""
Conversation routes.

All state changes go through the MessagingClient, so they are optimistic with
rollback exactly as in the client; a failed action comes back as the error
body of its notice.

Endpoints:
    POST /conversations                      -> Start (get or create) a chat and open it
    GET /conversations/{id}                  -> Open a conversation
    POST /conversations/{id}/messages        -> Send a message
    POST /conversations/{id}/accept          -> Accept a message request
    DELETE /conversations/{id}               -> Delete for me
    POST /conversations/{id}/block           -> Block the other participant
"""

import logging

from fastapi import APIRouter, Depends, status

from ...schemas.client import ConversationDetail
from ...schemas.conversation import Conversation
from ...schemas.message import Message
from ...schemas.requests import SendMessageRequest, StartConversationRequest
from ...schemas.social import Block
from ...services.messaging_client import MessagingClient
from ..dependencies import get_client, unwrap

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["conversations"])


async def _ensure_open(client: MessagingClient, conversation_id: str) -> None:
    if client.active_conversation_id != conversation_id:
        unwrap(await client.open_conversation(conversation_id))


@router.post("", response_model=ConversationDetail, status_code=status.HTTP_201_CREATED)
async def start_conversation(
    request: StartConversationRequest, client: MessagingClient = Depends(get_client)
) -> ConversationDetail:
    return unwrap(await client.start_conversation(request.user_id))


@router.get("/{conversation_id}", response_model=ConversationDetail)
async def open_conversation(
    conversation_id: str, client: MessagingClient = Depends(get_client)
) -> ConversationDetail:
    return unwrap(await client.open_conversation(conversation_id))


@router.post(
    "/{conversation_id}/messages",
    response_model=Message,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: str,
    request: SendMessageRequest,
    client: MessagingClient = Depends(get_client),
) -> Message:
    await _ensure_open(client, conversation_id)
    return unwrap(
        await client.send_message(
            request.content,
            message_type=request.type,
            media_url=request.media_url,
            reply_to_id=request.reply_to_id,
        )
    )


@router.post("/{conversation_id}/accept", response_model=Conversation)
async def accept_request(
    conversation_id: str, client: MessagingClient = Depends(get_client)
) -> Conversation:
    await _ensure_open(client, conversation_id)
    return unwrap(await client.accept_request(conversation_id))


@router.delete("/{conversation_id}", response_model=Conversation)
async def delete_conversation(
    conversation_id: str, client: MessagingClient = Depends(get_client)
) -> Conversation:
    if client.store.get_conversation(conversation_id) is None:
        await _ensure_open(client, conversation_id)
    return unwrap(await client.delete_conversation(conversation_id))


@router.post("/{conversation_id}/block", response_model=Block)
async def block_other_participant(
    conversation_id: str, client: MessagingClient = Depends(get_client)
) -> Block:
    await _ensure_open(client, conversation_id)
    return unwrap(await client.block_other_participant())
