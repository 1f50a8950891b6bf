# clubspace/api/routes/inbox.py
"""
Inbox routes.

Endpoints:
    GET /inbox/active   -> Primary tab
    GET /inbox/request  -> Requests tab
"""

from typing import List

from fastapi import APIRouter, Depends

from ...schemas.conversation import ConversationView, InboxTab
from ...services.messaging_client import MessagingClient
from ..dependencies import get_client, unwrap

router = APIRouter(prefix="/inbox", tags=["inbox"])


@router.get("/{tab}", response_model=List[ConversationView])
async def get_inbox(
    tab: InboxTab, client: MessagingClient = Depends(get_client)
) -> List[ConversationView]:
    return unwrap(await client.load_inbox(tab))
