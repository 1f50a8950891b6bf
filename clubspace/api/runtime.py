# clubspace/api/runtime.py
"""
The client stack one API process drives.

A single SessionContext, gateway and MessagingClient stand in for one
running ClubSpace client; the HTTP routes are its buttons.
"""

import logging
from typing import Optional

from ..core.config import Settings
from ..core.session import SessionContext
from ..gateway.sql_gateway import BackendPlatform
from ..services.diagnostics_service import DiagnosticsService
from ..services.messaging_client import MessagingClient
from ..services.social_service import SocialService

logger = logging.getLogger(__name__)


class ClientRuntime:
    def __init__(self, platform: BackendPlatform, settings: Optional[Settings] = None) -> None:
        self.platform = platform
        self.settings = settings or platform.settings
        self.session = SessionContext()
        self.gateway = platform.gateway(self.session)
        self.client = MessagingClient(self.gateway, self.session, self.settings)
        self.social = SocialService(self.gateway, self.session, self.client.tracker, self.settings)
        self.diagnostics = DiagnosticsService(self.client)

    async def start(self) -> None:
        await self.session.initialize()
        await self.client.start()
        logger.info("[API] Client runtime started")

    async def close(self) -> None:
        await self.client.close()
        await self.gateway.close()
        logger.info("[API] Client runtime closed")
