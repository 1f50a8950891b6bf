# clubspace/services/diagnostics_service.py
"""
Messaging diagnostics.

Runs the troubleshooting checks of the messages screen and returns them as a
report plus human-readable, timestamped log lines:

1. Session: is a user signed in
2. Active conversation and its participants
3. Database reachability
4. Realtime subscriptions and their states
5. Read permission on the active conversation's messages
"""

import logging
from typing import List, Optional

from ..core.exceptions import DomainException
from ..core.time_utils import utcnow
from ..schemas.diagnostics import DiagnosticsReport
from .base import BaseService
from .messaging_client import MessagingClient

logger = logging.getLogger(__name__)


class DiagnosticsService(BaseService):
    def __init__(self, client: MessagingClient) -> None:
        super().__init__(client.settings)
        self.client = client

    @BaseService.measure_operation("run_diagnostics")
    async def run(self) -> DiagnosticsReport:
        logs: List[str] = []

        def log(line: str) -> None:
            logs.append(f"{utcnow().strftime('%H:%M:%S')}: {line}")

        log("Starting diagnostics...")
        report = DiagnosticsReport(generated_at=utcnow())

        user_id = self.client.session.user_id
        if user_id is None:
            log("No authenticated user found.")
            report.logs = logs
            return report
        report.user_id = user_id
        log(f"User ID: {user_id}")

        conversation = self.client.active_conversation()
        if conversation is None:
            log("No active conversation selected. Skipping conversation checks.")
        else:
            report.active_conversation_id = conversation.id
            report.participants = list(conversation.participants)
            log(f"Active conversation ID: {conversation.id}")
            log(f"Participants: {conversation.participant_1}, {conversation.participant_2}")

        report.database_reachable = await self.client.gateway.ping()
        log(f"Database connection: {'OK' if report.database_reachable else 'FAILED'}")

        report.subscriptions = self.client.router.status()
        report.subscription_count = len(report.subscriptions)
        log(f"Active realtime channels: {report.subscription_count}")
        for subscription in report.subscriptions:
            log(f"   - {subscription.topic}: {subscription.state}")

        if conversation is not None:
            error = await self._probe_read(conversation.id)
            if error is None:
                report.read_probe = "ok"
                log("Read messages permission: OK")
            else:
                report.read_probe = "failed"
                report.read_probe_error = error
                log(f"Read messages permission failed: {error}")

        log("Complete")
        report.logs = logs
        self.logger.info(
            "[DIAGNOSTICS] Report generated",
            extra={"user_id": user_id, "read_probe": report.read_probe},
        )
        return report

    async def _probe_read(self, conversation_id: str) -> Optional[str]:
        try:
            await self.client.gateway.list_messages(conversation_id)
        except DomainException as e:
            return e.message
        return None
