"""DiagnosticsService report contents."""

from unittest.mock import patch

import pytest

from clubspace.core.exceptions import UnauthorizedException
from clubspace.core.session import SessionContext
from clubspace.services.diagnostics_service import DiagnosticsService
from clubspace.services.messaging_client import MessagingClient


class TestDiagnostics:
    @pytest.mark.asyncio
    async def test_without_session(self, platform, settings):
        session = SessionContext()
        client = MessagingClient(platform.gateway(session), session, settings)

        report = await DiagnosticsService(client).run()

        assert report.user_id is None
        assert report.subscription_count == 0
        assert report.logs[-1].endswith("No authenticated user found.")

    @pytest.mark.asyncio
    async def test_with_active_conversation(self, client_factory, alice, bob):
        client = await client_factory(alice)
        started = await client.start_conversation(bob.id)

        report = await DiagnosticsService(client).run()

        assert report.user_id == alice.id
        assert report.active_conversation_id == started.value.conversation.id
        assert set(report.participants) == {alice.id, bob.id}
        assert report.database_reachable is True
        assert report.subscription_count == 3
        assert {s.name for s in report.subscriptions} == {
            "notifications",
            "conversations",
            "messages",
        }
        assert report.read_probe == "ok"
        assert any("Read messages permission: OK" in line for line in report.logs)

    @pytest.mark.asyncio
    async def test_failed_read_probe_is_reported(self, client_factory, alice, bob):
        client = await client_factory(alice)
        await client.start_conversation(bob.id)

        with patch.object(
            client.gateway,
            "list_messages",
            side_effect=UnauthorizedException("permission denied for table messages"),
        ):
            report = await DiagnosticsService(client).run()

        assert report.read_probe == "failed"
        assert report.read_probe_error == "permission denied for table messages"
        assert report.logs[-1].endswith("Complete")

    @pytest.mark.asyncio
    async def test_unreachable_database(self, client_factory, alice):
        client = await client_factory(alice)

        with patch.object(client.gateway, "ping", return_value=False):
            report = await DiagnosticsService(client).run()

        assert report.database_reachable is False
        assert any("Database connection: FAILED" in line for line in report.logs)
        assert report.read_probe == "skipped"
