"""
Shared fixtures: an in-memory backend platform, profiles and signed-in clients.

Every test gets its own SQLite in-memory database (StaticPool) and an
in-process change feed, so realtime delivery is deterministic: ``settle``
waits until every published event has been handled and every background
task of the given clients has finished.
"""

import asyncio
from typing import Awaitable, Callable, List

import pytest
import pytest_asyncio

from clubspace.core.config import Settings
from clubspace.core.session import AuthSession, SessionContext
from clubspace.gateway.change_feed import LocalChangeFeed
from clubspace.gateway.sql_gateway import BackendPlatform
from clubspace.integrations.media_uploader import FakeMediaUploader
from clubspace.schemas.profile import Profile
from clubspace.services.messaging_client import MessagingClient


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        database_url="sqlite+pysqlite:///:memory:",
        redis_url=None,
        realtime_resubscribe_delay=0.01,
        mark_read_backoff_seconds=0.0,
        mark_read_max_attempts=3,
        slow_operation_threshold=30.0,
    )


@pytest.fixture
def media_uploader() -> FakeMediaUploader:
    return FakeMediaUploader()


@pytest_asyncio.fixture
async def platform(settings, media_uploader):
    backend = BackendPlatform.from_settings(
        settings, change_feed=LocalChangeFeed(), media_uploader=media_uploader
    )
    yield backend
    await backend.close()


@pytest_asyncio.fixture
async def alice(platform) -> Profile:
    return await platform.create_profile("alice@uni.edu", "Alice Archer")


@pytest_asyncio.fixture
async def bob(platform) -> Profile:
    return await platform.create_profile("bob@uni.edu", "Bob Baker")


@pytest_asyncio.fixture
async def carol(platform) -> Profile:
    return await platform.create_profile("carol@uni.edu", "Carol Chen", is_private=True)


@pytest.fixture
def signed_in_gateway(platform):
    """Factory for a gateway bound to a fresh session signed in as ``profile``."""

    async def factory(profile: Profile):
        session = SessionContext()
        await session.sign_in(AuthSession(user_id=profile.id, email=profile.email))
        return platform.gateway(session)

    return factory


@pytest_asyncio.fixture
async def client_factory(platform, settings):
    """Factory for started MessagingClients; all are closed at teardown."""
    clients: List[MessagingClient] = []

    async def factory(profile: Profile) -> MessagingClient:
        session = SessionContext()
        client = MessagingClient(platform.gateway(session), session, settings)
        await client.start()
        await client.sign_in(AuthSession(user_id=profile.id, email=profile.email))
        clients.append(client)
        return client

    yield factory
    for client in clients:
        await client.close()


@pytest.fixture
def settle(platform) -> Callable[..., Awaitable[None]]:
    """Wait until realtime delivery and the clients' background work are done."""

    async def wait(*clients: MessagingClient, rounds: int = 5) -> None:
        for _ in range(rounds):
            await platform.change_feed.wait_idle()
            for client in clients:
                await client.flush()
            await asyncio.sleep(0)

    return wait
