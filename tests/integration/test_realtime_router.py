"""Realtime routing: dedup, membership filtering and resubscription."""

import asyncio
from unittest.mock import patch

import pytest

from clubspace.core.exceptions import NetworkFailureException
from clubspace.core.session import AuthSession, SessionContext
from clubspace.core.time_utils import utcnow
from clubspace.schemas.realtime import ChangeEvent
from clubspace.services.messaging_client import MessagingClient


async def wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def subscription_named(client: MessagingClient, name: str):
    return next(s for s in client.gateway.subscriptions() if s.name == name)


def message_event(event_id: str, conversation_id: str, sender_id: str, **record) -> ChangeEvent:
    record.setdefault("id", f"m-{event_id}")
    record.setdefault("content", "pushed")
    return ChangeEvent(
        id=event_id,
        table="messages",
        type="INSERT",
        record={
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "type": "text",
            "is_read": False,
            "created_at": utcnow().isoformat(),
            **record,
        },
    )


class TestDedup:
    @pytest.mark.asyncio
    async def test_same_event_applies_once(self, client_factory, platform, settle, alice, bob):
        client = await client_factory(alice)
        result = await client.start_conversation(bob.id)
        conversation_id = result.value.conversation.id
        client.close_conversation()
        topic = subscription_named(client, "messages").topic
        event = message_event("evt-1", conversation_id, bob.id)

        await platform.change_feed.publish(topic, event)
        await platform.change_feed.publish(topic, event)
        await settle(client)

        assert [m.id for m in client.messages(conversation_id)] == ["m-evt-1"]
        assert client.tracker.count_for(conversation_id) == 1

    @pytest.mark.asyncio
    async def test_listeners_run_after_applied_events(
        self, client_factory, platform, settle, alice, bob
    ):
        client = await client_factory(alice)
        result = await client.start_conversation(bob.id)
        conversation_id = result.value.conversation.id
        seen = []
        client.router.add_listener(lambda event: seen.append(event.id))
        topic = subscription_named(client, "messages").topic

        await platform.change_feed.publish(topic, message_event("e1", conversation_id, bob.id))
        await platform.change_feed.publish(topic, message_event("e1", conversation_id, bob.id))
        await settle(client)

        assert seen == ["e1"]

    @pytest.mark.asyncio
    async def test_malformed_record_is_dropped(
        self, client_factory, platform, settle, alice, bob
    ):
        client = await client_factory(alice)
        result = await client.start_conversation(bob.id)
        conversation_id = result.value.conversation.id
        topic = subscription_named(client, "messages").topic
        broken = message_event("bad", conversation_id, bob.id, created_at="not a date")

        await platform.change_feed.publish(topic, broken)
        await platform.change_feed.publish(topic, message_event("good", conversation_id, bob.id))
        await settle(client)

        assert [m.id for m in client.messages(conversation_id)] == ["m-good"]


class TestMessageScope:
    @pytest.mark.asyncio
    async def test_global_scope_filters_by_membership(
        self, platform, settings, settle, alice, bob, carol
    ):
        global_settings = settings.model_copy(update={"realtime_message_scope": "global"})
        clients = []
        for profile in (alice, bob):
            session = SessionContext()
            client = MessagingClient(platform.gateway(session), session, global_settings)
            await client.start()
            await client.sign_in(AuthSession(user_id=profile.id))
            clients.append(client)
        observer, sender = clients
        try:
            assert subscription_named(observer, "messages").spec.filter is None

            started = await sender.start_conversation(carol.id)
            await sender.send_message("not for alice")
            await settle(observer, sender)

            assert observer.store.conversations() == []
            assert observer.messages(started.value.conversation.id) == []

            with_alice = await sender.start_conversation(alice.id)
            await sender.send_message("for alice")
            await settle(observer, sender)

            conversation_id = with_alice.value.conversation.id
            assert [m.content for m in observer.messages(conversation_id)] == ["for alice"]
        finally:
            for client in clients:
                await client.close()

    @pytest.mark.asyncio
    async def test_user_scope_uses_participant_topic(self, client_factory, alice):
        client = await client_factory(alice)

        spec = subscription_named(client, "messages").spec

        assert spec.filter == f"participant_id=eq.{alice.id}"


class TestResubscribe:
    @pytest.mark.asyncio
    async def test_failed_subscribe_is_retried(self, platform, settings, alice):
        session = SessionContext()
        client = MessagingClient(platform.gateway(session), session, settings)
        await client.start()
        original = client.gateway.subscribe
        attempts = []

        async def flaky_subscribe(spec, handler, on_error=None):
            attempts.append(spec.label)
            if spec.label == "messages" and attempts.count("messages") == 1:
                raise NetworkFailureException("realtime unavailable")
            return await original(spec, handler, on_error)

        try:
            with patch.object(client.gateway, "subscribe", side_effect=flaky_subscribe):
                await client.sign_in(AuthSession(user_id=alice.id))
                assert len(client.router.status()) == 2
                await wait_for(lambda: len(client.router.status()) == 3)

            assert attempts.count("messages") == 2
            assert {s.state for s in client.router.status()} == {"subscribed"}
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_errored_subscription_is_reopened(
        self, client_factory, platform, settle, alice, bob
    ):
        original_channel = platform.change_feed.channel
        failed = []

        def flaky_channel(topic):
            if topic.endswith(f"messages:participant_id=eq.{alice.id}") and not failed:
                failed.append(topic)
                raise ConnectionError("socket closed")
            return original_channel(topic)

        with patch.object(platform.change_feed, "channel", side_effect=flaky_channel):
            client = await client_factory(alice)
            await wait_for(
                lambda: len(client.router.status()) == 3
                and all(s.state == "subscribed" for s in client.router.status())
            )

        assert failed
        sender = await client_factory(bob)
        started = await sender.start_conversation(alice.id)
        await sender.send_message("after reconnect")
        await settle(client, sender)

        conversation_id = started.value.conversation.id
        assert [m.content for m in client.messages(conversation_id)] == ["after reconnect"]

    @pytest.mark.asyncio
    async def test_sign_out_cancels_pending_resubscribe(self, client_factory, alice):
        client = await client_factory(alice)
        subscription = subscription_named(client, "messages")

        client.router._schedule_resubscribe("messages", client.router._generation)
        await client.sign_out()
        await asyncio.sleep(0.05)

        assert client.router.status() == []
        assert client.gateway.subscriptions() == []
        assert subscription.state.value == "closed"
