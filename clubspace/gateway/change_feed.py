# clubspace/gateway/change_feed.py
"""
Change feed transports.

A change feed moves ``ChangeEvent``s from the writer (the gateway, after
commit) to every open subscription on a topic. Two transports:

- RedisChangeFeed: redis.asyncio pub/sub, JSON payloads. Used whenever
  ``settings.redis_url`` is set, so several processes share one feed.
- LocalChangeFeed: in-process asyncio queues. Used for single-process runs
  and tests; ``wait_idle()`` lets a caller wait until every delivered event
  has been handled.

Publishing is fire-and-forget: failures are logged, not raised. Rows are safe
in the database; clients reconcile on their next fetch.
"""

from abc import ABC, abstractmethod
import asyncio
from contextlib import asynccontextmanager
import json
import logging
from typing import TYPE_CHECKING, Any, AsyncContextManager, AsyncIterator, Dict, List, Optional, Set

from redis.asyncio import Redis as AsyncRedis

from ..core.config import Settings
from ..schemas.realtime import ChangeEvent

if TYPE_CHECKING:
    from redis.asyncio.client import PubSub

logger = logging.getLogger(__name__)


class FeedChannel(ABC):
    """One open topic subscription on a change feed."""

    def __init__(self, topic: str) -> None:
        self.topic = topic

    @abstractmethod
    async def get(self) -> ChangeEvent:
        """Wait for the next event on the topic."""

    def done(self) -> None:
        """Mark the last event returned by ``get`` as handled."""


class ChangeFeed(ABC):
    def __init__(self) -> None:
        self._publish_count = 0
        self._error_count = 0

    @abstractmethod
    async def publish(self, topic: str, event: ChangeEvent) -> int:
        """Publish to one topic. Returns the number of receivers (0 on failure)."""

    @abstractmethod
    def channel(self, topic: str) -> AsyncContextManager[FeedChannel]:
        """Async context manager yielding an open channel on ``topic``."""

    async def publish_many(self, topics: List[str], event: ChangeEvent) -> Dict[str, int]:
        results: Dict[str, int] = {}
        for topic in topics:
            results[topic] = await self.publish(topic, event)
        return results

    async def wait_idle(self) -> None:
        """Wait until delivered events are handled, where the transport can tell."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass

    def get_stats(self) -> Dict[str, Any]:
        return {
            "transport": self.__class__.__name__,
            "publish_count": self._publish_count,
            "error_count": self._error_count,
        }


class _LocalChannel(FeedChannel):
    def __init__(self, topic: str) -> None:
        super().__init__(topic)
        self.queue: "asyncio.Queue[ChangeEvent]" = asyncio.Queue()

    async def get(self) -> ChangeEvent:
        return await self.queue.get()

    def done(self) -> None:
        self.queue.task_done()


class LocalChangeFeed(ChangeFeed):
    """In-process fan-out over asyncio queues."""

    def __init__(self) -> None:
        super().__init__()
        self._channels: Dict[str, Set[_LocalChannel]] = {}

    async def publish(self, topic: str, event: ChangeEvent) -> int:
        receivers = list(self._channels.get(topic, ()))
        for channel in receivers:
            channel.queue.put_nowait(event)
        self._publish_count += 1
        logger.debug(
            f"[FEED] Published {event.table}/{event.type} to {topic} "
            f"(subscribers: {len(receivers)})"
        )
        return len(receivers)

    @asynccontextmanager
    async def channel(self, topic: str) -> AsyncIterator[FeedChannel]:
        channel = _LocalChannel(topic)
        self._channels.setdefault(topic, set()).add(channel)
        logger.debug(f"[FEED] Subscribed to channel: {topic}")
        try:
            yield channel
        finally:
            receivers = self._channels.get(topic)
            if receivers is not None:
                receivers.discard(channel)
                if not receivers:
                    del self._channels[topic]
            # Unblock anyone waiting on events this channel will never handle
            while not channel.queue.empty():
                channel.queue.get_nowait()
                channel.queue.task_done()
            logger.debug(f"[FEED] Unsubscribed from channel: {topic}")

    async def wait_idle(self) -> None:
        channels = [channel for group in self._channels.values() for channel in group]
        await asyncio.gather(*(channel.queue.join() for channel in channels))

    def topic_count(self) -> int:
        return len(self._channels)


class _RedisChannel(FeedChannel):
    def __init__(self, topic: str, pubsub: "PubSub", poll_timeout: float) -> None:
        super().__init__(topic)
        self._pubsub = pubsub
        self._poll_timeout = poll_timeout

    async def get(self) -> ChangeEvent:
        while True:
            message = await self._pubsub.get_message(
                ignore_subscribe_messages=True, timeout=self._poll_timeout
            )
            if message is None or message.get("type") != "message":
                continue
            data = message["data"]
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            try:
                return ChangeEvent.model_validate(json.loads(data))
            except ValueError as e:
                logger.warning(f"[FEED] Dropping malformed event on {self.topic}: {e}")


class RedisChangeFeed(ChangeFeed):
    """Change feed over Redis pub/sub."""

    def __init__(self, redis: "AsyncRedis[Any]", poll_timeout: float = 1.0) -> None:
        super().__init__()
        self._redis = redis
        self._poll_timeout = poll_timeout

    @classmethod
    def from_url(cls, url: str, poll_timeout: float = 1.0) -> "RedisChangeFeed":
        return cls(AsyncRedis.from_url(url, decode_responses=True), poll_timeout=poll_timeout)

    async def publish(self, topic: str, event: ChangeEvent) -> int:
        payload = event.model_dump_json()
        try:
            result: int = await self._redis.publish(topic, payload)
            self._publish_count += 1
            logger.debug(
                f"[FEED] Published {event.table}/{event.type} to {topic} (subscribers: {result})"
            )
            return result
        except Exception as e:
            self._error_count += 1
            logger.error(f"[FEED] Failed to publish to {topic}: {e}")
            return 0

    @asynccontextmanager
    async def channel(self, topic: str) -> AsyncIterator[FeedChannel]:
        pubsub: PubSub = self._redis.pubsub()
        try:
            await pubsub.subscribe(topic)
            logger.info(f"[FEED] Subscribed to channel: {topic}")
            yield _RedisChannel(topic, pubsub, self._poll_timeout)
        finally:
            await pubsub.unsubscribe(topic)
            await pubsub.aclose()
            logger.info(f"[FEED] Unsubscribed from channel: {topic}")

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception as e:
            logger.warning(f"[FEED] Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        await self._redis.aclose()


def create_change_feed(
    settings: Settings, redis: Optional["AsyncRedis[Any]"] = None
) -> ChangeFeed:
    """Pick the transport: Redis when a client or URL is available, else in-process."""
    if redis is not None:
        return RedisChangeFeed(redis, poll_timeout=settings.realtime_poll_timeout)
    if settings.redis_url:
        return RedisChangeFeed.from_url(
            settings.redis_url, poll_timeout=settings.realtime_poll_timeout
        )
    return LocalChangeFeed()
