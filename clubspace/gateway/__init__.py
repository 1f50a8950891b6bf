"""Backend gateway contract, change feeds and the SQL-backed implementation."""

from .base import BackendGateway, Subscription, SubscriptionState
from .change_feed import ChangeFeed, LocalChangeFeed, RedisChangeFeed, create_change_feed
from .sql_gateway import BackendPlatform, SqlBackendGateway

__all__ = [
    "BackendGateway",
    "BackendPlatform",
    "ChangeFeed",
    "LocalChangeFeed",
    "RedisChangeFeed",
    "SqlBackendGateway",
    "Subscription",
    "SubscriptionState",
    "create_change_feed",
]
