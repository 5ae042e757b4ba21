from schoolfeed.services.notification_feed import FeedConfig, NotificationFeedService
from schoolfeed.services.feed_registry import FeedRegistry
from schoolfeed.services.key_value_store import (
    KeyValueStore,
    FileKeyValueStore,
    RedisKeyValueStore,
    MemoryKeyValueStore,
    create_key_value_store,
)
from schoolfeed.services.source_adapter import SourceCollectionsAdapter, RestSourceAdapter
from schoolfeed.services.realtime import ChangeEvent, ChangeSubscription, LocalChangeHub, RedisChangeSubscription

__all__ = [
    # Feed engine
    "FeedConfig",
    "NotificationFeedService",
    "FeedRegistry",
    # Persistence
    "KeyValueStore",
    "FileKeyValueStore",
    "RedisKeyValueStore",
    "MemoryKeyValueStore",
    "create_key_value_store",
    # Collaborators
    "SourceCollectionsAdapter",
    "RestSourceAdapter",
    "ChangeEvent",
    "ChangeSubscription",
    "LocalChangeHub",
    "RedisChangeSubscription",
]
