"""
Feed runtime - builds the collaborators every feed shares

One persistence store, one source adapter, one change subscription and one
flag source per process; each NotificationFeedService gets them injected.
"""

from dataclasses import dataclass, field
from typing import Optional

from schoolfeed.core.config import Settings, settings as default_settings
from schoolfeed.core.logging_config import logger
from schoolfeed.core.redis_client import RedisClient
from schoolfeed.services.feature_flags import FlagSource, create_flag_source
from schoolfeed.services.feed_registry import FeedRegistry
from schoolfeed.services.key_value_store import KeyValueStore, create_key_value_store
from schoolfeed.services.notification_feed import FeedConfig, NotificationFeedService
from schoolfeed.services.realtime import ChangeSubscription, LocalChangeHub, RedisChangeSubscription
from schoolfeed.services.source_adapter import RestSourceAdapter, SourceCollectionsAdapter


async def create_change_subscription(config: Optional[Settings] = None) -> ChangeSubscription:
    config = config or default_settings
    if config.REALTIME_BACKEND.lower() == "redis":
        client = RedisClient(config.REDIS_URL)
        await client.connect()
        subscription = RedisChangeSubscription(client, channel_prefix=config.REALTIME_CHANNEL_PREFIX)
        await subscription.start()
        return subscription
    return LocalChangeHub()


@dataclass
class FeedRuntime:
    store: KeyValueStore
    adapter: SourceCollectionsAdapter
    subscription: Optional[ChangeSubscription] = None
    flag_source: Optional[FlagSource] = None
    config: FeedConfig = field(default_factory=FeedConfig)

    @classmethod
    async def build(cls, config: Optional[Settings] = None) -> "FeedRuntime":
        config = config or default_settings
        store = await create_key_value_store(config)
        adapter = RestSourceAdapter(
            config.SOURCE_API_URL,
            api_key=config.SOURCE_API_KEY,
            timeout=config.SOURCE_REQUEST_TIMEOUT,
        )
        if not adapter.connected:
            logger.warning("[FeedRuntime] SOURCE_API_URL not set - feeds will only show their snapshots")
        return cls(
            store=store,
            adapter=adapter,
            subscription=await create_change_subscription(config),
            flag_source=create_flag_source(store, config),
            config=FeedConfig.from_settings(config),
        )

    def new_feed(self, user_id: Optional[str]) -> NotificationFeedService:
        return NotificationFeedService(
            adapter=self.adapter,
            store=self.store,
            user_id=user_id,
            subscription=self.subscription,
            flag_source=self.flag_source,
            config=self.config,
        )

    def registry(self, config: Optional[Settings] = None) -> FeedRegistry:
        config = config or default_settings
        return FeedRegistry(
            self.new_feed,
            idle_ttl=config.FEED_IDLE_TTL or None,
            max_feeds=config.FEED_MAX_ACTIVE or None,
        )

    async def close(self) -> None:
        if self.subscription is not None:
            await self.subscription.close()
        await self.adapter.close()
        await self.store.close()
