"""
Feed Registry - one NotificationFeedService per user identity

Feeds are created and started on first use and closed on dispose(),
idle eviction or shutdown, so each identity's state lives exactly as long
as its feed.

Eviction:
    idle_ttl   - feeds untouched for longer than this many seconds are
                 closed by evict_idle() (run periodically by run_sweeper)
    max_feeds  - starting a feed beyond this cap closes the least recently
                 used one first
"""

import asyncio
import time
from collections import OrderedDict
from typing import Callable, List, Optional

from schoolfeed.core.logging_config import logger
from schoolfeed.services.notification_feed import NotificationFeedService

FeedFactory = Callable[[str], NotificationFeedService]


class FeedRegistry:

    def __init__(
        self,
        factory: FeedFactory,
        idle_ttl: Optional[float] = None,
        max_feeds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._factory = factory
        self.idle_ttl = idle_ttl
        self.max_feeds = max_feeds
        self._clock = clock
        # user_id -> feed, least recently used first
        self._feeds: "OrderedDict[str, NotificationFeedService]" = OrderedDict()
        self._last_access = {}
        self._lock = asyncio.Lock()

    def _touch(self, user_id: str) -> None:
        self._feeds.move_to_end(user_id)
        self._last_access[user_id] = self._clock()

    async def get(self, user_id: str) -> NotificationFeedService:
        """Existing feed for `user_id`, or a freshly started one"""
        feed = self._feeds.get(user_id)
        if feed is not None:
            self._touch(user_id)
            return feed

        evicted = []
        async with self._lock:
            feed = self._feeds.get(user_id)
            if feed is None:
                if self.max_feeds and len(self._feeds) >= self.max_feeds:
                    evicted = self._pop_oldest(len(self._feeds) - self.max_feeds + 1)
                feed = self._factory(user_id)
                await feed.start()
                self._feeds[user_id] = feed
                logger.info(f"[FeedRegistry] feed started for {user_id} ({len(self._feeds)} active)")
            self._touch(user_id)

        await self._close(evicted, reason="capacity")
        return feed

    def peek(self, user_id: str) -> Optional[NotificationFeedService]:
        return self._feeds.get(user_id)

    def active_users(self) -> List[str]:
        return list(self._feeds)

    def idle_for(self, user_id: str) -> Optional[float]:
        last = self._last_access.get(user_id)
        if last is None:
            return None
        return self._clock() - last

    async def dispose(self, user_id: str) -> bool:
        async with self._lock:
            feed = self._feeds.pop(user_id, None)
            self._last_access.pop(user_id, None)
        if feed is None:
            return False
        await feed.close()
        logger.info(f"[FeedRegistry] feed disposed for {user_id}")
        return True

    async def switch(self, user_id: str, new_user_id: str) -> NotificationFeedService:
        """
        Move `user_id`'s live feed to `new_user_id` through switch_user().

        When `new_user_id` already has a feed, the old one is closed and
        the existing one is returned.
        """
        if user_id == new_user_id:
            return await self.get(user_id)

        async with self._lock:
            feed = self._feeds.pop(user_id, None)
            self._last_access.pop(user_id, None)
            if feed is not None and new_user_id not in self._feeds:
                await feed.switch_user(new_user_id)
                self._feeds[new_user_id] = feed
                self._touch(new_user_id)
                logger.info(f"[FeedRegistry] feed switched {user_id} -> {new_user_id}")
                return feed

        if feed is not None:
            await feed.close()
            logger.info(f"[FeedRegistry] feed disposed for {user_id}, {new_user_id} already active")
        return await self.get(new_user_id)

    async def evict_idle(self) -> List[str]:
        """Close every feed idle longer than idle_ttl, returns their users"""
        if not self.idle_ttl:
            return []
        now = self._clock()
        async with self._lock:
            stale = [
                user_id for user_id, last in self._last_access.items()
                if now - last > self.idle_ttl
            ]
            evicted = [(user_id, self._feeds.pop(user_id)) for user_id in stale]
            for user_id in stale:
                self._last_access.pop(user_id, None)

        await self._close(evicted, reason="idle")
        return stale

    async def run_sweeper(self, interval: float) -> None:
        """Evict idle feeds every `interval` seconds until cancelled"""
        while True:
            await asyncio.sleep(interval)
            try:
                await self.evict_idle()
            except Exception as e:
                logger.error(f"[FeedRegistry] idle sweep failed: {e}", exc_info=True)

    async def close_all(self) -> None:
        async with self._lock:
            feeds = list(self._feeds.values())
            self._feeds.clear()
            self._last_access.clear()
        for feed in feeds:
            await feed.close()
        if feeds:
            logger.info(f"[FeedRegistry] closed {len(feeds)} feeds")

    def _pop_oldest(self, count: int):
        evicted = []
        for _ in range(count):
            user_id, feed = self._feeds.popitem(last=False)
            self._last_access.pop(user_id, None)
            evicted.append((user_id, feed))
        return evicted

    async def _close(self, evicted, reason: str) -> None:
        for user_id, feed in evicted:
            await feed.close()
            logger.info(f"[FeedRegistry] feed evicted for {user_id} ({reason})")

    def __len__(self) -> int:
        return len(self._feeds)
