"""
Notification Feed Service

Merges messages, scheduled items and materials into one deduplicated,
newest-first, capped feed for a single user identity, and keeps it in sync.

Refresh pipeline:
    throttle -> TTL cache -> concurrent fetch -> normalize/merge by id
    -> sort -> retention -> cache write -> diff gate -> publish + snapshot

Mutations (read/unread, removals) apply synchronously to the published list
and the read-state store. `refresh()` only ever replaces the list wholesale,
re-reading the read flags from the read-state store at commit time so a
mark-as-read landing mid-fetch is kept.

Usage:
    feed = NotificationFeedService(adapter, store, user_id="u-1", subscription=hub)
    await feed.start()
    feed.notifications, feed.unread_count
    await feed.close()
"""

import asyncio
import json
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from schoolfeed.core.config import Settings, settings as default_settings
from schoolfeed.core.exceptions import MalformedRecordError
from schoolfeed.core.logging_config import logger
from schoolfeed.models.notification import (
    SOURCE_TYPES,
    BulkDeleteResult,
    FeedFlags,
    NotificationItem,
    NotificationType,
    build_notification_id,
)
from schoolfeed.services.bulk_delete import BulkDeleteCoordinator
from schoolfeed.services.debounce import AdaptiveDebounceScheduler
from schoolfeed.services.feature_flags import FlagSource
from schoolfeed.services.feed_metrics import FeedMetrics
from schoolfeed.services.key_value_store import KeyValueStore
from schoolfeed.services.normalizer import normalize_record
from schoolfeed.services.read_state import ReadStateStore
from schoolfeed.services.realtime import (
    ENTITY_MESSAGES_DELETED,
    SOURCE_ENTITIES,
    ChangeEvent,
    ChangeSubscription,
)
from schoolfeed.services.retention import RetentionPolicy, sort_feed
from schoolfeed.services.smart_cache import SmartCache
from schoolfeed.services.source_adapter import SourceCollectionsAdapter
from schoolfeed.services.timers import AsyncioTimer, CancellableTimer

SNAPSHOT_KEY_PREFIX = "notifications_cache_"


def snapshot_key(user_id: str) -> str:
    return f"{SNAPSHOT_KEY_PREFIX}{user_id}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FeedConfig:
    """Engine knobs, all durations in seconds"""
    max_items: int = 500
    max_age_days: int = 90
    min_fetch_interval: float = 2.0
    cache_ttl: float = 10.0
    debounce_base_delay: float = 0.2
    debounce_step_delay: float = 0.1
    debounce_max_delay: float = 0.8
    debounce_burst_window: float = 5.0
    debounce_min_event_interval: float = 1.0

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "FeedConfig":
        config = config or default_settings
        return cls(
            max_items=config.FEED_MAX_ITEMS,
            max_age_days=config.FEED_MAX_AGE_DAYS,
            min_fetch_interval=config.FEED_MIN_FETCH_INTERVAL,
            cache_ttl=config.FEED_CACHE_TTL,
            debounce_base_delay=config.DEBOUNCE_BASE_DELAY,
            debounce_step_delay=config.DEBOUNCE_STEP_DELAY,
            debounce_max_delay=config.DEBOUNCE_MAX_DELAY,
            debounce_burst_window=config.DEBOUNCE_BURST_WINDOW,
            debounce_min_event_interval=config.DEBOUNCE_MIN_EVENT_INTERVAL,
        )


class NotificationFeedService:
    """
    One feed per user identity.

    Public operations never raise: refresh failures are logged and the
    previous list stays published, deletes report booleans or a
    BulkDeleteResult.
    """

    CACHE_SLOT = "notifications"

    def __init__(
        self,
        adapter: SourceCollectionsAdapter,
        store: KeyValueStore,
        user_id: Optional[str] = None,
        subscription: Optional[ChangeSubscription] = None,
        flag_source: Optional[FlagSource] = None,
        config: Optional[FeedConfig] = None,
        timer: Optional[CancellableTimer] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
    ):
        self.adapter = adapter
        self.store = store
        self.user_id = user_id
        self.subscription = subscription
        self.flag_source = flag_source
        self.config = config or FeedConfig()
        self._clock = clock
        self._now = now

        self.flags = FeedFlags()
        self.metrics = FeedMetrics()
        self.read_state = ReadStateStore(store)
        self.retention = RetentionPolicy(
            max_items=self.config.max_items,
            max_age=timedelta(days=self.config.max_age_days),
        )
        self.coordinator = BulkDeleteCoordinator(adapter)
        self._cache: SmartCache[List[NotificationItem]] = SmartCache(
            default_ttl=self.config.cache_ttl, clock=clock
        )
        self._debounce = AdaptiveDebounceScheduler(
            refresh=self.refresh,
            timer=timer or AsyncioTimer(),
            last_refresh_at=lambda: self._last_fetch_at,
            metrics=self.metrics,
            base_delay=self.config.debounce_base_delay,
            step_delay=self.config.debounce_step_delay,
            max_delay=self.config.debounce_max_delay,
            burst_window=self.config.debounce_burst_window,
            min_event_interval=self.config.debounce_min_event_interval,
            clock=clock,
        )

        self._items: List[NotificationItem] = []
        self._index: Dict[str, NotificationItem] = {}
        self._order: List[str] = []

        self._last_fetch_at: Optional[float] = None
        self._inflight: Optional[asyncio.Task] = None
        self._loading = False
        self._generation = 0
        self._removal_epoch = 0
        self._removed: Dict[str, int] = {}
        self._unsubscribers: List[Callable[[], None]] = []
        self._background: Set[asyncio.Task] = set()
        self._started = False

    # ==========================================
    # Published state (read-only views)
    # ==========================================

    @property
    def notifications(self) -> Tuple[NotificationItem, ...]:
        return tuple(self._items)

    @property
    def unread_count(self) -> int:
        return sum(1 for item in self._items if not item.read)

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def started(self) -> bool:
        return self._started

    def get(self, notification_id: str) -> Optional[NotificationItem]:
        return self._index.get(notification_id)

    # ==========================================
    # Lifecycle
    # ==========================================

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        await self.read_state.load(self.user_id)
        if self.flag_source is not None:
            self.flags = await self.flag_source.load()

        if not self.flags.enabled:
            logger.info(f"[NotificationFeed] feed disabled for {self.user_id or 'anonymous'}")
            return

        await self._restore_snapshot()
        if self.flags.sync:
            self._attach()
        await self.refresh()

    async def close(self) -> None:
        self._started = False
        self._detach()
        self._debounce.reset()
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        tasks = list(self._background)
        if self._inflight is not None:
            tasks.append(self._inflight)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()
        self._inflight = None

    async def switch_user(self, user_id: Optional[str]) -> None:
        """Discard everything held for the current identity and load `user_id`"""
        logger.info(f"[NotificationFeed] switching identity {self.user_id} -> {user_id}")
        self._generation += 1
        self._debounce.reset()
        self._reset_local_state()
        self.user_id = user_id
        await self.read_state.load(user_id)
        if self.flags.enabled:
            await self._restore_snapshot()
            await self.refresh(force=True)

    async def apply_flags(self, flags: FeedFlags) -> None:
        previous = self.flags
        self.flags = flags

        if not flags.enabled:
            self._generation += 1
            self._detach()
            self._debounce.reset()
            self._reset_local_state()
            logger.info("[NotificationFeed] feed disabled, published list emptied")
            return

        if flags.sync:
            self._attach()
        else:
            self._detach()
            self._debounce.cancel()

        if not previous.enabled or (flags.sync and not previous.sync):
            await self.refresh(force=True)

    async def reload_flags(self) -> FeedFlags:
        if self.flag_source is not None:
            await self.apply_flags(await self.flag_source.load())
        return self.flags

    def _reset_local_state(self) -> None:
        self._publish([])
        self._cache.clear()
        self._last_fetch_at = None
        self._removed.clear()

    # ==========================================
    # Live change events
    # ==========================================

    def _attach(self) -> None:
        if self.subscription is None or self._unsubscribers:
            return
        for entity in SOURCE_ENTITIES:
            self._unsubscribers.append(self.subscription.subscribe(entity, self._on_change))
        self._unsubscribers.append(
            self.subscription.subscribe(ENTITY_MESSAGES_DELETED, self.handle_deleted_broadcast)
        )

    def _detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _on_change(self, event: ChangeEvent) -> Optional[float]:
        if not (self.flags.enabled and self.flags.sync):
            return None
        self._cache.delete(self.CACHE_SLOT)
        return self._debounce.on_event(event)

    async def handle_deleted_broadcast(self, event: ChangeEvent) -> None:
        """Another session deleted a message: drop it here without refetching"""
        record = event.record
        if isinstance(record, dict):
            message_id = record.get("id") or record.get("message_id")
        else:
            message_id = record
        if message_id in (None, ""):
            return
        await self._remove_local([build_notification_id(NotificationType.MESSAGE, message_id)])

    # ==========================================
    # Refresh pipeline
    # ==========================================

    async def refresh(self, force: bool = False) -> None:
        """
        Recompute the feed. Never raises.

        Calls overlapping an in-flight refresh wait for it instead of
        starting another. `force` skips the throttle and the cache, and
        always runs after any refresh already in flight.
        """
        if not self.flags.enabled:
            return

        while self._inflight is not None and not self._inflight.done():
            await asyncio.shield(self._inflight)
            if not force:
                return

        task = asyncio.ensure_future(self._run_refresh(force))
        self._inflight = task
        await asyncio.shield(task)

    async def _run_refresh(self, force: bool) -> None:
        if not force and self._last_fetch_at is not None:
            if self._clock() - self._last_fetch_at < self.config.min_fetch_interval:
                logger.debug("[NotificationFeed] refresh throttled")
                return

        if not force:
            cached = self._cache.get(self.CACHE_SLOT)
            if cached is not None:
                await self._commit(cached)
                return

        generation = self._generation
        removal_epoch = self._removal_epoch
        started = time.perf_counter()
        self._loading = True
        try:
            items = await self._fetch_all()
            if generation != self._generation:
                logger.debug("[NotificationFeed] discarding refresh for a previous identity")
                return

            items = self._drop_removed(items, removal_epoch)
            self._cache.set(self.CACHE_SLOT, items)
            published = await self._commit(items)

            self._last_fetch_at = self._clock()
            self.metrics.record_refresh(self._now())
            logger.log_refresh(
                len(items),
                published,
                (time.perf_counter() - started) * 1000,
                user_id=self.user_id,
            )
        except Exception as e:
            logger.log_error_with_context(e, context="NotificationFeedService.refresh", user_id=self.user_id)
        finally:
            self._loading = False

    async def _fetch_all(self) -> List[NotificationItem]:
        now = self._now()
        results = await asyncio.gather(*(self.adapter.list(source_type) for source_type in SOURCE_TYPES))

        read_ids = self.read_state.ids
        merged: Dict[str, NotificationItem] = {}
        for source_type, records in zip(SOURCE_TYPES, results):
            for record in records:
                try:
                    item = normalize_record(source_type, record, now, read_ids)
                except MalformedRecordError as e:
                    logger.warning(f"[NotificationFeed] skipping {source_type.value} record: {e.message}")
                    continue
                except Exception as e:
                    logger.warning(
                        f"[NotificationFeed] skipping unreadable {source_type.value} record "
                        f"{record.get('id') if isinstance(record, dict) else record!r}: {type(e).__name__}: {e}"
                    )
                    continue
                merged[item.id] = item

        return self.retention.apply(sort_feed(merged.values()), now)

    def _drop_removed(self, items: List[NotificationItem], since_epoch: int) -> List[NotificationItem]:
        """
        Filter ids removed locally while this fetch was running.

        Removals older than the fetch are already reflected by the backend,
        so their markers are released here.
        """
        self._removed = {nid: epoch for nid, epoch in self._removed.items() if epoch > since_epoch}
        if not self._removed:
            return items
        return [item for item in items if item.id not in self._removed]

    def _with_read_state(self, items: Iterable[NotificationItem]) -> List[NotificationItem]:
        annotated = []
        for item in items:
            read = self.read_state.is_read(item.id)
            annotated.append(item if item.read == read else replace(item, read=read))
        return annotated

    async def _commit(self, candidate: List[NotificationItem]) -> bool:
        """Publish `candidate` unless it matches the published list; True if published"""
        candidate = self._with_read_state(candidate)
        current = [(item.id, item.read) for item in self._items]
        if current == [(item.id, item.read) for item in candidate]:
            self.metrics.record_suppressed()
            return False

        self._publish(candidate)
        await self._persist_snapshot()
        return True

    def _publish(self, items: List[NotificationItem]) -> None:
        self._items = list(items)
        self._index = {item.id: item for item in self._items}
        self._order = [item.id for item in self._items]

    # ==========================================
    # Recovery snapshot
    # ==========================================

    async def _persist_snapshot(self) -> None:
        if not self.user_id:
            return
        try:
            payload = json.dumps([item.to_dict() for item in self._items])
            await self.store.set(snapshot_key(self.user_id), payload)
        except Exception as e:
            logger.warning(f"[NotificationFeed] snapshot write failed: {e}")

    async def _restore_snapshot(self) -> None:
        if not self.user_id or self._items:
            return
        try:
            raw = await self.store.get(snapshot_key(self.user_id))
        except Exception as e:
            logger.warning(f"[NotificationFeed] snapshot read failed: {e}")
            return
        if not raw:
            return

        try:
            items = [NotificationItem.from_dict(entry) for entry in json.loads(raw)]
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"[NotificationFeed] ignoring corrupt snapshot for {self.user_id}: {e}")
            return

        restored = self.retention.apply(sort_feed(items), self._now())
        self._publish(self._with_read_state(restored))
        logger.debug(f"[NotificationFeed] restored {len(restored)} items from snapshot")

    # ==========================================
    # Read state
    # ==========================================

    def _set_read(self, notification_ids: Set[str], read: bool) -> None:
        changed = False
        items = []
        for item in self._items:
            if item.id in notification_ids and item.read != read:
                item = replace(item, read=read)
                changed = True
            items.append(item)
        if changed:
            self._publish(items)

    async def mark_as_read(self, notification_id: str) -> None:
        self._set_read({notification_id}, True)
        await self.read_state.mark_read(notification_id)

        item = self._index.get(notification_id)
        if item is not None and item.source_id and self.adapter.connected:
            self._spawn(self._register_viewed(item))

    async def mark_as_unread(self, notification_id: str) -> None:
        self._set_read({notification_id}, False)
        await self.read_state.mark_unread(notification_id)

    async def mark_all_as_read(self) -> None:
        ids = set(self._order)
        self._set_read(ids, True)
        await self.read_state.mark_many_read(ids)

    async def _register_viewed(self, item: NotificationItem) -> None:
        try:
            await self.adapter.register_viewed(item.type, item.source_id)
        except Exception as e:
            logger.debug(f"[NotificationFeed] viewed signal failed for {item.id}: {e}")

    def _spawn(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ==========================================
    # Removal and deletion
    # ==========================================

    async def _remove_local(self, notification_ids: Iterable[str]) -> None:
        """Single removal path: published list, cache slot, read-state, snapshot"""
        doomed = set(notification_ids)
        if not doomed:
            return

        self._removal_epoch += 1
        for notification_id in doomed:
            self._removed[notification_id] = self._removal_epoch

        self._cache.delete(self.CACHE_SLOT)
        if any(notification_id in self._index for notification_id in doomed):
            self._publish([item for item in self._items if item.id not in doomed])
            await self._persist_snapshot()
        await self.read_state.discard_many(doomed)

    async def remove_by_id(self, notification_id: str) -> None:
        """Local-only removal, the backend record is untouched"""
        await self._remove_local([notification_id])

    async def delete_by_id(self, notification_id: str) -> bool:
        deleted = await self.coordinator.delete_one(notification_id, self._index.get(notification_id))
        if deleted:
            await self._remove_local([notification_id])
        return deleted

    async def bulk_delete(self, notification_ids: Sequence[str]) -> BulkDeleteResult:
        started = time.perf_counter()
        result = await self.coordinator.delete_many(notification_ids, self._index.get)
        logger.log_performance(
            "bulk_delete",
            (time.perf_counter() - started) * 1000,
            threshold_ms=5000,
            requested=len(notification_ids),
            failed=len(result.failed_ids),
        )
        await self._remove_local(result.success_ids)
        await self.refresh(force=True)
        return result

    async def delete_read(self) -> None:
        read_ids = [item.id for item in self._items if item.read]
        if not read_ids:
            return
        await self.bulk_delete(read_ids)

    # ==========================================
    # Diagnostics
    # ==========================================

    def reset_metrics(self) -> None:
        self.metrics.reset()

    async def reset_all(self) -> None:
        """Forget everything held for this identity, persisted copies included"""
        self._debounce.reset()
        self._reset_local_state()
        await self.read_state.clear()
        if self.user_id:
            try:
                await self.store.remove(snapshot_key(self.user_id))
            except Exception as e:
                logger.warning(f"[NotificationFeed] snapshot removal failed: {e}")
        self.reset_metrics()
