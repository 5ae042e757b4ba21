"""
SchoolFeed - Test Configuration and Fixtures
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pytest
from faker import Faker

# Keep tests away from any developer .env backends
os.environ['ENVIRONMENT'] = 'test'
os.environ['FEED_STORE_BACKEND'] = 'memory'
os.environ['REALTIME_BACKEND'] = 'local'
os.environ['SOURCE_API_URL'] = ''

from schoolfeed.models.notification import BulkDeleteResult, NotificationType
from schoolfeed.services.key_value_store import MemoryKeyValueStore
from schoolfeed.services.notification_feed import FeedConfig, NotificationFeedService
from schoolfeed.services.realtime import LocalChangeHub
from schoolfeed.services.source_adapter import SourceCollectionsAdapter
from schoolfeed.services.timers import CancellableTimer, TimerCallback

fake = Faker()

BASE_NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Clock and timer
# =============================================================================

class FakeClock:
    """Monotonic seconds and wall-clock time that only move when told to"""

    def __init__(self, now: datetime = BASE_NOW):
        self._monotonic = 1000.0
        self._now = now

    def monotonic(self) -> float:
        return self._monotonic

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._monotonic += seconds
        self._now += timedelta(seconds=seconds)


class ManualTimer(CancellableTimer):
    """Cancellable timer fired explicitly by the test"""

    def __init__(self):
        self.callback: Optional[TimerCallback] = None
        self.delay: Optional[float] = None
        self.scheduled: List[float] = []
        self.cancellations = 0

    def schedule(self, delay: float, callback: TimerCallback) -> None:
        if self.callback is not None:
            self.cancellations += 1
        self.callback = callback
        self.delay = delay
        self.scheduled.append(delay)

    def cancel(self) -> None:
        if self.callback is not None:
            self.cancellations += 1
        self.callback = None
        self.delay = None

    @property
    def pending(self) -> bool:
        return self.callback is not None

    async def fire(self) -> None:
        callback = self.callback
        self.callback = None
        self.delay = None
        if callback is not None:
            await callback()


# =============================================================================
# Source backend
# =============================================================================

Outcome = Union[bool, Exception]


class FakeSourceAdapter(SourceCollectionsAdapter):
    """
    In-memory source collections.

    Deletes succeed by default; `outcomes[(type, record_id)]` scripts a
    False result or an exception instead. Successful deletes drop the record.
    """

    def __init__(self, connected: bool = True, bulk_types: Sequence[NotificationType] = (NotificationType.MESSAGE,)):
        self.records: Dict[NotificationType, List[Dict[str, Any]]] = {
            NotificationType.MESSAGE: [],
            NotificationType.SCHEDULED_ITEM: [],
            NotificationType.MATERIAL: [],
        }
        self.outcomes: Dict[Tuple[NotificationType, str], Outcome] = {}
        self.bulk_types = set(bulk_types)
        self._connected = connected
        self.list_calls = 0
        self.list_error: Optional[Exception] = None
        self.delete_calls: List[Tuple[NotificationType, str]] = []
        self.bulk_calls: List[Tuple[NotificationType, List[str]]] = []
        self.viewed: List[Tuple[NotificationType, str]] = []

    @property
    def connected(self) -> bool:
        return self._connected

    def add(self, source_type: NotificationType, record: Dict[str, Any]) -> Dict[str, Any]:
        self.records[source_type].append(record)
        return record

    async def list(self, source_type: NotificationType) -> List[Dict[str, Any]]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return [dict(record) for record in self.records[source_type]]

    def _apply_delete(self, source_type: NotificationType, record_id: str) -> bool:
        outcome = self.outcomes.get((source_type, record_id), True)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome:
            self.records[source_type] = [
                record for record in self.records[source_type] if str(record["id"]) != record_id
            ]
        return bool(outcome)

    async def delete(self, source_type: NotificationType, record_id: str) -> bool:
        self.delete_calls.append((source_type, record_id))
        return self._apply_delete(source_type, record_id)

    def supports_bulk_delete(self, source_type: NotificationType) -> bool:
        return source_type in self.bulk_types

    async def bulk_delete(self, source_type: NotificationType, record_ids: Sequence[str]) -> BulkDeleteResult:
        self.bulk_calls.append((source_type, list(record_ids)))
        result = BulkDeleteResult()
        for record_id in record_ids:
            try:
                deleted = self._apply_delete(source_type, record_id)
            except Exception:
                deleted = False
            (result.success_ids if deleted else result.failed_ids).append(record_id)
        return result

    async def register_viewed(self, source_type: NotificationType, record_id: str) -> bool:
        self.viewed.append((source_type, record_id))
        return True


# =============================================================================
# Record factories
# =============================================================================

def iso(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


def message_record(record_id: Any, sent_at: datetime, title: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": record_id,
        "title": title or fake.sentence(nb_words=4),
        "content": fake.sentence(),
        "sent_at": iso(sent_at),
    }


def scheduled_record(
    record_id: Any,
    created_at: datetime,
    due_date: Optional[datetime] = None,
    kind: str = "test",
    subject: Optional[str] = "Mathematics",
) -> Dict[str, Any]:
    return {
        "id": record_id,
        "kind": kind,
        "title": fake.sentence(nb_words=3),
        "due_date": iso(due_date) if due_date else None,
        "created_at": iso(created_at),
        "subject": {"name": subject} if subject is not None else None,
    }


def material_record(record_id: Any, created_at: datetime, kind: str = "pdf") -> Dict[str, Any]:
    return {
        "id": record_id,
        "kind": kind,
        "title": fake.sentence(nb_words=3),
        "created_at": iso(created_at),
        "subject": {"name": "History"},
    }


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timer() -> ManualTimer:
    return ManualTimer()


@pytest.fixture
def adapter() -> FakeSourceAdapter:
    return FakeSourceAdapter()


@pytest.fixture
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def hub() -> LocalChangeHub:
    return LocalChangeHub()


@pytest.fixture
def records():
    """Record factories: records.message(...), records.scheduled(...), records.material(...)"""
    class Records:
        message = staticmethod(message_record)
        scheduled = staticmethod(scheduled_record)
        material = staticmethod(material_record)
    return Records


@pytest.fixture
def make_feed(adapter, store, clock, timer, hub):
    """Build a NotificationFeedService wired to the shared fakes"""
    def factory(user_id: Optional[str] = "user-1", **overrides) -> NotificationFeedService:
        kwargs = dict(
            adapter=adapter,
            store=store,
            user_id=user_id,
            subscription=hub,
            config=FeedConfig(),
            timer=timer,
            clock=clock.monotonic,
            now=clock.now,
        )
        kwargs.update(overrides)
        return NotificationFeedService(**kwargs)
    return factory
