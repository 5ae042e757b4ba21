"""
Retention Policy - count and age caps for the feed
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List

from schoolfeed.models.notification import NotificationItem


def sort_feed(items: Iterable[NotificationItem]) -> List[NotificationItem]:
    """Newest first; ties keep their merge order"""
    return sorted(items, key=lambda item: item.timestamp, reverse=True)


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Hard caps applied on every recomputation.

    Only trims the in-memory/published list, never the backend.
    """
    max_items: int = 500
    max_age: timedelta = timedelta(days=90)

    def apply(self, items: List[NotificationItem], now: datetime) -> List[NotificationItem]:
        """
        Drop items older than `max_age`, then keep the first `max_items`.

        `items` must already be sorted newest first. `now` is taken once by
        the caller so the whole batch is judged against the same instant.
        """
        cutoff = now - self.max_age
        fresh = [item for item in items if item.timestamp >= cutoff]
        return fresh[:self.max_items]
