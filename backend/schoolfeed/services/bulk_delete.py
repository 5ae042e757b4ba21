"""
Bulk Operation Coordinator

Fans a delete request out per source type:
- types the adapter can bulk-delete get one bulk call
- other source types get concurrent individual deletes
- system (local-only) items succeed immediately
- ids with a type prefix but no record id ("message-") have nothing to
  delete remotely and also succeed locally

Never raises; every failure is reported per id.
"""

import asyncio
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from schoolfeed.core.logging_config import logger
from schoolfeed.models.notification import (
    BulkDeleteResult,
    NotificationItem,
    NotificationType,
    parse_notification_id,
)
from schoolfeed.services.source_adapter import SourceCollectionsAdapter

ItemResolver = Callable[[str], Optional[NotificationItem]]


class BulkDeleteCoordinator:

    def __init__(self, adapter: SourceCollectionsAdapter):
        self.adapter = adapter

    @staticmethod
    def classify(
        notification_id: str,
        item: Optional[NotificationItem] = None,
    ) -> Tuple[NotificationType, Optional[str]]:
        """(type, source record id) from the resident item, else from the id prefix"""
        if item is not None:
            return item.type, item.source_id
        return parse_notification_id(notification_id)

    async def delete_one(self, notification_id: str, item: Optional[NotificationItem] = None) -> bool:
        notification_type, source_id = self.classify(notification_id, item)
        if notification_type is NotificationType.SYSTEM:
            return True
        if not source_id:
            logger.info(f"[BulkDelete] no source record for {notification_id}, local removal only")
            return True
        try:
            return bool(await self.adapter.delete(notification_type, source_id))
        except Exception as e:
            logger.warning(f"[BulkDelete] delete failed for {notification_id}: {e}")
            return False

    async def _bulk(
        self,
        notification_type: NotificationType,
        entries: List[Tuple[str, str]],
    ) -> Set[str]:
        """One bulk call; returns the notification ids confirmed deleted"""
        by_source_id = {source_id: notification_id for notification_id, source_id in entries}
        try:
            result = await self.adapter.bulk_delete(notification_type, list(by_source_id))
        except Exception as e:
            logger.warning(f"[BulkDelete] bulk {notification_type.value} delete failed: {e}")
            return set()
        return {by_source_id[source_id] for source_id in result.success_ids if source_id in by_source_id}

    async def delete_many(self, notification_ids: Sequence[str], resolve: ItemResolver) -> BulkDeleteResult:
        ordered = list(dict.fromkeys(notification_ids))
        succeeded: Set[str] = set()
        grouped: Dict[NotificationType, List[Tuple[str, str]]] = defaultdict(list)

        for notification_id in ordered:
            notification_type, source_id = self.classify(notification_id, resolve(notification_id))
            if notification_type is NotificationType.SYSTEM:
                succeeded.add(notification_id)
            elif source_id:
                grouped[notification_type].append((notification_id, source_id))
            else:
                logger.info(f"[BulkDelete] no source record for {notification_id}, local removal only")
                succeeded.add(notification_id)

        jobs = []
        for notification_type, entries in grouped.items():
            if self.adapter.supports_bulk_delete(notification_type):
                jobs.append(self._bulk(notification_type, entries))
            else:
                for notification_id, source_id in entries:
                    jobs.append(self._delete_source(notification_type, notification_id, source_id))

        outcomes = await asyncio.gather(*jobs)
        for outcome in outcomes:
            if isinstance(outcome, set):
                succeeded.update(outcome)
            elif outcome:
                succeeded.add(outcome)

        result = BulkDeleteResult(
            success_ids=[notification_id for notification_id in ordered if notification_id in succeeded],
            failed_ids=[notification_id for notification_id in ordered if notification_id not in succeeded],
        )
        logger.info(
            f"[BulkDelete] {len(result.success_ids)} deleted, {len(result.failed_ids)} failed"
        )
        return result

    async def _delete_source(
        self,
        notification_type: NotificationType,
        notification_id: str,
        source_id: str,
    ) -> Optional[str]:
        try:
            deleted = await self.adapter.delete(notification_type, source_id)
        except Exception as e:
            logger.warning(f"[BulkDelete] delete failed for {notification_id}: {e}")
            return None
        return notification_id if deleted else None
