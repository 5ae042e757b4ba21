"""
Source Collections Adapter

Uniform access to the three raw source collections (messages, scheduled
items, materials). `RestSourceAdapter` talks to a PostgREST-style HTTP API.

Usage:
    adapter = RestSourceAdapter(settings.SOURCE_API_URL, settings.SOURCE_API_KEY)
    records = await adapter.list(NotificationType.MESSAGE)
    await adapter.close()
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import httpx

from schoolfeed.core.exceptions import SourceDeleteError, SourceFetchError
from schoolfeed.core.logging_config import logger
from schoolfeed.models.notification import BulkDeleteResult, NotificationType


class SourceCollectionsAdapter(ABC):
    """Port the feed engine consumes for every source backend call"""

    @property
    @abstractmethod
    def connected(self) -> bool:
        """Whether a backend is reachable/configured"""

    @abstractmethod
    async def list(self, source_type: NotificationType) -> List[Dict[str, Any]]:
        """All raw records of one collection. Raises SourceFetchError."""

    @abstractmethod
    async def delete(self, source_type: NotificationType, record_id: str) -> bool:
        """Delete one record; False or SourceDeleteError means failure"""

    def supports_bulk_delete(self, source_type: NotificationType) -> bool:
        return False

    async def bulk_delete(self, source_type: NotificationType, record_ids: Sequence[str]) -> BulkDeleteResult:
        raise NotImplementedError(f"No bulk delete for {source_type.value}")

    @abstractmethod
    async def register_viewed(self, source_type: NotificationType, record_id: str) -> bool:
        """Best-effort 'viewed' signal"""

    async def close(self) -> None:
        """Release held connections"""


class RestSourceAdapter(SourceCollectionsAdapter):
    """
    PostgREST-style REST backend.

    Endpoints:
    - list:        GET    /rest/v1/<table>?select=...
    - delete:      DELETE /rest/v1/<table>?id=eq.<id>
    - bulk delete: DELETE /rest/v1/messages?id=in.(a,b,c)
    - viewed:      POST   /rest/v1/rpc/register_view
    """

    TABLES: Dict[NotificationType, str] = {
        NotificationType.MESSAGE: "messages",
        NotificationType.SCHEDULED_ITEM: "scheduled_items",
        NotificationType.MATERIAL: "materials",
    }

    SELECTS: Dict[NotificationType, str] = {
        NotificationType.MESSAGE: "*",
        NotificationType.SCHEDULED_ITEM: "*,subject:subjects(name)",
        NotificationType.MATERIAL: "*,subject:subjects(name)",
    }

    BULK_TYPES = frozenset({NotificationType.MESSAGE})

    VIEWED_RPC = "register_view"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        headers = {"Accept": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url or "http://localhost",
            headers=headers,
            timeout=timeout,
        )

    @property
    def connected(self) -> bool:
        return bool(self.base_url)

    def _table(self, source_type: NotificationType) -> str:
        table = self.TABLES.get(source_type)
        if table is None:
            raise SourceFetchError(source_type.value, "No source collection")
        return table

    async def list(self, source_type: NotificationType) -> List[Dict[str, Any]]:
        table = self._table(source_type)
        if not self.connected:
            raise SourceFetchError(table, "Source backend not configured")

        try:
            response = await self.client.get(
                f"/rest/v1/{table}",
                params={"select": self.SELECTS[source_type]},
            )
            response.raise_for_status()
            rows = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SourceFetchError(table, str(e)) from e

        if not isinstance(rows, list):
            raise SourceFetchError(table, "Expected a JSON array")
        return rows

    async def delete(self, source_type: NotificationType, record_id: str) -> bool:
        table = self._table(source_type)
        if not self.connected:
            return False

        try:
            response = await self.client.delete(
                f"/rest/v1/{table}",
                params={"id": f"eq.{record_id}"},
                headers={"Prefer": "return=representation"},
            )
            response.raise_for_status()
            rows = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SourceDeleteError(table, record_id, str(e)) from e

        return isinstance(rows, list) and len(rows) > 0

    def supports_bulk_delete(self, source_type: NotificationType) -> bool:
        return source_type in self.BULK_TYPES

    async def bulk_delete(self, source_type: NotificationType, record_ids: Sequence[str]) -> BulkDeleteResult:
        """One DELETE for many rows; returned rows are the ones actually deleted"""
        if not self.supports_bulk_delete(source_type):
            return await super().bulk_delete(source_type, record_ids)

        requested = [str(record_id) for record_id in record_ids]
        if not requested:
            return BulkDeleteResult()

        table = self._table(source_type)
        if not self.connected:
            return BulkDeleteResult(failed_ids=requested)

        try:
            response = await self.client.delete(
                f"/rest/v1/{table}",
                params={"id": f"in.({','.join(requested)})"},
                headers={"Prefer": "return=representation"},
            )
            response.raise_for_status()
            rows = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SourceDeleteError(table, ",".join(requested), str(e)) from e

        deleted = {str(row.get("id")) for row in rows or [] if isinstance(row, dict)}
        return BulkDeleteResult(
            success_ids=[record_id for record_id in requested if record_id in deleted],
            failed_ids=[record_id for record_id in requested if record_id not in deleted],
        )

    async def register_viewed(self, source_type: NotificationType, record_id: str) -> bool:
        if not self.connected:
            return False
        try:
            response = await self.client.post(
                f"/rest/v1/rpc/{self.VIEWED_RPC}",
                json={"item_type": source_type.value, "item_id": record_id},
            )
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.debug(f"[RestSourceAdapter] viewed signal failed for {source_type.value}/{record_id}: {e}")
            return False

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
