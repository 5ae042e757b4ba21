"""
Unit Tests for BulkDeleteCoordinator
"""
import pytest

from schoolfeed.core.exceptions import SourceDeleteError
from schoolfeed.models.notification import NotificationType
from schoolfeed.services.bulk_delete import BulkDeleteCoordinator


def resolve_nothing(notification_id):
    return None


class TestClassify:

    def test_from_id_prefix(self):
        assert BulkDeleteCoordinator.classify("scheduled-4") == (NotificationType.SCHEDULED_ITEM, "4")

    def test_unknown_prefix_is_local(self):
        assert BulkDeleteCoordinator.classify("welcome-1") == (NotificationType.SYSTEM, None)


class TestDeleteOne:

    @pytest.mark.asyncio
    async def test_success(self, adapter, records, clock):
        adapter.add(NotificationType.MATERIAL, records.material("8", clock.now()))
        coordinator = BulkDeleteCoordinator(adapter)

        assert await coordinator.delete_one("material-8") is True
        assert adapter.delete_calls == [(NotificationType.MATERIAL, "8")]

    @pytest.mark.asyncio
    async def test_backend_false(self, adapter):
        adapter.outcomes[(NotificationType.MATERIAL, "8")] = False
        assert await BulkDeleteCoordinator(adapter).delete_one("material-8") is False

    @pytest.mark.asyncio
    async def test_backend_exception_is_failure(self, adapter):
        adapter.outcomes[(NotificationType.MESSAGE, "1")] = SourceDeleteError("messages", "1")
        assert await BulkDeleteCoordinator(adapter).delete_one("message-1") is False

    @pytest.mark.asyncio
    async def test_system_item_needs_no_backend(self, adapter):
        assert await BulkDeleteCoordinator(adapter).delete_one("system-welcome") is True
        assert adapter.delete_calls == []

    @pytest.mark.asyncio
    async def test_prefix_only_id_needs_no_backend(self, adapter):
        assert await BulkDeleteCoordinator(adapter).delete_one("message-") is True
        assert adapter.delete_calls == []


class TestDeleteMany:

    @pytest.mark.asyncio
    async def test_partial_failure(self, adapter):
        adapter.outcomes[(NotificationType.SCHEDULED_ITEM, "3")] = False
        coordinator = BulkDeleteCoordinator(adapter)

        result = await coordinator.delete_many(["message-1", "material-2", "scheduled-3"], resolve_nothing)

        assert result.success_ids == ["message-1", "material-2"]
        assert result.failed_ids == ["scheduled-3"]

    @pytest.mark.asyncio
    async def test_messages_use_one_bulk_call(self, adapter):
        coordinator = BulkDeleteCoordinator(adapter)

        await coordinator.delete_many(["message-1", "material-9", "message-2"], resolve_nothing)

        assert adapter.bulk_calls == [(NotificationType.MESSAGE, ["1", "2"])]
        assert adapter.delete_calls == [(NotificationType.MATERIAL, "9")]

    @pytest.mark.asyncio
    async def test_bulk_call_exception_fails_every_message(self, adapter):
        async def explode(source_type, record_ids):
            raise SourceDeleteError("messages", ",".join(record_ids))

        adapter.bulk_delete = explode
        coordinator = BulkDeleteCoordinator(adapter)

        result = await coordinator.delete_many(["message-1", "message-2", "material-3"], resolve_nothing)

        assert result.success_ids == ["material-3"]
        assert result.failed_ids == ["message-1", "message-2"]

    @pytest.mark.asyncio
    async def test_local_items_succeed_and_duplicates_collapse(self, adapter):
        coordinator = BulkDeleteCoordinator(adapter)

        result = await coordinator.delete_many(["system-a", "system-a", "welcome"], resolve_nothing)

        assert result.success_ids == ["system-a", "welcome"]
        assert result.failed_ids == []
        assert adapter.bulk_calls == [] and adapter.delete_calls == []

    @pytest.mark.asyncio
    async def test_prefix_without_record_id_is_local_success(self, adapter):
        result = await BulkDeleteCoordinator(adapter).delete_many(["material-", "message-"], resolve_nothing)

        assert result.success_ids == ["material-", "message-"]
        assert result.failed_ids == []
        assert adapter.bulk_calls == [] and adapter.delete_calls == []
