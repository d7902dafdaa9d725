# SPDX-License-Identifier: MIT
"""Tests for the batch update coordinator."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from newsletter_sync.batch_updater import BatchUpdateCoordinator, create_batches
from newsletter_sync.config import BatchSettings
from newsletter_sync.enums import EntityType
from newsletter_sync.exceptions import (
    ItemNotUpdatedError,
    NetworkError,
    ValidationError,
)
from newsletter_sync.gateway import InMemoryGateway
from newsletter_sync.models import Newsletter


IDS = ["a", "b", "c", "d", "e"]


@pytest.fixture
def five_newsletters():
    return InMemoryGateway(
        {EntityType.NEWSLETTERS.value: [Newsletter(id=entity_id) for entity_id in IDS]}
    )


@pytest.fixture
def chunks_of_two():
    return BatchSettings(
        max_batch_size=2, batch_delay_seconds=0.0, max_retries=2, retry_delay_seconds=0.0
    )


class TestCreateBatches:
    """Test cases for create_batches."""

    def test_splits_in_order(self):
        assert create_batches(IDS, 2) == [["a", "b"], ["c", "d"], ["e"]]

    def test_exact_multiple(self):
        assert create_batches(IDS[:4], 2) == [["a", "b"], ["c", "d"]]

    def test_empty(self):
        assert create_batches([], 50) == []

    def test_invalid_size(self):
        with pytest.raises(ValueError, match="at least 1"):
            create_batches(IDS, 0)


class TestBulkUpdate:
    """Test cases for chunked bulk updates."""

    @pytest.mark.asyncio
    async def test_all_succeed(self, five_newsletters, chunks_of_two):
        coordinator = BatchUpdateCoordinator(five_newsletters, chunks_of_two)

        result = await coordinator.bulk_update(IDS, {"is_read": True})

        assert result.ids == IDS
        assert result.success_count == 5
        assert all(entity.is_read for entity in result.results)
        assert five_newsletters.call_count("bulk_update") == 3

    @pytest.mark.asyncio
    async def test_failing_chunk_isolated(self, five_newsletters, chunks_of_two):
        """A chunk that keeps failing marks only its own ids as failed."""
        five_newsletters.fail_on_ids(["c"], NetworkError("chunk rejected"))
        coordinator = BatchUpdateCoordinator(five_newsletters, chunks_of_two)

        result = await coordinator.bulk_update(IDS, {"is_read": True})

        assert result.success_count == 3
        assert result.error_count == 2
        assert result.failed_ids() == ["c", "d"]
        assert result.results[2] is None and result.results[3] is None
        assert isinstance(result.errors[2], NetworkError)
        assert result.results[4].is_read
        # 1 + 2 retries for the middle chunk, one call each for the others
        assert five_newsletters.call_count("bulk_update") == 5

    @pytest.mark.asyncio
    async def test_retry_bound(self, five_newsletters):
        settings = BatchSettings(
            max_batch_size=50, batch_delay_seconds=0.0, max_retries=3, retry_delay_seconds=0.0
        )
        five_newsletters.fail_next("bulk_update", NetworkError("down"), times=10)
        coordinator = BatchUpdateCoordinator(five_newsletters, settings)

        result = await coordinator.bulk_update(IDS, {"is_read": True})

        assert result.error_count == 5
        assert five_newsletters.call_count("bulk_update") == 4

    @pytest.mark.asyncio
    async def test_non_sync_error_is_retried_and_recorded(
        self, five_newsletters, chunks_of_two
    ):
        """Errors outside the SyncError hierarchy still stay inside their chunk."""
        reset = ConnectionResetError("socket reset")
        five_newsletters.fail_next("bulk_update", reset, times=3)
        coordinator = BatchUpdateCoordinator(five_newsletters, chunks_of_two)

        result = await coordinator.bulk_update(IDS, {"is_read": True})

        assert result.failed_ids() == ["a", "b"]
        assert result.errors[:2] == [reset, reset]
        assert result.success_count == 3
        assert five_newsletters.call_count("bulk_update") == 5

    @pytest.mark.asyncio
    async def test_undecodable_response_marks_chunk(self, five_newsletters):
        settings = BatchSettings(
            max_batch_size=3, batch_delay_seconds=0.0, max_retries=1, retry_delay_seconds=0.0
        )
        five_newsletters.fail_next("bulk_delete", ValueError("Expecting value"), times=2)
        coordinator = BatchUpdateCoordinator(five_newsletters, settings)

        result = await coordinator.bulk_delete(IDS)

        assert result.results == [None, None, None, True, True]
        assert all(isinstance(error, ValueError) for error in result.errors[:3])
        assert five_newsletters.call_count("bulk_delete") == 3

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(self, five_newsletters, chunks_of_two):
        five_newsletters.fail_next("bulk_update", NetworkError("blip"))
        coordinator = BatchUpdateCoordinator(five_newsletters, chunks_of_two)

        result = await coordinator.bulk_update(IDS, {"is_archived": True})

        assert result.error_count == 0
        assert five_newsletters.call_count("bulk_update") == 4

    @pytest.mark.asyncio
    async def test_omitted_ids_reported(self, five_newsletters, chunks_of_two):
        five_newsletters.omit_from_bulk_updates(["b"])
        coordinator = BatchUpdateCoordinator(five_newsletters, chunks_of_two)

        result = await coordinator.bulk_update(IDS + ["missing"], {"is_read": True})

        assert result.failed_ids() == ["b", "missing"]
        assert isinstance(result.errors[1], ItemNotUpdatedError)
        assert result.errors[5].entity_id == "missing"
        # Omissions are not retried
        assert five_newsletters.call_count("bulk_update") == 3

    @pytest.mark.asyncio
    async def test_empty_ids(self, five_newsletters):
        coordinator = BatchUpdateCoordinator(five_newsletters)

        result = await coordinator.bulk_update([], {"is_read": True})

        assert result.ids == []
        assert result.success_count == 0
        assert five_newsletters.calls == []

    @pytest.mark.asyncio
    async def test_validation_before_any_call(self, five_newsletters):
        coordinator = BatchUpdateCoordinator(five_newsletters)

        with pytest.raises(ValidationError):
            await coordinator.bulk_update(IDS, {"owner": "someone"})
        with pytest.raises(ValidationError):
            await coordinator.bulk_update(["a", ""], {"is_read": True})
        with pytest.raises(ValidationError):
            await coordinator.bulk_update("a", {"is_read": True})

        assert five_newsletters.calls == []

    @pytest.mark.asyncio
    async def test_progress_after_every_chunk(self, five_newsletters, chunks_of_two):
        five_newsletters.fail_on_ids(["c"], NetworkError("chunk rejected"))
        coordinator = BatchUpdateCoordinator(five_newsletters, chunks_of_two)
        progress = MagicMock()

        await coordinator.bulk_update(IDS, {"is_read": True}, on_progress=progress)

        assert [c.args for c in progress.call_args_list] == [
            (2, 5, 1),
            (4, 5, 2),
            (5, 5, 3),
        ]

    @pytest.mark.asyncio
    async def test_delay_only_between_successful_chunks(self, five_newsletters):
        settings = BatchSettings(
            max_batch_size=2, batch_delay_seconds=0.25, max_retries=0, retry_delay_seconds=0.0
        )
        five_newsletters.fail_on_ids(["c"], NetworkError("chunk rejected"))
        coordinator = BatchUpdateCoordinator(five_newsletters, settings)

        with patch(
            "newsletter_sync.batch_updater.asyncio.sleep", new_callable=AsyncMock
        ) as mock_sleep:
            await coordinator.bulk_update(IDS, {"is_read": True})

        # After chunk 1 only: chunk 2 failed and chunk 3 is the last
        mock_sleep.assert_awaited_once_with(0.25)

    @pytest.mark.asyncio
    async def test_summary_logged(self, five_newsletters, chunks_of_two):
        five_newsletters.fail_on_ids(["e"], NetworkError("nope"))
        coordinator = BatchUpdateCoordinator(five_newsletters, chunks_of_two)

        with patch.object(coordinator, "status_logger") as mock_status:
            await coordinator.bulk_update(IDS, {"is_read": True})

        mock_status.info.assert_called_once_with("Bulk update: 4 succeeded, 1 failed")
        mock_status.warning.assert_called_once()


class TestBulkDelete:
    """Test cases for chunked bulk deletes."""

    @pytest.mark.asyncio
    async def test_deletes_in_chunks(self, five_newsletters, chunks_of_two):
        coordinator = BatchUpdateCoordinator(five_newsletters, chunks_of_two)

        result = await coordinator.bulk_delete(IDS)

        assert result.results == [True] * 5
        assert five_newsletters.tables["newsletters"] == {}
        assert five_newsletters.call_count("bulk_delete") == 3

    @pytest.mark.asyncio
    async def test_false_response_marks_chunk(self, chunks_of_two):
        gateway = MagicMock()
        gateway.bulk_delete = AsyncMock(side_effect=[True, False, True])
        coordinator = BatchUpdateCoordinator(gateway, chunks_of_two)

        result = await coordinator.bulk_delete(IDS)

        assert result.failed_ids() == ["c", "d"]
        assert all(isinstance(result.errors[i], ItemNotUpdatedError) for i in (2, 3))
