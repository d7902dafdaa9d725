# SPDX-License-Identifier: MIT
"""Tests for newsletter actions."""

import pytest

from newsletter_sync import query_keys
from newsletter_sync.actions import NewsletterActions
from newsletter_sync.cache_sync import CacheSyncManager
from newsletter_sync.config import BatchSettings
from newsletter_sync.exceptions import NetworkError, NotFoundError, ValidationError
from newsletter_sync.query_cache import QueryCacheStore


ALL_LIST = query_keys.newsletter_list()
QUEUE = query_keys.reading_queue_list("user-1")
UNREAD_COUNT = query_keys.unread_count("user-1")


def detail(newsletter_id):
    return query_keys.newsletter_detail(newsletter_id)


@pytest.fixture
def one_per_chunk_actions(gateway, populated_store):
    """Actions whose bulk calls send one id per chunk and never retry."""
    settings = BatchSettings(
        max_batch_size=1, batch_delay_seconds=0.0, max_retries=0, retry_delay_seconds=0.0
    )
    return NewsletterActions(
        gateway,
        CacheSyncManager(populated_store),
        user_id="user-1",
        batch_settings=settings,
    )


class TestSingleActions:
    """Test cases for optimistic single-newsletter actions."""

    @pytest.mark.asyncio
    async def test_mark_read(self, actions, gateway, populated_store):
        result = await actions.mark_read("nl-1")

        assert result.is_read
        assert gateway.tables["newsletters"]["nl-1"].is_read
        assert populated_store.get_data(ALL_LIST)[0].is_read
        assert populated_store.get_data(detail("nl-1")).is_read
        assert populated_store.get_data(QUEUE)[0].newsletter.is_read
        assert populated_store.get(UNREAD_COUNT).is_stale

    @pytest.mark.asyncio
    async def test_mark_read_failure_rolls_back(self, actions, gateway, populated_store):
        before = {key: populated_store.get(key) for key in populated_store.keys()}
        gateway.fail_next("update", NetworkError("offline"))

        with pytest.raises(NetworkError):
            await actions.mark_read("nl-1")

        for key, entry in before.items():
            assert populated_store.get(key) is entry

    @pytest.mark.asyncio
    async def test_mark_unread_skips_archived_in_cache(
        self, actions, gateway, populated_store
    ):
        before = populated_store.get(detail("nl-3"))

        await actions.mark_unread("nl-3")

        assert populated_store.get(detail("nl-3")) is before
        assert gateway.call_count("update") == 1

    @pytest.mark.asyncio
    async def test_mark_unread(self, actions, populated_store):
        await actions.mark_unread("nl-2")
        assert not populated_store.get_data(detail("nl-2")).is_read

    @pytest.mark.asyncio
    async def test_toggle_like(self, actions, gateway, populated_store):
        await actions.toggle_like("nl-1")
        assert populated_store.get_data(detail("nl-1")).is_liked
        assert gateway.tables["newsletters"]["nl-1"].is_liked
        assert populated_store.get(ALL_LIST).is_stale

        await actions.toggle_like("nl-1")
        assert not gateway.tables["newsletters"]["nl-1"].is_liked

    @pytest.mark.asyncio
    async def test_toggle_like_reads_gateway_on_cache_miss(self, gateway):
        actions = NewsletterActions(gateway, CacheSyncManager(QueryCacheStore()))

        await actions.toggle_like("nl-2")

        assert gateway.tables["newsletters"]["nl-2"].is_liked
        with pytest.raises(NotFoundError):
            await actions.toggle_like("missing")

    @pytest.mark.asyncio
    async def test_archive_and_unarchive(self, actions, populated_store):
        await actions.archive("nl-1")
        assert populated_store.get_data(detail("nl-1")).is_archived

        await actions.unarchive("nl-1")
        assert not populated_store.get_data(detail("nl-1")).is_archived

    @pytest.mark.asyncio
    async def test_invalid_id_touches_nothing(self, actions, gateway, populated_store):
        before = populated_store.get(ALL_LIST)

        with pytest.raises(ValidationError):
            await actions.archive("  ")

        assert populated_store.get(ALL_LIST) is before
        assert gateway.calls == []


class TestDelete:
    """Test cases for deleting newsletters."""

    @pytest.mark.asyncio
    async def test_delete_removes_everywhere(self, actions, gateway, populated_store):
        assert await actions.delete("nl-1") is True

        assert "nl-1" not in gateway.tables["newsletters"]
        assert [n.id for n in populated_store.get_data(ALL_LIST)] == ["nl-2", "nl-3"]
        assert [q.id for q in populated_store.get_data(QUEUE)] == ["q-2"]
        assert detail("nl-1") not in populated_store
        assert populated_store.get(ALL_LIST).is_stale

    @pytest.mark.asyncio
    async def test_delete_failure_restores(self, actions, gateway, populated_store):
        detail_entry = populated_store.get(detail("nl-1"))
        gateway.fail_next("delete", NetworkError("offline"))

        with pytest.raises(NetworkError):
            await actions.delete("nl-1")

        assert populated_store.get(detail("nl-1")) is detail_entry
        assert len(populated_store.get_data(ALL_LIST)) == 3


class TestTags:
    """Test cases for tag updates."""

    @pytest.mark.asyncio
    async def test_update_tags_writes_back_server_rows(
        self, actions, gateway, populated_store
    ):
        result = await actions.update_tags("nl-2", ["tag-2"])

        assert result.tags[0].name == "python"
        assert populated_store.get_data(detail("nl-2")).tags[0].name == "python"
        assert populated_store.get(query_keys.tag_list("user-1")).is_stale

    @pytest.mark.asyncio
    async def test_update_tags_failure_restores(self, actions, gateway, populated_store):
        before = populated_store.get(detail("nl-1"))
        gateway.fail_next("rpc", NetworkError("offline"))

        with pytest.raises(NetworkError):
            await actions.update_tags("nl-1", ["tag-2"])

        assert populated_store.get(detail("nl-1")) is before


class TestReadingQueue:
    """Test cases for reading-queue actions."""

    @pytest.mark.asyncio
    async def test_toggle_removes_queued(self, actions, gateway, populated_store):
        assert await actions.toggle_queue("nl-1") is False

        assert "q-1" not in gateway.tables["reading_queue"]
        assert [q.id for q in populated_store.get_data(QUEUE)] == ["q-2"]

    @pytest.mark.asyncio
    async def test_toggle_adds_unqueued(self, actions, gateway, populated_store):
        assert await actions.toggle_queue("nl-3") is True

        added = [
            item for item in gateway.tables["reading_queue"].values()
            if item.newsletter_id == "nl-3"
        ]
        assert len(added) == 1
        assert added[0].position == 2
        assert populated_store.get(QUEUE).is_stale

    @pytest.mark.asyncio
    async def test_toggle_failure_restores_queue(self, actions, gateway, populated_store):
        before = populated_store.get(QUEUE)
        gateway.fail_next("delete", NetworkError("offline"))

        with pytest.raises(NetworkError):
            await actions.toggle_queue("nl-2")

        assert populated_store.get(QUEUE) is before

    @pytest.mark.asyncio
    async def test_toggle_looks_up_gateway_without_cache(self, gateway):
        actions = NewsletterActions(
            gateway, CacheSyncManager(QueryCacheStore()), user_id="user-1"
        )

        assert await actions.toggle_queue("nl-2") is False
        assert "q-2" not in gateway.tables["reading_queue"]

    @pytest.mark.asyncio
    async def test_queue_actions_need_user(self, gateway, populated_store):
        actions = NewsletterActions(gateway, CacheSyncManager(populated_store))

        with pytest.raises(ValidationError, match="signed-in user"):
            await actions.toggle_queue("nl-1")
        with pytest.raises(ValidationError):
            await actions.reorder_queue({"q-1": 1})

    @pytest.mark.asyncio
    async def test_reorder(self, actions, gateway, populated_store):
        await actions.reorder_queue({"q-1": 1, "q-2": 0})

        assert [q.id for q in populated_store.get_data(QUEUE)] == ["q-2", "q-1"]
        assert gateway.tables["reading_queue"]["q-1"].position == 1
        assert gateway.tables["reading_queue"]["q-2"].position == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("positions", [{}, {"q-1": -1}, {"q-1": True}, {"": 0}])
    async def test_reorder_rejects_bad_positions(self, actions, gateway, positions):
        with pytest.raises(ValidationError):
            await actions.reorder_queue(positions)
        assert gateway.calls == []


class TestBulkActions:
    """Test cases for bulk actions with per-item outcomes."""

    @pytest.mark.asyncio
    async def test_bulk_mark_read(self, actions, gateway, populated_store):
        result = await actions.bulk_mark_read(["nl-1", "nl-2"])

        assert result.success_count == 2
        assert all(row.is_read for row in populated_store.get_data(ALL_LIST)[:2])
        assert gateway.call_count("bulk_update") == 1

    @pytest.mark.asyncio
    async def test_bulk_read_skips_archived_in_cache(
        self, actions, gateway, populated_store
    ):
        before = populated_store.get(detail("nl-3"))

        result = await actions.bulk_mark_read(["nl-3"])

        assert result.success_count == 1
        assert populated_store.get(detail("nl-3")) is before
        assert gateway.tables["newsletters"]["nl-3"].is_read

    @pytest.mark.asyncio
    async def test_bulk_archive_partial(
        self, one_per_chunk_actions, gateway, populated_store, sample_newsletters
    ):
        gateway.fail_on_ids(["nl-2"], NetworkError("locked"))

        result = await one_per_chunk_actions.bulk_archive(["nl-1", "nl-2"])

        assert result.failed_ids() == ["nl-2"]
        rows = populated_store.get_data(ALL_LIST)
        assert rows[0].is_archived
        assert rows[1] is sample_newsletters[1]

    @pytest.mark.asyncio
    async def test_bulk_all_failed_returns_result(
        self, actions, gateway, populated_store
    ):
        before = populated_store.get(ALL_LIST)
        gateway.fail_next("bulk_update", NetworkError("down"), times=3)

        result = await actions.bulk_unarchive(["nl-3"])

        assert result.error_count == 1
        assert populated_store.get(ALL_LIST) is before

    @pytest.mark.asyncio
    async def test_bulk_mark_unread_progress(self, one_per_chunk_actions):
        progress = []

        await one_per_chunk_actions.bulk_mark_unread(
            ["nl-1", "nl-2"], on_progress=lambda *args: progress.append(args)
        )

        assert progress == [(1, 2, 1), (2, 2, 2)]

    @pytest.mark.asyncio
    async def test_bulk_delete_partial(
        self, one_per_chunk_actions, gateway, populated_store
    ):
        gateway.fail_on_ids(["nl-2"], NetworkError("locked"))

        result = await one_per_chunk_actions.bulk_delete(["nl-1", "nl-2"])

        assert result.results == [True, None]
        assert [n.id for n in populated_store.get_data(ALL_LIST)] == ["nl-2", "nl-3"]
        assert detail("nl-2") in populated_store

    @pytest.mark.asyncio
    async def test_empty_bulk_calls(self, actions, gateway):
        assert (await actions.bulk_archive([])).ids == []
        assert (await actions.bulk_delete([])).ids == []
        assert gateway.calls == []
