# SPDX-License-Identifier: MIT
"""Pytest configuration and shared fixtures."""

import pytest

from newsletter_sync import query_keys
from newsletter_sync.actions import NewsletterActions
from newsletter_sync.cache_sync import CacheSyncManager
from newsletter_sync.config import BatchSettings, CacheSettings, reset_config_manager
from newsletter_sync.enums import EntityType
from newsletter_sync.gateway import InMemoryGateway
from newsletter_sync.models import (
    Newsletter,
    NewsletterSource,
    ReadingQueueItem,
    Tag,
)
from newsletter_sync.query_cache import QueryCacheStore


class FakeClock:
    """Manually advanced clock for staleness and garbage collection tests."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_global_config():
    """Keep the CLI config manager from leaking between tests."""
    reset_config_manager()
    yield
    reset_config_manager()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    """Query cache store driven by the fake clock."""
    return QueryCacheStore(stale_time_seconds=60, gc_time_seconds=300, clock=clock)


@pytest.fixture
def sync_manager(store):
    return CacheSyncManager(store, CacheSettings())


@pytest.fixture
def zero_delay_batch_settings():
    """Batch settings with the default bounds but no waiting."""
    return BatchSettings(
        max_batch_size=50,
        batch_delay_seconds=0.0,
        max_retries=2,
        retry_delay_seconds=0.0,
    )


@pytest.fixture
def sample_source():
    return NewsletterSource(id="src-1", name="Tech Weekly", **{"from": "news@tech.example"})


@pytest.fixture
def sample_newsletters(sample_source):
    """Three newsletters: one unread, one read, one archived."""
    return [
        Newsletter(
            id="nl-1",
            title="First issue",
            user_id="user-1",
            received_at="2024-03-01T08:00:00+00:00",
            newsletter_source_id="src-1",
            source=sample_source,
            tags=(Tag(id="tag-1", name="ai", color="#ff0000"),),
        ),
        Newsletter(
            id="nl-2",
            title="Second issue",
            user_id="user-1",
            is_read=True,
            received_at="2024-03-02T08:00:00+00:00",
            newsletter_source_id="src-1",
            source=sample_source,
        ),
        Newsletter(
            id="nl-3",
            title="Old issue",
            user_id="user-1",
            is_archived=True,
            received_at="2024-02-01T08:00:00+00:00",
        ),
    ]


@pytest.fixture
def sample_queue(sample_newsletters):
    """Reading queue for user-1 holding nl-1 then nl-2."""
    return [
        ReadingQueueItem(
            id="q-1",
            user_id="user-1",
            newsletter_id="nl-1",
            position=0,
            newsletter=sample_newsletters[0],
        ),
        ReadingQueueItem(
            id="q-2",
            user_id="user-1",
            newsletter_id="nl-2",
            position=1,
            newsletter=sample_newsletters[1],
        ),
    ]


@pytest.fixture
def populated_store(store, sample_newsletters, sample_queue):
    """Store holding an inbox list, a read-filtered list, details and the queue."""
    store.set(query_keys.newsletter_list(), list(sample_newsletters))
    store.set(
        query_keys.newsletter_list({"is_read": False}),
        [n for n in sample_newsletters if not n.is_read],
    )
    for newsletter in sample_newsletters:
        store.set(query_keys.newsletter_detail(newsletter.id), newsletter)
    store.set(query_keys.reading_queue_list("user-1"), list(sample_queue))
    store.set(query_keys.unread_count("user-1"), 1)
    store.set(query_keys.tag_list("user-1"), [Tag(id="tag-1", name="ai")])
    return store


@pytest.fixture
def gateway(sample_newsletters, sample_queue):
    return InMemoryGateway(
        {
            EntityType.NEWSLETTERS.value: sample_newsletters,
            EntityType.READING_QUEUE.value: sample_queue,
            EntityType.TAGS.value: [
                Tag(id="tag-1", name="ai", color="#ff0000"),
                Tag(id="tag-2", name="python", color="#00ff00"),
            ],
        }
    )


@pytest.fixture
def actions(gateway, populated_store, zero_delay_batch_settings):
    """Actions wired to the in-memory gateway and the populated store."""
    return NewsletterActions(
        gateway,
        CacheSyncManager(populated_store),
        user_id="user-1",
        batch_settings=zero_delay_batch_settings,
    )
