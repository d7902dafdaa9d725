# SPDX-License-Identifier: MIT
"""Hierarchical query keys for the cache.

Keys are plain tuples whose leading elements name a group::

    ("newsletters", "list", (("is_read", False), ("user_id", "u1")))
    ("newsletters", "detail", "nl-1")
    ("readingQueue", "list", "u1")
    ("unreadCount", "u1")

Invalidation by prefix relies on this structure, so every key in the package
must be built through the functions below.
"""

from collections.abc import Callable, Mapping
from typing import Any

from .constants import (
    NEWSLETTERS_KEY_ROOT,
    READING_QUEUE_KEY_ROOT,
    SOURCES_KEY_ROOT,
    UNREAD_COUNT_KEY_ROOT,
)
from .models import QueryFilter, QueryKey


KeyPredicate = Callable[[QueryKey], bool]

NormalizedFilters = tuple[tuple[str, Any], ...]

_EMPTY_FILTER_VALUES = (None, "all", "", (), [])


def _normalize_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return normalize_filters(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(sorted(_normalize_value(v) for v in value))
    return value


def normalize_filters(filters: Mapping[str, Any] | QueryFilter | None) -> NormalizedFilters:
    """Turn a filter descriptor into a hashable, order-independent tuple.

    ``None``, ``"all"`` and empty values are dropped and id lists are sorted,
    so two descriptors that select the same rows give the same key.

    Examples:
        >>> normalize_filters({"tag_ids": ["b", "a"], "filter": "all"})
        (('tag_ids', ('a', 'b')),)
    """
    if filters is None:
        return ()
    if isinstance(filters, QueryFilter):
        filters = filters.cache_descriptor()

    items = [
        (str(name), _normalize_value(value))
        for name, value in filters.items()
        if not any(value is empty or value == empty for empty in _EMPTY_FILTER_VALUES)
    ]
    return tuple(sorted(items, key=lambda item: item[0]))


# Newsletter keys
def newsletters_all() -> QueryKey:
    return (NEWSLETTERS_KEY_ROOT,)


def newsletter_lists() -> QueryKey:
    return (*newsletters_all(), "list")


def newsletter_list(filters: Mapping[str, Any] | QueryFilter | None = None) -> QueryKey:
    normalized = normalize_filters(filters)
    if not normalized:
        return newsletter_lists()
    return (*newsletter_lists(), normalized)


def newsletter_details() -> QueryKey:
    return (*newsletters_all(), "detail")


def newsletter_detail(newsletter_id: str) -> QueryKey:
    return (*newsletter_details(), newsletter_id)


def newsletter_tags() -> QueryKey:
    return (*newsletters_all(), "tags")


def tag_lists() -> QueryKey:
    return (*newsletter_tags(), "list")


def tag_list(user_id: str | None = None) -> QueryKey:
    return (*tag_lists(), user_id) if user_id else tag_lists()


def tag_detail(tag_id: str) -> QueryKey:
    return (*newsletter_tags(), "detail", tag_id)


def newsletter_sources() -> QueryKey:
    return (*newsletters_all(), "sources")


def newsletter_source(source_id: str) -> QueryKey:
    return (*newsletter_sources(), source_id)


# Source management keys (separate feature root)
def sources_all() -> QueryKey:
    return (SOURCES_KEY_ROOT,)


def source_list(filters: Mapping[str, Any] | None = None) -> QueryKey:
    normalized = normalize_filters(filters)
    base = (*sources_all(), "list")
    return (*base, normalized) if normalized else base


def source_detail(source_id: str) -> QueryKey:
    return (*sources_all(), "detail", source_id)


# Reading queue keys
def reading_queue_all() -> QueryKey:
    return (READING_QUEUE_KEY_ROOT,)


def reading_queue_lists() -> QueryKey:
    return (*reading_queue_all(), "list")


def reading_queue_list(user_id: str) -> QueryKey:
    return (*reading_queue_lists(), user_id)


# Unread count keys
def unread_count_all() -> QueryKey:
    return (UNREAD_COUNT_KEY_ROOT,)


def unread_count(user_id: str | None = None) -> QueryKey:
    return (*unread_count_all(), user_id) if user_id else unread_count_all()


# Matchers
def has_prefix(key: QueryKey, prefix: QueryKey) -> bool:
    """True if ``prefix`` is a leading slice of ``key`` (or equal to it)."""
    return len(key) >= len(prefix) and key[: len(prefix)] == prefix


def prefix_predicate(prefix: QueryKey) -> KeyPredicate:
    return lambda key: has_prefix(key, prefix)


def is_newsletter_list_key(key: QueryKey) -> bool:
    return has_prefix(key, newsletter_lists())


def is_newsletter_detail_key(key: QueryKey, newsletter_id: str | None = None) -> bool:
    if len(key) < 3 or not has_prefix(key, newsletter_details()):
        return False
    return newsletter_id is None or key[2] == newsletter_id


def is_reading_queue_key(key: QueryKey) -> bool:
    return has_prefix(key, reading_queue_all())


def is_reading_queue_list_key(key: QueryKey) -> bool:
    return has_prefix(key, reading_queue_lists())


def is_tag_key(key: QueryKey) -> bool:
    return has_prefix(key, newsletter_tags())


def is_source_key(key: QueryKey) -> bool:
    return has_prefix(key, sources_all())


def is_unread_count_key(key: QueryKey) -> bool:
    return has_prefix(key, unread_count_all())


def list_filters(key: QueryKey) -> dict[str, Any]:
    """Filter descriptor embedded in a newsletter list key, as a dict."""
    if not is_newsletter_list_key(key) or len(key) < 3:
        return {}
    return dict(key[2])


def debug_query_key(key: QueryKey) -> str:
    """Readable description of a key and the groups it belongs to."""
    patterns = []
    if is_newsletter_list_key(key):
        patterns.append("newsletter-list")
    if is_newsletter_detail_key(key):
        patterns.append("newsletter-detail")
    if is_reading_queue_key(key):
        patterns.append("reading-queue")
    if is_tag_key(key):
        patterns.append("tags")
    if is_source_key(key):
        patterns.append("sources")
    if is_unread_count_key(key):
        patterns.append("unread-count")
    return f"QueryKey: {key!r} | Patterns: [{', '.join(patterns)}]"
