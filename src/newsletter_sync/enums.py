# SPDX-License-Identifier: MIT
"""Enums for the newsletter synchronization layer."""

from enum import Enum


class OperationType(str, Enum):
    """Closed set of mutation tags that drive post-commit invalidation.

    Every member must have an entry in the invalidation table
    (see ``cache_sync.invalidation``); the table is verified on import.
    """

    MARK_READ = "mark-read"
    MARK_UNREAD = "mark-unread"
    BULK_MARK_READ = "bulk-mark-read"
    BULK_MARK_UNREAD = "bulk-mark-unread"

    ARCHIVE = "archive"
    UNARCHIVE = "unarchive"
    BULK_ARCHIVE = "bulk-archive"
    BULK_UNARCHIVE = "bulk-unarchive"

    DELETE = "delete"
    BULK_DELETE = "bulk-delete"

    TOGGLE_LIKE = "toggle-like"

    TOGGLE_QUEUE = "toggle-queue"
    QUEUE_ADD = "queue-add"
    QUEUE_REMOVE = "queue-remove"
    QUEUE_REORDER = "queue-reorder"
    QUEUE_CLEAR = "queue-clear"
    QUEUE_MARK_READ = "queue-mark-read"
    QUEUE_MARK_UNREAD = "queue-mark-unread"
    QUEUE_UPDATE_TAGS = "queue-update-tags"
    QUEUE_CLEANUP = "queue-cleanup"

    TAG_UPDATE = "tag-update"

    NEWSLETTER_SOURCES = "newsletter-sources"
    SOURCE_UPDATE_OPTIMISTIC = "source-update-optimistic"
    SOURCE_UPDATE_ERROR = "source-update-error"
    SOURCE_ARCHIVE_OPTIMISTIC = "source-archive-optimistic"
    SOURCE_UNARCHIVE_OPTIMISTIC = "source-unarchive-optimistic"
    SOURCE_ARCHIVE_ERROR = "source-archive-error"

    UNREAD_COUNT_CHANGE = "unread-count-change"


class InvalidationScope(str, Enum):
    """Query-key groups that an operation can invalidate."""

    NEWSLETTER_LISTS = "newsletter_lists"
    NEWSLETTER_DETAILS = "newsletter_details"  # removed per id, not refetched
    UNREAD_COUNT = "unread_count"
    READING_QUEUE = "reading_queue"
    TAGS = "tags"
    SOURCES = "sources"


class MutationState(str, Enum):
    """States of a single optimistic mutation invocation."""

    IDLE = "idle"
    MUTATING = "mutating"
    IN_FLIGHT = "in_flight"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class QueueOperation(str, Enum):
    """Reading-queue cache operations."""

    ADD = "add"
    REMOVE = "remove"
    REORDER = "reorder"
    UPDATE_TAGS = "update_tags"
    REVERT = "revert"


class EntityType(str, Enum):
    """Remote tables known to the gateway."""

    NEWSLETTERS = "newsletters"
    READING_QUEUE = "reading_queue"
    TAGS = "tags"
    NEWSLETTER_SOURCES = "newsletter_sources"


class RefetchType(str, Enum):
    """Which invalidated queries get refetched immediately."""

    ACTIVE = "active"  # only queries with at least one observer
    INACTIVE = "inactive"
    ALL = "all"
    NONE = "none"
