# SPDX-License-Identifier: MIT
"""Operation-type driven invalidation table.

This table is the single place that decides which cached views a committed
mutation makes stale. Adding an ``OperationType`` without a row here fails
at import time.
"""

from collections.abc import Mapping
from types import MappingProxyType

from .. import query_keys
from ..enums import InvalidationScope, OperationType
from ..exceptions import ConfigurationError
from ..models import QueryKey


Scopes = tuple[InvalidationScope, ...]

_UNREAD = (InvalidationScope.UNREAD_COUNT,)
_QUEUE = (InvalidationScope.READING_QUEUE,)
_SOURCES = (InvalidationScope.SOURCES,)

INVALIDATION_TABLE: Mapping[OperationType, Scopes] = MappingProxyType(
    {
        # Read state only changes counts; list rows were patched in place
        OperationType.MARK_READ: _UNREAD,
        OperationType.MARK_UNREAD: _UNREAD,
        OperationType.BULK_MARK_READ: _UNREAD,
        OperationType.BULK_MARK_UNREAD: _UNREAD,
        OperationType.ARCHIVE: _UNREAD,
        OperationType.UNARCHIVE: _UNREAD,
        OperationType.BULK_ARCHIVE: _UNREAD,
        OperationType.BULK_UNARCHIVE: _UNREAD,
        OperationType.UNREAD_COUNT_CHANGE: _UNREAD,
        # Deleted rows vanish from lists and their detail views are dropped
        OperationType.DELETE: (
            InvalidationScope.NEWSLETTER_LISTS,
            InvalidationScope.UNREAD_COUNT,
            InvalidationScope.NEWSLETTER_DETAILS,
        ),
        OperationType.BULK_DELETE: (
            InvalidationScope.NEWSLETTER_LISTS,
            InvalidationScope.UNREAD_COUNT,
            InvalidationScope.NEWSLETTER_DETAILS,
        ),
        OperationType.TOGGLE_LIKE: (InvalidationScope.NEWSLETTER_LISTS,),
        OperationType.TOGGLE_QUEUE: _QUEUE,
        OperationType.QUEUE_ADD: _QUEUE,
        OperationType.QUEUE_REMOVE: _QUEUE,
        OperationType.QUEUE_REORDER: _QUEUE,
        OperationType.QUEUE_CLEAR: _QUEUE,
        OperationType.QUEUE_MARK_READ: _QUEUE,
        OperationType.QUEUE_MARK_UNREAD: _QUEUE,
        OperationType.QUEUE_UPDATE_TAGS: _QUEUE,
        OperationType.QUEUE_CLEANUP: _QUEUE,
        OperationType.TAG_UPDATE: (InvalidationScope.TAGS,),
        OperationType.NEWSLETTER_SOURCES: _SOURCES,
        OperationType.SOURCE_UPDATE_OPTIMISTIC: _SOURCES,
        OperationType.SOURCE_UPDATE_ERROR: _SOURCES,
        OperationType.SOURCE_ARCHIVE_OPTIMISTIC: _SOURCES,
        OperationType.SOURCE_UNARCHIVE_OPTIMISTIC: _SOURCES,
        OperationType.SOURCE_ARCHIVE_ERROR: _SOURCES,
    }
)

# Applied to operation strings outside the closed set
DEFAULT_SCOPES: Scopes = (InvalidationScope.NEWSLETTER_LISTS,)

# Key prefix invalidated for each group. NEWSLETTER_DETAILS is handled per id.
SCOPE_PREFIXES: Mapping[InvalidationScope, QueryKey] = MappingProxyType(
    {
        InvalidationScope.NEWSLETTER_LISTS: query_keys.newsletter_lists(),
        InvalidationScope.UNREAD_COUNT: query_keys.unread_count_all(),
        InvalidationScope.READING_QUEUE: query_keys.reading_queue_lists(),
        InvalidationScope.TAGS: query_keys.newsletter_tags(),
        InvalidationScope.SOURCES: query_keys.sources_all(),
    }
)


def verify_invalidation_table(
    table: Mapping[OperationType, Scopes] = INVALIDATION_TABLE,
) -> None:
    """Check that every operation type has a non-empty row.

    Raises:
        ConfigurationError: If any ``OperationType`` member is missing or maps
            to no scope
    """
    missing = [op.value for op in OperationType if not table.get(op)]
    if missing:
        raise ConfigurationError(
            f"Invalidation table has no entry for: {', '.join(missing)}"
        )


def resolve_operation(operation_type: OperationType | str) -> OperationType | None:
    """Map a tag (enum member or its string value) to the closed set.

    Returns:
        The matching ``OperationType``, or None for an unknown tag
    """
    if isinstance(operation_type, OperationType):
        return operation_type
    try:
        return OperationType(operation_type)
    except ValueError:
        return None


def scopes_for(operation_type: OperationType | str) -> Scopes:
    """Key groups to invalidate after ``operation_type`` commits."""
    operation = resolve_operation(operation_type)
    if operation is None:
        return DEFAULT_SCOPES
    return INVALIDATION_TABLE[operation]


verify_invalidation_table()
