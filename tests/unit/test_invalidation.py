# SPDX-License-Identifier: MIT
"""Tests for the operation-type invalidation table."""

import pytest

from newsletter_sync.cache_sync import (
    INVALIDATION_TABLE,
    scopes_for,
    verify_invalidation_table,
)
from newsletter_sync.cache_sync.invalidation import (
    DEFAULT_SCOPES,
    SCOPE_PREFIXES,
    resolve_operation,
)
from newsletter_sync.enums import InvalidationScope, OperationType
from newsletter_sync.exceptions import ConfigurationError


LISTS = InvalidationScope.NEWSLETTER_LISTS
DETAILS = InvalidationScope.NEWSLETTER_DETAILS
UNREAD = InvalidationScope.UNREAD_COUNT
QUEUE = InvalidationScope.READING_QUEUE
TAGS = InvalidationScope.TAGS
SOURCES = InvalidationScope.SOURCES

EXPECTED_SCOPES = {
    "mark-read": {UNREAD},
    "mark-unread": {UNREAD},
    "bulk-mark-read": {UNREAD},
    "bulk-mark-unread": {UNREAD},
    "archive": {UNREAD},
    "unarchive": {UNREAD},
    "bulk-archive": {UNREAD},
    "bulk-unarchive": {UNREAD},
    "unread-count-change": {UNREAD},
    "delete": {LISTS, UNREAD, DETAILS},
    "bulk-delete": {LISTS, UNREAD, DETAILS},
    "toggle-like": {LISTS},
    "toggle-queue": {QUEUE},
    "queue-add": {QUEUE},
    "queue-remove": {QUEUE},
    "queue-reorder": {QUEUE},
    "queue-clear": {QUEUE},
    "queue-mark-read": {QUEUE},
    "queue-mark-unread": {QUEUE},
    "queue-update-tags": {QUEUE},
    "queue-cleanup": {QUEUE},
    "tag-update": {TAGS},
    "newsletter-sources": {SOURCES},
    "source-update-optimistic": {SOURCES},
    "source-update-error": {SOURCES},
    "source-archive-optimistic": {SOURCES},
    "source-unarchive-optimistic": {SOURCES},
    "source-archive-error": {SOURCES},
}


class TestInvalidationTable:
    """Test cases for the dispatch table contents."""

    def test_table_is_exhaustive(self):
        """Every operation type has a row and nothing else does."""
        assert set(INVALIDATION_TABLE) == set(OperationType)
        verify_invalidation_table()

    @pytest.mark.parametrize("operation, expected", sorted(EXPECTED_SCOPES.items()))
    def test_operation_scopes(self, operation, expected):
        assert set(scopes_for(operation)) == expected
        assert set(scopes_for(OperationType(operation))) == expected

    def test_expected_scopes_cover_every_operation(self):
        assert set(EXPECTED_SCOPES) == {op.value for op in OperationType}

    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            INVALIDATION_TABLE[OperationType.MARK_READ] = (LISTS,)  # type: ignore[index]

    def test_every_refetched_scope_has_prefix(self):
        """Details are removed per id; all other scopes map to a key prefix."""
        for scopes in INVALIDATION_TABLE.values():
            for scope in scopes:
                if scope != DETAILS:
                    assert scope in SCOPE_PREFIXES


class TestUnknownOperations:
    """Test cases for operation strings outside the closed set."""

    def test_unknown_string_gets_default(self):
        assert scopes_for("rename-newsletter") == DEFAULT_SCOPES
        assert DEFAULT_SCOPES == (LISTS,)

    def test_resolve_operation(self):
        assert resolve_operation("archive") is OperationType.ARCHIVE
        assert resolve_operation(OperationType.DELETE) is OperationType.DELETE
        assert resolve_operation("nope") is None


class TestVerification:
    """Test cases for table verification."""

    def test_missing_row_raises(self):
        partial = {
            op: scopes for op, scopes in INVALIDATION_TABLE.items()
            if op != OperationType.QUEUE_CLEANUP
        }
        with pytest.raises(ConfigurationError, match="queue-cleanup"):
            verify_invalidation_table(partial)

    def test_empty_row_raises(self):
        broken = dict(INVALIDATION_TABLE)
        broken[OperationType.TOGGLE_LIKE] = ()
        with pytest.raises(ConfigurationError, match="toggle-like"):
            verify_invalidation_table(broken)
