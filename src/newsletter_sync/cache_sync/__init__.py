# SPDX-License-Identifier: MIT
"""Cache synchronization package: cross-view propagation and invalidation."""

from .invalidation import INVALIDATION_TABLE, scopes_for, verify_invalidation_table
from .sync_manager import CacheSyncManager, placeholder_tags


__all__ = [
    "INVALIDATION_TABLE",
    "CacheSyncManager",
    "placeholder_tags",
    "scopes_for",
    "verify_invalidation_table",
]
