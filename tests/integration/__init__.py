# SPDX-License-Identifier: MIT
"""Integration tests for newsletter-sync.

These tests wire the query cache, the sync manager, the optimistic executor,
the batch coordinator and the in-memory gateway together and check the
cached views a user would see at each step.
"""
