# SPDX-License-Identifier: MIT
"""In-memory query cache shared by every view."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import Any

from .constants import DEFAULT_GC_TIME_SECONDS, DEFAULT_STALE_TIME_SECONDS
from .enums import RefetchType
from .logging_config import get_detail_logger
from .models import CachedQuery, QueryKey
from .query_keys import KeyPredicate, has_prefix


Fetcher = Callable[[], Awaitable[Any]]
Updater = Callable[[Any], Any]
ChangeListener = Callable[[QueryKey, CachedQuery | None], None]
KeyListener = Callable[[CachedQuery | None], None]


class _Subscription:
    """One observer of one key. Identity is what unsubscribe removes."""

    def __init__(self, listener: KeyListener | None) -> None:
        self.listener = listener


class QueryCacheStore:
    """Key-value store of cached queries with staleness and observers.

    Each entry holds a single entity, a list of entities, or any other value a
    view read (an unread count, for instance). Entries are replaced, never
    edited, so consumers can detect changes by reference.

    A key with at least one subscriber is *active*: invalidating it schedules
    an immediate refetch through the fetcher registered by ``fetch_query``.
    Inactive entries are only marked stale and are evicted by
    ``garbage_collect`` once idle for longer than the retention window.

    Refetches run as tasks on the running event loop. Without a running loop
    invalidation still marks entries stale; the refetch happens on next read.
    """

    def __init__(
        self,
        stale_time_seconds: float = DEFAULT_STALE_TIME_SECONDS,
        gc_time_seconds: float = DEFAULT_GC_TIME_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.stale_time_seconds = stale_time_seconds
        self.gc_time_seconds = gc_time_seconds
        self._clock = clock
        self._queries: dict[QueryKey, CachedQuery] = {}
        self._fetchers: dict[QueryKey, Fetcher] = {}
        self._subscriptions: dict[QueryKey, list[_Subscription]] = {}
        self._refetch_tasks: dict[QueryKey, asyncio.Task[Any]] = {}
        self._listeners: list[ChangeListener] = []
        self.detail_logger = get_detail_logger()

    # Reads
    def get(self, key: QueryKey) -> CachedQuery | None:
        return self._queries.get(key)

    def get_data(self, key: QueryKey, default: Any = None) -> Any:
        entry = self._queries.get(key)
        return default if entry is None else entry.data

    def keys(self) -> list[QueryKey]:
        return list(self._queries)

    def find_all(self, predicate: KeyPredicate | None = None) -> list[CachedQuery]:
        return [
            entry
            for key, entry in self._queries.items()
            if predicate is None or predicate(key)
        ]

    def __contains__(self, key: object) -> bool:
        return key in self._queries

    def __len__(self) -> int:
        return len(self._queries)

    def is_fresh(self, key: QueryKey) -> bool:
        """True if the entry exists, is not stale and is within the stale window."""
        entry = self._queries.get(key)
        if entry is None or entry.is_stale or entry.fetched_at is None:
            return False
        return self._clock() - entry.fetched_at < self.stale_time_seconds

    def is_observed(self, key: QueryKey) -> bool:
        return bool(self._subscriptions.get(key))

    # Writes
    def set(self, key: QueryKey, data: Any) -> CachedQuery:
        """Store fresh data for a key, creating the entry if needed."""
        now = self._clock()
        entry = CachedQuery(
            key=key, data=data, fetched_at=now, is_stale=False, updated_at=now
        )
        self._queries[key] = entry
        self._notify(key, entry)
        return entry

    def update(self, key: QueryKey, updater: Updater) -> bool:
        """Apply ``updater`` to one existing entry.

        Returns:
            True if the entry changed. An updater that returns its input
            unchanged (by reference) leaves the entry untouched.
        """
        entry = self._queries.get(key)
        if entry is None:
            return False

        new_data = updater(entry.data)
        if new_data is entry.data:
            return False

        self._replace(entry, data=new_data)
        return True

    def set_where(self, predicate: KeyPredicate, updater: Updater) -> list[QueryKey]:
        """Apply ``updater`` to every entry whose key matches ``predicate``.

        Returns:
            Keys of the entries that actually changed
        """
        return [
            key
            for key in list(self._queries)
            if predicate(key) and self.update(key, updater)
        ]

    def restore(self, key: QueryKey, entry: CachedQuery | None) -> None:
        """Put back a previously captured entry exactly as it was.

        ``None`` means the key did not exist when captured and is removed.
        """
        if entry is None:
            if key in self._queries:
                self.remove(key)
            return
        self._queries[key] = entry
        self._notify(key, entry)

    def invalidate(
        self,
        key_or_prefix: QueryKey | None = None,
        *,
        predicate: KeyPredicate | None = None,
        exact: bool = False,
        refetch_type: RefetchType = RefetchType.ACTIVE,
    ) -> list[QueryKey]:
        """Mark matching entries stale and refetch the ones selected by ``refetch_type``.

        Args:
            key_or_prefix: Key, or key prefix, to match. None matches everything
                (narrowed by ``predicate`` when given).
            predicate: Additional key filter
            exact: Match ``key_or_prefix`` exactly instead of as a prefix
            refetch_type: Which matching entries to refetch right away

        Returns:
            Keys that were invalidated. Non-existent keys are ignored.
        """
        match = self._matcher(key_or_prefix, predicate, exact)
        invalidated: list[QueryKey] = []

        for key, entry in list(self._queries.items()):
            if not match(key):
                continue
            if not entry.is_stale:
                self._replace(entry, is_stale=True)
            invalidated.append(key)
            if self._should_refetch(key, refetch_type):
                self._schedule_refetch(key)

        if invalidated:
            self.detail_logger.debug(
                f"Invalidated {len(invalidated)} queries matching {key_or_prefix!r}"
            )
        return invalidated

    def remove(self, key: QueryKey) -> bool:
        """Drop the entry for ``key``.

        The registered fetcher stays, so a restored or re-set entry can still
        be refetched. Fetchers go away in ``garbage_collect`` and ``clear``.
        """
        task = self._refetch_tasks.pop(key, None)
        if task is not None and not task.done():
            task.cancel()
        if self._queries.pop(key, None) is None:
            return False
        self._notify(key, None)
        return True

    def remove_where(
        self,
        key_or_prefix: QueryKey | None = None,
        *,
        predicate: KeyPredicate | None = None,
        exact: bool = False,
    ) -> list[QueryKey]:
        match = self._matcher(key_or_prefix, predicate, exact)
        removed = [key for key in list(self._queries) if match(key)]
        for key in removed:
            self.remove(key)
        return removed

    def clear(self) -> None:
        for key in list(self._queries):
            self.remove(key)
        self._fetchers.clear()

    # Fetching
    async def fetch_query(
        self, key: QueryKey, fetcher: Fetcher, *, force: bool = False
    ) -> Any:
        """Read through the cache.

        Registers ``fetcher`` as the refetch source for ``key``. Fresh data is
        returned without a remote call; otherwise the fetch runs (sharing an
        in-flight refetch for the same key if one exists). A fetch cancelled
        by ``cancel_queries`` resolves to whatever the cache then holds.
        """
        self._fetchers[key] = fetcher
        if not force and self.is_fresh(key):
            return self._queries[key].data

        task = self._refetch_tasks.get(key)
        if task is None or task.done():
            task = self._start_fetch(key, fetcher)

        while True:
            await asyncio.wait({task})
            if not task.cancelled():
                return task.result()
            newer = self._refetch_tasks.get(key)
            if newer is None or newer is task:
                return self.get_data(key)
            task = newer

    async def refetch(self, key: QueryKey) -> Any:
        fetcher = self._fetchers.get(key)
        if fetcher is None:
            return self.get_data(key)
        return await self.fetch_query(key, fetcher, force=True)

    async def cancel_queries(
        self,
        key_or_prefix: QueryKey | None = None,
        *,
        predicate: KeyPredicate | None = None,
        exact: bool = False,
    ) -> int:
        """Cancel in-flight fetches for matching keys and wait until they stop.

        Returns:
            Number of fetches cancelled
        """
        match = self._matcher(key_or_prefix, predicate, exact)
        tasks = [
            task
            for key, task in self._refetch_tasks.items()
            if match(key) and not task.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            self.detail_logger.debug(f"Cancelled {len(tasks)} in-flight fetches")
        return len(tasks)

    async def wait_for_refetches(self) -> None:
        """Wait until no refetch is running."""
        while self._refetch_tasks:
            await asyncio.gather(
                *list(self._refetch_tasks.values()), return_exceptions=True
            )

    # Observers
    def subscribe(
        self, key: QueryKey, listener: KeyListener | None = None
    ) -> Callable[[], None]:
        """Observe a key, making it active for refetch-on-invalidate.

        Args:
            key: Key to observe. It need not exist yet.
            listener: Called with the new entry (or None on removal) on change

        Returns:
            Function that ends the subscription. Calling it twice is harmless.
        """
        subscription = _Subscription(listener)
        self._subscriptions.setdefault(key, []).append(subscription)

        def unsubscribe() -> None:
            subscriptions = self._subscriptions.get(key, [])
            if subscription in subscriptions:
                subscriptions.remove(subscription)
            if not subscriptions:
                self._subscriptions.pop(key, None)

        return unsubscribe

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        """Receive (key, entry) for every change to any key."""
        self._listeners.append(listener)

        def remove_listener() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove_listener

    def garbage_collect(self) -> int:
        """Evict unobserved entries idle for at least the retention window.

        Returns:
            Number of entries evicted
        """
        now = self._clock()
        expired = [
            key
            for key, entry in self._queries.items()
            if not self.is_observed(key)
            and key not in self._refetch_tasks
            and now - entry.updated_at >= self.gc_time_seconds
        ]
        for key in expired:
            self.remove(key)
            self._fetchers.pop(key, None)
        # Fetchers of keys removed elsewhere and no longer observed
        for key in [k for k in self._fetchers if k not in self._queries]:
            if not self.is_observed(key) and key not in self._refetch_tasks:
                del self._fetchers[key]
        if expired:
            self.detail_logger.info(f"Garbage collected {len(expired)} idle queries")
        return len(expired)

    # Internals
    def _replace(self, entry: CachedQuery, **changes: Any) -> CachedQuery:
        new_entry = replace(entry, updated_at=self._clock(), **changes)
        self._queries[entry.key] = new_entry
        self._notify(entry.key, new_entry)
        return new_entry

    def _notify(self, key: QueryKey, entry: CachedQuery | None) -> None:
        for listener in list(self._listeners):
            self._call_listener(key, listener, key, entry)
        for subscription in list(self._subscriptions.get(key, [])):
            if subscription.listener is not None:
                self._call_listener(key, subscription.listener, entry)

    def _call_listener(
        self, key: QueryKey, listener: Callable[..., None], *args: Any
    ) -> None:
        try:
            listener(*args)
        except Exception as e:
            self.detail_logger.exception(f"Cache listener failed for {key!r}: {e}")

    @staticmethod
    def _matcher(
        key_or_prefix: QueryKey | None,
        predicate: KeyPredicate | None,
        exact: bool,
    ) -> KeyPredicate:
        def match(key: QueryKey) -> bool:
            if key_or_prefix is not None:
                if exact and key != key_or_prefix:
                    return False
                if not exact and not has_prefix(key, key_or_prefix):
                    return False
            return predicate is None or predicate(key)

        return match

    def _should_refetch(self, key: QueryKey, refetch_type: RefetchType) -> bool:
        if key not in self._fetchers or refetch_type == RefetchType.NONE:
            return False
        if refetch_type == RefetchType.ALL:
            return True
        observed = self.is_observed(key)
        return observed if refetch_type == RefetchType.ACTIVE else not observed

    def _schedule_refetch(self, key: QueryKey) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self.detail_logger.debug(
                f"No running event loop; {key!r} stays stale until next read"
            )
            return

        existing = self._refetch_tasks.get(key)
        if existing is not None and not existing.done():
            existing.cancel()
        self._start_fetch(key, self._fetchers[key])

    def _start_fetch(self, key: QueryKey, fetcher: Fetcher) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(self._run_fetch(key, fetcher))
        self._refetch_tasks[key] = task
        task.add_done_callback(lambda done, key=key: self._forget_task(key, done))
        return task

    def _forget_task(self, key: QueryKey, task: asyncio.Task[Any]) -> None:
        if self._refetch_tasks.get(key) is task:
            del self._refetch_tasks[key]
        if not task.cancelled() and task.exception() is not None:
            self.detail_logger.debug(f"Fetch for {key!r} failed: {task.exception()}")

    async def _run_fetch(self, key: QueryKey, fetcher: Fetcher) -> Any:
        self.detail_logger.debug(f"Fetching {key!r}")
        try:
            data = await fetcher()
        except asyncio.CancelledError:
            self.detail_logger.debug(f"Fetch for {key!r} cancelled")
            raise
        except Exception as e:
            entry = self._queries.get(key)
            if entry is not None:
                self._replace(entry, error=e)
            raise
        self.set(key, data)
        return data
