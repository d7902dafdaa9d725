# SPDX-License-Identifier: MIT
"""Cache synchronization manager keeping every cached view of an entity consistent."""

from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from .. import query_keys
from ..config import CacheSettings
from ..enums import InvalidationScope, OperationType, QueueOperation, RefetchType
from ..exceptions import ConfigurationError
from ..logging_config import get_detail_logger
from ..models import CachedQuery, Newsletter, QueryKey, ReadingQueueItem, Tag
from ..query_cache import QueryCacheStore
from ..query_keys import KeyPredicate
from .invalidation import SCOPE_PREFIXES, resolve_operation, scopes_for


NewsletterRewrite = Callable[[Newsletter], Newsletter]

Snapshot = dict[QueryKey, CachedQuery | None]


def _rewrite_collection(items: Sequence[Any], rewrite: Callable[[Any], Any]) -> Any:
    """Apply ``rewrite`` to each item; same container back if nothing changed."""
    rewritten = [rewrite(item) for item in items]
    if all(new is old for new, old in zip(rewritten, items)):
        return items
    return type(items)(rewritten) if isinstance(items, tuple) else rewritten


def _rewrite_queue_item(rewrite: NewsletterRewrite) -> Callable[[Any], Any]:
    def apply(item: Any) -> Any:
        if not isinstance(item, ReadingQueueItem):
            return item
        newsletter = rewrite(item.newsletter)
        if newsletter is item.newsletter:
            return item
        return item.with_updates({"newsletter": newsletter})

    return apply


def _rewrite_newsletter_value(data: Any, rewrite: NewsletterRewrite) -> Any:
    """Rewrite newsletters wherever they sit in a cached value.

    Handles a single newsletter, a list of newsletters or queue items, and a
    paginated mapping carrying its rows under ``"data"``. Anything else is
    returned as is.
    """
    if isinstance(data, Newsletter):
        return rewrite(data)
    if isinstance(data, ReadingQueueItem):
        return _rewrite_queue_item(rewrite)(data)
    if isinstance(data, (list, tuple)):
        return _rewrite_collection(
            data, lambda item: _rewrite_newsletter_value(item, rewrite)
        )
    if isinstance(data, Mapping) and isinstance(data.get("data"), (list, tuple)):
        rows = _rewrite_newsletter_value(data["data"], rewrite)
        if rows is data["data"]:
            return data
        return {**data, "data": rows}
    return data


def _filter_newsletter_value(data: Any, keep: Callable[[Any], bool]) -> Any:
    """Drop rows for which ``keep`` is False; same container back if none dropped."""
    if isinstance(data, (list, tuple)):
        kept = [item for item in data if keep(item)]
        if len(kept) == len(data):
            return data
        return type(data)(kept) if isinstance(data, tuple) else kept
    if isinstance(data, Mapping) and isinstance(data.get("data"), (list, tuple)):
        rows = _filter_newsletter_value(data["data"], keep)
        if rows is data["data"]:
            return data
        dropped = len(data["data"]) - len(rows)
        result = {**data, "data": rows}
        if isinstance(data.get("count"), int):
            result["count"] = max(0, data["count"] - dropped)
        return result
    return data


def _row_newsletter_id(item: Any) -> str | None:
    if isinstance(item, ReadingQueueItem):
        return item.newsletter_id
    if isinstance(item, Newsletter):
        return item.id
    return None


def is_newsletter_view_key(key: QueryKey) -> bool:
    """True for newsletter lists, newsletter details and reading-queue lists."""
    return (
        query_keys.is_newsletter_list_key(key)
        or query_keys.is_newsletter_detail_key(key)
        or query_keys.is_reading_queue_list_key(key)
    )


def placeholder_tags(tag_ids: Iterable[str], user_id: str = "") -> tuple[Tag, ...]:
    """Tags known only by id, rendered until the next refetch fills them in."""
    return tuple(Tag(id=tag_id, user_id=user_id) for tag_id in tag_ids)


class CacheSyncManager:
    """Propagates entity changes across every cached view and drives invalidation.

    Every write to the query cache that stems from a mutation goes through
    this class. Touched collections always come back as new containers while
    untouched entities keep their original reference, so consumers can rely
    on identity checks to detect what changed.

    The manager is constructed once and passed to whatever needs it; there is
    no module-level instance.
    """

    def __init__(
        self, store: QueryCacheStore | None, settings: CacheSettings | None = None
    ) -> None:
        if store is None:
            raise ConfigurationError(
                "CacheSyncManager requires a QueryCacheStore instance"
            )
        self.store = store
        self.settings = settings or CacheSettings()
        self.detail_logger = get_detail_logger()

    # Entity propagation
    def update_entity_in_cache(
        self, entity_id: str, updates: Mapping[str, Any]
    ) -> list[QueryKey]:
        """Apply a partial update to every cached copy of one newsletter.

        Covers list queries, the detail query and, when cross-feature sync is
        enabled, reading-queue lists embedding the newsletter.

        Returns:
            Keys whose data changed
        """
        return self.update_entities_in_cache({entity_id: updates})

    def update_entities_in_cache(
        self, patches: Mapping[str, Mapping[str, Any]]
    ) -> list[QueryKey]:
        """Apply one partial update per id in a single pass over the cache."""
        if not patches:
            return []

        def rewrite(newsletter: Newsletter) -> Newsletter:
            updates = patches.get(newsletter.id)
            if not updates:
                return newsletter
            return newsletter.with_updates(updates)

        touched = self._rewrite_newsletters(rewrite, detail_ids=patches.keys())
        self.detail_logger.debug(
            f"Patched {len(patches)} newsletter(s) across {len(touched)} queries"
        )
        return touched

    def replace_entities_in_cache(self, entities: Iterable[Newsletter]) -> list[QueryKey]:
        """Swap cached copies for authoritative snapshots returned by the server."""
        by_id = {entity.id: entity for entity in entities}
        if not by_id:
            return []

        def rewrite(newsletter: Newsletter) -> Newsletter:
            return by_id.get(newsletter.id, newsletter)

        return self._rewrite_newsletters(rewrite, detail_ids=by_id.keys())

    def remove_entity_from_cache(self, entity_id: str) -> list[QueryKey]:
        """Drop a newsletter from every list and queue view and forget its detail."""
        return self.remove_entities_from_cache([entity_id])

    def remove_entities_from_cache(self, entity_ids: Iterable[str]) -> list[QueryKey]:
        ids = set(entity_ids)
        if not ids:
            return []

        def keep(item: Any) -> bool:
            return _row_newsletter_id(item) not in ids

        touched = self.store.set_where(
            self._collection_predicate(),
            lambda data: _filter_newsletter_value(data, keep),
        )
        for entity_id in ids:
            detail_key = query_keys.newsletter_detail(entity_id)
            if self.store.remove(detail_key):
                touched.append(detail_key)

        self.detail_logger.debug(
            f"Removed {len(ids)} newsletter(s) from {len(touched)} queries"
        )
        return touched

    def find_entity(self, entity_id: str) -> Newsletter | None:
        """Current cached snapshot of a newsletter, from any view that holds it."""
        detail = self.store.get_data(query_keys.newsletter_detail(entity_id))
        if isinstance(detail, Newsletter):
            return detail

        for entry in self.store.find_all(self._collection_predicate()):
            rows = entry.data.get("data") if isinstance(entry.data, Mapping) else entry.data
            if not isinstance(rows, (list, tuple)):
                continue
            for item in rows:
                if isinstance(item, Newsletter) and item.id == entity_id:
                    return item
                if isinstance(item, ReadingQueueItem) and item.newsletter_id == entity_id:
                    return item.newsletter
        return None

    # Invalidation
    def invalidate_related_queries(
        self,
        entity_ids: Iterable[str],
        operation_type: OperationType | str,
    ) -> list[QueryKey]:
        """Invalidate the key groups the dispatch table lists for ``operation_type``.

        Detail queries of deleted entities are removed rather than refetched.

        Returns:
            Keys that were invalidated or removed
        """
        if resolve_operation(operation_type) is None:
            self.detail_logger.warning(
                f"Unknown operation type {operation_type!r}; "
                "invalidating newsletter lists"
            )

        refetch_type = (
            RefetchType.ACTIVE if self.settings.refetch_on_invalidate else RefetchType.NONE
        )
        affected: list[QueryKey] = []
        for scope in scopes_for(operation_type):
            if scope == InvalidationScope.NEWSLETTER_DETAILS:
                for entity_id in entity_ids:
                    detail_key = query_keys.newsletter_detail(entity_id)
                    if self.store.remove(detail_key):
                        affected.append(detail_key)
                continue
            affected.extend(
                self.store.invalidate(SCOPE_PREFIXES[scope], refetch_type=refetch_type)
            )

        self.detail_logger.debug(
            f"{operation_type!s}: invalidated {len(affected)} queries"
        )
        return affected

    def optimistic_update(
        self,
        entity_id: str,
        updates: Mapping[str, Any],
        operation_type: OperationType | str,
    ) -> Newsletter | None:
        """Patch every copy, invalidate per the table, return the prior snapshot.

        The caller owns rollback; nothing is restored here.
        """
        previous = self.find_entity(entity_id)
        self.update_entity_in_cache(entity_id, updates)
        self.invalidate_related_queries([entity_id], operation_type)
        return previous

    # Reading queue
    def update_reading_queue_in_cache(
        self,
        operation: QueueOperation,
        *,
        user_id: str | None = None,
        item_id: str | None = None,
        newsletter_id: str | None = None,
        positions: Mapping[str, int] | None = None,
        tag_ids: Sequence[str] | None = None,
        items: Sequence[ReadingQueueItem] | None = None,
    ) -> list[QueryKey]:
        """Apply a queue-specific change to the reading-queue list views.

        Args:
            operation: What to do
            user_id: Restrict to this user's queue; all queues when None
            item_id: Queue item to remove
            newsletter_id: Newsletter whose tags change (``UPDATE_TAGS``)
            positions: New position per queue item id (``REORDER``)
            tag_ids: New tag ids (``UPDATE_TAGS``)
            items: Items to put back verbatim (``REVERT``)

        Returns:
            Keys whose data changed or were invalidated
        """
        prefix = (
            query_keys.reading_queue_list(user_id)
            if user_id
            else query_keys.reading_queue_lists()
        )
        target = query_keys.prefix_predicate(prefix)

        if operation == QueueOperation.ADD:
            # New rows need the full embedded newsletter, so refetch instead
            return self.store.invalidate(prefix)

        if operation == QueueOperation.REMOVE:
            if not item_id:
                return []
            return self.store.set_where(
                target,
                lambda data: _filter_newsletter_value(
                    data, lambda item: getattr(item, "id", None) != item_id
                ),
            )

        if operation == QueueOperation.REORDER:
            if not positions:
                return []
            return self.store.set_where(
                target, lambda data: self._reorder_queue(data, positions)
            )

        if operation == QueueOperation.UPDATE_TAGS:
            if not newsletter_id or tag_ids is None:
                return []
            tags = placeholder_tags(tag_ids, user_id or "")

            def retag(newsletter: Newsletter) -> Newsletter:
                if newsletter.id != newsletter_id:
                    return newsletter
                return newsletter.with_updates({"tags": tags})

            return self.store.set_where(
                target, lambda data: _rewrite_newsletter_value(data, retag)
            )

        if operation == QueueOperation.REVERT:
            if items is None or not user_id:
                return []
            key = query_keys.reading_queue_list(user_id)
            self.store.set(key, list(items))
            return [key]

        raise ValueError(f"Unsupported queue operation: {operation!r}")

    @staticmethod
    def _reorder_queue(data: Any, positions: Mapping[str, int]) -> Any:
        if not isinstance(data, (list, tuple)):
            return data
        moved = [
            item.with_updates({"position": positions[item.id]})
            if isinstance(item, ReadingQueueItem)
            and item.id in positions
            and item.position != positions[item.id]
            else item
            for item in data
        ]
        reordered = sorted(moved, key=lambda item: getattr(item, "position", 0))
        if all(new is old for new, old in zip(reordered, data)):
            return data
        return reordered

    # Tags
    def update_newsletter_tags_in_cache(
        self, newsletter_id: str, tags: Sequence[Tag | str]
    ) -> list[QueryKey]:
        """Set a newsletter's tags everywhere; bare ids become placeholder tags."""
        resolved = tuple(
            tag if isinstance(tag, Tag) else Tag(id=tag) for tag in tags
        )
        touched = self.update_entity_in_cache(newsletter_id, {"tags": resolved})
        self.invalidate_tag_queries()
        return touched

    def remove_tag_from_all_newsletters(self, tag_id: str) -> list[QueryKey]:
        """Strip a deleted tag from every cached newsletter."""

        def untag(newsletter: Newsletter) -> Newsletter:
            if not any(tag.id == tag_id for tag in newsletter.tags):
                return newsletter
            remaining = tuple(tag for tag in newsletter.tags if tag.id != tag_id)
            return newsletter.with_updates({"tags": remaining})

        touched = self._rewrite_newsletters(untag)
        self.invalidate_tag_queries()
        return touched

    def invalidate_tag_queries(self) -> list[QueryKey]:
        return self.store.invalidate(query_keys.newsletter_tags())

    # Whole sections
    def clear_newsletter_cache(self) -> list[QueryKey]:
        """Mark every newsletter list stale."""
        return self.store.invalidate(query_keys.newsletter_lists())

    def clear_reading_queue_cache(self) -> list[QueryKey]:
        """Mark every reading-queue list stale."""
        return self.store.invalidate(query_keys.reading_queue_lists())

    # Snapshots
    def affected_keys(self) -> list[QueryKey]:
        """Keys whose data can hold a newsletter: lists, details, queue lists."""
        return [key for key in self.store.keys() if is_newsletter_view_key(key)]

    def snapshot(self, keys: Iterable[QueryKey] | None = None) -> Snapshot:
        """Capture the current entries for ``keys`` (default: ``affected_keys``).

        A key absent from the cache is captured as None so that restoring
        removes whatever was written there in the meantime.
        """
        selected = self.affected_keys() if keys is None else list(keys)
        return {key: self.store.get(key) for key in selected}

    def restore(self, snapshot: Snapshot) -> None:
        """Put every captured entry back exactly as it was."""
        for key, entry in snapshot.items():
            self.store.restore(key, entry)
        self.detail_logger.debug(f"Restored {len(snapshot)} queries from snapshot")

    async def cancel_queries(self, predicate: KeyPredicate | None = None) -> int:
        """Cancel in-flight fetches for views that can hold a newsletter."""
        return await self.store.cancel_queries(
            predicate=predicate or is_newsletter_view_key
        )

    # Internals
    def _collection_predicate(self) -> KeyPredicate:
        if self.settings.enable_cross_feature_sync:
            return lambda key: query_keys.is_newsletter_list_key(
                key
            ) or query_keys.is_reading_queue_list_key(key)
        return query_keys.is_newsletter_list_key

    def _rewrite_newsletters(
        self,
        rewrite: NewsletterRewrite,
        detail_ids: Iterable[str] | None = None,
    ) -> list[QueryKey]:
        """Run ``rewrite`` over every cached view that can hold a newsletter.

        Args:
            rewrite: Returns its argument unchanged (same reference) for
                newsletters it does not touch
            detail_ids: Limit detail queries to these ids; all when None
        """
        def updater(data: Any) -> Any:
            return _rewrite_newsletter_value(data, rewrite)

        touched = self.store.set_where(self._collection_predicate(), updater)

        if detail_ids is None:
            touched.extend(
                self.store.set_where(query_keys.is_newsletter_detail_key, updater)
            )
        else:
            for entity_id in detail_ids:
                detail_key = query_keys.newsletter_detail(entity_id)
                if self.store.update(detail_key, updater):
                    touched.append(detail_key)
        return touched
