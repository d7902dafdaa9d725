# SPDX-License-Identifier: MIT
"""User-facing newsletter actions built on the optimistic executor."""

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

from . import query_keys
from .batch_updater import BatchUpdateCoordinator, ProgressCallback
from .cache_sync import CacheSyncManager, placeholder_tags
from .config import BatchSettings
from .enums import EntityType, OperationType, QueueOperation
from .exceptions import NotFoundError, ValidationError
from .gateway.protocols import RemoteDataGateway
from .logging_config import get_detail_logger
from .models import BatchResult, EntityModel, Newsletter, QueryFilter, ReadingQueueItem
from .optimistic import OptimisticMutation, OptimisticMutationExecutor
from .validation import validate_entity_id, validate_entity_ids, validate_update_payload


NEWSLETTERS = EntityType.NEWSLETTERS.value
READING_QUEUE = EntityType.READING_QUEUE.value


class NewsletterActions:
    """State-changing actions on newsletters and the reading queue.

    Single-item actions run through ``OptimisticMutationExecutor.execute``
    and re-raise the gateway error after rollback. Bulk actions run the
    ``BatchUpdateCoordinator`` inside ``execute_batch`` and always return a
    ``BatchResult``.

    Input is validated before any cache write, so a ``ValidationError``
    never leaves anything to roll back.
    """

    def __init__(
        self,
        gateway: RemoteDataGateway,
        sync_manager: CacheSyncManager,
        *,
        user_id: str | None = None,
        batch_settings: BatchSettings | None = None,
        executor: OptimisticMutationExecutor | None = None,
        coordinator: BatchUpdateCoordinator | None = None,
    ) -> None:
        self.gateway = gateway
        self.sync_manager = sync_manager
        self.user_id = user_id
        self.executor = executor or OptimisticMutationExecutor(sync_manager)
        self.coordinator = coordinator or BatchUpdateCoordinator(
            gateway, batch_settings, EntityType.NEWSLETTERS
        )
        self.detail_logger = get_detail_logger()

    # Single newsletter
    async def mark_read(self, newsletter_id: str) -> EntityModel:
        return await self._update_one(
            newsletter_id, {"is_read": True}, OperationType.MARK_READ
        )

    async def mark_unread(self, newsletter_id: str) -> EntityModel:
        """Mark unread. Archived newsletters are not changed in the cache."""
        return await self._update_one(
            newsletter_id,
            {"is_read": False},
            OperationType.MARK_UNREAD,
            skip_archived=True,
        )

    async def toggle_like(self, newsletter_id: str) -> EntityModel:
        newsletter_id = validate_entity_id(newsletter_id)
        current = await self._current(newsletter_id)
        return await self._update_one(
            newsletter_id, {"is_liked": not current.is_liked}, OperationType.TOGGLE_LIKE
        )

    async def archive(self, newsletter_id: str) -> EntityModel:
        return await self._update_one(
            newsletter_id, {"is_archived": True}, OperationType.ARCHIVE
        )

    async def unarchive(self, newsletter_id: str) -> EntityModel:
        return await self._update_one(
            newsletter_id, {"is_archived": False}, OperationType.UNARCHIVE
        )

    async def delete(self, newsletter_id: str) -> bool:
        newsletter_id = validate_entity_id(newsletter_id)
        mutation: OptimisticMutation[bool] = OptimisticMutation(
            operation_type=OperationType.DELETE,
            entity_ids=[newsletter_id],
            apply=lambda sync: sync.remove_entity_from_cache(newsletter_id),
            remote_call=lambda: self.gateway.delete(NEWSLETTERS, newsletter_id),
        )
        return await self.executor.execute(mutation)

    async def update_tags(self, newsletter_id: str, tag_ids: Sequence[str]) -> Any:
        """Replace a newsletter's tags.

        Tags show as placeholders until the server answers with the full rows.
        """
        newsletter_id = validate_entity_id(newsletter_id)
        tag_ids = validate_entity_ids(tag_ids)
        tags = placeholder_tags(tag_ids, self.user_id or "")

        def write_back(sync: CacheSyncManager, result: Any) -> None:
            if isinstance(result, Newsletter):
                sync.replace_entities_in_cache([result])

        mutation: OptimisticMutation[Any] = OptimisticMutation(
            operation_type=OperationType.TAG_UPDATE,
            entity_ids=[newsletter_id],
            apply=lambda sync: sync.update_newsletter_tags_in_cache(newsletter_id, tags),
            remote_call=lambda: self.gateway.rpc(
                "set_newsletter_tags",
                {"newsletter_id": newsletter_id, "tag_ids": list(tag_ids)},
            ),
            on_success=write_back,
        )
        return await self.executor.execute(mutation)

    # Reading queue
    async def toggle_queue(self, newsletter_id: str) -> bool:
        """Add the newsletter to the reading queue, or remove it if queued.

        Returns:
            True if the newsletter is queued afterwards
        """
        newsletter_id = validate_entity_id(newsletter_id)
        user_id = self._require_user()
        queue_key = query_keys.reading_queue_list(user_id)
        existing = await self._find_queue_item(user_id, newsletter_id)

        if existing is not None:
            mutation: OptimisticMutation[Any] = OptimisticMutation(
                operation_type=OperationType.TOGGLE_QUEUE,
                entity_ids=[newsletter_id],
                apply=lambda sync: sync.update_reading_queue_in_cache(
                    QueueOperation.REMOVE, user_id=user_id, item_id=existing.id
                ),
                remote_call=lambda: self.gateway.delete(READING_QUEUE, existing.id),
                affected_keys=lambda: [queue_key],
            )
            await self.executor.execute(mutation)
            return False

        queued = self.sync_manager.store.get_data(queue_key) or []
        next_position = max(
            (item.position for item in queued if isinstance(item, ReadingQueueItem)),
            default=-1,
        ) + 1
        mutation = OptimisticMutation(
            operation_type=OperationType.TOGGLE_QUEUE,
            entity_ids=[newsletter_id],
            apply=lambda sync: sync.update_reading_queue_in_cache(
                QueueOperation.ADD, user_id=user_id
            ),
            remote_call=lambda: self.gateway.create(
                READING_QUEUE,
                {
                    "user_id": user_id,
                    "newsletter_id": newsletter_id,
                    "position": next_position,
                },
            ),
            affected_keys=lambda: [queue_key],
        )
        await self.executor.execute(mutation)
        return True

    async def reorder_queue(self, positions: Mapping[str, int]) -> list[EntityModel]:
        """Move queue items to new positions (queue item id -> position)."""
        user_id = self._require_user()
        if not positions:
            raise ValidationError("positions must not be empty", field="positions")
        for item_id, position in positions.items():
            validate_entity_id(item_id, "positions")
            if not isinstance(position, int) or isinstance(position, bool) or position < 0:
                raise ValidationError(
                    f"Invalid position for '{item_id}': {position!r}", field="positions"
                )

        async def push_positions() -> list[EntityModel]:
            return list(
                await asyncio.gather(
                    *(
                        self.gateway.update(READING_QUEUE, item_id, {"position": position})
                        for item_id, position in positions.items()
                    )
                )
            )

        mutation: OptimisticMutation[list[EntityModel]] = OptimisticMutation(
            operation_type=OperationType.QUEUE_REORDER,
            entity_ids=list(positions),
            apply=lambda sync: sync.update_reading_queue_in_cache(
                QueueOperation.REORDER, user_id=user_id, positions=positions
            ),
            remote_call=push_positions,
            affected_keys=lambda: [query_keys.reading_queue_list(user_id)],
        )
        return await self.executor.execute(mutation)

    # Bulk
    async def bulk_mark_read(
        self, ids: Sequence[str], on_progress: ProgressCallback | None = None
    ) -> BatchResult[Any]:
        return await self._bulk_update(
            ids, {"is_read": True}, OperationType.BULK_MARK_READ, on_progress
        )

    async def bulk_mark_unread(
        self, ids: Sequence[str], on_progress: ProgressCallback | None = None
    ) -> BatchResult[Any]:
        return await self._bulk_update(
            ids, {"is_read": False}, OperationType.BULK_MARK_UNREAD, on_progress
        )

    async def bulk_archive(
        self, ids: Sequence[str], on_progress: ProgressCallback | None = None
    ) -> BatchResult[Any]:
        return await self._bulk_update(
            ids, {"is_archived": True}, OperationType.BULK_ARCHIVE, on_progress
        )

    async def bulk_unarchive(
        self, ids: Sequence[str], on_progress: ProgressCallback | None = None
    ) -> BatchResult[Any]:
        return await self._bulk_update(
            ids, {"is_archived": False}, OperationType.BULK_UNARCHIVE, on_progress
        )

    async def bulk_delete(
        self, ids: Sequence[str], on_progress: ProgressCallback | None = None
    ) -> BatchResult[Any]:
        ids = validate_entity_ids(ids)
        if not ids:
            return BatchResult()

        def remove_deleted(sync: CacheSyncManager, successes: list[tuple[str, Any]]) -> None:
            sync.remove_entities_from_cache(entity_id for entity_id, _ in successes)

        mutation: OptimisticMutation[BatchResult[Any]] = OptimisticMutation(
            operation_type=OperationType.BULK_DELETE,
            entity_ids=ids,
            apply=lambda sync: sync.remove_entities_from_cache(ids),
            remote_call=lambda: self.coordinator.bulk_delete(ids, on_progress),
            reconcile=remove_deleted,
        )
        return await self.executor.execute_batch(mutation)

    # Internals
    async def _update_one(
        self,
        newsletter_id: str,
        updates: Mapping[str, Any],
        operation_type: OperationType,
        skip_archived: bool = False,
    ) -> EntityModel:
        newsletter_id = validate_entity_id(newsletter_id)
        payload = validate_update_payload(updates)

        def apply(sync: CacheSyncManager) -> None:
            cached = sync.find_entity(newsletter_id)
            if skip_archived and cached is not None and cached.is_archived:
                self.detail_logger.debug(
                    f"Skipping cache update for archived newsletter '{newsletter_id}'"
                )
                return
            sync.update_entity_in_cache(newsletter_id, payload)

        mutation: OptimisticMutation[EntityModel] = OptimisticMutation(
            operation_type=operation_type,
            entity_ids=[newsletter_id],
            apply=apply,
            remote_call=lambda: self.gateway.update(NEWSLETTERS, newsletter_id, payload),
        )
        return await self.executor.execute(mutation)

    async def _bulk_update(
        self,
        ids: Sequence[str],
        updates: Mapping[str, Any],
        operation_type: OperationType | str,
        on_progress: ProgressCallback | None,
    ) -> BatchResult[Any]:
        validated_ids = validate_entity_ids(ids)
        payload = validate_update_payload(updates)
        if not validated_ids:
            return BatchResult()

        skip_archived = "is_read" in payload

        def apply(sync: CacheSyncManager) -> None:
            patches = {}
            for entity_id in validated_ids:
                cached = sync.find_entity(entity_id)
                if skip_archived and cached is not None and cached.is_archived:
                    continue
                patches[entity_id] = payload
            sync.update_entities_in_cache(patches)

        mutation: OptimisticMutation[BatchResult[Any]] = OptimisticMutation(
            operation_type=operation_type,
            entity_ids=validated_ids,
            apply=apply,
            remote_call=lambda: self.coordinator.bulk_update(
                validated_ids, payload, on_progress
            ),
        )
        return await self.executor.execute_batch(mutation)

    async def _current(self, newsletter_id: str) -> Newsletter:
        cached = self.sync_manager.find_entity(newsletter_id)
        if cached is not None:
            return cached
        fetched = await self.gateway.get(NEWSLETTERS, newsletter_id)
        if not isinstance(fetched, Newsletter):
            raise NotFoundError(
                f"Newsletter '{newsletter_id}' not found", entity_type=NEWSLETTERS
            )
        return fetched

    async def _find_queue_item(
        self, user_id: str, newsletter_id: str
    ) -> ReadingQueueItem | None:
        cached = self.sync_manager.store.get_data(query_keys.reading_queue_list(user_id))
        if isinstance(cached, (list, tuple)):
            for item in cached:
                if isinstance(item, ReadingQueueItem) and item.newsletter_id == newsletter_id:
                    return item
            return None

        rows = await self.gateway.list(
            READING_QUEUE, QueryFilter(user_id=user_id, newsletter_id=newsletter_id)
        )
        for row in rows:
            if isinstance(row, ReadingQueueItem):
                return row
        return None

    def _require_user(self) -> str:
        if not self.user_id:
            raise ValidationError(
                "Reading-queue actions need a signed-in user", field="user_id"
            )
        return self.user_id
