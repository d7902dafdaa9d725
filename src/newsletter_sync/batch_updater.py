# SPDX-License-Identifier: MIT
"""Batch update coordinator for large multi-id remote updates."""

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, TypeVar

from .config import BatchSettings
from .constants import MUTABLE_NEWSLETTER_FIELDS
from .enums import EntityType
from .exceptions import ItemNotUpdatedError
from .gateway.protocols import RemoteDataGateway
from .logging_config import get_detail_logger, get_status_logger
from .models import BatchResult, EntityModel
from .retry_utils import async_retry_with_backoff
from .validation import validate_entity_ids, validate_update_payload


T = TypeVar("T")

# (completed_items, total_items, batch_number) with batch_number starting at 1
ProgressCallback = Callable[[int, int, int], None]


def create_batches(items: Sequence[T], batch_size: int) -> list[list[T]]:
    """Split ``items`` into consecutive chunks of at most ``batch_size``.

    Examples:
        >>> create_batches(["a", "b", "c", "d", "e"], 2)
        [['a', 'b'], ['c', 'd'], ['e']]
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")
    return [list(items[i : i + batch_size]) for i in range(0, len(items), batch_size)]


class BatchUpdateCoordinator:
    """Applies one update payload to many ids in sequential, retried chunks.

    Chunks run strictly one after another. A chunk that still fails after
    ``max_retries`` retries marks each of its ids as failed and the next chunk
    proceeds. The result is always index-aligned with the input ids; per-item
    failures are reported in it, never raised.

    Cache synchronization is left to the caller.
    """

    def __init__(
        self,
        gateway: RemoteDataGateway,
        settings: BatchSettings | None = None,
        entity_type: EntityType | str = EntityType.NEWSLETTERS,
        allowed_fields: frozenset[str] = MUTABLE_NEWSLETTER_FIELDS,
    ) -> None:
        self.gateway = gateway
        self.settings = settings or BatchSettings()
        self.entity_type = (
            entity_type.value if isinstance(entity_type, EntityType) else entity_type
        )
        self.allowed_fields = allowed_fields
        self.detail_logger = get_detail_logger()
        self.status_logger = get_status_logger()

    async def bulk_update(
        self,
        ids: Sequence[str],
        updates: Mapping[str, Any],
        on_progress: ProgressCallback | None = None,
    ) -> BatchResult[EntityModel]:
        """Apply ``updates`` to every id.

        Args:
            ids: Ids to update, in the order results should be reported
            updates: Shared partial update
            on_progress: Called after each chunk resolves

        Returns:
            BatchResult aligned with ``ids``: the updated entity or None, and
            None or the error, per position

        Raises:
            ValidationError: If ``ids`` or ``updates`` are malformed
        """
        validated_ids = validate_entity_ids(ids)
        payload = validate_update_payload(updates, self.allowed_fields)

        async def update_chunk(chunk: list[str]) -> list[Any]:
            entities = await self.gateway.bulk_update(self.entity_type, chunk, payload)
            by_id = {entity.id: entity for entity in entities}
            return [
                by_id[entity_id]
                if entity_id in by_id
                else ItemNotUpdatedError(entity_id, self.entity_type)
                for entity_id in chunk
            ]

        return await self._run_chunks("bulk update", validated_ids, update_chunk, on_progress)

    async def bulk_delete(
        self,
        ids: Sequence[str],
        on_progress: ProgressCallback | None = None,
    ) -> BatchResult[bool]:
        """Delete every id with the same chunking and retry policy.

        Results are True for deleted ids and None for failed ones.
        """
        validated_ids = validate_entity_ids(ids)

        async def delete_chunk(chunk: list[str]) -> list[Any]:
            deleted = await self.gateway.bulk_delete(self.entity_type, chunk)
            if deleted:
                return [True] * len(chunk)
            return [ItemNotUpdatedError(entity_id, self.entity_type) for entity_id in chunk]

        return await self._run_chunks("bulk delete", validated_ids, delete_chunk, on_progress)

    async def _run_chunks(
        self,
        action: str,
        ids: list[str],
        process_chunk: Callable[[list[str]], Awaitable[list[Any]]],
        on_progress: ProgressCallback | None,
    ) -> BatchResult[Any]:
        """Drive chunks sequentially and collect index-aligned outcomes.

        ``process_chunk`` returns one value per id: the result, or an
        exception instance for an id the gateway skipped.
        """
        total = len(ids)
        result: BatchResult[Any] = BatchResult(
            ids=list(ids), results=[None] * total, errors=[None] * total
        )
        if not ids:
            return result

        batch_size = self.settings.max_batch_size
        batches = create_batches(ids, batch_size)
        self.detail_logger.info(
            f"Starting {action} of {total} {self.entity_type} in {len(batches)} batches"
        )

        for index, chunk in enumerate(batches):
            batch_number = index + 1
            offset = index * batch_size

            try:
                outcomes = await self._call_with_retries(process_chunk, chunk, batch_number)
            except Exception as e:
                self.status_logger.warning(
                    f"Batch {batch_number}/{len(batches)} failed after "
                    f"{self.settings.max_retries} retries: {e}"
                )
                for position in range(offset, offset + len(chunk)):
                    result.errors[position] = e
                chunk_succeeded = False
            else:
                for position, outcome in enumerate(outcomes, start=offset):
                    if isinstance(outcome, Exception):
                        result.errors[position] = outcome
                    else:
                        result.results[position] = outcome
                chunk_succeeded = True

            completed = offset + len(chunk)
            self.detail_logger.debug(
                f"Batch {batch_number}/{len(batches)} done ({completed}/{total})"
            )
            if on_progress is not None:
                on_progress(completed, total, batch_number)

            is_last = batch_number == len(batches)
            if chunk_succeeded and not is_last and self.settings.batch_delay_seconds > 0:
                await asyncio.sleep(self.settings.batch_delay_seconds)

        self.status_logger.info(f"{action.capitalize()}: {result.summary()}")
        return result

    async def _call_with_retries(
        self,
        process_chunk: Callable[[list[str]], Awaitable[list[Any]]],
        chunk: list[str],
        batch_number: int,
    ) -> list[Any]:
        retry_delay = self.settings.retry_delay_seconds

        def log_retry(attempt: int, error: Exception) -> None:
            self.detail_logger.warning(
                f"Batch {batch_number} failed, retry {attempt}/"
                f"{self.settings.max_retries}: {error}"
            )

        @async_retry_with_backoff(
            max_retries=self.settings.max_retries,
            initial_delay=retry_delay,
            max_delay=retry_delay,
            exponential_base=1.0,
            exceptions=(Exception,),
            on_retry=log_retry,
        )
        async def attempt() -> list[Any]:
            return await process_chunk(chunk)

        return await attempt()
