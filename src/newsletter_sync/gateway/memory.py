# SPDX-License-Identifier: MIT
"""In-memory gateway used by the demo command and the test suite."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from ..enums import EntityType
from ..exceptions import ConflictError, NotFoundError
from ..logging_config import get_detail_logger
from ..models import EntityModel, Newsletter, QueryFilter, ReadingQueueItem, Tag
from .protocols import entity_model_for


NEWSLETTERS = EntityType.NEWSLETTERS.value
READING_QUEUE = EntityType.READING_QUEUE.value
TAGS = EntityType.TAGS.value


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sort_key(entity: EntityModel, field_name: str) -> tuple[bool, Any]:
    value = getattr(entity, field_name, None)
    return (value is None, 0 if value is None else value)


def _type_key(entity_type: EntityType | str) -> str:
    return entity_type.value if isinstance(entity_type, EntityType) else entity_type


class InMemoryGateway:
    """Gateway backed by dictionaries, one per entity type.

    Behaves like the PostgREST gateway where it matters to the sync layer:
    ``get`` returns None for a missing id, ``bulk_update`` silently skips ids
    it cannot update, and reading-queue rows embed the current newsletter.

    Failures can be injected per method (``fail_next``), per id
    (``fail_on_ids``) or as silent omissions from bulk updates
    (``omit_from_bulk_updates``). Every call is recorded in ``calls``.
    """

    def __init__(
        self,
        records: Mapping[str, Iterable[EntityModel]] | None = None,
        latency_seconds: float = 0.0,
    ) -> None:
        self.tables: dict[str, dict[str, EntityModel]] = {
            entity_type.value: {} for entity_type in EntityType
        }
        for entity_type, entities in (records or {}).items():
            table = self.tables.setdefault(_type_key(entity_type), {})
            for entity in entities:
                table[entity.id] = entity

        self.latency_seconds = latency_seconds
        self.calls: list[tuple[str, str, tuple[str, ...]]] = []
        self._scheduled_failures: dict[str, list[Exception]] = {}
        self._failing_ids: dict[str, Exception] = {}
        self._omitted_ids: set[str] = set()
        self.detail_logger = get_detail_logger()

    # Failure injection
    def fail_next(self, method: str, error: Exception, times: int = 1) -> None:
        """Make the next ``times`` calls to ``method`` raise ``error``."""
        self._scheduled_failures.setdefault(method, []).extend([error] * times)

    def fail_on_ids(self, ids: Iterable[str], error: Exception) -> None:
        """Make every write that includes one of ``ids`` raise ``error``."""
        for entity_id in ids:
            self._failing_ids[entity_id] = error

    def omit_from_bulk_updates(self, ids: Iterable[str]) -> None:
        """Leave ``ids`` out of bulk update responses without raising."""
        self._omitted_ids.update(ids)

    def reset_failures(self) -> None:
        self._scheduled_failures.clear()
        self._failing_ids.clear()
        self._omitted_ids.clear()

    def call_count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    # Reads
    async def get(self, entity_type: str, entity_id: str) -> EntityModel | None:
        await self._enter("get", entity_type, [entity_id])
        entity = self._table(entity_type).get(entity_id)
        return None if entity is None else self._joined(entity_type, entity)

    async def list(
        self, entity_type: str, filters: QueryFilter | None = None
    ) -> list[EntityModel]:
        await self._enter("list", entity_type, [])
        filters = filters or QueryFilter()
        rows = [
            self._joined(entity_type, entity)
            for entity in self._table(entity_type).values()
            if self._matches(entity, filters)
        ]

        order_by = filters.order_by
        descending = not filters.ascending
        is_queue = _type_key(entity_type) == READING_QUEUE
        if is_queue and "order_by" not in filters.model_fields_set:
            order_by, descending = "position", False
        rows.sort(key=lambda row: _sort_key(row, order_by), reverse=descending)

        end = None if filters.limit is None else filters.offset + filters.limit
        return rows[filters.offset : end]

    # Writes
    async def create(self, entity_type: str, data: Mapping[str, Any]) -> EntityModel:
        await self._enter("create", entity_type, [str(data.get("id", ""))])
        table = self._table(entity_type)
        payload = dict(data)
        payload.setdefault("id", str(uuid.uuid4()))
        if payload["id"] in table:
            raise ConflictError(
                f"Duplicate id '{payload['id']}'", entity_type=_type_key(entity_type)
            )
        if _type_key(entity_type) == READING_QUEUE and "newsletter" not in payload:
            newsletter = self._table(NEWSLETTERS).get(str(payload.get("newsletter_id")))
            if newsletter is None:
                raise NotFoundError(
                    f"Record '{payload.get('newsletter_id')}' not found",
                    entity_type=NEWSLETTERS,
                )
            payload["newsletter"] = newsletter
            payload.setdefault("added_at", _now())

        entity = entity_model_for(entity_type).model_validate(payload)
        table[entity.id] = entity
        return self._joined(entity_type, entity)

    async def update(
        self, entity_type: str, entity_id: str, updates: Mapping[str, Any]
    ) -> EntityModel:
        await self._enter("update", entity_type, [entity_id])
        table = self._table(entity_type)
        if entity_id not in table:
            raise NotFoundError(
                f"Record '{entity_id}' not found", entity_type=_type_key(entity_type)
            )
        return self._write(entity_type, table[entity_id], updates)

    async def bulk_update(
        self, entity_type: str, ids: Sequence[str], updates: Mapping[str, Any]
    ) -> list[EntityModel]:
        await self._enter("bulk_update", entity_type, ids)
        table = self._table(entity_type)
        return [
            self._write(entity_type, table[entity_id], updates)
            for entity_id in ids
            if entity_id in table and entity_id not in self._omitted_ids
        ]

    async def delete(self, entity_type: str, entity_id: str) -> bool:
        await self._enter("delete", entity_type, [entity_id])
        return self._remove(entity_type, entity_id)

    async def bulk_delete(self, entity_type: str, ids: Sequence[str]) -> bool:
        await self._enter("bulk_delete", entity_type, ids)
        for entity_id in ids:
            self._remove(entity_type, entity_id)
        return True

    async def rpc(self, function: str, params: Mapping[str, Any]) -> Any:
        newsletter_id = str(params.get("newsletter_id", ""))
        await self._enter("rpc", function, [newsletter_id] if newsletter_id else [])

        if function != "set_newsletter_tags":
            raise NotFoundError(f"Function '{function}' not found")

        newsletters = self._table(NEWSLETTERS)
        if newsletter_id not in newsletters:
            raise NotFoundError(
                f"Record '{newsletter_id}' not found", entity_type=NEWSLETTERS
            )
        tag_table = self._table(TAGS)
        tags = tuple(
            tag_table.get(tag_id) or Tag(id=tag_id)
            for tag_id in params.get("tag_ids", [])
        )
        return self._write(NEWSLETTERS, newsletters[newsletter_id], {"tags": tags})

    # Internals
    def _table(self, entity_type: str) -> dict[str, EntityModel]:
        key = _type_key(entity_type)
        entity_model_for(key)
        return self.tables.setdefault(key, {})

    async def _enter(self, method: str, entity_type: str, ids: Sequence[str]) -> None:
        self.calls.append((method, _type_key(entity_type), tuple(ids)))
        self.detail_logger.debug(f"InMemoryGateway.{method}({entity_type}, {list(ids)})")

        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)

        scheduled = self._scheduled_failures.get(method)
        if scheduled:
            raise scheduled.pop(0)

        if method not in ("get", "list"):
            for entity_id in ids:
                error = self._failing_ids.get(entity_id)
                if error is not None:
                    raise error

    def _write(
        self, entity_type: str, entity: EntityModel, updates: Mapping[str, Any]
    ) -> EntityModel:
        changes = dict(updates)
        if isinstance(entity, Newsletter):
            changes.setdefault("updated_at", _now())
            if "tags" in changes:
                changes["tags"] = tuple(
                    tag if isinstance(tag, Tag) else Tag.model_validate(tag)
                    for tag in changes["tags"]
                )
        updated = entity.with_updates(changes)
        self._table(entity_type)[entity.id] = updated
        return self._joined(entity_type, updated)

    def _remove(self, entity_type: str, entity_id: str) -> bool:
        removed = self._table(entity_type).pop(entity_id, None) is not None
        if removed and _type_key(entity_type) == NEWSLETTERS:
            queue = self._table(READING_QUEUE)
            for item_id in [
                item_id
                for item_id, item in queue.items()
                if isinstance(item, ReadingQueueItem) and item.newsletter_id == entity_id
            ]:
                del queue[item_id]
        return removed

    def _joined(self, entity_type: str, entity: EntityModel) -> EntityModel:
        """Embed the current newsletter into a reading-queue row."""
        if _type_key(entity_type) != READING_QUEUE or not isinstance(
            entity, ReadingQueueItem
        ):
            return entity
        newsletter = self._table(NEWSLETTERS).get(entity.newsletter_id)
        if not isinstance(newsletter, Newsletter) or newsletter is entity.newsletter:
            return entity
        return entity.with_updates({"newsletter": newsletter})

    @staticmethod
    def _matches(entity: EntityModel, filters: QueryFilter) -> bool:
        checks: list[tuple[str, Any]] = [
            ("user_id", filters.user_id),
            ("newsletter_id", filters.newsletter_id),
            ("is_read", filters.is_read),
            ("is_archived", filters.is_archived),
            ("is_liked", filters.is_liked),
        ]
        for field_name, expected in checks:
            if expected is not None and getattr(entity, field_name, expected) != expected:
                return False

        if filters.source_ids and (
            getattr(entity, "newsletter_source_id", None) not in filters.source_ids
        ):
            return False

        if filters.tag_ids:
            tag_ids = {tag.id for tag in getattr(entity, "tags", ())}
            if not tag_ids.intersection(filters.tag_ids):
                return False

        received_at = getattr(entity, "received_at", None)
        if filters.date_from and (
            not received_at or received_at < filters.date_from.isoformat()
        ):
            return False
        if filters.date_to and (
            not received_at or received_at > filters.date_to.isoformat()
        ):
            return False
        return True

