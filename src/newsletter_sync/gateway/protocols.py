# SPDX-License-Identifier: MIT
"""Protocol definition for the remote data gateway."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from ..enums import EntityType
from ..exceptions import ValidationError
from ..models import (
    EntityModel,
    Newsletter,
    NewsletterSource,
    QueryFilter,
    ReadingQueueItem,
    Tag,
)


ENTITY_MODELS: Mapping[str, type[EntityModel]] = {
    EntityType.NEWSLETTERS.value: Newsletter,
    EntityType.READING_QUEUE.value: ReadingQueueItem,
    EntityType.TAGS.value: Tag,
    EntityType.NEWSLETTER_SOURCES.value: NewsletterSource,
}


def entity_model_for(entity_type: EntityType | str) -> type[EntityModel]:
    """Model class used for rows of ``entity_type``.

    Raises:
        ValidationError: For an unknown entity type
    """
    key = entity_type.value if isinstance(entity_type, EntityType) else entity_type
    try:
        return ENTITY_MODELS[key]
    except KeyError:
        raise ValidationError(
            f"Unknown entity type: {entity_type!r}", field="entity_type"
        ) from None


@runtime_checkable
class RemoteDataGateway(Protocol):
    """Asynchronous access to persisted entities.

    Every method may raise a ``SyncError`` subclass. ``get`` is the one
    exception to that rule for missing records: it returns None instead of
    raising ``NotFoundError``.

    Example implementations:
    - PostgrestGateway: HTTP against a PostgREST endpoint
    - InMemoryGateway: dictionaries, with failure injection for tests
    """

    async def get(self, entity_type: str, entity_id: str) -> EntityModel | None:
        """Fetch one record, or None if it does not exist."""
        ...

    async def list(
        self, entity_type: str, filters: QueryFilter | None = None
    ) -> list[EntityModel]:
        """Fetch the records selected by ``filters``, in the requested order."""
        ...

    async def create(self, entity_type: str, data: Mapping[str, Any]) -> EntityModel:
        ...

    async def update(
        self, entity_type: str, entity_id: str, updates: Mapping[str, Any]
    ) -> EntityModel:
        """Apply a partial update and return the stored record."""
        ...

    async def bulk_update(
        self, entity_type: str, ids: Sequence[str], updates: Mapping[str, Any]
    ) -> list[EntityModel]:
        """Apply one partial update to many ids.

        Returns:
            The records actually updated. Ids that were not found or not
            permitted are silently absent.
        """
        ...

    async def delete(self, entity_type: str, entity_id: str) -> bool:
        ...

    async def bulk_delete(self, entity_type: str, ids: Sequence[str]) -> bool:
        ...

    async def rpc(self, function: str, params: Mapping[str, Any]) -> Any:
        """Call a server-side function."""
        ...
