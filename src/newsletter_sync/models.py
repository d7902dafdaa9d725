# SPDX-License-Identifier: MIT
"""Core data models for the newsletter synchronization layer."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing_extensions import Self


QueryKey = tuple[Any, ...]

T = TypeVar("T")


class EntityModel(BaseModel):
    """Immutable record snapshot returned by the gateway.

    Entities are never edited in place; ``with_updates`` returns a new
    snapshot and leaves the original untouched.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1, description="Stable identifier")

    def with_updates(self, updates: Mapping[str, Any]) -> Self:
        """Return a copy with ``updates`` applied on top of this snapshot."""
        return self.model_copy(update=dict(updates))


class Tag(EntityModel):
    """A user-defined label attached to newsletters."""

    name: str = Field("", description="Display name")
    color: str = Field("#808080", description="Hex colour")
    user_id: str = Field("", description="Owner")
    created_at: str | None = Field(None, description="Creation timestamp")
    newsletter_count: int | None = Field(None, ge=0)


class NewsletterSource(EntityModel):
    """The sender a newsletter was received from."""

    name: str = Field("", description="Display name")
    from_address: str = Field("", alias="from", description="Sender address")
    user_id: str = Field("", description="Owner")
    created_at: str | None = None
    updated_at: str | None = None
    is_archived: bool = False
    newsletter_count: int | None = Field(None, ge=0)
    unread_count: int | None = Field(None, ge=0)


class Newsletter(EntityModel):
    """A newsletter with its source and tags embedded at read time."""

    title: str = ""
    content: str = ""
    summary: str = ""
    image_url: str = ""
    received_at: str | None = None
    updated_at: str | None = None
    is_read: bool = False
    is_liked: bool = False
    is_archived: bool = False
    user_id: str = ""
    newsletter_source_id: str | None = None
    source: NewsletterSource | None = None
    tags: tuple[Tag, ...] = ()
    word_count: int = Field(0, ge=0)
    estimated_read_time: int = Field(0, ge=0)


class ReadingQueueItem(EntityModel):
    """A reading-queue entry that embeds the full newsletter."""

    user_id: str = ""
    newsletter_id: str = Field(..., min_length=1)
    position: int = 0
    added_at: str | None = None
    newsletter: Newsletter


class QueryFilter(BaseModel):
    """Filter descriptor for list reads.

    The same descriptor is used for the gateway call and, normalized, as the
    last element of the list query key.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str | None = None
    newsletter_id: str | None = None
    source_ids: tuple[str, ...] | None = None
    tag_ids: tuple[str, ...] | None = None
    is_read: bool | None = None
    is_archived: bool | None = None
    is_liked: bool | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    order_by: str = "received_at"
    ascending: bool = False
    limit: int | None = Field(None, ge=1)
    offset: int = Field(0, ge=0)

    @field_validator("source_ids", "tag_ids", mode="after")
    @classmethod
    def sort_ids(cls, v: tuple[str, ...] | None) -> tuple[str, ...] | None:
        return tuple(sorted(v)) if v else None

    def cache_descriptor(self) -> dict[str, Any]:
        """Non-default filter fields, JSON-friendly, for use in query keys."""
        return self.model_dump(mode="json", exclude_none=True, exclude_defaults=True)


@dataclass(frozen=True)
class CachedQuery:
    """One entry of the query cache.

    Owned by ``QueryCacheStore``; every change produces a new instance.
    """

    key: QueryKey
    data: Any
    fetched_at: float | None = None  # store clock, seconds
    is_stale: bool = False
    updated_at: float = 0.0  # last write, drives garbage collection
    error: Exception | None = None


@dataclass
class BatchResult(Generic[T]):
    """Outcome of a bulk operation, index-aligned with the input ids.

    A mix of successes and failures is an expected outcome, not an error:
    callers inspect ``error_count`` instead of relying on an exception.
    """

    ids: list[str] = field(default_factory=list)
    results: list[T | None] = field(default_factory=list)
    errors: list[Exception | None] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for error in self.errors if error is None)

    @property
    def error_count(self) -> int:
        return sum(1 for error in self.errors if error is not None)

    @property
    def is_partial_failure(self) -> bool:
        return self.success_count > 0 and self.error_count > 0

    def successful_items(self) -> list[tuple[str, T]]:
        """(id, result) pairs for every item that succeeded."""
        return [
            (entity_id, result)
            for entity_id, result, error in zip(self.ids, self.results, self.errors)
            if error is None and result is not None
        ]

    def failed_ids(self) -> list[str]:
        return [
            entity_id
            for entity_id, error in zip(self.ids, self.errors)
            if error is not None
        ]

    def summary(self) -> str:
        return f"{self.success_count} succeeded, {self.error_count} failed"
