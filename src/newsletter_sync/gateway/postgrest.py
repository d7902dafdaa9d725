# SPDX-License-Identifier: MIT
"""Remote data gateway for a PostgREST (Supabase) endpoint."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping, Sequence
from typing import Any

import aiohttp

from ..config import GatewaySettings
from ..enums import EntityType
from ..exceptions import (
    AuthenticationError,
    ConfigurationError,
    ConflictError,
    GatewayTimeoutError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ServerError,
    SyncError,
    ValidationError,
)
from ..logging_config import get_detail_logger
from ..models import EntityModel, QueryFilter
from ..retry_utils import async_retry_with_backoff
from .protocols import entity_model_for


# Embedded relations requested with every read
_NEWSLETTER_SELECT = (
    "*,source:newsletter_sources(*),tags:newsletter_tags(tag:tags(*))"
)
SELECT_CLAUSES: Mapping[str, str] = {
    EntityType.NEWSLETTERS.value: _NEWSLETTER_SELECT,
    EntityType.READING_QUEUE.value: f"*,newsletter:newsletters({_NEWSLETTER_SELECT})",
    EntityType.TAGS.value: "*",
    EntityType.NEWSLETTER_SOURCES.value: "*",
}

# Embedded relations cannot be written through the table endpoint
_RELATION_FIELDS = frozenset({"source", "tags", "newsletter"})

_UNIQUE_VIOLATION = "23505"
_NO_ROWS = "PGRST116"


def _type_key(entity_type: EntityType | str) -> str:
    return entity_type.value if isinstance(entity_type, EntityType) else entity_type


def _in_list(values: Sequence[str]) -> str:
    return "in.(" + ",".join(f'"{value}"' for value in values) + ")"


def _flatten_newsletter(row: dict[str, Any]) -> dict[str, Any]:
    """Turn ``tags: [{"tag": {...}}]`` join rows into a plain tag list."""
    tags = row.get("tags")
    if isinstance(tags, list):
        flattened = [
            entry.get("tag") if isinstance(entry, dict) and "tag" in entry else entry
            for entry in tags
        ]
        row = {**row, "tags": [tag for tag in flattened if tag]}
    return row


def row_to_entity(entity_type: EntityType | str, row: Mapping[str, Any]) -> EntityModel:
    """Validate one response row into its entity model."""
    key = _type_key(entity_type)
    data = dict(row)
    if key == EntityType.NEWSLETTERS.value:
        data = _flatten_newsletter(data)
    elif key == EntityType.READING_QUEUE.value and isinstance(data.get("newsletter"), dict):
        data["newsletter"] = _flatten_newsletter(data["newsletter"])
    return entity_model_for(key).model_validate(data)


def filter_params(
    filters: QueryFilter | None, entity_type: EntityType | str = EntityType.NEWSLETTERS
) -> list[tuple[str, str]]:
    """PostgREST query parameters for a filter descriptor.

    Reading-queue rows are ordered by position unless an order is given.

    Tag filtering needs the embedded join and is applied to the response
    instead (see ``PostgrestGateway.list``).
    """
    if filters is None:
        return []

    params: list[tuple[str, str]] = []
    for field_name in ("user_id", "newsletter_id"):
        value = getattr(filters, field_name)
        if value is not None:
            params.append((field_name, f"eq.{value}"))
    for field_name in ("is_read", "is_archived", "is_liked"):
        value = getattr(filters, field_name)
        if value is not None:
            params.append((field_name, f"is.{str(value).lower()}"))
    if filters.source_ids:
        params.append(("newsletter_source_id", _in_list(filters.source_ids)))
    if filters.date_from:
        params.append(("received_at", f"gte.{filters.date_from.isoformat()}"))
    if filters.date_to:
        params.append(("received_at", f"lte.{filters.date_to.isoformat()}"))

    if (
        _type_key(entity_type) == EntityType.READING_QUEUE.value
        and "order_by" not in filters.model_fields_set
    ):
        params.append(("order", "position.asc"))
    else:
        direction = "asc" if filters.ascending else "desc"
        params.append(("order", f"{filters.order_by}.{direction}"))
    if filters.limit is not None:
        params.append(("limit", str(filters.limit)))
    if filters.offset:
        params.append(("offset", str(filters.offset)))
    return params


class PostgrestGateway:
    """Gateway speaking PostgREST over HTTP with aiohttp.

    Each request opens its own ``aiohttp.ClientSession``. Rate-limited
    requests are retried with exponential backoff; every other failure is
    mapped to a ``SyncError`` subclass and raised.
    """

    def __init__(self, settings: GatewaySettings) -> None:
        if not settings.base_url:
            raise ConfigurationError("Gateway base_url is not configured")
        self.settings = settings
        self.base_url = settings.base_url.rstrip("/")
        self.detail_logger = get_detail_logger()

    @property
    def headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.settings.api_key:
            headers["apikey"] = self.settings.api_key
        token = self.settings.access_token or self.settings.api_key
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    # Reads
    async def get(self, entity_type: str, entity_id: str) -> EntityModel | None:
        params = [("id", f"eq.{entity_id}"), ("select", self._select(entity_type))]
        try:
            rows = await self._request("GET", self._table_path(entity_type), params=params)
        except NotFoundError:
            return None
        if not rows:
            return None
        return row_to_entity(entity_type, rows[0])

    async def list(
        self, entity_type: str, filters: QueryFilter | None = None
    ) -> list[EntityModel]:
        params = [("select", self._select(entity_type)), *filter_params(filters, entity_type)]
        rows = await self._request("GET", self._table_path(entity_type), params=params)
        entities = [row_to_entity(entity_type, row) for row in rows or []]

        if filters is not None and filters.tag_ids:
            wanted = set(filters.tag_ids)
            entities = [
                entity
                for entity in entities
                if wanted.intersection(tag.id for tag in getattr(entity, "tags", ()))
            ]
        return entities

    # Writes
    async def create(self, entity_type: str, data: Mapping[str, Any]) -> EntityModel:
        rows = await self._request(
            "POST",
            self._table_path(entity_type),
            params=[("select", self._select(entity_type))],
            payload=self._writable(data),
            prefer="return=representation",
        )
        if not rows:
            raise ServerError(
                "Insert returned no row", status=500, entity_type=_type_key(entity_type)
            )
        return row_to_entity(entity_type, rows[0])

    async def update(
        self, entity_type: str, entity_id: str, updates: Mapping[str, Any]
    ) -> EntityModel:
        rows = await self._request(
            "PATCH",
            self._table_path(entity_type),
            params=[("id", f"eq.{entity_id}"), ("select", self._select(entity_type))],
            payload=self._writable(updates),
            prefer="return=representation",
        )
        if not rows:
            raise NotFoundError(
                f"Record '{entity_id}' not found or not updated",
                entity_type=_type_key(entity_type),
            )
        return row_to_entity(entity_type, rows[0])

    async def bulk_update(
        self, entity_type: str, ids: Sequence[str], updates: Mapping[str, Any]
    ) -> list[EntityModel]:
        if not ids:
            return []
        rows = await self._request(
            "PATCH",
            self._table_path(entity_type),
            params=[("id", _in_list(ids)), ("select", self._select(entity_type))],
            payload=self._writable(updates),
            prefer="return=representation",
        )
        return [row_to_entity(entity_type, row) for row in rows or []]

    async def delete(self, entity_type: str, entity_id: str) -> bool:
        await self._request(
            "DELETE", self._table_path(entity_type), params=[("id", f"eq.{entity_id}")]
        )
        return True

    async def bulk_delete(self, entity_type: str, ids: Sequence[str]) -> bool:
        if not ids:
            return True
        await self._request(
            "DELETE", self._table_path(entity_type), params=[("id", _in_list(ids))]
        )
        return True

    async def rpc(self, function: str, params: Mapping[str, Any]) -> Any:
        return await self._request("POST", f"/rpc/{function}", payload=dict(params))

    # HTTP
    @async_retry_with_backoff(
        max_retries=3,
        initial_delay=1.0,
        max_delay=30.0,
        exponential_base=2.0,
        exceptions=(RateLimitError,),
        respect_retry_after=True,
    )
    async def _request(
        self,
        method: str,
        path: str,
        params: list[tuple[str, str]] | None = None,
        payload: Any = None,
        prefer: str | None = None,
    ) -> Any:
        """Send one request and decode the JSON body.

        Raises:
            SyncError: Mapped from the HTTP status or the transport failure
        """
        url = f"{self.base_url}{path}"
        headers = self.headers
        if prefer:
            headers["Prefer"] = prefer

        self.detail_logger.debug(f"{method} {url} params={params}")
        try:
            async with aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.settings.timeout_seconds),
            ) as session:
                async with session.request(
                    method, url, params=params, json=payload
                ) as response:
                    if response.status >= 400:
                        await self._raise_for_status(response)
                    text = await response.text()
                    return json.loads(text) if text else None
        except SyncError:
            raise
        except asyncio.TimeoutError:
            raise GatewayTimeoutError(
                f"{method} {path} timed out after {self.settings.timeout_seconds}s"
            ) from None
        except aiohttp.ClientError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

    async def _raise_for_status(self, response: aiohttp.ClientResponse) -> None:
        """Map an error response to the matching ``SyncError``."""
        status = response.status
        try:
            body = json.loads(await response.text() or "null")
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}

        code = str(body.get("code", ""))
        message = body.get("message") or f"HTTP {status}"
        self.detail_logger.debug(f"Error response {status} ({code}): {message}")

        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None
            )
        if status == 409 or code == _UNIQUE_VIOLATION:
            raise ConflictError(message)
        if status == 404 or code == _NO_ROWS:
            raise NotFoundError(message)
        if status == 401:
            raise AuthenticationError(message)
        if status == 403:
            raise PermissionDeniedError(message)
        if status in (400, 422):
            raise ValidationError(message)
        if status >= 500:
            raise ServerError(message, status=status)
        raise SyncError(message)

    # Internals
    @staticmethod
    def _table_path(entity_type: str) -> str:
        key = _type_key(entity_type)
        entity_model_for(key)
        return f"/{key}"

    @staticmethod
    def _select(entity_type: str) -> str:
        return SELECT_CLAUSES.get(_type_key(entity_type), "*")

    def _writable(self, data: Mapping[str, Any]) -> dict[str, Any]:
        payload = {k: v for k, v in data.items() if k not in _RELATION_FIELDS}
        dropped = sorted(set(data) - set(payload))
        if dropped:
            self.detail_logger.debug(f"Ignoring relation fields in write: {dropped}")
        return payload
