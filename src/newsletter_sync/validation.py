# SPDX-License-Identifier: MIT
"""Validation utilities for ids and update payloads.

Every check here runs before any speculative cache write or network call, so
a ``ValidationError`` never triggers a rollback.
"""

from collections.abc import Iterable, Mapping
from typing import Any

from .constants import MUTABLE_NEWSLETTER_FIELDS
from .exceptions import ValidationError


def validate_entity_id(entity_id: Any, field: str = "id") -> str:
    """
    Check that an id is a non-empty string.

    Args:
        entity_id: Candidate id
        field: Name reported in the error

    Returns:
        The id, stripped of surrounding whitespace

    Raises:
        ValidationError: If the id is not a non-empty string

    Examples:
        >>> validate_entity_id(" nl-1 ")
        'nl-1'
    """
    if not isinstance(entity_id, str) or not entity_id.strip():
        raise ValidationError(f"Invalid {field}: {entity_id!r}", field=field)
    return entity_id.strip()


def validate_entity_ids(entity_ids: Iterable[Any], allow_empty: bool = True) -> list[str]:
    """
    Validate a list of ids, preserving order and duplicates.

    Args:
        entity_ids: Candidate ids. A bare string is rejected.
        allow_empty: Whether an empty list is acceptable

    Returns:
        List of validated ids in input order

    Raises:
        ValidationError: If the input is not a list of non-empty strings
    """
    if isinstance(entity_ids, (str, bytes)) or entity_ids is None:
        raise ValidationError("ids must be a list of strings", field="ids")

    validated = [validate_entity_id(entity_id, "ids") for entity_id in entity_ids]
    if not validated and not allow_empty:
        raise ValidationError("ids must not be empty", field="ids")
    return validated


def validate_update_payload(
    updates: Mapping[str, Any],
    allowed_fields: frozenset[str] = MUTABLE_NEWSLETTER_FIELDS,
) -> dict[str, Any]:
    """
    Validate a partial update.

    Args:
        updates: Field values to write
        allowed_fields: Field names the payload may contain

    Returns:
        A plain dict copy of the payload

    Raises:
        ValidationError: If the payload is empty, not a mapping, or names an
            unknown field
    """
    if not isinstance(updates, Mapping):
        raise ValidationError("updates must be a mapping", field="updates")
    if not updates:
        raise ValidationError("updates must not be empty", field="updates")

    unknown = sorted(set(updates) - allowed_fields)
    if unknown:
        raise ValidationError(
            f"Unknown update field(s): {', '.join(unknown)}", field=unknown[0]
        )

    for flag in ("is_read", "is_liked", "is_archived"):
        if flag in updates and not isinstance(updates[flag], bool):
            raise ValidationError(f"{flag} must be a boolean", field=flag)

    return dict(updates)
