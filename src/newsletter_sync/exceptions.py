# SPDX-License-Identifier: MIT
"""Standard exceptions for the newsletter synchronization layer."""


class SyncError(Exception):
    """Base class for all synchronization and gateway errors."""

    def __init__(self, message: str, entity_type: str | None = None) -> None:
        self.entity_type = entity_type
        super().__init__(message)


class NotFoundError(SyncError):
    """Raised when a requested record does not exist.

    Single-entity reads map this to ``None`` instead of raising it.
    """

    pass


class ConflictError(SyncError):
    """Raised when a write violates a uniqueness or concurrency constraint."""

    pass


class NetworkError(SyncError):
    """Raised when the remote service cannot be reached."""

    pass


class GatewayTimeoutError(NetworkError):
    """Raised when a remote call times out."""

    pass


class RateLimitError(NetworkError):
    """Raised when the remote service rate limit is hit."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: int | None = None,
        entity_type: str | None = None,
    ) -> None:
        self.retry_after = retry_after
        msg = f"{message}. Retry after {retry_after}s" if retry_after else message
        super().__init__(msg, entity_type)


class ServerError(NetworkError):
    """Raised when the remote service answers with a 5xx status."""

    def __init__(
        self, message: str, status: int, entity_type: str | None = None
    ) -> None:
        self.status = status
        super().__init__(message, entity_type)


class ValidationError(SyncError):
    """Raised for malformed input, always before any network call."""

    def __init__(
        self, message: str, field: str | None = None, entity_type: str | None = None
    ) -> None:
        self.field = field
        super().__init__(message, entity_type)


class PermissionDeniedError(SyncError):
    """Raised when the caller may not access a record."""

    pass


class AuthenticationError(SyncError):
    """Raised when the session is missing or rejected."""

    pass


class ConfigurationError(SyncError):
    """Raised for fatal wiring mistakes. Not recoverable by retry."""

    pass


class ItemNotUpdatedError(SyncError):
    """A bulk update response silently omitted this id.

    Covers not-found, not-authorized and concurrently-deleted records alike;
    the remote service does not tell them apart.
    """

    def __init__(self, entity_id: str, entity_type: str | None = None) -> None:
        self.entity_id = entity_id
        super().__init__(
            f"Record '{entity_id}' not found or not updated", entity_type
        )


class MutationStateError(SyncError):
    """Raised on an illegal optimistic-mutation state transition."""

    pass
