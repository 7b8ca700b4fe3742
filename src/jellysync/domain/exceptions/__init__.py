"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, we store message as an attribute so code can inspect it without parsing
    # str(exception). The *args lets subclasses pass extra context. Don't raise this directly,
    # always use a specific subclass so callers can catch precisely.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an entity is not found."""

    # Yo, used for "get by ID" lookups that must succeed - e.g. the dispatcher asked to sync
    # server 42 and there is no server 42. entity_type/entity_id stay separate for structured logs.
    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationError(DomainException):
    """Input validation failed.

    Raised when data coming from a media server is missing mandatory fields
    (an item without Id, an activity without Date, ...).

    Example:
        raise ValidationError("Jellyfin item is missing Id")
    """

    pass


class ConfigurationError(DomainException):
    """Application misconfiguration.

    Example:
        raise ConfigurationError("Server 3 has no API key configured")
    """

    pass


class ExternalServiceError(DomainException):
    """The media server returned an error or could not be reached.

    Example:
        raise ExternalServiceError("Jellyfin API error: 503 Service Unavailable")
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CleanupAbortedError(DomainException):
    """Deleted-item cleanup refused to run.

    Hey future me - this is NOT an ordinary failure! It means a safety guard fired
    (server unreachable, or server reported zero items while we still have some).
    Proceeding would soft-delete the whole library, so the reconciler bails out
    before issuing a single write. Keep it separate from ExternalServiceError so
    callers and tests can tell "aborted on purpose" apart from "crashed".
    """

    def __init__(self, message: str, reason: str) -> None:
        super().__init__(message)
        self.reason = reason  # "server_unreachable" | "empty_snapshot"


class SyncAlreadyRunningError(DomainException):
    """A sync for this server is already in progress in this process."""

    def __init__(self, server_id: int) -> None:
        super().__init__(f"Sync already running for server {server_id}")
        self.server_id = server_id


# =============================================================================
# Public API - All exceptions that can be imported
# =============================================================================
__all__ = [
    "DomainException",
    "EntityNotFoundException",
    "ValidationError",
    "ConfigurationError",
    "ExternalServiceError",
    "CleanupAbortedError",
    "SyncAlreadyRunningError",
]
