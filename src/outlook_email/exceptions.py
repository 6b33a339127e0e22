"""Custom exceptions for outlook-email."""

from __future__ import annotations

from enum import Enum


class FailureKind(str, Enum):
    """Closed set of failure kinds reported by the mailbox API client."""

    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    OTHER = "other"


class OutlookEmailError(Exception):
    """Base exception for all outlook-email errors."""


class NotFoundError(OutlookEmailError):
    """Exception raised when a record or folder cannot be found."""


class RecordNotFoundError(NotFoundError):
    """Exception raised when no cached email matches an id."""


class AmbiguousIdError(NotFoundError):
    """Exception raised when a partial id matches more than one cached email."""

    def __init__(self, partial_id: str, matches: list[str]) -> None:
        super().__init__(f'Ambiguous ID "{partial_id}". Matches: {", ".join(matches)}')
        self.partial_id = partial_id
        self.matches = matches


class FolderNotFoundError(NotFoundError):
    """Exception raised when a folder display name cannot be resolved."""


class GraphAPIError(OutlookEmailError):
    """Exception raised for mailbox API related errors."""

    def __init__(
        self,
        message: str,
        kind: FailureKind = FailureKind.OTHER,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class AuthenticationError(OutlookEmailError):
    """Exception raised for authentication failures."""


class CacheIOError(OutlookEmailError):
    """Exception raised when the local email cache cannot be read or written."""


class ConfigurationError(OutlookEmailError):
    """Exception raised for configuration related errors."""


class ValidationError(OutlookEmailError):
    """Exception raised for data validation errors."""
