"""Error taxonomy for gh-chk."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NETWORK = "network"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    MALFORMED = "malformed"
    STORAGE = "storage"
    CANCELLED = "cancelled"


class GhChkError(Exception):
    """Base error; every error carries the kind reported for a failed item."""

    kind: ErrorKind = ErrorKind.MALFORMED

    def __init__(self, message: str, kind: ErrorKind | None = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class GitHubAPIError(GhChkError):
    """Error from GitHub API."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.NETWORK,
        status_code: int | None = None,
    ):
        super().__init__(message, kind)
        self.status_code = status_code


class AuthError(GitHubAPIError):
    """Missing, invalid or insufficient credential."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, ErrorKind.AUTH, status_code)


class NotFoundError(GitHubAPIError):
    """Repository or item does not exist or is not visible."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, ErrorKind.NOT_FOUND, status_code)


class RateLimitError(GitHubAPIError):
    """Rate limit exceeded."""

    def __init__(self, reset_time: int | None = None, status_code: int | None = None):
        message = "GitHub API rate limit exceeded"
        if reset_time:
            message += f" (resets at {reset_time})"
        super().__init__(message, ErrorKind.RATE_LIMITED, status_code)
        self.reset_time = reset_time  # Unix timestamp when rate limit resets


class MalformedResponseError(GitHubAPIError):
    """Response could not be understood."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, ErrorKind.MALFORMED, status_code)


class SnapshotStoreError(GhChkError):
    """Snapshot could not be persisted."""

    kind = ErrorKind.STORAGE


class Cancelled(GhChkError):
    """The run was cancelled before the item finished."""

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "Cancelled"):
        super().__init__(message)
