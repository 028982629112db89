"""Error taxonomy for the order synchronization pipeline.

None of these are fatal to the process: callers catch them at the account,
batch or order boundary and turn them into structured results.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for pipeline errors."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class AuthError(SyncError):
    """Token refresh failed or the platform rejected the token twice.

    Surfaced to the user as "reconnect account"; aborts one account's sync.
    """


class RateLimitError(SyncError):
    """HTTP 429 from the platform. Retried with backoff, never surfaced directly."""


class TransientNetworkError(SyncError):
    """Timeout or connection reset. Retried a bounded number of times."""


class PlatformAPIError(SyncError):
    """Any other non-success response from the platform."""


class ValidationError(SyncError):
    """A single order or line item is missing required data; skip that record."""


class PersistenceError(SyncError):
    """A batch transaction failed or exceeded its time limit."""
