"""Error taxonomy for the WooCommerce sync engine.

``retryable`` tells the job worker whether a failure should go back to the
queue with backoff or be dead-lettered straight away.
"""

from __future__ import annotations


class WooSyncError(Exception):
    """Base exception for WooCommerce sync errors."""

    retryable = True

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class TransientRemoteError(WooSyncError):
    """Network failure, timeout, 5xx or rate limit."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, status_code=status_code, response_body=response_body)
        self.retry_after = retry_after


class RemoteRejection(WooSyncError):
    """The remote answered with a 4xx business error."""


class RemoteNotFound(RemoteRejection):
    """The remote resource does not exist (404)."""


class ConfigurationError(WooSyncError):
    """Integration disabled or credentials missing."""

    retryable = False


class SyncValidationError(WooSyncError):
    """Malformed payload or missing identifiers for a single item."""


class EventBusyError(WooSyncError):
    """Another worker holds a live lease on the webhook event."""


class DeadLetteredError(WooSyncError):
    """Item exhausted its attempts and was moved to the dead state."""

    retryable = False


class UnknownJobError(WooSyncError):
    retryable = False


class InvalidJobPayloadError(WooSyncError):
    retryable = False


class SchemaDriftWarning(UserWarning):
    """An expected table or column is absent from the live database."""
