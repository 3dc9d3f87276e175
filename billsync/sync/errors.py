"""
Sync Engine Errors

Storage errors (billsync.services.store) describe what the store said.
These describe what the engine concluded: an attempt ran out of time, the
retries are used up, or a display/save could not be completed. Each one
carries a ``user_message`` the presentation layer can show as-is.
"""

from typing import Optional

from billsync.models.bill import AggregateKey


class SyncError(Exception):
    """Base exception for the sync engine."""

    @property
    def user_message(self) -> str:
        return str(self)


class OperationTimeoutError(SyncError):
    """A single attempt did not finish within its time bound."""

    def __init__(self, operation: str, timeout: float):
        super().__init__(
            f"{operation} took longer than {timeout:g}s and was abandoned"
        )
        self.operation = operation
        self.timeout = timeout


class RetryExhaustedError(SyncError):
    """Every allowed attempt of an operation failed."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        super().__init__(
            f"{operation} failed after {attempts} attempts: {last_error}"
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error

    @property
    def timed_out(self) -> bool:
        return isinstance(self.last_error, OperationTimeoutError)


class LoadFailedError(SyncError):
    """A month could not be loaded for display."""

    def __init__(self, key: AggregateKey, cause: BaseException):
        super().__init__(f"Loading {key} failed: {cause}")
        self.key = key
        self.cause = cause

    @property
    def user_message(self) -> str:
        return (
            f"Could not load the bill for {self.key.month:02d}/{self.key.year}. "
            f"{_retry_note(self.cause)}Check your connection and try again."
        )


class SaveFailedError(SyncError):
    """A save was rejected or could not reach the store; the cached copy was dropped."""

    def __init__(self, key: AggregateKey, cause: BaseException):
        super().__init__(f"Saving {key} failed: {cause}")
        self.key = key
        self.cause = cause

    @property
    def user_message(self) -> str:
        return (
            f"Could not save the bill for {self.key.month:02d}/{self.key.year}. "
            f"{_retry_note(self.cause)}Your unsaved changes were discarded; "
            "reload the month to see what is stored."
        )


def _retry_note(cause: Optional[BaseException]) -> str:
    if isinstance(cause, RetryExhaustedError):
        return f"We tried {cause.attempts} times. "
    return ""
