"""
Timeout / Retry Wrapper

Every store call the engine makes goes through ``RetryingExecutor.run``:
- each attempt is bounded by an absolute timeout and abandoned when it overruns
- failed attempts are retried with exponential backoff (base * 2**attempt)
- once the attempts are used up, a RetryExhaustedError names the operation
  and the last cause

Lookups for a tenant that does not exist or is not ours are answered the
same way every time, so they are never retried.

NOTE: an abandoned attempt may still have reached the store. Writes rely on
the store de-duplicating by request id (see ReconciliationWriter).
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from billsync.config import SyncSettings
from billsync.services.store import AccessDeniedError, NotFoundError
from billsync.sync.errors import OperationTimeoutError, RetryExhaustedError
from billsync.sync.metrics import PerformanceMonitor


T = TypeVar("T")

logger = structlog.get_logger(__name__)

# Answers that will not change by asking again
NON_RETRYABLE = (
    NotFoundError,
    AccessDeniedError,
    ValueError,
    asyncio.CancelledError,
)


class RetryingExecutor:
    """Runs async store operations under a timeout and retry policy."""

    def __init__(
        self,
        max_retries: int = 2,
        base_delay: float = 1.0,
        timeout: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        monitor: Optional[PerformanceMonitor] = None,
    ):
        """
        Args:
            max_retries: Retries after the first attempt (2 means 3 attempts)
            base_delay: Seconds to wait after the first failure; doubles each time
            timeout: Seconds a single attempt may take
            sleep: Awaitable used for backoff waits (injectable for tests)
            monitor: Optional performance monitor timing every attempt
        """
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._timeout = timeout
        self._sleep = sleep
        self._monitor = monitor

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings,
        monitor: Optional[PerformanceMonitor] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> "RetryingExecutor":
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay_seconds,
            timeout=settings.operation_timeout_seconds,
            sleep=sleep,
            monitor=monitor,
        )

    @property
    def max_attempts(self) -> int:
        return self._max_retries + 1

    def _log_retry(self, operation: str) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "retry_scheduled",
                operation=operation,
                attempt=retry_state.attempt_number,
                max_attempts=self.max_attempts,
                delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
                error=str(error),
            )
        return before_sleep

    async def _attempt(
        self,
        operation: Callable[[], Awaitable[T]],
        name: str,
        parameters: dict[str, Any],
    ) -> T:
        async def bounded() -> T:
            try:
                return await asyncio.wait_for(operation(), timeout=self._timeout)
            except asyncio.TimeoutError:
                raise OperationTimeoutError(name, self._timeout)

        if self._monitor is None:
            return await bounded()
        async with self._monitor.track(name, **parameters):
            return await bounded()

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        name: str,
        **parameters: Any,
    ) -> T:
        """
        Execute ``operation`` (a zero-argument coroutine factory).

        Args:
            operation: Called once per attempt to produce a fresh awaitable
            name: Operation name used in logs and errors
            **parameters: Context recorded with the timing metrics

        Returns:
            The operation's result

        Raises:
            RetryExhaustedError: If every attempt failed or timed out
            NotFoundError / AccessDeniedError / ValueError: Unchanged, first time
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self._base_delay, exp_base=2),
            retry=retry_if_not_exception_type(NON_RETRYABLE),
            before_sleep=self._log_retry(name),
            sleep=self._sleep,
            reraise=False,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await self._attempt(operation, name, parameters)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            attempts = e.last_attempt.attempt_number
            logger.error(
                "retries_exhausted",
                operation=name,
                attempts=attempts,
                error=str(last_error),
            )
            raise RetryExhaustedError(name, attempts, last_error) from last_error

        raise RuntimeError(f"{name} finished without a result")  # pragma: no cover
