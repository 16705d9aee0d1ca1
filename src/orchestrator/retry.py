"""Bounded exponential backoff with per-attempt timeout and cancellation."""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog

from core.config import RetryConfig
from core.errors import FrameworkError, OperationCancelled, OperationTimeout


logger = structlog.get_logger()


class CancelToken:
    """Cooperative cancellation flag shared between a caller and its retry loops."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled(reason=self.reason)

    async def sleep(self, seconds: float) -> None:
        """Sleep, waking early with OperationCancelled if the token fires."""
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise OperationCancelled(reason=self.reason)


Operation = Callable[[], Awaitable[Any]]
RetryHook = Callable[[int, float, Exception], None]


class RetryPolicy:
    """
    Runs an async operation up to `max_attempts` times.

    Attempt n (0-based) that fails with attempts remaining is followed by a
    wait of min(base_delay * 2**n, max_delay). No wait follows the final
    attempt. Errors flagged `retryable=False` stop the loop at once.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        attempt_timeout: Optional[float] = 30.0,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.attempt_timeout = attempt_timeout

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_seconds,
            max_delay=config.max_delay_seconds,
            attempt_timeout=config.attempt_timeout_seconds,
        )

    def backoff(self, attempt_index: int) -> float:
        return min(self.base_delay * (2 ** attempt_index), self.max_delay)

    async def execute(
        self,
        operation: Operation,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancelToken] = None,
        timeout_error: Callable[..., OperationTimeout] = OperationTimeout,
        on_retry: Optional[RetryHook] = None,
        label: str = "operation",
    ) -> Any:
        """
        Execute `operation` with retries.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            max_attempts: Override the policy's attempt budget
            timeout: Per-attempt timeout in seconds (None = policy default)
            cancel_token: Interrupts an in-flight attempt or a backoff wait
            timeout_error: Exception type raised when an attempt times out
            on_retry: Called with (attempt_number, delay, error) before each wait
            label: Name used in logs and timeout messages

        Returns:
            The operation's result from the first successful attempt

        Raises:
            OperationCancelled if the token fires, otherwise the last error
        """
        attempts = max_attempts or self.max_attempts
        timeout = self.attempt_timeout if timeout is None else timeout
        last_error: Optional[Exception] = None

        for attempt_index in range(attempts):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            try:
                return await self._attempt(operation, timeout, cancel_token, timeout_error, label)
            except OperationCancelled:
                raise
            except Exception as e:
                last_error = e

            if isinstance(last_error, FrameworkError) and not last_error.retryable:
                logger.debug("retry_aborted_non_retryable", label=label, error=str(last_error))
                break

            if attempt_index + 1 >= attempts:
                break

            delay = self.backoff(attempt_index)
            logger.debug(
                "retry_scheduled",
                label=label,
                attempt=attempt_index + 1,
                delay_seconds=delay,
                error=str(last_error),
            )
            if on_retry is not None:
                on_retry(attempt_index + 1, delay, last_error)

            if cancel_token is not None:
                await cancel_token.sleep(delay)
            elif delay > 0:
                await asyncio.sleep(delay)

        raise last_error

    async def _attempt(
        self,
        operation: Operation,
        timeout: Optional[float],
        cancel_token: Optional[CancelToken],
        timeout_error: Callable[..., OperationTimeout],
        label: str,
    ) -> Any:
        """Race one attempt against its timeout and the cancel token."""
        task = asyncio.ensure_future(operation())
        waiters = {task}
        cancel_waiter = None
        if cancel_token is not None:
            cancel_waiter = asyncio.ensure_future(cancel_token.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if cancel_waiter is not None and not cancel_waiter.done():
                cancel_waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        if cancel_token is not None and cancel_token.cancelled:
            raise OperationCancelled(reason=cancel_token.reason)
        raise timeout_error(f"{label} timed out after {timeout}s", timeout=timeout)
