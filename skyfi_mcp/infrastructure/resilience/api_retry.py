"""Service for executing API calls with bounded automatic retries.

Implements pure exponential backoff for transient SkyFi failures (server
errors and timeouts). Every other classified failure propagates immediately
so the caller can apply its own policy, e.g. honouring `retry_after_seconds`
on a rate-limit error.
"""

import logging
import asyncio
import time
from typing import Any, Callable, Coroutine, Optional

from skyfi_mcp.infrastructure.resilience.rate_limiter import RateLimiter
from skyfi_mcp.domain.models.errors import SkyFiError
from skyfi_mcp.domain.events.api_events import (
    DomainEvent, ApiCallInitiated, ApiCallSucceeded, ApiCallFailed,
    ApiCallDeferred, RetryScheduled
)

logger = logging.getLogger(__name__)

EventSink = Callable[[DomainEvent], None]

def log_event(event: DomainEvent) -> None:
    """Default event sink."""
    logger.debug(f"EVENT: {event}")

async def cancellable_delay(delay_s: float, cancel_event: Optional[asyncio.Event] = None) -> None:
    """Sleeps for `delay_s`, aborting early with CancelledError if `cancel_event` is set."""
    if cancel_event is None:
        await asyncio.sleep(delay_s)
        return
    if cancel_event.is_set():
        raise asyncio.CancelledError("Cancelled before retry delay")
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay_s)
    except asyncio.TimeoutError:
        return
    raise asyncio.CancelledError("Cancelled during retry delay")

async def run_cancellable(coro: Coroutine[Any, Any, Any], cancel_event: Optional[asyncio.Event] = None) -> Any:
    """Awaits `coro`, cancelling it as soon as `cancel_event` is set."""
    if cancel_event is None:
        return await coro
    if cancel_event.is_set():
        coro.close()
        raise asyncio.CancelledError("Cancelled before request")

    work = asyncio.ensure_future(coro)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
    if work.done():
        return work.result()
    work.cancel()
    try:
        await work
    except asyncio.CancelledError:
        pass
    raise asyncio.CancelledError("Cancelled during request")

class ApiRetryService:
    """Handles API call execution with rate limiting and bounded retries."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        max_retries: int = 3,
        initial_backoff_s: float = 1.0,
        backoff_factor: float = 2.0,
        event_sink: Optional[EventSink] = None,
    ):
        """Initializes the ApiRetryService.

        Args:
            rate_limiter: The rate limiter instance to use before every attempt.
            max_retries: Maximum number of retries after the first attempt.
            initial_backoff_s: Delay in seconds before the first retry.
            backoff_factor: Multiplier applied to the delay after each retry.
            event_sink: Callable receiving domain events (logs at DEBUG by default).
        """
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        self.rate_limiter = rate_limiter
        self.max_retries = max_retries
        self.initial_backoff_s = initial_backoff_s
        self.backoff_factor = backoff_factor
        self.dispatch_event = event_sink or log_event

        logger.info(
            f"ApiRetryService initialized: max_retries={max_retries}, "
            f"initial_backoff={initial_backoff_s}s, factor={backoff_factor}"
        )

    def backoff_for(self, attempt: int) -> float:
        """Delay before retry number `attempt + 1` (attempt counts from 0)."""
        return self.initial_backoff_s * (self.backoff_factor ** attempt)

    async def execute_with_retry(
        self,
        func: Callable[..., Coroutine[Any, Any, Any]],
        *args: Any,
        method: str = "GET",
        endpoint: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
        **kwargs: Any
    ) -> Any:
        """Executes an async function with rate limiting and retries.

        Args:
            func: The async function (HTTP attempt) to execute.
            *args: Positional arguments for the function.
            method: HTTP method, for logging and events.
            endpoint: Endpoint called, for logging and events.
            cancel_event: When set, aborts the in-flight attempt and any pending retry.
            **kwargs: Keyword arguments for the function.

        Returns:
            The result of the function call.

        Raises:
            SkyFiError: The classified failure of the last attempt.
            asyncio.CancelledError: If the caller cancelled.
        """
        effective_endpoint = endpoint or func.__name__

        for attempt in range(self.max_retries + 1):
            # 1. Wait for rate limit permission (retries included)
            wait_duration = await self.rate_limiter.get_wait_time()
            if wait_duration > 0:
                self.dispatch_event(ApiCallDeferred(method=method, endpoint=effective_endpoint, wait_time_seconds=wait_duration))
            await run_cancellable(self.rate_limiter.acquire(), cancel_event)

            # 2. Execute the function
            self.dispatch_event(ApiCallInitiated(method=method, endpoint=effective_endpoint, attempt_number=attempt + 1))
            start_time = time.perf_counter()
            try:
                result = await run_cancellable(func(*args, **kwargs), cancel_event)
            except SkyFiError as e:
                if not e.is_retryable or attempt >= self.max_retries:
                    if e.is_retryable:
                        logger.error(f"Max retries ({self.max_retries}) reached for {method} {effective_endpoint}. Last error: {e}")
                    else:
                        logger.error(f"Non-retryable {e.kind.value} error calling {method} {effective_endpoint} on attempt {attempt + 1}: {e}")
                    self.dispatch_event(ApiCallFailed(
                        method=method, endpoint=effective_endpoint, error_kind=e.kind.value,
                        error_message=e.message, status_code=e.status_code,
                    ))
                    raise

                delay = self.backoff_for(attempt)
                logger.warning(
                    f"Retryable {e.kind.value} error calling {method} {effective_endpoint} on attempt "
                    f"{attempt + 1}/{self.max_retries + 1}. Retrying in {delay:.2f}s..."
                )
                self.dispatch_event(RetryScheduled(
                    method=method, endpoint=effective_endpoint, attempt_number=attempt + 1,
                    delay_seconds=delay, error_kind=e.kind.value,
                ))
                await cancellable_delay(delay, cancel_event)
                continue

            latency_ms = (time.perf_counter() - start_time) * 1000
            self.dispatch_event(ApiCallSucceeded(method=method, endpoint=effective_endpoint, latency_ms=latency_ms, attempt_number=attempt + 1))
            return result

        # Unreachable: the last attempt either returns or raises
        raise RuntimeError("retry loop exited without a result")
