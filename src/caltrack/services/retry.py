"""Retry and backoff policy for remote FDC calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TypeVar

import httpx

from caltrack.domain.sync import (
    PermanentRemoteError,
    RetriesExhaustedError,
    SyncCancelledError,
)

_T = TypeVar("_T")

_HTTP_TOO_MANY_REQUESTS = 429
_HTTP_SERVER_ERROR = 500

_logger = logging.getLogger(__name__)

Sleeper = Callable[[float, asyncio.Event | None], Awaitable[None]]


class RetryState(StrEnum):
    """States a single guarded call moves through."""

    ATTEMPTING = "attempting"
    WAITING_RATE_LIMIT = "waiting_rate_limit"
    WAITING_BACKOFF = "waiting_backoff"
    SUCCEEDED = "succeeded"
    FAILED_PERMANENTLY = "failed_permanently"


async def interruptible_sleep(
    seconds: float, cancel_event: asyncio.Event | None
) -> None:
    """Sleep for ``seconds`` unless the cancel event is set first."""
    if cancel_event is None:
        await asyncio.sleep(seconds)
        return
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
    except TimeoutError:
        return
    raise SyncCancelledError


def raise_if_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise SyncCancelledError


@dataclass
class RetryPolicy:
    """Rate-limit aware exponential backoff with a shared retry ceiling."""

    max_retries: int = 5
    initial_backoff_seconds: float = 2.0
    rate_limit_wait_seconds: float = 65.0
    sleep: Sleeper = interruptible_sleep

    async def call(
        self,
        func: Callable[[], Awaitable[_T]],
        *,
        action: str,
        cancel_event: asyncio.Event | None = None,
    ) -> _T:
        """Run ``func`` until it succeeds, fails permanently, or is cancelled."""
        retries = 0
        while True:
            raise_if_cancelled(cancel_event)
            state = RetryState.ATTEMPTING
            try:
                result = await func()
            except (httpx.HTTPStatusError, httpx.TransportError) as exc:
                status_code = _status_code_from_exception(exc)
                state = _next_state(status_code)
                if state is RetryState.FAILED_PERMANENTLY:
                    _logger.warning(
                        "FDC %s failed permanently (status=%s): %s",
                        action,
                        status_code,
                        exc,
                    )
                    raise PermanentRemoteError(
                        f"FDC {action} failed with status {status_code}",
                        status_code=status_code,
                    ) from exc
                if retries >= self.max_retries:
                    _logger.warning(
                        "FDC %s gave up after %s retries (status=%s)",
                        action,
                        retries,
                        status_code,
                    )
                    raise RetriesExhaustedError(
                        f"FDC {action} failed after {retries} retries",
                        status_code=status_code,
                    ) from exc
                delay = self._delay_for(state, retries)
                _logger.warning(
                    "FDC %s %s (attempt %s/%s, status=%s), waiting %.1fs",
                    action,
                    state.value,
                    retries + 1,
                    self.max_retries + 1,
                    status_code if status_code is not None else "n/a",
                    delay,
                )
                await self.sleep(delay, cancel_event)
                retries += 1
                continue
            state = RetryState.SUCCEEDED
            _logger.debug("FDC %s %s after %s retries", action, state.value, retries)
            return result

    def _delay_for(self, state: RetryState, retries: int) -> float:
        if state is RetryState.WAITING_RATE_LIMIT:
            return self.rate_limit_wait_seconds
        return self.initial_backoff_seconds * 2**retries


def _next_state(status_code: int | None) -> RetryState:
    """Classify a failure into the state the call moves to next."""
    if status_code is None or status_code >= _HTTP_SERVER_ERROR:
        return RetryState.WAITING_BACKOFF
    if status_code == _HTTP_TOO_MANY_REQUESTS:
        return RetryState.WAITING_RATE_LIMIT
    return RetryState.FAILED_PERMANENTLY


def _status_code_from_exception(exc: Exception) -> int | None:
    """Extract HTTP status code from an exception, if available."""
    response = getattr(exc, "response", None)
    status_code = getattr(response, "status_code", None)
    if isinstance(status_code, int):
        return status_code
    return None
