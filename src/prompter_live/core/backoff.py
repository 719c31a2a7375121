from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import aiohttp

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]

RETRYABLE_HTTP_ERRORS: tuple[type[BaseException], ...] = (
    aiohttp.ClientConnectorError,
    aiohttp.ClientOSError,
    aiohttp.ClientPayloadError,
    aiohttp.ServerDisconnectedError,
    asyncio.TimeoutError,
    ConnectionResetError,
)


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """
    Bounded exponential backoff shared by every retryable operation.

    `max_attempts` counts calls, not retries: a persistently failing operation is
    called exactly `max_attempts` times, and attempt `k` (0-indexed) is followed by
    a wait of `base_delay_seconds * factor**k` unless it was the last one.
    """

    max_attempts: int
    base_delay_seconds: float
    factor: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_seconds < 0:
            raise ValueError(f"base_delay_seconds must be >= 0, got {self.base_delay_seconds}")

    def delay_for(self, attempt_index: int) -> float:
        return self.base_delay_seconds * (self.factor**attempt_index)

    async def run(
        self,
        operation: str,
        make_call: Callable[[], Awaitable[T]],
        *,
        retry_on: tuple[type[BaseException], ...] = RETRYABLE_HTTP_ERRORS,
        give_up_on: tuple[type[BaseException], ...] = (),
        sleep: SleepFn = asyncio.sleep,
        log_context: str = "",
    ) -> T:
        """
        Call `make_call` until it succeeds or the attempts run out.

        Errors matching `give_up_on` propagate at once even when they are also
        covered by `retry_on` (e.g. a subclass of a retryable error).
        """
        last_error: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await make_call()
            except retry_on as exc:
                if isinstance(exc, give_up_on):
                    raise
                last_error = exc
                if attempt >= self.max_attempts:
                    break
                delay_seconds = self.delay_for(attempt - 1)
                logger.warning(
                    "backoff.retry operation=%s attempt=%s/%s delay_seconds=%s %s error=%s",
                    operation,
                    attempt,
                    self.max_attempts,
                    delay_seconds,
                    log_context,
                    type(exc).__name__,
                )
                await sleep(delay_seconds)

        assert last_error is not None
        raise last_error
