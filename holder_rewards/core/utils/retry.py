from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")


def exponential_backoff_s(
    attempt: int, *, base_delay_s: float = 0.25, max_delay_s: float | None = None
) -> float:
    delay_s = base_delay_s * (2**attempt)
    if max_delay_s is not None:
        delay_s = min(delay_s, max_delay_s)
    return delay_s


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay_s: float = 0.25,
    max_delay_s: float | None = None,
    should_retry: Callable[[Exception], bool] | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> T:
    if max_retries < 1:
        raise ValueError("max_retries must be >= 1")

    for attempt in range(max_retries):
        try:
            return await fn()
        except Exception as exc:  # noqa: BLE001
            if attempt >= max_retries - 1:
                raise
            if should_retry is not None and not should_retry(exc):
                raise

            delay_s = exponential_backoff_s(
                attempt, base_delay_s=base_delay_s, max_delay_s=max_delay_s
            )
            if on_retry is not None:
                on_retry(attempt, exc, delay_s)
            await asyncio.sleep(delay_s)

    raise RuntimeError("retry_async exhausted retries")


_TRANSIENT_STATUS_CODES = {429, 502, 503, 504}


def is_transient_rpc_error(exc: Exception) -> bool:
    """Timeouts, dropped connections and provider throttling are worth retrying.

    Contract reverts and ABI decoding errors are not.
    """
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    for attr in ("status", "status_code"):
        code = getattr(exc, attr, None)
        if isinstance(code, int) and code in _TRANSIENT_STATUS_CODES:
            return True
    response = getattr(exc, "response", None)
    code = getattr(response, "status_code", None) if response is not None else None
    return isinstance(code, int) and code in _TRANSIENT_STATUS_CODES
