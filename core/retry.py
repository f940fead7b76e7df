# core/retry.py

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_NETWORK_ERRORS = (httpx.TimeoutException, httpx.ConnectError, httpx.NetworkError)


@dataclass
class RetryConfig:
    """
    retries: total attempts, so 1 disables retrying.
    base_delay / max_backoff: exponential backoff bounds in seconds.
    jitter: full jitter, i.e. sleep uniformly in [0, backoff].
    retry_on: exception types retried regardless of the default filter.
    on_retry: called as on_retry(attempt, delay, exc) before each sleep.
    """
    retries: int = 3
    base_delay: float = 1.0
    max_backoff: float = 30.0
    jitter: bool = True
    retry_on: Tuple[Type[Exception], ...] = (httpx.TimeoutException, httpx.ConnectError)
    on_retry: Optional[Callable[[int, float, Exception], None]] = None


def default_retry_filter(exc: Exception) -> bool:
    """Network errors, HTTP 429 and 5xx other than 501 are worth another attempt."""
    if isinstance(exc, RETRYABLE_NETWORK_ERRORS):
        return True
    if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
        code = exc.response.status_code
        return code == 429 or (code >= 500 and code != 501)
    return False


def _retry_after_seconds(exc: Exception) -> Optional[float]:
    if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
        raw = exc.response.headers.get("Retry-After")
        if raw and raw.isdigit():
            return float(raw)
    return None


def _backoff_delay(attempt: int, exc: Exception, config: RetryConfig) -> float:
    retry_after = _retry_after_seconds(exc)
    if retry_after is not None:
        return min(retry_after, config.max_backoff)
    ceiling = min(config.max_backoff, config.base_delay * (2 ** attempt))
    return random.uniform(0, ceiling) if config.jitter else ceiling


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    config: Optional[RetryConfig] = None,
    retry_exceptions: Optional[Tuple[Type[Exception], ...]] = None,
) -> Any:
    """
    Await `func()` until it succeeds, the error is not retryable, or the
    attempts run out (the last error is re-raised).

    Only wrap idempotent calls. For streams, wrap the call that opens the
    stream, never the iteration.

    `retry_exceptions` adds SDK-specific types (e.g. openai.RateLimitError).
    """
    config = config or RetryConfig()
    extra_types = tuple(retry_exceptions or ()) + tuple(config.retry_on or ())

    for attempt in range(max(config.retries, 1)):
        try:
            return await func()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            retryable = isinstance(exc, extra_types) if extra_types else False
            retryable = retryable or default_retry_filter(exc)
            last_attempt = attempt >= config.retries - 1

            if not retryable or last_attempt:
                logger.warning("Giving up on call", extra={
                    "attempt": attempt + 1,
                    "max_retries": config.retries,
                    "error_type": type(exc).__name__,
                    "retryable": retryable,
                })
                raise

            delay = _backoff_delay(attempt, exc, config)
            if config.on_retry:
                try:
                    config.on_retry(attempt + 1, delay, exc)
                except Exception:
                    logger.debug("on_retry hook failed", exc_info=True)

            logger.info("Retrying call", extra={
                "attempt": attempt + 1,
                "delay": round(delay, 3),
                "error_type": type(exc).__name__,
            })
            await asyncio.sleep(delay)
