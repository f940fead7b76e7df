import httpx
import pytest
from core.retry import retry_async, RetryConfig, default_retry_filter


def _status_error(status, headers=None):
    request = httpx.Request("GET", "https://flights.test/searchFlights")
    response = httpx.Response(status, headers=headers or {}, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


@pytest.mark.asyncio
async def test_retry_retries_and_succeeds():
    attempts = 0

    async def flaky():
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise Exception("fail")
        return "ok"

    result = await retry_async(
        flaky,
        config=RetryConfig(retries=3, base_delay=0),
        retry_exceptions=(Exception,)
    )

    assert result == "ok"
    assert attempts == 3


@pytest.mark.asyncio
async def test_non_retryable_error_raises_immediately():
    attempts = 0

    async def bad_request():
        nonlocal attempts
        attempts += 1
        raise _status_error(400)

    with pytest.raises(httpx.HTTPStatusError):
        await retry_async(bad_request, config=RetryConfig(retries=3, base_delay=0))

    assert attempts == 1


@pytest.mark.asyncio
async def test_on_retry_hook_and_exhaustion():
    seen = []

    async def always_503():
        raise _status_error(503)

    config = RetryConfig(retries=2, base_delay=0, on_retry=lambda attempt, delay, exc: seen.append(attempt))

    with pytest.raises(httpx.HTTPStatusError):
        await retry_async(always_503, config=config)

    assert seen == [1]


def test_default_retry_filter():
    assert default_retry_filter(httpx.ConnectError("refused"))
    assert default_retry_filter(_status_error(429))
    assert default_retry_filter(_status_error(502))
    assert not default_retry_filter(_status_error(501))
    assert not default_retry_filter(_status_error(404))
    assert not default_retry_filter(ValueError("nope"))
