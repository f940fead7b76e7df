# NOTE:
# request_id is NOT manually injected into logger extra fields here.
# It is automatically added by the global JSON logging formatter
# via core.request_context.get_request_id().
import os
import time
import logging
from typing import Any, Dict, Optional

import httpx
from dotenv import load_dotenv

from core.date_utils import format_date, tomorrow
from core.exceptions import ProviderError, ToolError
from core.http_client import get_client
from core.metrics import FLIGHT_API_RETRIES
from core.retry import RetryConfig, retry_async

load_dotenv()

logger = logging.getLogger("airline_api")

# ----------------------------------------------------------------------
# Custom exceptions
# ----------------------------------------------------------------------
class AirlineAPIError(ToolError):
    """Raised when the flight data API cannot be reached or answers with an HTTP error."""
    pass

# ----------------------------------------------------------------------
# Provider configuration (key validated inside the call)
# ----------------------------------------------------------------------
FLIGHT_API_BASE_URL = os.getenv("FLIGHT_API_BASE_URL", "https://google-flights2.p.rapidapi.com/api/v1")
FLIGHT_API_HOST = os.getenv("FLIGHT_API_HOST", "google-flights2.p.rapidapi.com")
FLIGHT_API_KEY = os.getenv("FLIGHT_API_KEY")
FLIGHT_API_RETRIES = int(os.getenv("FLIGHT_API_RETRIES", "3"))


def _headers() -> Dict[str, str]:
    return {
        "x-rapidapi-key": FLIGHT_API_KEY or "",
        "x-rapidapi-host": FLIGHT_API_HOST,
    }


def _on_retry(attempt: int, delay: float, exc: Exception) -> None:
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        reason = "http_429" if status == 429 else "http_5xx"
    else:
        reason = "network"
    FLIGHT_API_RETRIES.labels(reason=reason).inc()
    logger.info("Flight API retry scheduled", extra={"attempt": attempt, "sleep_sec": round(delay, 2), "reason": reason})


def build_params(departure_id: str, arrival_id: str, outbound_date: str) -> Dict[str, str]:
    return {
        "departure_id": departure_id.upper(),
        "arrival_id": arrival_id.upper(),
        "travel_class": "ECONOMY",
        "adults": "1",
        "currency": "USD",
        "outbound_date": outbound_date,
    }

# ----------------------------------------------------------------------
# Main search function
# ----------------------------------------------------------------------
async def search_flights(departure_id: str, arrival_id: str, outbound_date: str) -> Dict[str, Any]:
    """
    One-way, economy, single adult search priced in USD.

    Args:
        departure_id (str): IATA code (e.g., 'LAX')
        arrival_id (str): IATA code (e.g., 'NRT')
        outbound_date (str): Date in YYYY-MM-DD format

    Returns:
        The raw provider payload; pass it to tools.flight_formatter.format_flights.

    Raises:
        AirlineAPIError: Missing key, transport failure after retries, or HTTP error.
        ProviderError: The provider answered but reported `status: false`.
    """
    if not FLIGHT_API_KEY:
        raise AirlineAPIError("FLIGHT_API_KEY not configured in environment")

    url = f"{FLIGHT_API_BASE_URL.rstrip('/')}/searchFlights"
    params = build_params(departure_id, arrival_id, outbound_date)
    start = time.monotonic()

    logger.info("Flight API request started", extra={
        "departure": params["departure_id"],
        "arrival": params["arrival_id"],
        "date": outbound_date,
    })

    async def _request() -> httpx.Response:
        response = await get_client().get(url, params=params, headers=_headers())
        response.raise_for_status()
        return response

    try:
        response = await retry_async(
            _request,
            config=RetryConfig(retries=FLIGHT_API_RETRIES, base_delay=1.0, max_backoff=15.0, on_retry=_on_retry),
        )
    except httpx.HTTPStatusError as e:
        raise AirlineAPIError(
            f"HTTP {e.response.status_code} for {departure_id}->{arrival_id} on {outbound_date}"
        ) from e
    except httpx.HTTPError as e:
        FLIGHT_API_RETRIES.labels(reason="exhausted").inc()
        raise AirlineAPIError(f"Retries exhausted for {departure_id}->{arrival_id} on {outbound_date}") from e

    try:
        data = response.json()
    except ValueError as e:
        raise AirlineAPIError("Flight API returned a non-JSON body") from e

    if not isinstance(data, dict):
        raise AirlineAPIError("Flight API returned an unexpected payload")

    if not data.get("status"):
        message: Optional[str] = data.get("message")
        if isinstance(message, list):
            message = "; ".join(str(m) for m in message)
        logger.warning("Flight API reported failure", extra={"provider_message": message})
        raise ProviderError(str(message) if message else None)

    logger.info("Flight API request succeeded", extra={"latency_sec": round(time.monotonic() - start, 2)})
    return data

# ----------------------------------------------------------------------
# Health check
# ----------------------------------------------------------------------
async def health_check() -> str:
    """
    Minimal LAX -> JFK request for tomorrow, without retries.
    Returns "ok" when the provider answers with HTTP 200 and "fail" otherwise.
    """
    if not FLIGHT_API_KEY:
        logger.error("Health check failed: FLIGHT_API_KEY not configured")
        return "fail"

    try:
        response = await get_client().get(
            f"{FLIGHT_API_BASE_URL.rstrip('/')}/searchFlights",
            params=build_params("LAX", "JFK", format_date(tomorrow())),
            headers=_headers(),
        )
        response.raise_for_status()
        # A provider-level "no flights" is still a healthy provider
        logger.info("Health check passed")
        return "ok"
    except Exception as e:
        logger.error("Health check failed", extra={"error": str(e)})
        return "fail"
