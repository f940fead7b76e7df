# core/http_client.py
import asyncio
import logging
import os
from weakref import WeakKeyDictionary

import httpx
from dotenv import load_dotenv

from core.request_context import get_request_id

load_dotenv()

logger = logging.getLogger(__name__)

HTTP_CONNECT_TIMEOUT = float(os.getenv("HTTP_CONNECT_TIMEOUT", "5"))
# Search answers stream slowly; the read timeout bounds the gap between chunks
HTTP_READ_TIMEOUT = float(os.getenv("HTTP_READ_TIMEOUT", "30"))

USER_AGENT = "ai-travel-agent/0.1"

# Keyed by event loop so TestClient portals and the server loop never share a pool
_clients: WeakKeyDictionary = WeakKeyDictionary()


async def _propagate_request_id(request: httpx.Request) -> None:
    """Outbound calls carry the id of the inbound request that caused them."""
    request_id = get_request_id()
    if request_id and "X-Request-ID" not in request.headers:
        request.headers["X-Request-ID"] = request_id


def _build_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(connect=HTTP_CONNECT_TIMEOUT, read=HTTP_READ_TIMEOUT, write=5.0, pool=5.0),
        limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
        headers={"User-Agent": USER_AGENT},
        event_hooks={"request": [_propagate_request_id]},
        follow_redirects=True,
    )


def get_client() -> httpx.AsyncClient:
    """
    Shared AsyncClient for the running event loop, rebuilt if it was closed.
    Used by the flight-data client and the search backend.
    """
    loop = asyncio.get_running_loop()

    client = _clients.get(loop)
    if client is None or client.is_closed:
        client = _build_client()
        _clients[loop] = client
    return client


async def close_client():
    """Close every pooled client. Called from the API lifespan on shutdown."""
    for client in list(_clients.values()):
        try:
            await client.aclose()
        except Exception:
            logger.debug("HTTP client close failed", exc_info=True)

    _clients.clear()
