# tools/destination_search.py
"""
`search` tool backed by a streaming semantic search service.

The backend answers a natural-language prompt as a stream of chunks. A chunk
is either plain text or one or more SSE lines. The JSON payloads of `data:`
lines with type "text" carry a `message` fragment.
"""

import json
import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from core.exceptions import StreamError, ToolError
from core.http_client import get_client
from core.metrics import SEARCH_STREAM_ERRORS
from tools.base import Capability

load_dotenv()

logger = logging.getLogger(__name__)

SEARCH_API_URL = os.getenv("SEARCH_API_URL")
SEARCH_API_KEY = os.getenv("SEARCH_API_KEY")

MAX_ACCUMULATED_CHARS = 13000
MAX_RESULT_CHARS = 8000
TRUNCATION_MARKER = "..."

DESTINATION_PREFIX = "Here are some destinations that match your search:\n\n"
ATTRACTION_PLACEHOLDER = "Detailed attraction search is not available yet."

# An SSE field line (data, event, id, retry) or a ":" comment line
SSE_LINE = re.compile(r"^(?:data|event|id|retry)?:")


# ----------------------------------------------------------------------
# Backends
# ----------------------------------------------------------------------
class SearchBackend(ABC):

    @abstractmethod
    def stream_answer(self, prompt: str) -> AsyncIterator[str]:
        """Yield answer chunks for `prompt` as they arrive."""


class HttpSearchBackend(SearchBackend):
    """POSTs `{"query": prompt}` and yields the non-empty response lines."""

    def __init__(self, url: Optional[str] = None, api_key: Optional[str] = None):
        self.url = url or SEARCH_API_URL
        self.api_key = api_key or SEARCH_API_KEY

    async def stream_answer(self, prompt: str) -> AsyncIterator[str]:
        if not self.url:
            raise ToolError("SEARCH_API_URL not configured in environment")

        headers = {"Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with get_client().stream("POST", self.url, json={"query": prompt}, headers=headers) as response:
            response.raise_for_status()
            async for line in response.aiter_lines():
                if line.strip():
                    yield line


# ----------------------------------------------------------------------
# Chunk decoding
# ----------------------------------------------------------------------
def decode_chunk(chunk: str) -> str:
    """
    Text contributed by one chunk.

    SSE chunks contribute only their `data:` payloads; `event:`, `id:`,
    `retry:` and `:` comment lines carry no answer text. Anything else is
    plain text from a backend that does not speak SSE.

    Raises:
        StreamError: an SSE data line is not a JSON object.
    """
    if not SSE_LINE.match(chunk.lstrip()):
        return chunk

    parts = []
    for line in chunk.splitlines():
        line = line.strip()
        if not line.startswith("data:"):
            continue
        body = line[len("data:"):].strip()
        if not body or body == "[DONE]":
            continue
        try:
            event = json.loads(body)
        except json.JSONDecodeError as e:
            raise StreamError(f"Malformed search event: {body[:80]}") from e
        if not isinstance(event, dict):
            raise StreamError(f"Unexpected search event: {body[:80]}")
        if event.get("type") == "text" and event.get("message"):
            parts.append(str(event["message"]))
    return "".join(parts)


def truncate(text: str, limit: int = MAX_RESULT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


async def collect_answer(backend: SearchBackend, prompt: str) -> str:
    """
    Consume the stream until it ends or the next chunk would push the total
    past MAX_ACCUMULATED_CHARS. Never raises; a broken stream keeps what was
    gathered so far.
    """
    result = ""
    try:
        async for chunk in backend.stream_answer(prompt):
            try:
                text = decode_chunk(chunk)
            except StreamError as e:
                SEARCH_STREAM_ERRORS.labels(kind="malformed_chunk").inc()
                logger.warning("Skipping malformed search chunk", extra={"error": str(e)})
                continue
            if len(result) + len(text) > MAX_ACCUMULATED_CHARS:
                logger.info("Search answer reached size limit", extra={"chars": len(result)})
                break
            result += text
    except Exception as e:
        SEARCH_STREAM_ERRORS.labels(kind="stream_failure").inc()
        logger.error("Search stream failed", extra={"error": str(e), "chars": len(result)})
    return result


# ----------------------------------------------------------------------
# Capability
# ----------------------------------------------------------------------
class SearchArgs(BaseModel):
    query: str = Field(description="What the traveller is looking for, e.g. 'beaches in Asia'")
    type: Literal["destination", "attraction"] = "destination"


class SearchCapability(Capability):
    name = "search"
    description = "Search for travel destinations and attractions"
    args_model = SearchArgs

    def __init__(self, backend: Optional[SearchBackend] = None):
        self.backend = backend or HttpSearchBackend()

    async def execute(self, args: SearchArgs) -> Dict[str, Any]:
        if args.type == "attraction":
            return {
                "type": args.type,
                "query": args.query,
                "result": f"Here are some attractions in {args.query}:\n\n{ATTRACTION_PLACEHOLDER}",
            }

        answer = await collect_answer(self.backend, f"Find destinations matching {args.query}")
        logger.info("Destination search finished", extra={"query": args.query, "chars": len(answer)})
        return {
            "type": args.type,
            "query": args.query,
            "result": DESTINATION_PREFIX + truncate(answer),
        }


# ----------------------------------------------------------------------
# Health check
# ----------------------------------------------------------------------
async def health_check() -> str:
    """Configuration-only check; the search service has no cheap ping."""
    if not SEARCH_API_URL:
        logger.error("Health check failed: SEARCH_API_URL not configured")
        return "fail"
    return "ok"
