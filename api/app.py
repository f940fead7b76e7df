# api/app.py
# NOTE:
# The planner never raises for operational failures (tool errors, LLM
# failures, unparseable intents); it answers with a generic apology instead.
# The only error this layer adds is the global turn timeout (504).
# NOTE:
# /chat supports both non-streaming (JSON) and streaming (SSE) responses.
# Streaming is enabled by passing ?stream=true in the query string.

import json
import logging
import os
import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from cachetools import TTLCache
from fastapi import FastAPI, Request, Response, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

# Module import so tests can monkeypatch planner_agent.process_turn
import agents.planner_agent as planner_agent

from agents.llm_client import close_llm_client
from agents.models import TravelContext, TurnResult
from core.http_client import close_client
from core.request_context import set_request_id
from core.logging_config import setup_logging
from core.health import full_health_check

logger = logging.getLogger(__name__)

TURN_TIMEOUT = float(os.getenv("TURN_TIMEOUT", "60"))
SESSION_TTL = float(os.getenv("SESSION_TTL", "3600"))
SESSION_MAX = int(os.getenv("SESSION_MAX", "10000"))

GREETING = (
    "Hi! I'm your AI travel agent. I can help you plan your perfect trip. "
    "Where would you like to go?"
)
STARTER_SUGGESTIONS = ["Popular Destinations", "Beach Vacation", "Cultural Experience"]

POPULAR_DESTINATIONS = ["Tokyo", "Paris", "New York", "London", "Hong Kong"]
REGIONS = ["Asia", "Europe", "North America", "South America", "Africa", "Oceania"]
TRAVEL_STYLES = ["Beach Getaways", "Cultural Experiences", "Adventure Travel", "City Breaks", "Luxury Travel"]


# ----------------------------------------------------------------------
# Sessions (in-memory, expiring)
# ----------------------------------------------------------------------
@dataclass
class Session:
    id: str
    context: TravelContext = field(default_factory=TravelContext)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SessionStore:
    """
    Sessions expire SESSION_TTL seconds after their last use. The least
    recently used are evicted once SESSION_MAX is reached.
    """

    def __init__(self, maxsize: int = SESSION_MAX, ttl: float = SESSION_TTL, timer=time.monotonic):
        self._sessions: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)

    def create(self) -> Session:
        session = Session(id=str(uuid.uuid4()))
        self._sessions[session.id] = session
        logger.info("Session created", extra={"session_id": session.id})
        return session

    def get(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        if session is not None:
            # Re-insert to restart the expiry clock
            self._sessions[session_id] = session
        return session

    def __len__(self) -> int:
        return len(self._sessions)


sessions = SessionStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: configure structured JSON logging
    setup_logging()

    yield

    # Clean up clients
    await close_llm_client()
    await close_client()


app = FastAPI(
    title="AI Travel Agent",
    lifespan=lifespan
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Reuse the caller's X-Request-ID or generate one, and store it in the context."""
    request_id = set_request_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


class ChatRequest(BaseModel):
    session_id: Optional[str] = None
    message: str = Field(..., min_length=1, description="The traveller's message")


def _session_for(session_id: Optional[str]) -> Session:
    if session_id is None:
        return sessions.create()
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="session not found")
    return session


def _turn_payload(session: Session, result: TurnResult) -> Dict[str, Any]:
    return {
        "session_id": session.id,
        "text": result.text,
        "stage": result.updated_context.stage.value,
        "context": result.updated_context.to_payload(),
    }


@app.post("/sessions", status_code=201)
async def create_session():
    """Start a conversation: returns the greeting and starter suggestions."""
    session = sessions.create()
    return {
        "session_id": session.id,
        "context": session.context.to_payload(),
        "greeting": GREETING,
        "suggestions": STARTER_SUGGESTIONS,
    }


@app.get("/sessions/{session_id}")
async def get_session(session_id: str):
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="session not found")
    return {"session_id": session.id, "context": session.context.to_payload()}


@app.post("/chat")
async def chat(req: ChatRequest, stream: bool = False):
    """
    Run one conversation turn.
    - If `stream=false` (default), returns a single JSON response.
    - If `stream=true`, returns an SSE stream of `{"text": ...}` frames
      followed by an `event: done` frame carrying the final JSON.
    """
    session = _session_for(req.session_id)

    if stream:
        queue: asyncio.Queue = asyncio.Queue()

        async def on_chunk(text: str):
            await queue.put(("chunk", text))

        async def run_turn():
            async with session.lock:
                try:
                    result = await asyncio.wait_for(
                        planner_agent.process_turn(req.message, session.context, on_chunk),
                        timeout=TURN_TIMEOUT
                    )
                except asyncio.TimeoutError:
                    logger.error("Turn timed out", extra={"timeout_sec": TURN_TIMEOUT})
                    await queue.put(("error", {"detail": "Request timed out"}))
                    return
                except Exception:
                    logger.exception("Unexpected error in streamed turn")
                    await queue.put(("error", {"detail": "Internal error"}))
                    return
                session.context = result.updated_context
                await queue.put(("done", _turn_payload(session, result)))

        async def event_stream():
            task = asyncio.create_task(run_turn())
            try:
                while True:
                    kind, payload = await queue.get()
                    if kind == "chunk":
                        yield f"data: {json.dumps({'text': payload})}\n\n"
                        continue
                    yield f"event: {kind}\ndata: {json.dumps(payload)}\n\n"
                    break
            finally:
                # Client went away before the turn finished
                if not task.done():
                    task.cancel()

        return StreamingResponse(event_stream(), media_type="text/event-stream")

    async with session.lock:
        try:
            result = await asyncio.wait_for(
                planner_agent.process_turn(req.message, session.context),
                timeout=TURN_TIMEOUT
            )
        except asyncio.TimeoutError:
            logger.error("Turn timed out", extra={"timeout_sec": TURN_TIMEOUT})
            raise HTTPException(status_code=504, detail="Request timed out")
        session.context = result.updated_context

    return _turn_payload(session, result)


@app.get("/destinations")
async def destinations():
    """Static lists for the travel explorer sidebar."""
    return {
        "popular": POPULAR_DESTINATIONS,
        "regions": REGIONS,
        "travel_styles": TRAVEL_STYLES,
    }


@app.get("/health/live")
async def liveness():
    """Kubernetes liveness probe."""
    return {"status": "alive"}


@app.get("/health/ready")
async def readiness():
    """Kubernetes readiness probe."""
    health = await full_health_check()
    if health["status"] != "ok":
        return Response(
            content=json.dumps(health),
            status_code=503,
            media_type="application/json"
        )
    return health


@app.get("/health")
async def health():
    """Comprehensive health check for monitoring."""
    return await full_health_check()


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
