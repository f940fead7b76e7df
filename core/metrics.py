# core/metrics.py

import logging
from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

# ----------------------------
# Turn pipeline
# ----------------------------

TURN_REQUESTS = Counter(
    "turn_requests_total",
    "Total conversation turns processed",
    ["status"]  # success, error
)

TURN_LATENCY = Histogram(
    "turn_latency_seconds",
    "End-to-end latency of a conversation turn"
)

STAGE_TRANSITIONS = Counter(
    "stage_transitions_total",
    "Conversation stage transitions",
    ["from_stage", "to_stage"]
)

INTENT_FALLBACKS = Counter(
    "intent_fallbacks_total",
    "Intent classifications that fell back to the keyword heuristic",
    ["reason"]  # parse_error, llm_error
)

# ----------------------------
# LLM
# ----------------------------

LLM_REQUESTS = Counter(
    "llm_requests_total",
    "Total LLM requests",
    ["kind", "status"]  # kind: generate, tool_step
)

LLM_LATENCY = Histogram(
    "llm_request_latency_seconds",
    "LLM request latency",
    ["kind"]
)

# ----------------------------
# Tools
# ----------------------------

TOOL_REQUESTS = Counter(
    "tool_requests_total",
    "Total tool invocations",
    ["tool", "status"]
)

TOOL_LATENCY = Histogram(
    "tool_request_latency_seconds",
    "Tool invocation latency",
    ["tool"]
)

AIRPORT_RESOLUTIONS = Counter(
    "airport_resolutions_total",
    "Airport code resolutions by source",
    ["source"]  # table, explicit_code, cache, llm, failed
)

SEARCH_STREAM_ERRORS = Counter(
    "search_stream_errors_total",
    "Search stream problems",
    ["kind"]  # malformed_chunk, stream_failure
)

FLIGHT_API_RETRIES = Counter(
    "flight_api_retries_total",
    "Total flight data API retries",
    ["reason"]
)


# ----------------------------
# Helper Functions
# ----------------------------

def record_stage_transition(from_stage: str, to_stage: str) -> None:
    """Count a stage change; no-op when the stage did not move."""
    if from_stage == to_stage:
        return
    STAGE_TRANSITIONS.labels(from_stage=from_stage, to_stage=to_stage).inc()


def record_tool_result(tool: str, status: str, duration_sec: float) -> None:
    TOOL_REQUESTS.labels(tool=tool, status=status).inc()
    TOOL_LATENCY.labels(tool=tool).observe(duration_sec)


def record_llm_call(kind: str, status: str, duration_sec: float) -> None:
    LLM_REQUESTS.labels(kind=kind, status=status).inc()
    LLM_LATENCY.labels(kind=kind).observe(duration_sec)
