"""
Planner Agent (Brain Layer)

Responsibilities:
- Classify the traveller's message
- Advance the conversation stage
- Build a stage-aware system instruction
- Run the LLM tool loop (destination search, flight search)
- Stream text to the caller as it is produced

UI-agnostic, FastAPI-ready. A turn never raises: the worst case is a
generic apology with the caller's context handed back unchanged.
"""

import logging
import time
from datetime import date
from typing import Callable, List, Optional, Sequence

from dotenv import load_dotenv

import core.metrics as metrics
from agents.intent_classifier import classify_intent
from agents.llm_client import MAX_TOOL_STEPS, ChunkSink, LLMCapability, emit_chunk, get_llm
from agents.models import Stage, Step, TravelContext, TurnResult
from agents.stage_machine import advance_stage
from core.date_utils import format_date, today
from tools.airport_resolver import AirportResolver
from tools.base import Capability
from tools.destination_search import SearchCapability
from tools.flight_search import FlightSearchCapability

load_dotenv()

# ----------------------------------------------------------------------
# Logging configuration
# ----------------------------------------------------------------------
logger = logging.getLogger("planner_agent")

GENERIC_ERROR_MESSAGE = "Sorry, I encountered an error. Please try again."

# ----------------------------------------------------------------------
# System instruction
# ----------------------------------------------------------------------
STAGE_GUIDANCE = {
    Stage.INITIAL: (
        "Welcome the traveller and find out what kind of trip they want. "
        "If they describe a place or a style of trip, use the search tool with type 'destination'."
    ),
    Stage.DESTINATION_SEARCH: (
        "Use the search tool with type 'destination' to suggest a few places that match the request, "
        "then ask which one they like."
    ),
    Stage.CONFIRM_DESTINATION: (
        "Confirm the chosen destination with a few highlights and check they want to go there."
    ),
    Stage.DEPARTURE_CITY: "Ask which city they will be flying from.",
    Stage.DATES_INPUT: "Ask when they want to travel: a departure date and, if they know it, a return date.",
    Stage.FLIGHTS_SEARCH: (
        "Call checkFlights with the departure city, the destination and the dates, "
        "then summarise the best options. If the tool asks for an airport code, pass that question on."
    ),
}


def build_system_instruction(context: TravelContext, today_date: date) -> str:
    known: List[str] = []
    missing: List[str] = []

    if context.selected_destination:
        known.append(f"- Destination: {context.selected_destination}")
    else:
        missing.append("- Destination")
    if context.from_location:
        known.append(f"- Departing from: {context.from_location}")
    else:
        missing.append("- Departure city")
    if context.dates and context.dates.departure:
        dates = f"- Departure date: {context.dates.departure}"
        if context.dates.return_date:
            dates += f", return date: {context.dates.return_date}"
        known.append(dates)
    else:
        missing.append("- Travel dates")

    lines = [
        "You are a friendly travel agent helping the user plan a trip, one step at a time.",
        f"Today's date is {format_date(today_date)}. Never suggest or search dates in the past.",
        "",
        f"Current stage: {context.stage.value}",
        STAGE_GUIDANCE[context.stage],
        "",
        "Known information:",
        *(known or ["- Nothing yet"]),
        "",
        "Still missing:",
        *(missing or ["- Nothing, everything needed for a flight search is known"]),
        "",
        "Rules:",
        "- Never ask again for information listed as known.",
        "- Do not repeat search results the user has already seen; refer to them briefly instead.",
        "- Ask for at most one missing piece of information per reply.",
        "- Keep replies short and use markdown lists for options.",
    ]
    if context.search_results:
        lines += ["", "Destinations already suggested:", context.search_results]
    return "\n".join(lines)


def latest_search_result(steps: Sequence[Step]) -> Optional[str]:
    """Result text of the last destination search in this turn, if any."""
    found = None
    for step in steps:
        for call in step.tool_calls:
            if call.name == SearchCapability.name and call.arguments.get("type", "destination") == "destination":
                result = call.result.get("result")
                if isinstance(result, str):
                    found = result
    return found


# ----------------------------------------------------------------------
# Planner
# ----------------------------------------------------------------------
class TravelPlanner:
    """
    Args:
        llm: LLMCapability used for classification, airport lookup and the tool loop.
        capabilities: Tools offered to the LLM.
        clock: Returns today's local date.
    """

    def __init__(
        self,
        llm: LLMCapability,
        capabilities: Sequence[Capability],
        clock: Callable[[], date] = today,
        max_steps: int = MAX_TOOL_STEPS,
    ):
        self.llm = llm
        self.capabilities = list(capabilities)
        self.clock = clock
        self.max_steps = max_steps

    async def process_turn(
        self,
        user_input: str,
        context: Optional[TravelContext] = None,
        on_chunk: Optional[ChunkSink] = None,
    ) -> TurnResult:
        context = context or TravelContext()
        start = time.monotonic()
        try:
            now = self.clock()
            intent = await classify_intent(user_input, llm=self.llm, now=now)
            updated = advance_stage(context, intent, now)

            completion = await self.llm.complete(
                system=build_system_instruction(updated, now),
                prompt=user_input,
                tools=self.capabilities,
                max_steps=self.max_steps,
                on_partial_text=on_chunk,
            )

            search_text = latest_search_result(completion.steps)
            if search_text is not None:
                updated = updated.model_copy(update={"search_results": search_text})

            metrics.TURN_REQUESTS.labels(status="success").inc()
            logger.info("Turn completed", extra={
                "stage": updated.stage.value,
                "intent": intent.type.value,
                "steps": len(completion.steps),
            })
            return TurnResult(text=completion.text, steps=completion.steps, updated_context=updated)

        except Exception:
            metrics.TURN_REQUESTS.labels(status="error").inc()
            logger.exception("Turn failed")
            try:
                await emit_chunk(on_chunk, GENERIC_ERROR_MESSAGE)
            except Exception:
                logger.warning("Could not deliver error message to caller", exc_info=True)
            return TurnResult(text=GENERIC_ERROR_MESSAGE, steps=[], updated_context=context)

        finally:
            metrics.TURN_LATENCY.observe(time.monotonic() - start)


# ----------------------------------------------------------------------
# Module-level entry point
# ----------------------------------------------------------------------
_planner: Optional[TravelPlanner] = None


def build_default_planner() -> TravelPlanner:
    llm = get_llm()
    resolver = AirportResolver(llm)
    return TravelPlanner(llm=llm, capabilities=[SearchCapability(), FlightSearchCapability(resolver)])


def get_planner() -> TravelPlanner:
    global _planner
    if _planner is None:
        _planner = build_default_planner()
    return _planner


async def process_turn(
    user_input: str,
    context: Optional[TravelContext] = None,
    on_chunk: Optional[ChunkSink] = None,
) -> TurnResult:
    return await get_planner().process_turn(user_input, context, on_chunk)
