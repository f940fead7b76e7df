# agents/stage_machine.py
import logging
from datetime import date
from typing import Dict, Optional, Tuple

from agents.models import ClassifiedIntent, IntentType, Stage, TravelContext, TravelDates
from core.date_utils import is_future_date
from core.metrics import record_stage_transition

logger = logging.getLogger(__name__)

# (current stage, intent) -> next stage; any pair not listed keeps the stage
STAGE_TRANSITIONS: Dict[Tuple[Stage, IntentType], Stage] = {
    (Stage.INITIAL, IntentType.SEARCH_DESTINATION): Stage.DESTINATION_SEARCH,
    (Stage.INITIAL, IntentType.SELECT_DESTINATION): Stage.CONFIRM_DESTINATION,
    (Stage.DESTINATION_SEARCH, IntentType.SELECT_DESTINATION): Stage.CONFIRM_DESTINATION,
    (Stage.CONFIRM_DESTINATION, IntentType.SELECT_DESTINATION): Stage.DEPARTURE_CITY,
    (Stage.DEPARTURE_CITY, IntentType.PROVIDE_LOCATION): Stage.DATES_INPUT,
    (Stage.DATES_INPUT, IntentType.PROVIDE_DATES): Stage.FLIGHTS_SEARCH,
}


def has_future_departure(dates: Optional[TravelDates], now: Optional[date] = None) -> bool:
    return dates is not None and is_future_date(dates.departure, now)


def advance_stage(context: TravelContext, intent: ClassifiedIntent, now: Optional[date] = None) -> TravelContext:
    """
    Compute the context after one classified message.

    Extracted fields are captured whatever the stage, then the transition
    table is applied, then a corrective pass pulls the stage back to the
    first piece of information still missing. The input is never mutated.
    """
    updated = context.model_copy(deep=True)
    data = intent.data

    if data.destination:
        updated.selected_destination = data.destination
    if data.location:
        updated.from_location = data.location
    if data.dates and data.dates.departure:
        updated.dates = data.dates.model_copy()

    next_stage = STAGE_TRANSITIONS.get((context.stage, intent.type), context.stage)
    if next_stage == Stage.FLIGHTS_SEARCH and not (data.dates and data.dates.departure):
        next_stage = context.stage

    # Corrective pass wins over the table
    if updated.selected_destination and not updated.from_location:
        next_stage = Stage.DEPARTURE_CITY
    elif updated.selected_destination and updated.from_location and not has_future_departure(updated.dates, now):
        next_stage = Stage.DATES_INPUT

    updated.stage = next_stage

    if next_stage != context.stage:
        logger.info("Stage transition", extra={
            "from_stage": context.stage.value,
            "to_stage": next_stage.value,
            "intent": intent.type.value,
        })
    record_stage_transition(context.stage.value, next_stage.value)
    return updated
