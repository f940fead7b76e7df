# agents/intent_classifier.py
"""
Classifies one traveller message into an intent plus extracted fields.

The LLM is asked for a strict JSON object. Anything that goes wrong (call
failure, unparseable or invalid JSON) falls back to a keyword heuristic, so
classification never raises.
"""

import json
import logging
import re
from datetime import date
from typing import Optional

from dateutil.relativedelta import relativedelta
from pydantic import ValidationError

from agents.models import ClassifiedIntent, IntentData, IntentType, TravelDates
from core.date_utils import format_date, parse_date, roll_forward, today
from core.exceptions import ParseError
from core.metrics import INTENT_FALLBACKS

logger = logging.getLogger(__name__)

CLASSIFIER_SYSTEM = "You classify travel requests. You answer with a single JSON object and nothing else."

INTENT_PROMPT = """Today's date is {today}.

Classify the traveller's message and extract any details it contains.

Message: "{message}"

Answer with ONLY a JSON object in this shape:
{{"type": "<intent>", "data": {{"destination": "<city>", "location": "<city>", "dates": {{"departure": "YYYY-MM-DD", "return": "YYYY-MM-DD"}}}}}}

Intent types:
- search_destination: looking for ideas or browsing a region ("somewhere warm in Asia", "beach vacation")
- select_destination: choosing or agreeing to a specific city ("I like Tokyo", "yes, let's try Paris")
- provide_location: saying where they will travel from ("I'm flying from Chicago")
- provide_dates: saying when they want to travel

Field rules:
- Set data.destination only when a specific city is named, never for a region or continent.
- Set data.location only for the city the traveller departs from.
- Leave out any field the message does not mention.

Date rules (every date is YYYY-MM-DD and strictly after {today}):
- An explicit range ("March 3 to March 10") gives departure and return as stated.
- A month on its own ("in June") means departure on the 1st of that month.
- A duration ("for two weeks", "a week or two") without exact dates means a 14-day window.
- "next month" means the 1st of next month.
- A named month that has already passed this year refers to next year.
"""

KEYWORDS_SELECT = ("like", "yes", "lets try", "let's try")
KEYWORDS_DATES = ("week", "day", "month")
DATE_LIKE = re.compile(r"\d{1,4}[-/.]\d{1,2}(?:[-/.]\d{1,4})?")

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def extract_json_payload(text: str) -> str:
    """Contents of the first fenced code block, or the whole trimmed text."""
    match = _FENCED_BLOCK.search(text or "")
    return (match.group(1) if match else (text or "")).strip()


def parse_intent_response(text: str) -> ClassifiedIntent:
    payload = extract_json_payload(text)
    try:
        raw = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ParseError(f"Intent response is not JSON: {payload[:120]!r}") from e
    if not isinstance(raw, dict):
        raise ParseError("Intent response is not a JSON object")
    try:
        return ClassifiedIntent.model_validate(raw)
    except ValidationError as e:
        raise ParseError(f"Intent response failed validation: {e.errors(include_url=False)}") from e


def repair_dates(intent: ClassifiedIntent, now: Optional[date] = None) -> ClassifiedIntent:
    """
    Make provided dates usable: a departure that is not strictly in the
    future has its year advanced, and the return date moves by the same
    number of years. An unparseable departure is dropped.
    """
    dates = intent.data.dates
    if intent.type != IntentType.PROVIDE_DATES or dates is None:
        return intent

    now = now or today()
    departure = parse_date(dates.departure)
    return_raw = dates.return_date

    if departure is None:
        if dates.departure:
            logger.warning("Dropping unparseable departure date", extra={"departure": dates.departure})
        repaired = TravelDates(departure=None, return_date=return_raw)
    else:
        rolled, years = roll_forward(departure, now)
        return_date = parse_date(return_raw)
        if return_date is not None:
            return_raw = format_date(return_date + relativedelta(years=years))
        if years:
            logger.info("Moved past departure date forward", extra={
                "original": dates.departure,
                "corrected": format_date(rolled),
                "years": years,
            })
        repaired = TravelDates(departure=format_date(rolled), return_date=return_raw)

    data = intent.data.model_copy(update={"dates": repaired})
    return intent.model_copy(update={"data": data})


def fallback_intent(user_input: str) -> ClassifiedIntent:
    text = (user_input or "").lower()
    if any(keyword in text for keyword in KEYWORDS_SELECT):
        intent_type = IntentType.SELECT_DESTINATION
    elif any(keyword in text for keyword in KEYWORDS_DATES) or DATE_LIKE.search(text):
        intent_type = IntentType.PROVIDE_DATES
    else:
        intent_type = IntentType.SEARCH_DESTINATION
    return ClassifiedIntent(type=intent_type, data=IntentData())


async def classify_intent(user_input: str, *, llm, now: Optional[date] = None) -> ClassifiedIntent:
    now = now or today()
    prompt = INTENT_PROMPT.format(today=format_date(now), message=user_input)

    try:
        raw = await llm.generate(prompt, system=CLASSIFIER_SYSTEM, temperature=0)
    except Exception as e:
        INTENT_FALLBACKS.labels(reason="llm_error").inc()
        logger.warning("Intent classification call failed, using keywords", extra={"error": str(e)})
        return fallback_intent(user_input)

    try:
        intent = parse_intent_response(raw)
    except ParseError as e:
        INTENT_FALLBACKS.labels(reason="parse_error").inc()
        logger.warning("Intent response unparseable, using keywords", extra={"error": str(e)})
        return fallback_intent(user_input)

    intent = repair_dates(intent, now)
    logger.info("Intent classified", extra={"intent": intent.type.value})
    return intent
