# agents/models.py
"""
Pydantic models shared by the turn pipeline.

TravelContext is the only long-lived value: it is created per conversation,
passed into each turn and a new copy is handed back. Everything else is
ephemeral (one per turn or one per tool call).
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Stage(str, Enum):
    INITIAL = "initial"
    DESTINATION_SEARCH = "destination_search"
    CONFIRM_DESTINATION = "confirm_destination"
    DEPARTURE_CITY = "departure_city"
    DATES_INPUT = "dates_input"
    FLIGHTS_SEARCH = "flights_search"


class IntentType(str, Enum):
    SEARCH_DESTINATION = "search_destination"
    SELECT_DESTINATION = "select_destination"
    PROVIDE_LOCATION = "provide_location"
    PROVIDE_DATES = "provide_dates"


# ----------------------------------------------------------------------
# Conversation context
# ----------------------------------------------------------------------
class TravelDates(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    departure: Optional[str] = None
    return_date: Optional[str] = Field(default=None, alias="return")


class TravelContext(BaseModel):
    """Everything collected so far in one conversation."""
    model_config = ConfigDict(populate_by_name=True)

    stage: Stage = Stage.INITIAL
    selected_destination: Optional[str] = Field(default=None, alias="selectedDestination")
    from_location: Optional[str] = Field(default=None, alias="fromLocation")
    dates: Optional[TravelDates] = None
    search_results: Optional[str] = Field(default=None, alias="searchResults")

    def to_payload(self) -> Dict[str, Any]:
        """camelCase JSON view used by the HTTP layer."""
        return self.model_dump(mode="json", by_alias=True)


# ----------------------------------------------------------------------
# Intent classification
# ----------------------------------------------------------------------
class IntentData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    destination: Optional[str] = None
    location: Optional[str] = None
    dates: Optional[TravelDates] = None

    @field_validator("destination", "location", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v


class ClassifiedIntent(BaseModel):
    type: IntentType
    data: IntentData = Field(default_factory=IntentData)

    @field_validator("data", mode="before")
    @classmethod
    def null_data(cls, v):
        return {} if v is None else v


# ----------------------------------------------------------------------
# Flights and airports
# ----------------------------------------------------------------------
class FlightEndpoint(BaseModel):
    time: str = ""
    airport: str = ""


class FlightRecord(BaseModel):
    airline: str
    flight_number: str
    departure: FlightEndpoint
    arrival: FlightEndpoint
    duration: str = ""
    price: Optional[float] = None
    stops: int = 0
    aircraft: str = ""
    airline_logo: Optional[str] = None


class AirportResolution(BaseModel):
    code: str = Field(pattern=r"^[A-Z]{3}$")
    city: str


# ----------------------------------------------------------------------
# LLM loop bookkeeping
# ----------------------------------------------------------------------
class ToolInvocation(BaseModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    result: Dict[str, Any] = Field(default_factory=dict)


class Step(BaseModel):
    text: str = ""
    tool_calls: List[ToolInvocation] = Field(default_factory=list)


class Completion(BaseModel):
    text: str = ""
    steps: List[Step] = Field(default_factory=list)


class TurnResult(BaseModel):
    text: str
    steps: List[Step] = Field(default_factory=list)
    updated_context: TravelContext
