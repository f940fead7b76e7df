# tools/flight_search.py
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from agents.models import TravelDates
from core.date_utils import format_date, today, tomorrow
from core.exceptions import ProviderError, ResolutionError
from tools import airline_api
from tools.airport_resolver import AirportResolver
from tools.base import Capability
from tools.flight_formatter import format_flights

logger = logging.getLogger(__name__)

GENERIC_FLIGHT_ERROR = "Sorry, I ran into a problem while searching for flights. Please try again in a moment."

SearchFn = Callable[[str, str, str], Awaitable[Dict[str, Any]]]


class FlightSearchArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_city: str = Field(alias="fromCity", description="Departure city name or IATA code")
    to_city: str = Field(alias="toCity", description="Destination city name or IATA code")
    dates: Optional[TravelDates] = Field(default=None, description="Travel dates as YYYY-MM-DD")


class FlightSearchCapability(Capability):
    """
    `checkFlights` tool: resolve both airports, query the provider for one
    outbound date and return `{flights, message}`. Every failure becomes a
    message; nothing is raised to the tool loop.
    """

    name = "checkFlights"
    description = "Search for flights between cities"
    args_model = FlightSearchArgs

    def __init__(
        self,
        resolver: AirportResolver,
        search_fn: Optional[SearchFn] = None,
        clock: Callable[[], Any] = today,
    ):
        self.resolver = resolver
        self.search_fn = search_fn or airline_api.search_flights
        self.clock = clock

    async def execute(self, args: FlightSearchArgs) -> Dict[str, Any]:
        try:
            return await self._search(args)
        except Exception:
            logger.exception("Flight search failed", extra={"from_city": args.from_city, "to_city": args.to_city})
            return {"flights": [], "message": GENERIC_FLIGHT_ERROR}

    async def _search(self, args: FlightSearchArgs) -> Dict[str, Any]:
        try:
            origin = await self.resolver.resolve(args.from_city, role="departure")
            destination = await self.resolver.resolve(args.to_city, role="arrival")
        except ResolutionError as e:
            return {"flights": [], "message": e.message}

        # Caller dates are passed through as given
        if args.dates and args.dates.departure:
            outbound = args.dates.departure
        else:
            outbound = format_date(tomorrow(self.clock()))

        try:
            payload = await self.search_fn(origin.code, destination.code, outbound)
        except ProviderError as e:
            return {"flights": [], "message": f"Error: {e.message}"}

        formatted = format_flights(payload)
        if formatted.is_empty:
            return {
                "flights": [],
                "message": f"No flights found from {args.from_city} to {args.to_city} for {outbound}.",
            }

        logger.info("Flights found", extra={
            "origin": origin.code,
            "destination": destination.code,
            "date": outbound,
            "count": len(formatted.flights),
        })
        return {
            "flights": [flight.model_dump(mode="json") for flight in formatted.flights],
            "message": formatted.summary,
        }
