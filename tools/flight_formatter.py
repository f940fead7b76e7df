# tools/flight_formatter.py
"""
Turns a raw flight-provider payload into FlightRecords grouped by arrival
airport, plus a plain-text rendering the LLM can quote back to the user.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from agents.models import FlightEndpoint, FlightRecord

logger = logging.getLogger(__name__)


@dataclass
class FormattedFlights:
    flights: List[FlightRecord] = field(default_factory=list)
    groups: Dict[str, List[FlightRecord]] = field(default_factory=dict)
    summary: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.flights


def _itineraries(payload: Any) -> List[Dict[str, Any]]:
    if not isinstance(payload, dict):
        return []
    data = payload.get("data")
    if not isinstance(data, dict):
        return []
    itineraries = data.get("itineraries")
    if not isinstance(itineraries, dict):
        return []

    result = []
    for bucket in ("topFlights", "otherFlights"):
        items = itineraries.get(bucket)
        if isinstance(items, list):
            result.extend(item for item in items if isinstance(item, dict))
    return result


def _airport_key(airport: Dict[str, Any]) -> str:
    return f"{airport.get('airport_name', '')} ({airport.get('airport_code', '')})"


def _price(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _duration(value: Any) -> str:
    if isinstance(value, dict):
        return str(value.get("text", ""))
    return "" if value is None else str(value)


def stops_label(stops: int) -> str:
    if stops == 0:
        return "Nonstop"
    if stops == 1:
        return "1 stop"
    return f"{stops} stops"


def render_flight(flight: FlightRecord) -> str:
    price = f"${flight.price:,.2f}" if flight.price is not None else "N/A"
    return "\n".join([
        f"{flight.airline} {flight.flight_number}",
        f"Departure: {flight.departure.time} from {flight.departure.airport}",
        f"Arrival: {flight.arrival.time} at {flight.arrival.airport}",
        f"Duration: {flight.duration}",
        f"Price: {price}",
        f"Aircraft: {flight.aircraft}",
        f"Stops: {stops_label(flight.stops)}",
    ])


def format_flights(payload: Any) -> FormattedFlights:
    """
    Group itineraries by the first leg's arrival airport.

    Groups keep first-seen order and flights keep provider order inside a
    group. A missing itinerary path yields an empty result.
    """
    groups: Dict[str, List[FlightRecord]] = {}

    for itinerary in _itineraries(payload):
        legs = itinerary.get("flights") or []
        if not isinstance(legs, list) or not legs:
            logger.warning("Itinerary without legs skipped")
            continue

        leg = legs[0]
        if not isinstance(leg, dict):
            logger.warning("Itinerary with malformed leg skipped", extra={"leg_type": type(leg).__name__})
            continue
        departure = leg.get("departure_airport") or {}
        arrival = leg.get("arrival_airport") or {}
        if not isinstance(departure, dict) or not isinstance(arrival, dict):
            logger.warning("Itinerary with malformed airport skipped", extra={"flight_number": leg.get("flight_number")})
            continue
        key = _airport_key(arrival)

        record = FlightRecord(
            airline=str(leg.get("airline", "")),
            flight_number=str(leg.get("flight_number", "")),
            departure=FlightEndpoint(time=str(departure.get("time", "")), airport=_airport_key(departure)),
            arrival=FlightEndpoint(time=str(arrival.get("time", "")), airport=key),
            duration=_duration(itinerary.get("duration")),
            price=_price(itinerary.get("price")),
            stops=len(legs) - 1,
            aircraft=str(leg.get("aircraft", "") or ""),
            airline_logo=leg.get("airline_logo"),
        )
        groups.setdefault(key, []).append(record)

    flights = [flight for group in groups.values() for flight in group]
    sections = []
    for airport, group in groups.items():
        body = "\n\n".join(render_flight(flight) for flight in group)
        sections.append(f"Flights to {airport}:\n\n{body}")

    return FormattedFlights(flights=flights, groups=groups, summary="\n\n".join(sections))
