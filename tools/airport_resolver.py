# tools/airport_resolver.py
"""
City name -> IATA airport code.

Lookup order: fixed table of major cities, an explicitly typed code, the
TTL cache, then a single constrained LLM call. There is no retry; a miss
raises ResolutionError whose message asks the user for the code directly.
"""

import logging
import os
import re
from typing import Dict, Optional

from cachetools import TTLCache
from dotenv import load_dotenv

from agents.models import AirportResolution
from core.exceptions import ResolutionError
from core.metrics import AIRPORT_RESOLUTIONS

load_dotenv()

logger = logging.getLogger(__name__)

AIRPORT_CACHE_TTL = int(os.getenv("AIRPORT_CACHE_TTL", "86400"))
AIRPORT_CACHE_SIZE = 512

IATA_PATTERN = re.compile(r"^[A-Z]{3}$")

CITY_TO_IATA: Dict[str, str] = {
    "new york": "JFK",
    "los angeles": "LAX",
    "chicago": "ORD",
    "san francisco": "SFO",
    "miami": "MIA",
    "london": "LHR",
    "paris": "CDG",
    "tokyo": "NRT",
    "hong kong": "HKG",
    "singapore": "SIN",
    "dubai": "DXB",
    "sydney": "SYD",
    "rome": "FCO",
    "barcelona": "BCN",
    "amsterdam": "AMS",
    "bangkok": "BKK",
}

CITY_ALIASES: Dict[str, str] = {
    "nyc": "new york",
    "new york city": "new york",
    "manhattan": "new york",
    "la": "los angeles",
    "sf": "san francisco",
    "san fran": "san francisco",
    "hk": "hong kong",
}

LOOKUP_PROMPT = (
    "What is the main international airport IATA code for the city \"{city}\"? "
    "Respond with ONLY the 3-letter IATA code in uppercase, nothing else. "
    "If the city has no airport or you are not sure, respond with UNKNOWN."
)


def normalize_city(city: str) -> str:
    key = re.sub(r"\s+", " ", (city or "").strip().lower())
    # "Paris, France" -> "paris"
    key = key.split(",")[0].strip()
    return CITY_ALIASES.get(key, key)


def extract_code(raw: Optional[str]) -> Optional[str]:
    """Validate an LLM answer: first three characters, uppercase, never UNK."""
    if not raw:
        return None
    candidate = raw.strip().upper()[:3]
    if not IATA_PATTERN.match(candidate) or candidate == "UNK":
        return None
    return candidate


class AirportResolver:
    """
    Args:
        llm: Anything with an async `generate(prompt, system="", ...)`.
    """

    def __init__(self, llm, cache_ttl: int = AIRPORT_CACHE_TTL):
        self.llm = llm
        self._cache: TTLCache = TTLCache(maxsize=AIRPORT_CACHE_SIZE, ttl=cache_ttl)

    async def resolve(self, city: str, role: str = "departure") -> AirportResolution:
        original = (city or "").strip()
        key = normalize_city(original)
        if not key:
            AIRPORT_RESOLUTIONS.labels(source="failed").inc()
            raise ResolutionError(original)

        code = CITY_TO_IATA.get(key)
        if code:
            AIRPORT_RESOLUTIONS.labels(source="table").inc()
            logger.debug("Airport resolved from table", extra={"city": original, "code": code, "role": role})
            return AirportResolution(code=code, city=original)

        # The user typed the code itself, usually after being asked for it.
        # Only all-caps input counts; "Rio" still goes to the LLM lookup.
        if IATA_PATTERN.match(original):
            AIRPORT_RESOLUTIONS.labels(source="explicit_code").inc()
            return AirportResolution(code=original, city=original)

        cached = self._cache.get(key)
        if cached:
            AIRPORT_RESOLUTIONS.labels(source="cache").inc()
            return AirportResolution(code=cached, city=original)

        try:
            raw = await self.llm.generate(LOOKUP_PROMPT.format(city=original), temperature=0, max_tokens=8)
        except Exception as e:
            AIRPORT_RESOLUTIONS.labels(source="failed").inc()
            logger.warning("Airport lookup call failed", extra={"city": original, "role": role, "error": str(e)})
            raise ResolutionError(original) from e

        code = extract_code(raw)
        if code is None:
            AIRPORT_RESOLUTIONS.labels(source="failed").inc()
            logger.info("No airport code for city", extra={"city": original, "role": role, "raw": raw})
            raise ResolutionError(original)

        self._cache[key] = code
        AIRPORT_RESOLUTIONS.labels(source="llm").inc()
        logger.info("Airport resolved by LLM", extra={"city": original, "code": code, "role": role})
        return AirportResolution(code=code, city=original)
