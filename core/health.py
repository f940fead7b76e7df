# core/health.py

import asyncio
from typing import Dict

from agents.llm_client import health_check as llm_health
from tools.airline_api import health_check as airline_health
from tools.destination_search import health_check as search_health


async def full_health_check() -> Dict:
    checks = {
        "llm": llm_health(),
        "airline": airline_health(),
        "search": search_health(),
    }

    names = list(checks)
    outcomes = await asyncio.gather(*checks.values(), return_exceptions=True)

    results = {}
    for name, outcome in zip(names, outcomes):
        results[name] = "fail" if isinstance(outcome, BaseException) else outcome

    overall = "ok" if all(v == "ok" for v in results.values()) else "degraded"

    return {
        "status": overall,
        "dependencies": results
    }
