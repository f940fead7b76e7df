# core/exceptions.py
"""
Centralized exception definitions for the trip-planning assistant.

Every error the turn pipeline knows how to recover from lives here so that
tools, agents and the API layer can catch them structurally without
importing each other.
"""


# ============================================================
# Base Exceptions
# ============================================================

class TravelAgentError(Exception):
    """
    Root base exception for the entire application.
    All custom exceptions should inherit from this.
    """
    pass


class LLMError(TravelAgentError):
    """
    Base exception for LLM completion / tool-calling failures.
    """
    pass


class ToolError(TravelAgentError):
    """
    Base exception for capability / external API failures
    (flight data, semantic search, airport lookup).
    """
    pass


# ============================================================
# Capability errors
# ============================================================

class ResolutionError(ToolError):
    """
    Raised when a city name cannot be mapped to an IATA airport code.

    `message` is user-facing: it asks the user to supply the code directly.
    """

    def __init__(self, city: str, message: str | None = None):
        self.city = city
        self.message = message or (
            f"I couldn't find an airport code for \"{city}\". "
            "Could you tell me the 3-letter IATA airport code instead "
            "(for example LAX for Los Angeles)?"
        )
        super().__init__(self.message)


class ProviderError(ToolError):
    """
    Raised when the flight-data provider reports a failure status.
    Converted into a "no flights" tool result, never shown as a crash.
    """

    def __init__(self, message: str | None = None):
        self.message = message or "No flights found"
        super().__init__(self.message)


class StreamError(ToolError):
    """
    Raised for a malformed chunk while consuming the search stream.
    The consumer logs it and skips the chunk.
    """
    pass


# ============================================================
# LLM output errors
# ============================================================

class ParseError(TravelAgentError):
    """
    Raised when the intent classifier cannot parse the LLM's JSON.
    Recovered locally via the keyword heuristic.
    """
    pass
