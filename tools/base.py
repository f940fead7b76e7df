# tools/base.py
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Type

from pydantic import BaseModel, ValidationError

from core.metrics import record_tool_result

logger = logging.getLogger(__name__)


class Capability(ABC):
    """
    An external service the LLM may call as a tool during a turn.

    Subclasses declare a pydantic `args_model` (its JSON schema is what the
    model sees) and implement `execute`. `execute` is expected to return a
    structured result for every failure it knows about; `run` is the last
    line of defence and never raises either.
    """

    name: str
    description: str
    args_model: Type[BaseModel]

    def tool_schema(self) -> Dict[str, Any]:
        """OpenAI-style function tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.args_model.model_json_schema(by_alias=True),
            },
        }

    @abstractmethod
    async def execute(self, args: BaseModel) -> Dict[str, Any]:
        ...

    async def run(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        start = time.monotonic()
        try:
            args = self.args_model.model_validate(arguments or {})
        except ValidationError as e:
            logger.warning("Invalid tool arguments", extra={"tool": self.name, "error": str(e)})
            record_tool_result(self.name, "invalid_args", time.monotonic() - start)
            return {"error": f"Invalid arguments for {self.name}: {e.errors(include_url=False)}"}

        try:
            result = await self.execute(args)
        except Exception as e:
            logger.exception("Tool execution failed", extra={"tool": self.name})
            record_tool_result(self.name, "error", time.monotonic() - start)
            return {"error": f"{self.name} failed: {e}"}

        record_tool_result(self.name, "success", time.monotonic() - start)
        return result
