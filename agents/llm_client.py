# agents/llm_client.py
"""
LLM capability used by the turn pipeline.

Two operations are exposed:
- generate(): one plain completion (intent classification, airport lookup)
- complete(): a bounded tool-calling loop that streams text to an observer
  and executes the requested capabilities between steps

The default implementation talks to any OpenAI-compatible chat completions
endpoint through the `openai` async SDK (Mistral by default).
"""

import asyncio
import inspect
import json
import logging
import os
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from dotenv import load_dotenv
from openai import APIConnectionError, APITimeoutError, AsyncOpenAI, RateLimitError

from agents.models import Completion, Step, ToolInvocation
from core.exceptions import LLMError
from core.metrics import record_llm_call
from core.retry import RetryConfig, retry_async
from tools.base import Capability

load_dotenv()

logger = logging.getLogger(__name__)

# ----------------------------------------------------------------------
# Environment configuration
# ----------------------------------------------------------------------
LLM_API_KEY = os.getenv("LLM_API_KEY") or os.getenv("MISTRAL_API_KEY")
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://api.mistral.ai/v1")
LLM_MODEL = os.getenv("LLM_MODEL", "mistral-large-latest")
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0"))
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "30"))
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "1024"))
LLM_RETRIES = int(os.getenv("LLM_RETRIES", "3"))

MAX_TOOL_STEPS = 5

_RETRYABLE = (RateLimitError, APIConnectionError, APITimeoutError, asyncio.TimeoutError)

ChunkSink = Callable[[str], Union[None, Awaitable[None]]]


async def emit_chunk(sink: Optional[ChunkSink], text: str) -> None:
    """Deliver one text fragment to a sync or async observer."""
    if sink is None or not text:
        return
    result = sink(text)
    if inspect.isawaitable(result):
        await result


# ----------------------------------------------------------------------
# Unified interface contract
# ----------------------------------------------------------------------
class LLMCapability(ABC):

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system: str = "",
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Single completion, returns the text."""

    @abstractmethod
    async def complete(
        self,
        *,
        system: str,
        prompt: str,
        tools: Sequence[Capability] = (),
        max_steps: int = MAX_TOOL_STEPS,
        on_partial_text: Optional[ChunkSink] = None,
    ) -> Completion:
        """Tool-calling loop bounded by `max_steps`."""

    async def close(self) -> None:
        return None


def _decode_arguments(raw: str) -> Optional[Dict[str, Any]]:
    if not raw or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


class OpenAICompatibleLLM(LLMCapability):
    """
    LLM capability over the OpenAI chat completions protocol.

    Args:
        client: Pre-built AsyncOpenAI-like client (tests inject fakes here).
        api_key / base_url / model: Override the environment configuration.
    """

    def __init__(
        self,
        client: Any = None,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        temperature: float = LLM_TEMPERATURE,
        timeout: float = LLM_TIMEOUT,
        max_tokens: int = LLM_MAX_TOKENS,
    ):
        self._client = client
        self.api_key = api_key or LLM_API_KEY
        self.base_url = base_url or LLM_BASE_URL
        self.model = model or LLM_MODEL
        self.temperature = temperature
        self.timeout = timeout
        self.max_tokens = max_tokens
        self._retry = RetryConfig(retries=LLM_RETRIES, base_delay=1.0)

    def _get_client(self):
        if self._client is None:
            # Validate the key at call time, not at import
            if not self.api_key:
                raise LLMError("LLM_API_KEY not configured in environment")
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,  # retries are handled by core.retry
            )
        return self._client

    async def close(self) -> None:
        if self._client is None:
            return
        close = getattr(self._client, "close", None)
        if callable(close):
            maybe = close()
            if inspect.isawaitable(maybe):
                await maybe
        self._client = None
        logger.info("LLM client closed")

    # ------------------------------------------------------------------
    # Plain completion
    # ------------------------------------------------------------------
    async def generate(
        self,
        prompt: str,
        system: str = "",
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        client = self._get_client()
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        start = time.monotonic()
        try:
            response = await retry_async(
                lambda: client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=self.temperature if temperature is None else temperature,
                    max_tokens=max_tokens or self.max_tokens,
                ),
                config=self._retry,
                retry_exceptions=_RETRYABLE,
            )
        except Exception as e:
            record_llm_call("generate", "error", time.monotonic() - start)
            logger.error("LLM generate failed", extra={"model": self.model, "error": str(e)})
            raise LLMError(f"LLM request failed: {e}") from e

        if not getattr(response, "choices", None):
            record_llm_call("generate", "error", time.monotonic() - start)
            raise LLMError("Malformed response: missing choices")
        content = response.choices[0].message.content
        if content is None:
            record_llm_call("generate", "error", time.monotonic() - start)
            raise LLMError("Empty completion (content is None)")

        latency = time.monotonic() - start
        record_llm_call("generate", "success", latency)
        logger.info("LLM generate success", extra={"model": self.model, "latency_sec": round(latency, 3)})
        return content

    # ------------------------------------------------------------------
    # Tool-calling loop
    # ------------------------------------------------------------------
    async def complete(
        self,
        *,
        system: str,
        prompt: str,
        tools: Sequence[Capability] = (),
        max_steps: int = MAX_TOOL_STEPS,
        on_partial_text: Optional[ChunkSink] = None,
    ) -> Completion:
        registry = {tool.name: tool for tool in tools}
        tool_schemas = [tool.tool_schema() for tool in tools]
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ]
        steps: List[Step] = []
        final_text = ""

        for step_number in range(1, max_steps + 1):
            text, calls = await self._stream_step(messages, tool_schemas, on_partial_text)
            final_text = text

            if not calls:
                steps.append(Step(text=text))
                break

            messages.append({
                "role": "assistant",
                "content": text or None,
                "tool_calls": [
                    {
                        "id": call["id"],
                        "type": "function",
                        "function": {"name": call["name"], "arguments": call["arguments"] or "{}"},
                    }
                    for call in calls
                ],
            })

            invocations = []
            for call in calls:
                arguments = _decode_arguments(call["arguments"])
                capability = registry.get(call["name"])
                if capability is None:
                    result = {"error": f"Unknown tool: {call['name']}"}
                elif arguments is None:
                    result = {"error": "Tool arguments were not a valid JSON object"}
                else:
                    logger.info("Executing tool", extra={"tool": call["name"], "step": step_number})
                    result = await capability.run(arguments)

                invocations.append(ToolInvocation(name=call["name"], arguments=arguments or {}, result=result))
                messages.append({
                    "role": "tool",
                    "tool_call_id": call["id"],
                    "name": call["name"],
                    "content": json.dumps(result, default=str),
                })

            steps.append(Step(text=text, tool_calls=invocations))
        else:
            logger.warning("Tool loop stopped at step budget", extra={"max_steps": max_steps})

        return Completion(text=final_text, steps=steps)

    async def _stream_step(
        self,
        messages: List[Dict[str, Any]],
        tool_schemas: List[Dict[str, Any]],
        on_partial_text: Optional[ChunkSink],
    ) -> Tuple[str, List[Dict[str, str]]]:
        """
        Run one streamed completion. Text deltas go straight to the observer;
        tool-call deltas are assembled by index.
        """
        client = self._get_client()
        request: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": True,
        }
        if tool_schemas:
            request["tools"] = tool_schemas
            request["tool_choice"] = "auto"

        start = time.monotonic()
        try:
            # Only opening the stream is retried; nothing has been emitted yet
            stream = await retry_async(
                lambda: client.chat.completions.create(**request),
                config=self._retry,
                retry_exceptions=_RETRYABLE,
            )
        except Exception as e:
            record_llm_call("tool_step", "error", time.monotonic() - start)
            raise LLMError(f"LLM stream could not be opened: {e}") from e

        text_parts: List[str] = []
        calls: Dict[int, Dict[str, str]] = {}
        try:
            async for chunk in stream:
                choices = getattr(chunk, "choices", None)
                if not choices:
                    continue
                delta = getattr(choices[0], "delta", None)
                if delta is None:
                    continue

                content = getattr(delta, "content", None)
                if content:
                    text_parts.append(content)
                    await emit_chunk(on_partial_text, content)

                for tool_delta in getattr(delta, "tool_calls", None) or []:
                    index = getattr(tool_delta, "index", None)
                    call_id = getattr(tool_delta, "id", None)
                    existing = calls.get(index) if index is not None else None
                    if index is None or (call_id and existing and existing["id"] and existing["id"] != call_id):
                        index = max(calls, default=-1) + 1
                    slot = calls.setdefault(index, {"id": "", "name": "", "arguments": ""})
                    if call_id:
                        slot["id"] = call_id
                    function = getattr(tool_delta, "function", None)
                    if function is not None:
                        if getattr(function, "name", None):
                            slot["name"] = function.name
                        if getattr(function, "arguments", None):
                            slot["arguments"] += function.arguments
        except Exception as e:
            record_llm_call("tool_step", "error", time.monotonic() - start)
            raise LLMError(f"LLM stream failed: {e}") from e

        record_llm_call("tool_step", "success", time.monotonic() - start)

        ordered = []
        for position, index in enumerate(sorted(calls)):
            call = calls[index]
            if not call["name"]:
                continue
            call["id"] = call["id"] or f"call_{position}"
            ordered.append(call)
        return "".join(text_parts), ordered


# ----------------------------------------------------------------------
# Module-level default instance
# ----------------------------------------------------------------------
_default_llm: Optional[OpenAICompatibleLLM] = None


def get_llm() -> OpenAICompatibleLLM:
    global _default_llm
    if _default_llm is None:
        _default_llm = OpenAICompatibleLLM()
    return _default_llm


async def close_llm_client() -> None:
    """Close the default client (idempotent). Call on application shutdown."""
    global _default_llm
    if _default_llm is None:
        return
    try:
        await _default_llm.close()
    except Exception:
        logger.exception("Error while closing LLM client")
    finally:
        _default_llm = None


async def health_check() -> str:
    """Returns "ok" if the configured LLM answers a one-token ping, otherwise "fail"."""
    if not LLM_API_KEY:
        logger.error("Health check failed: LLM_API_KEY not configured")
        return "fail"
    try:
        await get_llm().generate("ping", max_tokens=1)
        return "ok"
    except Exception:
        logger.warning("LLM health check failed", exc_info=True)
        return "fail"
