# tests/test_planner_agent.py
import json
from datetime import date

import pytest

import agents.planner_agent as planner_agent
from agents.llm_client import LLMCapability, emit_chunk
from agents.models import Completion, Stage, Step, ToolInvocation, TravelContext
from agents.planner_agent import GENERIC_ERROR_MESSAGE, TravelPlanner, build_system_instruction


class ScriptedLLM(LLMCapability):
    """Answers classification with a fixed JSON intent and replays scripted tool-loop output."""

    def __init__(self, intent, chunks=(), steps=(), fail_complete=False):
        self.intent = intent
        self.chunks = list(chunks)
        self.steps = list(steps)
        self.fail_complete = fail_complete
        self.systems = []

    async def generate(self, prompt, system="", *, temperature=None, max_tokens=None):
        return json.dumps(self.intent)

    async def complete(self, *, system, prompt, tools=(), max_steps=5, on_partial_text=None):
        self.systems.append(system)
        self.tools = [tool.name for tool in tools]
        self.max_steps = max_steps
        if self.fail_complete:
            raise RuntimeError("model overloaded")
        for chunk in self.chunks:
            await emit_chunk(on_partial_text, chunk)
        return Completion(text="".join(self.chunks), steps=self.steps or [Step(text="".join(self.chunks))])


class NamedTool:
    def __init__(self, name):
        self.name = name


@pytest.mark.asyncio
async def test_turn_streams_chunks_in_order(clock):
    llm = ScriptedLLM({"type": "search_destination", "data": {}}, chunks=["Great", " choice", "!"])
    planner = TravelPlanner(llm, [NamedTool("search"), NamedTool("checkFlights")], clock=clock)
    received = []

    result = await planner.process_turn("I want to go to Asia", TravelContext(), received.append)

    assert received == ["Great", " choice", "!"]
    assert result.text == "Great choice!"
    assert result.updated_context.stage == Stage.DESTINATION_SEARCH
    assert llm.tools == ["search", "checkFlights"]
    assert llm.max_steps == 5
    assert "Current stage: destination_search" in llm.systems[0]


@pytest.mark.asyncio
async def test_search_step_refreshes_search_results(clock):
    search_step = Step(tool_calls=[
        ToolInvocation(
            name="search",
            arguments={"query": "Asia", "type": "destination"},
            result={"type": "destination", "query": "Asia", "result": "Tokyo, Bangkok"},
        )
    ])
    llm = ScriptedLLM({"type": "search_destination", "data": {}}, chunks=["Here"], steps=[search_step, Step(text="Here")])
    planner = TravelPlanner(llm, [], clock=clock)

    result = await planner.process_turn("Asia please", TravelContext())

    assert result.updated_context.search_results == "Tokyo, Bangkok"
    assert len(result.steps) == 2


@pytest.mark.asyncio
async def test_failure_returns_generic_message_and_original_context(clock):
    context = TravelContext(stage=Stage.DEPARTURE_CITY, selected_destination="Tokyo")
    llm = ScriptedLLM({"type": "provide_location", "data": {"location": "Chicago"}}, fail_complete=True)
    planner = TravelPlanner(llm, [], clock=clock)
    received = []

    result = await planner.process_turn("from Chicago", context, received.append)

    assert result.text == GENERIC_ERROR_MESSAGE
    assert received == [GENERIC_ERROR_MESSAGE]
    assert result.updated_context == context
    assert result.steps == []


@pytest.mark.asyncio
async def test_module_level_process_turn_uses_default_planner(monkeypatch, clock):
    llm = ScriptedLLM({"type": "select_destination", "data": {"destination": "Paris"}}, chunks=["Paris!"])
    monkeypatch.setattr("agents.planner_agent._planner", TravelPlanner(llm, [], clock=clock))

    result = await planner_agent.process_turn("I like Paris")

    assert result.updated_context.selected_destination == "Paris"
    assert result.updated_context.stage == Stage.DEPARTURE_CITY


def test_system_instruction_lists_known_and_missing():
    context = TravelContext(
        stage=Stage.DATES_INPUT,
        selected_destination="Tokyo",
        from_location="Los Angeles",
        search_results="Tokyo, Kyoto",
    )

    text = build_system_instruction(context, date(2025, 6, 15))

    assert "Today's date is 2025-06-15" in text
    assert "Destination: Tokyo" in text
    assert "Departing from: Los Angeles" in text
    assert "- Travel dates" in text
    assert "Current stage: dates_input" in text
    assert "Tokyo, Kyoto" in text
    assert "Never ask again" in text
