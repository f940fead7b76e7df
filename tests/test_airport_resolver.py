# tests/test_airport_resolver.py
import pytest

from core.exceptions import ResolutionError
from tools.airport_resolver import AirportResolver, extract_code


class FakeLLM:
    def __init__(self, answer="UNKNOWN", raise_on_call=False):
        self.answer = answer
        self.raise_on_call = raise_on_call
        self.prompts = []

    async def generate(self, prompt, system="", *, temperature=None, max_tokens=None):
        self.prompts.append(prompt)
        if self.raise_on_call:
            raise RuntimeError("llm down")
        return self.answer


@pytest.mark.asyncio
async def test_table_city_needs_no_llm_call():
    llm = FakeLLM(raise_on_call=True)
    resolver = AirportResolver(llm)

    result = await resolver.resolve("Los Angeles")

    assert result.code == "LAX"
    assert result.city == "Los Angeles"
    assert llm.prompts == []


@pytest.mark.asyncio
async def test_aliases_and_whitespace():
    resolver = AirportResolver(FakeLLM(raise_on_call=True))
    assert (await resolver.resolve("  NYC ")).code == "JFK"
    assert (await resolver.resolve("Paris, France")).code == "CDG"


@pytest.mark.asyncio
async def test_explicit_code_is_accepted():
    llm = FakeLLM(raise_on_call=True)
    result = await AirportResolver(llm).resolve("OPO", role="arrival")
    assert result.code == "OPO"
    assert llm.prompts == []


@pytest.mark.asyncio
async def test_llm_lookup_is_cached():
    llm = FakeLLM(answer=" lis\n")
    resolver = AirportResolver(llm)

    first = await resolver.resolve("Lisbon")
    second = await resolver.resolve("lisbon")

    assert first.code == second.code == "LIS"
    assert len(llm.prompts) == 1
    assert "Lisbon" in llm.prompts[0]


@pytest.mark.asyncio
async def test_unknown_answer_raises_with_user_message():
    resolver = AirportResolver(FakeLLM(answer="UNKNOWN"))

    with pytest.raises(ResolutionError) as exc:
        await resolver.resolve("Atlantis")

    assert exc.value.city == "Atlantis"
    assert "IATA" in exc.value.message


@pytest.mark.asyncio
async def test_llm_failure_becomes_resolution_error():
    with pytest.raises(ResolutionError):
        await AirportResolver(FakeLLM(raise_on_call=True)).resolve("Porto Alegre")


def test_extract_code():
    assert extract_code("mad") == "MAD"
    assert extract_code("UNK") is None
    assert extract_code("12") is None
    assert extract_code("") is None
    assert extract_code(None) is None


@pytest.mark.asyncio
async def test_only_uppercase_three_letters_count_as_a_code():
    llm = FakeLLM(answer="GIG")
    resolver = AirportResolver(llm)

    assert (await resolver.resolve("RIO")).code == "RIO"
    assert llm.prompts == []

    assert (await resolver.resolve("Rio")).code == "GIG"
    assert (await resolver.resolve("rio")).code == "GIG"
    assert len(llm.prompts) == 1
