# tests/test_destination_search.py
import json

import pytest

from tools.destination_search import (
    DESTINATION_PREFIX,
    MAX_RESULT_CHARS,
    SearchBackend,
    SearchCapability,
    collect_answer,
    decode_chunk,
)
from core.exceptions import StreamError


class FakeBackend(SearchBackend):
    def __init__(self, chunks, fail_after=None):
        self.chunks = chunks
        self.fail_after = fail_after
        self.prompts = []

    async def stream_answer(self, prompt):
        self.prompts.append(prompt)
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i == self.fail_after:
                raise ConnectionError("stream dropped")
            yield chunk


def _event(message, type_="text"):
    return "data: " + json.dumps({"type": type_, "message": message})


@pytest.mark.asyncio
async def test_only_text_events_contribute():
    backend = FakeBackend([_event("Tokyo, "), _event("ignored", "sources"), _event("Kyoto")])

    result = await SearchCapability(backend).run({"query": "Asia"})

    assert backend.prompts == ["Find destinations matching Asia"]
    assert result["result"] == DESTINATION_PREFIX + "Tokyo, Kyoto"
    assert result["type"] == "destination"
    assert result["query"] == "Asia"


@pytest.mark.asyncio
async def test_malformed_chunk_is_skipped():
    backend = FakeBackend([_event("Bali"), "data: {not json", _event(" and Phuket")])

    result = await SearchCapability(backend).run({"query": "beaches"})

    assert result["result"].endswith("Bali and Phuket")


@pytest.mark.asyncio
async def test_plain_text_chunks_are_kept_verbatim():
    backend = FakeBackend(["Lisbon ", "and Porto"])
    result = await SearchCapability(backend).run({"query": "Portugal"})
    assert result["result"] == DESTINATION_PREFIX + "Lisbon and Porto"


@pytest.mark.asyncio
async def test_sse_fields_other_than_data_contribute_nothing():
    backend = FakeBackend(["event: message", _event("Kyoto"), "id: 7", ": keepalive", "retry: 3000"])

    answer = await collect_answer(backend, "Japan")

    assert answer == "Kyoto"


@pytest.mark.asyncio
async def test_stream_failure_keeps_partial_text():
    backend = FakeBackend([_event("Rome"), _event(" Florence"), _event(" Venice")], fail_after=2)

    result = await SearchCapability(backend).run({"query": "Italy"})

    assert result["result"] == DESTINATION_PREFIX + "Rome Florence"


@pytest.mark.asyncio
async def test_size_limits():
    backend = FakeBackend([_event("a" * 5000)] * 4)

    result = await SearchCapability(backend).run({"query": "anything"})

    body = result["result"][len(DESTINATION_PREFIX):]
    assert len(body) == MAX_RESULT_CHARS + 3
    assert body.endswith("...")


@pytest.mark.asyncio
async def test_attraction_search_does_not_hit_backend():
    backend = FakeBackend([_event("unused")])

    result = await SearchCapability(backend).run({"query": "Paris", "type": "attraction"})

    assert backend.prompts == []
    assert result["type"] == "attraction"
    assert result["result"].startswith("Here are some attractions in Paris")


@pytest.mark.asyncio
async def test_invalid_arguments_return_error():
    result = await SearchCapability(FakeBackend([])).run({"query": "Paris", "type": "hotel"})
    assert "error" in result


def test_decode_chunk():
    assert decode_chunk("plain") == "plain"
    assert decode_chunk("data: [DONE]") == ""
    assert decode_chunk(_event("x") + "\n" + _event("y")) == "xy"
    with pytest.raises(StreamError):
        decode_chunk("data: [1, 2]")
    assert decode_chunk("event: message\ndata: " + json.dumps({"type": "text", "message": "z"})) == "z"
    assert decode_chunk(": keepalive") == ""
    assert decode_chunk("Tokyo: neon and temples") == "Tokyo: neon and temples"
