import asyncio

from agents.models import Stage, TravelContext, TurnResult
from api.app import SessionStore


async def fake_process_turn(user_input, context=None, on_chunk=None):
    if on_chunk:
        await on_chunk("Hello")
        await on_chunk(" there")
    updated = (context or TravelContext()).model_copy(update={"stage": Stage.DESTINATION_SEARCH})
    return TurnResult(text="Hello there", steps=[], updated_context=updated)


def test_create_session_returns_greeting(client):
    response = client.post("/sessions")

    assert response.status_code == 201
    body = response.json()
    assert body["greeting"].startswith("Hi! I'm your AI travel agent.")
    assert body["suggestions"] == ["Popular Destinations", "Beach Vacation", "Cultural Experience"]
    assert body["context"]["stage"] == "initial"
    assert "X-Request-ID" in response.headers


def test_chat_updates_session_context(client, monkeypatch):
    monkeypatch.setattr("api.app.planner_agent.process_turn", fake_process_turn)

    response = client.post("/chat", json={"message": "Somewhere in Asia"})

    assert response.status_code == 200
    body = response.json()
    assert body["text"] == "Hello there"
    assert body["stage"] == "destination_search"
    assert body["context"]["selectedDestination"] is None

    session = client.get(f"/sessions/{body['session_id']}")
    assert session.json()["context"]["stage"] == "destination_search"


def test_chat_streams_sse(client, monkeypatch):
    monkeypatch.setattr("api.app.planner_agent.process_turn", fake_process_turn)
    session_id = client.post("/sessions").json()["session_id"]

    response = client.post("/chat?stream=true", json={"session_id": session_id, "message": "Asia"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    text = response.text
    assert text.index('data: {"text": "Hello"}') < text.index('data: {"text": " there"}')
    assert "event: done" in text
    assert '"stage": "destination_search"' in text


def test_unknown_session_is_404(client):
    assert client.get("/sessions/does-not-exist").status_code == 404
    assert client.post("/chat", json={"session_id": "does-not-exist", "message": "hi"}).status_code == 404


def test_expired_session_is_404(client, monkeypatch):
    now = [1000.0]
    monkeypatch.setattr("api.app.sessions", SessionStore(ttl=60, timer=lambda: now[0]))

    session_id = client.post("/sessions").json()["session_id"]
    now[0] += 30
    assert client.get(f"/sessions/{session_id}").status_code == 200

    # Each use restarts the expiry clock
    now[0] += 45
    assert client.get(f"/sessions/{session_id}").status_code == 200

    now[0] += 61
    assert client.get(f"/sessions/{session_id}").status_code == 404
    assert client.post("/chat", json={"session_id": session_id, "message": "hi"}).status_code == 404


def test_session_store_is_bounded():
    store = SessionStore(maxsize=2, ttl=60)
    first = store.create()
    store.create()
    store.create()

    assert len(store) == 2
    assert store.get(first.id) is None


def test_empty_message_is_rejected(client):
    assert client.post("/chat", json={"message": ""}).status_code == 422


def test_turn_timeout_returns_504(client, monkeypatch):
    async def slow_turn(user_input, context=None, on_chunk=None):
        await asyncio.sleep(5)

    monkeypatch.setattr("api.app.planner_agent.process_turn", slow_turn)
    monkeypatch.setattr("api.app.TURN_TIMEOUT", 0.05)

    response = client.post("/chat", json={"message": "hello"})

    assert response.status_code == 504


def test_destinations_lists(client):
    body = client.get("/destinations").json()

    assert body["popular"] == ["Tokyo", "Paris", "New York", "London", "Hong Kong"]
    assert "Oceania" in body["regions"]
    assert "Luxury Travel" in body["travel_styles"]


def test_request_id_is_echoed(client):
    response = client.get("/health/live", headers={"X-Request-ID": "abc-123"})

    assert response.json() == {"status": "alive"}
    assert response.headers["X-Request-ID"] == "abc-123"


def test_metrics_endpoint(client):
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "turn_requests_total" in response.text
