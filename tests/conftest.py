# tests/conftest.py
from datetime import date

import pytest
from fastapi.testclient import TestClient

from api.app import app

TODAY = date(2025, 6, 15)


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def clock():
    return lambda: TODAY


@pytest.fixture(autouse=True)
def reset_default_planner(monkeypatch):
    """
    Never build the real planner (and its network clients) during tests.
    """
    monkeypatch.setattr("agents.planner_agent._planner", None)
    monkeypatch.setattr("agents.llm_client._default_llm", None)
