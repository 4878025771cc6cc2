"""Shared fixtures for SupportDesk Chat tests."""

import os
import pytest
from fastapi.testclient import TestClient

# Ensure we never reach OpenAI, Pinecone or a real database
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("PINECONE_API_KEY", "")
os.environ.setdefault("DATABASE_URL", "")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "10000")
os.environ.setdefault("SEED_DEMO_STAFF", "true")

from fakes import FakeKnowledge, FakeResponder  # noqa: E402


@pytest.fixture
def responder():
    return FakeResponder()


@pytest.fixture
def knowledge():
    return FakeKnowledge(["Password resets: open Settings and choose Reset."])


@pytest.fixture
def client(responder, knowledge):
    """FastAPI test client with the AI and knowledge adapters faked out."""
    from api.main import create_app
    app = create_app(responder=responder, knowledge=knowledge)
    with TestClient(app) as test_client:
        yield test_client


def _login(client, email, password):
    resp = client.post("/api/v1/staff/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    data = resp.json()
    return {"token": data["token"], "user": data["user"]}


@pytest.fixture
def agent(client):
    """The seeded agent, logged in (and therefore online)."""
    login = _login(client, "agent@example.com", "agent123")
    login["headers"] = {"Authorization": f"Bearer {login['token']}"}
    return login


@pytest.fixture
def admin(client):
    login = _login(client, "admin@example.com", "admin123")
    login["headers"] = {"Authorization": f"Bearer {login['token']}"}
    return login
