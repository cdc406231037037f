import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app import create_app
from config import Config
from services.broadcast_bus import MemoryBroadcastBus
from services.context import create_context
from services.message_store import MemoryMessageStore, StoreError
from services.messages import Message


class RelayTestConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    STORE_BACKEND = "memory"
    BUS_BACKEND = "memory"


@pytest.fixture
def relay():
    context = create_context(MemoryMessageStore(), MemoryBroadcastBus())
    yield context
    context.close()


@pytest.fixture
def client(relay):
    app = create_app(RelayTestConfig, relay)
    with app.test_client() as client:
        yield client


def test_get_messages_returns_chronological_json(client, relay):
    for i in range(60):
        relay.store.append(Message("Alice", f"m{i}", 100 + i))

    response = client.get("/messages")

    assert response.status_code == 200
    data = response.get_json()
    assert len(data) == 50
    assert data[0] == {"username": "Alice", "text": "m10", "ts": 110}
    assert data[-1]["text"] == "m59"


def test_get_messages_honours_limit(client, relay):
    for i in range(5):
        relay.store.append(Message("Bob", f"m{i}", i + 1))

    assert [m["text"] for m in client.get("/messages?limit=2").get_json()] == ["m3", "m4"]
    assert len(client.get("/messages?limit=-1").get_json()) == 5


def test_get_messages_store_failure_returns_500(client, relay, monkeypatch):
    def boom(limit):
        raise StoreError("LRANGE chat:messages failed: down")

    monkeypatch.setattr(relay.store, "recent", boom)

    response = client.get("/messages")

    assert response.status_code == 500
    assert response.get_json() == {"error": "Failed to fetch messages"}
    assert relay.recorder.snapshot()["store"] == 1


def test_health_reports_connections_and_failures(client, relay):
    relay.registry.add("sid-1")

    data = client.get("/health").get_json()

    assert data["status"] == "ok"
    assert data["connections"] == 1
    assert data["failures"]["store"] == 0
