import os
import shutil
from contextlib import ExitStack

import pytest
from fastapi.testclient import TestClient

from backend.web.core.config import WebSettings
from backend.web.main import create_app
from backend.web.services.sprite_store import MemorySpriteStore
from tests.fakes.agent import FakeAgentFactory


@pytest.fixture
def factory():
    return FakeAgentFactory(reply="pong")


@pytest.fixture
def client(factory):
    app = create_app(WebSettings(reaper_interval_sec=0), agent_factory=factory, store=MemorySpriteStore())
    with TestClient(app) as client:
        yield client


def _create(client, cwd="/tmp") -> str:
    return client.post("/api/sprites", json={"name": "demo", "cwd": cwd}).json()["id"]


def _receive_until(ws, event_type: str) -> list[dict]:
    events = []
    while True:
        event = ws.receive_json()
        events.append(event)
        if event["type"] == event_type:
            return events


def test_connect_announces_sprite(client):
    sprite_id = _create(client)
    with client.websocket_connect(f"/api/sprites/{sprite_id}/ws") as ws:
        assert ws.receive_json() == {"type": "connected", "spriteId": sprite_id}
        assert client.get(f"/api/sprites/{sprite_id}").json()["status"] == "working"


def test_prompt_streams_agent_events(client):
    sprite_id = _create(client)
    with client.websocket_connect(f"/api/sprites/{sprite_id}/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "prompt", "payload": {"text": "ping"}})
        events = _receive_until(ws, "agent_end")

    assert [e["type"] for e in events] == ["agent_start", "message", "agent_end"]
    assert events[1]["text"] == "pong"


def test_malformed_frame_yields_one_error_and_keeps_connection(client, factory):
    sprite_id = _create(client)
    with client.websocket_connect(f"/api/sprites/{sprite_id}/ws") as ws:
        ws.receive_json()
        ws.send_text("{not json")
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["message"].startswith("Invalid message")

        ws.send_json({"type": "prompt", "payload": {"text": "still here?"}})
        events = _receive_until(ws, "agent_end")

    assert [e["type"] for e in events] == ["agent_start", "message", "agent_end"]
    assert factory.sessions[0].prompts == ["still here?"]


def test_unknown_message_type_is_rejected(client):
    sprite_id = _create(client)
    with client.websocket_connect(f"/api/sprites/{sprite_id}/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "shutdown"})
        error = ws.receive_json()
    assert error["type"] == "error"
    assert error["message"].startswith("Invalid message")


def test_unknown_sprite_gets_error(client):
    with client.websocket_connect("/api/sprites/missing/ws") as ws:
        assert ws.receive_json() == {"type": "error", "message": "Sprite not found"}


def test_reconnect_reuses_session(client, factory):
    sprite_id = _create(client)
    for _ in range(2):
        with client.websocket_connect(f"/api/sprites/{sprite_id}/ws") as ws:
            assert ws.receive_json()["type"] == "connected"
    assert factory.created == 1


def test_abort_is_forwarded(client, factory):
    sprite_id = _create(client)
    with client.websocket_connect(f"/api/sprites/{sprite_id}/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "abort"})
        # A prompt after the abort proves the abort was handled first
        ws.send_json({"type": "prompt", "payload": {"text": "x"}})
        _receive_until(ws, "agent_end")
    assert factory.sessions[0].aborts == 1


@pytest.mark.skipif(
    os.environ.get("COCKPIT_E2E") != "1" or shutil.which("pi") is None,
    reason="set COCKPIT_E2E=1 with the pi agent installed to run",
)
def test_real_agent_answers_pong(tmp_path):
    app = create_app(WebSettings(reaper_interval_sec=0), store=MemorySpriteStore())
    with TestClient(app) as client:
        sprite_id = _create(client, str(tmp_path))
        with client.websocket_connect(f"/api/sprites/{sprite_id}/ws") as ws:
            assert ws.receive_json()["type"] == "connected"
            ws.send_json({"type": "prompt", "payload": {"text": "Reply with exactly the word pong."}})
            events = _receive_until(ws, "agent_end")
    assert "pong" in str(events).lower()


def test_older_connection_closing_keeps_sprite_working(client):
    sprite_id = _create(client)
    url = f"/api/sprites/{sprite_id}/ws"
    older = ExitStack()
    first = older.enter_context(client.websocket_connect(url))
    first.receive_json()
    with client.websocket_connect(url) as second:
        second.receive_json()
        older.close()
        second.send_json({"type": "prompt", "payload": {"text": "ping"}})
        _receive_until(second, "agent_end")
        assert client.get(f"/api/sprites/{sprite_id}").json()["status"] == "working"
    assert client.get(f"/api/sprites/{sprite_id}").json()["status"] == "idle"
