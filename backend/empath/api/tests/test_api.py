import pytest
from fastapi.testclient import TestClient

import empath.global_vars as global_vars
from empath.api.v1.conversation import conversation_manager
from empath.core.config import VECTORIZATION_CONFIG
from empath.main import app
from empath.memory.embeddings import EmbeddingService
from empath.memory.kv_store import InMemoryKeyValueStore
from empath.memory.vector_store import VectorMemoryStore
from empath.utils.exception import ProviderError
from empath.services.tests.fakes import FakeDecisionService, FakeProactiveService, FakeReflectionService


class FailingProvider:
    async def embed(self, text):
        raise ProviderError("embedding service unreachable")

    def get_dimension(self):
        return 384


def install_services(embedding_service):
    global_vars.memory_manager = VectorMemoryStore(embedding_service=embedding_service, kv_store=InMemoryKeyValueStore())
    global_vars.decision_service = FakeDecisionService()
    global_vars.reflection_service = FakeReflectionService()
    global_vars.proactive_service = FakeProactiveService()
    # long settle window keeps pipeline events out of the request/reply exchanges below
    global_vars.pipeline_settings = {"settle_window_s": 30.0}


@pytest.fixture
def client():
    install_services(EmbeddingService(VECTORIZATION_CONFIG["models"]["hashing"]))
    with TestClient(app) as c:
        yield c
    global_vars.memory_manager = None
    global_vars.decision_service = None
    global_vars.reflection_service = None
    global_vars.proactive_service = None
    global_vars.pipeline_settings = {}


def test_save_get_search_delete(client):
    saved = client.post("/api/v1/memory/save", json={"content": "Likes jazz on rainy days", "type": "preference",
                                                      "importance": 0.7, "tags": ["music"]})
    assert saved.status_code == 200
    entry_id = saved.json()["id"]

    fetched = client.get(f"/api/v1/memory/{entry_id}")
    assert fetched.json()["memory"]["type"] == "preference"

    found = client.post("/api/v1/memory/search", json={"query": "Likes jazz on rainy days"})
    assert found.json()["results"][0]["id"] == entry_id

    stats = client.get("/api/v1/memory/stats").json()["stats"]
    assert stats["total_entries"] == 1

    assert client.delete(f"/api/v1/memory/{entry_id}").status_code == 200
    assert client.delete(f"/api/v1/memory/{entry_id}").status_code == 404
    assert client.get(f"/api/v1/memory/{entry_id}").status_code == 404


def test_validation_errors(client):
    assert client.post("/api/v1/memory/save", json={"content": "x", "type": "bogus"}).status_code == 422
    assert client.post("/api/v1/memory/save", json={"content": "   "}).status_code == 422
    assert client.post("/api/v1/memory/search", json={"query": "x", "limit": 50}).status_code == 422


def test_tools(client):
    tools = client.get("/api/v1/memory/tools").json()["tools"]
    assert "save_memory" in [t["name"] for t in tools]
    result = client.post("/api/v1/memory/tools/save_memory",
                         json={"parameters": {"content": "Has two cats", "type": "fact"}})
    assert result.json()["success"]
    assert client.post("/api/v1/memory/tools/fly", json={"parameters": {}}).status_code == 404


def test_regenerate_index_vectors(client):
    client.post("/api/v1/memory/save", json={"content": "Plays the violin"})
    response = client.post("/api/v1/memory/index-vectors/regenerate")
    assert response.json()["success"]
    assert client.get("/api/v1/memory/stats").json()["stats"]["index_vectors_initialized"]
    assert client.delete("/api/v1/memory/index-vectors").json()["success"]
    assert not client.get("/api/v1/memory/stats").json()["stats"]["index_vectors_initialized"]


def test_provider_failure_is_503():
    install_services(FailingProvider())
    try:
        with TestClient(app) as c:
            response = c.post("/api/v1/memory/search", json={"query": "anything"})
    finally:
        global_vars.memory_manager = None
        global_vars.decision_service = None
        global_vars.reflection_service = None
        global_vars.proactive_service = None
        global_vars.pipeline_settings = {}
    assert response.status_code == 503
    assert response.json()["success"] is False


def test_conversation_websocket(client):
    with client.websocket_connect("/ws/conversation") as ws:
        ws.send_json({"type": "ping", "timestamp": 42})
        assert ws.receive_json() == {"type": "pong", "timestamp": 42}

        ws.send_json({"type": "input", "text": "I had a long day"})
        ws.send_json({"type": "message", "role": "user", "content": "I had a long day"})
        ack = ws.receive_json()
        assert ack["type"] == "message_ack"
        assert ack["role"] == "user"

        status = client.get("/api/v1/pipeline/status").json()
        assert status["active_conversations"] == 1

        ws.send_json({"type": "status_request"})
        reply = ws.receive_json()
        assert reply["type"] == "status"
        assert reply["status"]["running"] is True
        assert reply["status"]["stats"]["submitted"] == 2

        ws.send_json({"type": "dance"})
        assert ws.receive_json()["type"] == "error"
        ws.send_text("not json")
        assert ws.receive_json()["success"] is False


def test_conversation_timezone_and_contact_gap(client):
    with client.websocket_connect("/ws/conversation?utc_offset_minutes=-240") as ws:
        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"
        session = list(conversation_manager.sessions.values())[-1]
        assert session.tz.utcoffset(None).total_seconds() == -240 * 60
        assert session.pipeline.action_handler is global_vars.proactive_service

        ws.send_json({"type": "timezone", "utc_offset_minutes": 120})
        assert ws.receive_json() == {"type": "timezone_ack", "timezone": "UTC+02:00"}
        ws.send_json({"type": "timezone", "timezone": "Mars/Olympus_Mons"})
        assert ws.receive_json()["type"] == "error"

        ws.send_json({"type": "contact_gap", "ms": 5000})
        ws.send_json({"type": "message", "role": "assistant", "content": "Hi!", "next_contact_ms": 30000})
        assert ws.receive_json()["type"] == "message_ack"
        status = session.pipeline.status()
        assert status["min_contact_gap_ms"] == 30000
        assert status["last_message_time"] is not None

        ws.send_json({"type": "contact_gap", "ms": -5})
        assert ws.receive_json()["type"] == "error"
