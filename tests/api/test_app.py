"""
Tests for the HTTP API.
"""

import json

import pytest
from fastapi.testclient import TestClient

from tinychat.api import Container, create_app
from tinychat.config import Config, GenerationConfig, StorageConfig

ECHO = {"service": "debug", "model": "echo"}
ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


@pytest.fixture
def client(tmp_path):
    config = Config(
        storage=StorageConfig(db_path=str(tmp_path / "api.db")),
        generation=GenerationConfig(flush_interval_ms=0),
    )
    with TestClient(create_app(container=Container(config))) as client:
        yield client


def _events(response) -> list[dict]:
    return [json.loads(line) for line in response.text.splitlines() if line]


def _send(client, text: str, headers=ALICE, **fields) -> list[dict]:
    response = client.post(
        "/conversation/send",
        json={"config": ECHO, "data": [{"type": "text", "value": text}], **fields},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")
    return _events(response)


@pytest.mark.integration
class TestHealthAndModels:
    """Test service endpoints."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "services": ["debug"],
            "embeddings": None,
            "memory_enabled": False,
        }

    def test_models(self, client):
        models = client.get("/models").json()

        assert [m["name"] for m in models["debug"]] == ["echo", "image-sim", "embed"]

    def test_unknown_service(self, client):
        response = client.get("/models/nope/x/args")

        assert response.status_code == 404
        assert response.json()["context"]["service"] == "nope"


@pytest.mark.integration
class TestConversation:
    """Test sending messages and streaming replies."""

    def test_send_streams_reply(self, client):
        events = _send(client, "Hello there")

        assert events[0]["event"] == "message"
        assert {e["event"] for e in events[1:-1]} == {"snapshot"}
        assert events[-1]["event"] == "done"

        chat_id = events[0]["message"]["chat_id"]
        [reply] = events[-1]["replies"]
        assert reply["author"] == "MODEL"
        assert reply["previous_id"] == events[0]["message"]["id"]

        messages = client.get(f"/chats/{chat_id}/messages", headers=ALICE).json()
        assert [m["author"] for m in messages] == ["USER", "MODEL"]
        assert client.get(f"/chats/{chat_id}", headers=ALICE).json()["title"] == "Hello there"

    def test_continue_chat(self, client):
        first = _send(client, "one")
        chat_id = first[0]["message"]["chat_id"]

        _send(client, "two", chat_id=chat_id)

        messages = client.get(f"/chats/{chat_id}/messages", headers=ALICE).json()
        assert len(messages) == 4

    def test_reply_error_is_streamed(self, client):
        response = client.post(
            "/conversation/send",
            json={
                "config": {"service": "missing", "model": "x"},
                "data": [{"type": "text", "value": "Hi"}],
            },
            headers=ALICE,
        )

        events = _events(response)
        assert events[-1]["event"] == "error"
        assert events[-1]["status"] == 404

    def test_send_to_unknown_chat(self, client):
        response = client.post(
            "/conversation/send",
            json={"config": ECHO, "data": [{"type": "text", "value": "Hi"}], "chat_id": "chat_x"},
            headers=ALICE,
        )

        assert response.status_code == 404

    def test_regenerate(self, client):
        events = _send(client, "Hi")
        message_id = events[0]["message"]["id"]
        reply_id = events[-1]["replies"][0]["id"]

        response = client.post(f"/messages/{message_id}/reply", headers=ALICE)

        assert _events(response)[-1]["replies"][0]["id"] == reply_id

    def test_cancel_idle_chat(self, client):
        chat_id = _send(client, "Hi")[0]["message"]["chat_id"]

        response = client.post(f"/chats/{chat_id}/cancel", headers=ALICE)

        assert response.json() == {"chat_id": chat_id, "cancelled": False}


@pytest.mark.integration
class TestChatsAndMessages:
    """Test chain editing endpoints."""

    def test_chats_are_per_user(self, client):
        chat_id = _send(client, "Hi")[0]["message"]["chat_id"]

        assert client.get(f"/chats/{chat_id}", headers=BOB).status_code == 404
        assert client.get("/folders", headers=BOB).json() == []
        assert len(client.get("/folders", headers=ALICE).json()) == 1

    def test_rename(self, client):
        chat_id = _send(client, "Hi")[0]["message"]["chat_id"]

        response = client.patch(f"/chats/{chat_id}", json={"title": "Greetings"}, headers=ALICE)

        assert response.json()["title"] == "Greetings"
        assert client.patch(f"/chats/{chat_id}", json={"title": ""}, headers=ALICE).status_code == 422

    def test_create_edit_and_delete_message(self, client):
        created = client.post(
            "/messages",
            json={"config": ECHO, "data": [{"type": "text", "value": "draft"}]},
            headers=ALICE,
        ).json()

        edited = client.put(
            f"/messages/{created['id']}",
            json={"author": "USER", "config": ECHO, "data": [{"type": "text", "value": "final"}]},
            headers=ALICE,
        ).json()
        assert edited["data"] == [{"type": "text", "value": "final", "hidden": None}]

        assert client.delete(f"/messages/{created['id']}", headers=ALICE).status_code == 200
        assert client.get(f"/chats/{created['chat_id']}", headers=ALICE).status_code == 404

    def test_clone(self, client):
        events = _send(client, "Hi")
        chat_id = events[0]["message"]["chat_id"]

        clone = client.post(
            f"/chats/{chat_id}/clone",
            json={"until_message_id": events[0]["message"]["id"], "title": "Fork"},
            headers=ALICE,
        ).json()

        messages = client.get(f"/chats/{clone['id']}/messages", headers=ALICE).json()
        assert clone["title"] == "Fork"
        assert [m["author"] for m in messages] == ["USER"]


@pytest.mark.integration
class TestMemoryEndpoints:
    """Test memory and embedding endpoints."""

    def test_memories(self, client):
        chat_id = _send(client, "I like tea")[0]["message"]["chat_id"]
        assert [c["id"] for c in client.get("/memories/pending", headers=ALICE).json()] == [
            chat_id
        ]

        client.post(
            f"/chats/{chat_id}/memories",
            json={
                "config": ECHO,
                "memories": [
                    {
                        "fact": "Likes tea",
                        "category": "PREFERENCE",
                        "stability": "LONG_TERM",
                        "confidence": 0.9,
                    }
                ],
            },
            headers=ALICE,
        )

        memories = client.get("/memories", headers=ALICE).json()
        assert [m["fact"] for m in memories] == ["Likes tea"]
        assert client.get("/memories/pending", headers=ALICE).json() == []

    def test_save_embeddings(self, client):
        events = _send(client, "Hi")
        ids = [events[0]["message"]["id"], events[-1]["replies"][0]["id"]]

        response = client.put(
            "/embeddings/messages",
            json={"embeddings": {message_id: [0.1, 0.2] for message_id in ids}},
            headers=ALICE,
        )

        assert response.json() == {"kind": "messages", "updated": 2}
        assert client.get("/embeddings/missing", headers=ALICE).json()["messages"] == []

    def test_unknown_embedding_kind(self, client):
        response = client.put("/embeddings/pictures", json={"embeddings": {}}, headers=ALICE)

        assert response.status_code == 422


@pytest.mark.integration
class TestPairing:
    """Test the pairing handshake over HTTP."""

    def test_handshake(self, client):
        pairing_id = client.post("/pairings").json()["id"]

        assert client.post(f"/pairings/{pairing_id}/finalize").json() == {
            "accepted": False,
            "user_id": None,
        }

        client.post(f"/pairings/{pairing_id}/accept", headers=ALICE)

        assert client.post(f"/pairings/{pairing_id}/finalize").json() == {
            "accepted": True,
            "user_id": "alice",
        }
        assert client.post(f"/pairings/{pairing_id}/finalize").status_code == 404
