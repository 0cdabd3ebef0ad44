"""Tests for API endpoints."""

import json
from datetime import date

import pytest
from conftest import FakeLLMClient, data_url, fake_payload, text_response, tool_response
from fastapi.testclient import TestClient

from taskflow.config import Settings
from taskflow.main import app
from taskflow.models.task import Attachment, Task
from taskflow.services.conversation import ConversationService, get_conversation_service
from taskflow.services.image_generation import get_image_pipeline
from taskflow.services.orchestrator import ConversationOrchestrator
from taskflow.services.tasks import get_task_store

client = TestClient(app)


@pytest.fixture
def llm():
    return FakeLLMClient(max_chars=200)


@pytest.fixture(autouse=True)
def overrides(store, pipeline, registry, llm):
    """Wire the app to in-memory fakes."""
    service = ConversationService(ConversationOrchestrator(llm, registry), store, Settings())

    app.dependency_overrides[get_task_store] = lambda: store
    app.dependency_overrides[get_image_pipeline] = lambda: pipeline
    app.dependency_overrides[get_conversation_service] = lambda: service
    yield
    app.dependency_overrides.clear()


def parse_events(response) -> list[dict]:
    return [json.loads(line) for line in response.text.splitlines() if line]


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check_returns_200(self):
        """Test that health check returns 200 status."""
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_check_response_structure(self):
        """Test that health check returns expected JSON structure."""
        response = client.get("/health")
        data = response.json()

        assert "status" in data
        assert "timestamp" in data
        assert "version" in data

        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"

    def test_health_check_content_type(self):
        """Test that health check returns JSON content type."""
        response = client.get("/health")
        assert response.headers["content-type"] == "application/json"


class TestChatEndpoint:
    """Tests for the streaming chat endpoint."""

    def test_streams_ndjson_events(self, llm):
        llm.responses = [text_response("Hi there!")]

        response = client.post("/chat", json={"messages": [{"role": "user", "content": "Hello"}]})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        events = parse_events(response)
        assert [e["type"] for e in events] == ["text_delta", "done"]
        assert events[-1]["text"] == "Hi there!"
        assert events[-1]["stop_reason"] == "end_turn"

    def test_done_carries_new_messages(self, llm, store):
        """Test that the turn's messages come back so the client can keep its history."""
        llm.responses = [tool_response(("create_task", {"title": "Buy milk"})), text_response("Added.")]

        response = client.post("/chat", json={"messages": [{"role": "user", "content": "add buy milk"}]})

        done = parse_events(response)[-1]
        parts = [p["type"] for m in done["messages"] for p in m["parts"]]
        assert parts == ["function_call", "function_result", "text"]

    def test_unknown_model_falls_back_to_default(self, llm):
        llm.responses = [text_response("ok")]

        client.post("/chat", json={"messages": [{"role": "user", "content": "hi"}], "model": "gpt-4o"})

        assert llm.models_seen == [Settings().default_model]

    def test_allowed_model_is_used(self, llm):
        llm.responses = [text_response("ok")]

        client.post(
            "/chat",
            json={"messages": [{"role": "user", "content": "hi"}], "model": "claude-3-5-haiku-20241022"},
        )

        assert llm.models_seen == ["claude-3-5-haiku-20241022"]

    def test_message_too_long_returns_400(self, llm):
        response = client.post("/chat", json={"messages": [{"role": "user", "content": "x" * 500}]})

        assert response.status_code == 400
        assert "too long" in response.json()["detail"]
        assert llm.requests == []

    def test_empty_messages_rejected(self):
        response = client.post("/chat", json={"messages": []})
        assert response.status_code == 422

    def test_uploaded_image_is_attached(self, llm, store):
        llm.responses = [
            tool_response(("create_task", {"title": "Fix logo", "attach_chat_images": True})),
            text_response("Created."),
        ]
        message = {
            "role": "user",
            "parts": [
                {"type": "file", "media_type": "image/png", "url": data_url(b"logo"), "filename": "logo.png"},
                {"type": "text", "text": "Fix this logo"},
            ],
        }

        client.post("/chat", json={"messages": [message]})

        tasks = client.get("/tasks").json()["tasks"]
        assert tasks[0]["title"] == "Fix logo"
        assert tasks[0]["attachments"][0]["data_url"] == data_url(b"logo")


class TestTaskEndpoints:
    """Tests for direct task access."""

    @pytest.fixture
    def task_id(self, store):
        image = Attachment(name="a.png", media_type="image/png", data=b"img")
        store.tasks["task-1"] = Task(id="task-1", title="Write report", attachments=[image])
        return "task-1"

    def test_list_tasks(self, task_id):
        response = client.get("/tasks")

        assert response.status_code == 200
        tasks = response.json()["tasks"]
        assert [t["id"] for t in tasks] == [task_id]
        assert tasks[0]["attachments"][0]["data_url"].startswith("data:image/png;base64,")

    def test_patch_task(self, task_id):
        response = client.patch(f"/tasks/{task_id}", json={"status": "done", "due_date": "2025-03-01"})

        assert response.status_code == 200
        task = response.json()["task"]
        assert task["status"] == "done"
        assert task["due_date"] == date(2025, 3, 1).isoformat()
        assert task["title"] == "Write report"

    def test_patch_missing_task(self):
        response = client.patch("/tasks/missing", json={"status": "done"})
        assert response.status_code == 404

    def test_patch_invalid_status(self, task_id):
        response = client.patch(f"/tasks/{task_id}", json={"status": "blocked"})
        assert response.status_code == 422

    def test_delete_task(self, task_id):
        assert client.delete(f"/tasks/{task_id}").json() == {"success": True}
        assert client.delete(f"/tasks/{task_id}").status_code == 404


class TestGenerateImageEndpoint:
    """Tests for standalone image generation."""

    def test_generates_image(self, image_client):
        image_client.outcomes = [fake_payload(64)]

        response = client.post("/generate-image", json={"prompt": "a lighthouse"})

        assert response.status_code == 200
        data = response.json()
        assert data["media_type"] == "image/jpeg"
        assert data["name"] == "generated-a-lighthouse.jpg"
        assert data["image_data_url"].startswith("data:image/jpeg;base64,")

    def test_empty_prompt_returns_400(self, image_client):
        response = client.post("/generate-image", json={"prompt": "   "})

        assert response.status_code == 400
        assert image_client.calls == []

    def test_no_image_returns_502(self, image_client):
        image_client.outcomes = [fake_payload(2_000_000)] * 3

        response = client.post("/generate-image", json={"prompt": "a lighthouse"})

        assert response.status_code == 502
        assert len(image_client.calls) == 3
