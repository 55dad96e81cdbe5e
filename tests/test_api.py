"""
Tests for FastAPI endpoints.
"""

import threading
from typing import Any
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.messages import AIMessage
from langchain_core.outputs import ChatGeneration, ChatResult

from lmchat_tracing.callbacks import LlmRunTracing
from lmchat_tracing.chat_models import SuppliedModel
from lmchat_tracing.main import app, model_catalog
from lmchat_tracing.model_catalog import ModelOption


def fake_supply(responses=None, model_factory=None):
    """supply_chat_model stand-in that keeps the real run tracing callback."""

    def supply(provider, model_name, execution_log, parent_run_index=None, **kwargs):
        tracing = LlmRunTracing(execution_log, parent_run_index=parent_run_index)
        if model_factory is not None:
            model = model_factory(callbacks=[tracing])
        else:
            model = FakeListChatModel(responses=responses or ["hi"], callbacks=[tracing])
        return SuppliedModel(model=model, run_tracing=tracing)

    return supply


slow_call_started = threading.Event()
slow_call_release = threading.Event()


class SlowChatModel(BaseChatModel):
    """Chat model that blocks inside the call until released."""

    @property
    def _llm_type(self) -> str:
        return "slow-fake"

    def _generate(self, messages, stop=None, run_manager=None, **kwargs: Any) -> ChatResult:
        slow_call_started.set()
        slow_call_release.wait(timeout=5)
        return ChatResult(generations=[ChatGeneration(message=AIMessage(content="slow"))])


CHAT_REQUEST = {
    "provider": "openai",
    "model": "gpt-4o-mini",
    "messages": [{"role": "user", "content": "hello"}],
}


class TestAPIEndpoints:
    """Test FastAPI REST API endpoints."""

    @pytest.fixture
    def client(self):
        """Create test client."""
        return TestClient(app)

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert "Langfuse Chat Model API" in data["message"]
        assert "version" in data

    def test_health_endpoint(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "environment" in data
        assert set(data["model_catalog_circuit_breakers"]) == {"openai", "groq", "google"}

    def test_providers_endpoint(self, client):
        response = client.get("/providers")
        assert response.status_code == 200
        data = response.json()
        assert data["google"]["option_defaults"]["topK"] == 40
        assert data["openai"]["display_name"] == "Langfuse Chat Model (OpenAI)"

    def test_models_endpoint(self, client):
        with patch.object(
            model_catalog, "list_models", return_value=[ModelOption(name="a", value="a")]
        ) as mock_list:
            response = client.post("/providers/groq/models", json={"api_key": "gsk-test"})

        assert response.status_code == 200
        assert response.json() == [{"name": "a", "value": "a"}]
        mock_list.assert_called_once_with("groq", "gsk-test")

    def test_models_unknown_provider(self, client):
        response = client.post("/providers/mistral/models", json={})
        assert response.status_code == 404

    @patch("lmchat_tracing.main.supply_chat_model", new=fake_supply(["hi"]))
    def test_chat_success_recorded_in_execution(self, client):
        response = client.post("/chat", json=CHAT_REQUEST)

        assert response.status_code == 200
        data = response.json()
        assert data["response"] == "hi"
        assert data["run_index"] == 0

        execution = client.get(f"/executions/{data['execution_id']}").json()
        (run,) = execution["runs"]["ai_languageModel"]
        assert run["status"] == "success"
        assert run["input"][0][0]["json"]["messages"] == ["Human: hello"]
        assert execution["events"][0]["event"] == "ai-llm-generated-output"
        assert execution["node_name"] == "Langfuse Chat Model (OpenAI)"

    @patch("lmchat_tracing.main.supply_chat_model", new=fake_supply(["one", "two"]))
    def test_chat_appends_to_existing_execution(self, client):
        first = client.post("/chat", json=CHAT_REQUEST).json()
        second = client.post(
            "/chat", json={**CHAT_REQUEST, "execution_id": first["execution_id"]}
        ).json()

        assert second["execution_id"] == first["execution_id"]
        assert second["run_index"] == 1

    def test_chat_model_failure(self, client, failing_model):
        with patch(
            "lmchat_tracing.main.supply_chat_model",
            new=fake_supply(model_factory=lambda callbacks: failing_model(callbacks=callbacks)),
        ):
            response = client.post("/chat", json={**CHAT_REQUEST, "execution_id": "exec-fail"})

        assert response.status_code == 500
        assert "/executions/exec-fail" in response.json()["detail"]

        execution = client.get("/executions/exec-fail").json()
        (run,) = execution["runs"]["ai_languageModel"]
        assert run["status"] == "error"
        assert run["error"]["message"] == "rate limited"
        assert run["error"]["functionality"] == "configuration-node"
        assert execution["events"][-1]["event"] == "ai-llm-errored"

    def test_chat_unknown_provider(self, client):
        response = client.post("/chat", json={**CHAT_REQUEST, "provider": "mistral"})
        assert response.status_code == 404

    def test_chat_validation_missing_fields(self, client):
        response = client.post("/chat", json={"provider": "openai"})
        assert response.status_code == 422

    def test_execution_not_found(self, client):
        assert client.get("/executions/missing").status_code == 404
        assert client.delete("/executions/missing").status_code == 404

    @patch("lmchat_tracing.main.supply_chat_model", new=fake_supply(["hi"]))
    def test_delete_execution(self, client):
        execution_id = client.post("/chat", json=CHAT_REQUEST).json()["execution_id"]

        response = client.delete(f"/executions/{execution_id}")

        assert response.status_code == 200
        assert client.get(f"/executions/{execution_id}").status_code == 404

    def test_metrics_endpoint(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        data = response.json()
        assert "executions" in data
        assert "unmatched_completions" in data
        assert "circuit_breakers" in data

    def test_openapi_docs_available(self, client):
        response = client.get("/openapi.json")
        assert response.status_code == 200

        response = client.get("/docs")
        assert response.status_code == 200

    def test_overlapping_chats_report_their_own_run_index(self, client):
        """A request finishing after a newer one on the same execution keeps its index."""
        models = iter(
            [
                lambda callbacks: SlowChatModel(callbacks=callbacks),
                lambda callbacks: FakeListChatModel(responses=["fast"], callbacks=callbacks),
            ]
        )
        slow_call_started.clear()
        slow_call_release.clear()
        request = {**CHAT_REQUEST, "execution_id": "exec-overlap"}
        slow_responses = []

        with patch(
            "lmchat_tracing.main.supply_chat_model",
            new=fake_supply(model_factory=lambda callbacks: next(models)(callbacks)),
        ):
            slow = threading.Thread(
                target=lambda: slow_responses.append(TestClient(app).post("/chat", json=request))
            )
            slow.start()
            try:
                assert slow_call_started.wait(timeout=5)
                fast = client.post("/chat", json=request)
            finally:
                slow_call_release.set()
                slow.join(timeout=5)

        assert fast.json()["response"] == "fast"
        assert fast.json()["run_index"] == 1
        (slow_response,) = slow_responses
        assert slow_response.json()["response"] == "slow"
        assert slow_response.json()["run_index"] == 0
