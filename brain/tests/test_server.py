"""Tests for the HTTP API."""

import base64
import json
import uuid

import pytest
from fastapi.testclient import TestClient

from brain.common.config import BrainConfig
from brain.common.errors import USER_MESSAGES, ErrorKind, GenerationError
from brain.common.vector_client import VectorClient
from brain.server import create_app
from brain.services import build_services
from conftest import FakeEmbedder, ScriptedLLM


def _b64(text):
    return base64.b64encode(text.encode()).decode()


@pytest.fixture
def config(tmp_path):
    config = BrainConfig()
    config.storage.articles_dir = str(tmp_path / "articles")
    config.storage.data_dir = str(tmp_path / "data")
    config.llm.model = "A"
    config.llm.fallback_models = ["B", "C"]
    config.llm.follow_ups_enabled = False
    config.ingest.metadata_extraction = False
    return config


@pytest.fixture
def llm():
    return ScriptedLLM({"A": "You get 20 days per year."})


@pytest.fixture
def services(config, llm, chroma_client):
    vectors = VectorClient(client=chroma_client, collection=f"test-{uuid.uuid4().hex[:12]}")
    return build_services(config, llm=llm, embedder=FakeEmbedder(), vectors=vectors)


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


def _upload(client, name, text, **extra):
    body = {"content_base64": _b64(text), "display_name": name, "media_type": "text/plain", **extra}
    response = client.post("/knowledge", json=body)
    assert response.status_code == 200, response.text
    return response.json()


class TestHealth:
    def test_health(self, client):
        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["vector_available"] is True
        assert data["candidate_models"] == ["A", "B", "C"]

    def test_missing_services_is_503(self):
        assert TestClient(create_app()).get("/health").status_code == 503


class TestKnowledge:
    def test_upload_then_get(self, client):
        article = _upload(client, "vacation.txt", "Vacation policy: 20 days/year", access_scope=["general"])

        fetched = client.get(f"/knowledge/{article['id']}", params={"scope": "general"})

        assert fetched.status_code == 200
        assert fetched.json()["content"] == "Vacation policy: 20 days/year"

    def test_out_of_scope_get_is_404(self, client):
        article = _upload(client, "vacation.txt", "Vacation policy", access_scope=["general"])

        response = client.get(f"/knowledge/{article['id']}", params={"scope": "engineering-only"})

        assert response.status_code == 404

    def test_list_filters_scope_and_omits_content(self, client):
        _upload(client, "hr.txt", "Vacation policy", access_scope=["general"])
        _upload(client, "eng.txt", "Runbook", access_scope=["engineering"])

        data = client.get("/knowledge", params={"scope": "general"}).json()

        assert data["count"] == 1
        assert data["items"][0]["title"] == "hr.txt"
        assert "content" not in data["items"][0]

    def test_invalid_base64_is_400(self, client):
        response = client.post("/knowledge", json={"content_base64": "!!!not base64", "display_name": "x.txt"})
        assert response.status_code == 400

    def test_broken_document_is_422(self, client):
        response = client.post("/knowledge", json={
            "content_base64": _b64("{broken"), "display_name": "bad.json", "media_type": "application/json",
        })
        assert response.status_code == 422
        assert "bad.json" in response.json()["detail"]

    def test_path_like_article_id_is_422(self, client, tmp_path):
        response = client.post("/knowledge", json={
            "content_base64": _b64("Vacation policy"), "display_name": "a.txt",
            "media_type": "text/plain", "article_id": "../etc/passwd",
        })

        assert response.status_code == 422
        assert "Invalid article id" in response.text
        assert not (tmp_path / "etc").exists()
        assert client.get("/knowledge").json()["count"] == 0

    def test_batch_with_bad_article_id_is_422(self, client):
        response = client.post("/knowledge/batch", json={"files": [
            {"content_base64": _b64("Vacation policy"), "display_name": "a.txt", "media_type": "text/plain"},
            {"content_base64": _b64("Sick leave"), "display_name": "b.txt", "article_id": "a/b"},
        ]})

        assert response.status_code == 422
        assert client.get("/knowledge").json()["count"] == 0

    def test_batch_reports_failures(self, client):
        response = client.post("/knowledge/batch", json={"files": [
            {"content_base64": _b64("Vacation policy"), "display_name": "a.txt", "media_type": "text/plain"},
            {"content_base64": _b64("{broken"), "display_name": "bad.json", "media_type": "application/json"},
        ]})

        data = response.json()
        assert [a["title"] for a in data["articles"]] == ["a.txt"]
        assert [f["display_name"] for f in data["failures"]] == ["bad.json"]
        assert data["aborted"] is False

    def test_delete(self, client):
        article = _upload(client, "vacation.txt", "Vacation policy")

        response = client.delete(f"/knowledge/{article['id']}")

        assert response.json() == {"status": "deleted", "id": article["id"], "consistent": True}
        assert client.get(f"/knowledge/{article['id']}").status_code == 404
        assert client.delete(f"/knowledge/{article['id']}").status_code == 404

    def test_reconcile(self, client):
        _upload(client, "vacation.txt", "Vacation policy")

        data = client.post("/knowledge/reconcile").json()

        assert data["ok"] is True
        assert data["reindexed"] == []
        assert data["removed_orphans"] == []


class TestChat:
    def test_answer_with_sources(self, client, llm):
        _upload(client, "vacation.txt", "Vacation policy: 20 days/year", access_scope=["general"])

        data = client.post("/chat", json={"question": "How many vacation days?", "scope": "general"}).json()

        assert data["text"] == "You get 20 days per year."
        assert data["model"] == "A"
        assert [s["title"] for s in data["sources"]] == ["vacation.txt"]
        assert "Vacation policy: 20 days/year" in llm.calls[-1]["prompt"]

    def test_records_in_request_reach_prompt(self, client, llm):
        client.post("/chat", json={
            "question": "Who leads the portal project?",
            "projects": [{"id": "p1", "name": "Partner portal", "status": "in_progress", "assignees": ["m1"]}],
            "members": [{"id": "m1", "name": "Aiko Tanaka", "department": "Sales"}],
        })

        prompt = llm.calls[-1]["prompt"]
        assert "Partner portal" in prompt
        assert "Assignees: Aiko Tanaka" in prompt

    def test_records_from_data_dir(self, client, llm, config, tmp_path):
        data_dir = tmp_path / "data"
        data_dir.mkdir(exist_ok=True)
        (data_dir / "members.json").write_text(json.dumps([{"id": "m1", "name": "Ben Ito", "status": "active"}]))

        client.post("/chat", json={"question": "Who works here?"})

        assert "Ben Ito" in llm.calls[-1]["prompt"]

    def test_all_models_failed_message(self, client, llm):
        denied = GenerationError(ErrorKind.PERMISSION, "x")
        llm.responses.update({"A": denied, "B": denied, "C": denied})

        data = client.post("/chat", json={"question": "How many vacation days?"}).json()

        assert data["text"] == USER_MESSAGES[ErrorKind.PERMISSION]
        assert data["error_kind"] == "permission"
        assert llm.models_called == ["A", "B", "C"]

    def test_empty_question_is_400(self, client):
        assert client.post("/chat", json={"question": "  "}).status_code == 400

    def test_invalid_records_are_422(self, client):
        response = client.post("/chat", json={"question": "q", "projects": [{"status": "x"}]})
        assert response.status_code == 422
