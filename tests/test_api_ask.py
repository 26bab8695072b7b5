from __future__ import annotations

import time
from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from helpers import RecordingLLM
from pdfask import llm_provider
from pdfask.embeddings import EmbeddingBackend, EmbeddingGateway
from pdfask.llm_provider import LLMStub
from pdfask.main import app
from pdfask.services.ask import AskService, get_ask_service


class UnavailableBackend(EmbeddingBackend):
    model_name = "offline"

    def encode(self, texts):
        raise ConnectionError("embedding service unreachable")


@pytest.fixture
def client(ask_service: AskService) -> Iterator[TestClient]:
    app.dependency_overrides[get_ask_service] = lambda: ask_service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_upload_and_ask_returns_answer_with_sources(client: TestClient, recording_llm: RecordingLLM) -> None:
    response = client.post(
        "/ask",
        files=[("pdf", ("doc.pdf", b"Alpha\fBeta", "application/pdf"))],
        data={"question": "Where is alpha?"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["answer"] == recording_llm.answer
    assert payload["uploadId"]
    assert [source["filename"] for source in payload["sources"]] == ["doc.pdf"]
    assert sorted(page["page"] for page in payload["sources"][0]["pages"]) == [1, 2]
    assert recording_llm.prompts[0].endswith("Question:\nWhere is alpha?")


def test_multiple_uploads_keep_submission_order(client: TestClient) -> None:
    response = client.post(
        "/ask",
        files=[
            ("pdf", ("second.pdf", b"two", "application/pdf")),
            ("pdf", ("first.pdf", b"one", "application/pdf")),
        ],
        data={"question": "compare"},
    )

    assert response.status_code == 200
    assert [source["filename"] for source in response.json()["sources"]] == ["second.pdf", "first.pdf"]


def test_follow_up_questions_reuse_upload_id(client: TestClient, recording_llm: RecordingLLM) -> None:
    first = client.post(
        "/ask",
        files=[("pdf", ("doc.pdf", b"Alpha\fBeta", "application/pdf"))],
        data={"question": "first"},
    )
    upload_id = first.json()["uploadId"]

    by_json = client.post("/ask", json={"question": "second", "uploadId": upload_id})
    by_form = client.post("/ask", data={"question": "third", "uploadId": upload_id})

    for response in (by_json, by_form):
        assert response.status_code == 200
        assert response.json()["uploadId"] == upload_id
        assert [source["filename"] for source in response.json()["sources"]] == ["doc.pdf"]
    assert len(recording_llm.prompts) == 3


def test_missing_files_and_upload_id_is_rejected(client: TestClient, upload_root: Path) -> None:
    response = client.post("/ask", data={"question": ""})

    assert response.status_code == 400
    assert "error" in response.json()
    assert not upload_root.exists()


def test_missing_question_is_rejected(client: TestClient) -> None:
    response = client.post("/ask", files=[("pdf", ("doc.pdf", b"Alpha", "application/pdf"))])

    assert response.status_code == 400
    assert response.json() == {"error": "No question provided"}


def test_unknown_upload_id_is_rejected(client: TestClient) -> None:
    response = client.post("/ask", json={"question": "anything", "uploadId": "missing-session"})

    assert response.status_code == 400
    assert response.json()["error"] == "No PDFs found for this request"


def test_embedding_failure_returns_server_error(
    client: TestClient, ask_service: AskService, recording_llm: RecordingLLM
) -> None:
    ask_service._embedding_gateway = EmbeddingGateway(UnavailableBackend())

    response = client.post(
        "/ask",
        files=[("pdf", ("doc.pdf", b"Alpha", "application/pdf"))],
        data={"question": "Where is alpha?"},
    )

    assert response.status_code == 500
    payload = response.json()
    assert payload["error"] == "Embedding question failed"
    assert payload["details"] == "embedding service unreachable"
    assert recording_llm.prompts == []


def test_slow_request_times_out(client: TestClient, ask_service: AskService) -> None:
    class SlowLLM(RecordingLLM):
        def generate(self, prompt: str, max_tokens: int, temperature: float) -> str:
            time.sleep(0.5)
            return super().generate(prompt, max_tokens, temperature)

    ask_service._llm = SlowLLM()
    ask_service.settings.request_timeout_seconds = 0.05

    response = client.post(
        "/ask",
        files=[("pdf", ("doc.pdf", b"Alpha", "application/pdf"))],
        data={"question": "Where is alpha?"},
    )

    assert response.status_code == 504
    assert response.json()["error"] == "Request timed out"


def test_root_healthcheck() -> None:
    response = TestClient(app).get("/")

    assert response.status_code == 200
    assert response.text == "ok"


def test_model_healthcheck_reports_stub(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(llm_provider, "_GLOBAL_LLM", LLMStub(reason="not configured"))

    response = TestClient(app).get("/healthz/model")

    assert response.status_code == 200
    assert response.json() == {
        "model_loaded": False,
        "device": "cpu",
        "name": "stub",
        "reason": "not configured",
    }


def test_unreadable_stored_file_is_a_server_error(
    client: TestClient, ask_service: AskService, monkeypatch: pytest.MonkeyPatch
) -> None:
    first = client.post(
        "/ask",
        files=[("pdf", ("doc.pdf", b"Alpha", "application/pdf"))],
        data={"question": "first"},
    )
    resolve = ask_service.session_manager.resolve

    def resolve_then_remove(uploads, session_id):
        resolution = resolve(uploads, session_id)
        for document in resolution.documents:
            document.path.unlink()
        return resolution

    monkeypatch.setattr(ask_service.session_manager, "resolve", resolve_then_remove)

    response = client.post("/ask", json={"question": "second", "uploadId": first.json()["uploadId"]})

    assert response.status_code == 500
    assert response.json()["error"] == "Stored file doc.pdf could not be read"
