"""Tests for the FastAPI tutor service."""

from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from ernesto_tutor.app.config import Settings
from ernesto_tutor.app.errors import ConfigurationMissing
from ernesto_tutor.app.main import create_app
from tests._fixtures.stubs import RecordingCompletion, StubRetriever

AUTH = ("ernesto", "secret")
SCENARIO = "Comparer W260 vs W320 pour fermentation 48h au froid"


def _answer(envelope: dict) -> str:
    return f"Diagnostic.\n<GRAPH_JSON>{json.dumps(envelope)}</GRAPH_JSON>"


def _client(settings: Settings, complete: RecordingCompletion, retriever: StubRetriever | None = None) -> TestClient:
    app = create_app(settings, complete=complete, retrieve=retriever or StubRetriever())
    return TestClient(app)


def test_create_app_fails_fast_without_configuration(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("GEMINI_API_KEY", "LLM_API_KEY", "SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "ERNESTO_USER", "ERNESTO_PASS"):
        monkeypatch.delenv(key, raising=False)
    with pytest.raises(ConfigurationMissing):
        create_app()


def test_requests_without_credentials_are_challenged(settings: Settings) -> None:
    client = _client(settings, RecordingCompletion())

    response = client.post("/api/tutor", json={"message": "Bonjour"})

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == 'Basic realm="Ernesto"'


def test_wrong_password_is_rejected(settings: Settings) -> None:
    client = _client(settings, RecordingCompletion())
    assert client.get("/health", auth=("ernesto", "nope")).status_code == 401


def test_health(settings: Settings) -> None:
    response = _client(settings, RecordingCompletion()).get("/health", auth=AUTH)
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_json_request_in_deep_mode(settings: Settings) -> None:
    complete = RecordingCompletion(_answer({"title": "Farines", "charts": []}))
    retriever = StubRetriever([{"content": "c", "similarity": 0.5, "document_id": "doc", "chunk_index": 1}])
    client = _client(settings, complete, retriever)

    response = client.post(
        "/api/tutor",
        json={"message": SCENARIO, "speed": "APPROFONDIE", "isFirstTurn": True, "contextText": "Four à bois"},
        auth=AUTH,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["narrativeText"] == "Diagnostic."
    assert [c["type"] for c in data["envelope"]["charts"]] == ["radar", "timeline", "bar"]
    assert data["retrieval"] == {"usedCount": 1, "top": [{"similarity": 0.5, "sourceId": "doc", "chunkIndex": 1}]}
    assert data["vision"] == {"receivedImage": False}
    assert "Four à bois" in complete.calls[0]["user_prompt"]
    assert "PREMIER ÉCHANGE" in complete.calls[0]["user_prompt"]


def test_mode_field_takes_precedence(settings: Settings) -> None:
    complete = RecordingCompletion(_answer({"title": "T"}))
    client = _client(settings, complete)

    response = client.post("/api/tutor", json={"message": SCENARIO, "mode": "quick", "speed": "APPROFONDIE"}, auth=AUTH)

    assert response.status_code == 200
    assert response.json()["envelope"]["charts"] == []


def test_multipart_request_with_image(settings: Settings) -> None:
    complete = RecordingCompletion(_answer({"title": "Photo"}))
    client = _client(settings, complete)

    response = client.post(
        "/api/tutor",
        data={"message": "Cornicione serré ?", "speed": "VITE", "isFirstTurn": "false"},
        files={"image": ("photo.png", b"\x89PNG-bytes", "image/png")},
        auth=AUTH,
    )

    assert response.status_code == 200
    assert response.json()["vision"] == {"receivedImage": True}
    image = complete.calls[0]["image"]
    assert image.data == b"\x89PNG-bytes"
    assert image.mime_type == "image/png"


def test_empty_message_returns_400(settings: Settings) -> None:
    response = _client(settings, RecordingCompletion()).post("/api/tutor", json={"message": "  "}, auth=AUTH)

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid input", "details": "Empty message"}


def test_invalid_json_body_returns_400(settings: Settings) -> None:
    response = _client(settings, RecordingCompletion()).post(
        "/api/tutor",
        content=b"{not json",
        headers={"content-type": "application/json"},
        auth=AUTH,
    )
    assert response.status_code == 400


def test_completion_failure_returns_502(settings: Settings) -> None:
    client = _client(settings, RecordingCompletion(RuntimeError("Gemini down")))

    response = client.post("/api/tutor", json={"message": "Question ?"}, auth=AUTH)

    assert response.status_code == 502
    body = response.json()
    assert body["error"] == "Upstream failure"
    assert "Gemini down" in body["details"]


def test_multipart_message_sent_as_file_returns_400(settings: Settings) -> None:
    response = _client(settings, RecordingCompletion()).post(
        "/api/tutor",
        files={"message": ("message.txt", b"Bonjour", "text/plain")},
        auth=AUTH,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid input"
