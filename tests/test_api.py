"""
API tests for chat, session and upload endpoints.

The agent and ingestion services are mocked so tests do not require an LLM, Milvus or HF API.
"""

import uuid
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from app.agent.executor import AgentResult
from app.core.errors import LLMUnavailableError
from app.main import app
from app.services.ingestion_service import SaveUploadResult


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def session_id() -> str:
    return f"test-{uuid.uuid4().hex}"


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"ok": True}


def test_tools_lists_declarations(client: TestClient) -> None:
    names = [t["function"]["name"] for t in client.get("/tools").json()["tools"]]
    assert "search_contracts" in names
    assert "date_offset" in names


# --- chat ---

def test_chat_returns_answer_and_stores_turn(client: TestClient, session_id: str) -> None:
    result = AgentResult(
        answer="The liability cap is 12 months of fees.",
        tools_used=["search_contracts"],
        tool_calls=[{"id": "c1", "name": "search_contracts", "arguments": {"query": "liability cap"}, "ok": True, "skipped": False}],
        rounds=2,
        stop_reason="final_answer",
    )
    with patch("app.api.handlers.run_agent", return_value=result) as mock_run:
        response = client.post("/chat", json={"question": "What is the liability cap?", "session_id": session_id})
    assert response.status_code == 200
    data = response.json()
    assert data["answer"] == "The liability cap is 12 months of fees."
    assert data["tools_used"] == ["search_contracts"]
    assert data["tool_calls"][0]["arguments"] == {"query": "liability cap"}
    assert data["stop_reason"] == "final_answer"
    mock_run.assert_called_once_with("What is the liability cap?", history=[])

    history = client.get(f"/sessions/{session_id}").json()["messages"]
    assert history == [
        {"role": "user", "content": "What is the liability cap?"},
        {"role": "assistant", "content": "The liability cap is 12 months of fees."},
    ]


def test_chat_passes_stored_history(client: TestClient, session_id: str) -> None:
    with patch("app.api.handlers.run_agent", return_value=AgentResult(answer="first")):
        client.post("/chat", json={"question": "q1", "session_id": session_id})
    with patch("app.api.handlers.run_agent", return_value=AgentResult(answer="second")) as mock_run:
        client.post("/chat", json={"question": "q2", "session_id": session_id})
    assert mock_run.call_args.kwargs["history"] == [
        {"role": "user", "content": "q1"},
        {"role": "assistant", "content": "first"},
    ]


def test_chat_llm_unavailable_returns_503_and_stores_nothing(client: TestClient, session_id: str) -> None:
    with patch("app.api.handlers.run_agent", side_effect=LLMUnavailableError("No LLM configured")):
        response = client.post("/chat", json={"question": "q", "session_id": session_id})
    assert response.status_code == 503
    assert response.json()["detail"] == "No LLM configured"
    assert client.get(f"/sessions/{session_id}").json()["messages"] == []


def test_chat_blank_question_returns_400_without_running_agent(client: TestClient, session_id: str) -> None:
    with patch("app.api.handlers.run_agent") as mock_run:
        response = client.post("/chat", json={"question": "   ", "session_id": session_id})
    assert response.status_code == 400
    mock_run.assert_not_called()


def test_chat_internal_value_error_returns_500(client: TestClient, session_id: str) -> None:
    with patch("app.api.handlers.run_agent", side_effect=ValueError("Unknown provider: 'gemini'")):
        response = client.post("/chat", json={"question": "q", "session_id": session_id})
    assert response.status_code == 500
    assert client.get(f"/sessions/{session_id}").json()["messages"] == []


def test_chat_empty_question_returns_422(client: TestClient, session_id: str) -> None:
    response = client.post("/chat", json={"question": "", "session_id": session_id})
    assert response.status_code == 422


def test_chat_stream_emits_sse_and_stores_turn(client: TestClient, session_id: str) -> None:
    events = [
        {"event": "tool", "name": "search_contracts", "arguments": {"query": "renewal"}},
        {"event": "tool_result", "name": "search_contracts", "ok": True, "skipped": False},
        {"event": "answer_delta", "content": "It renews annually."},
        {"event": "done", "answer": "It renews annually.", "tools_used": ["search_contracts"], "stop_reason": "final_answer"},
    ]
    with patch("app.api.handlers.run_agent_stream", return_value=iter(events)):
        response = client.post("/chat/stream", json={"question": "Does it renew?", "session_id": session_id})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    body = response.text
    assert "event: tool\n" in body
    assert "event: done\n" in body
    assert '"answer": "It renews annually."' in body
    history = client.get(f"/sessions/{session_id}").json()["messages"]
    assert history[-1] == {"role": "assistant", "content": "It renews annually."}


def test_delete_session(client: TestClient, session_id: str) -> None:
    with patch("app.api.handlers.run_agent", return_value=AgentResult(answer="a")):
        client.post("/chat", json={"question": "q", "session_id": session_id})
    assert client.delete(f"/sessions/{session_id}").json() == {"cleared": True}
    assert client.get(f"/sessions/{session_id}").json()["messages"] == []


# --- upload ---

def test_upload_saves_and_starts_ingestion(client: TestClient) -> None:
    saved = SaveUploadResult(files_saved=1, paths=["data/uploads/msa.pdf"])
    with patch("app.api.handlers.save_uploaded_files", return_value=saved) as mock_save, \
            patch("app.api.handlers.process_documents", new_callable=AsyncMock, return_value=[]) as mock_process:
        response = client.post("/upload", files=[("files", ("msa.pdf", b"%PDF-1.4 fake", "application/pdf"))])
    assert response.status_code == 200
    assert response.json() == {"files_saved": 1, "paths": ["data/uploads/msa.pdf"]}
    mock_save.assert_called_once_with([("msa.pdf", b"%PDF-1.4 fake")])
    mock_process.assert_called_once_with(["data/uploads/msa.pdf"])


def test_upload_rejects_disallowed_type(client: TestClient) -> None:
    response = client.post("/upload", files=[("files", ("contract.docx", b"PK..", "application/octet-stream"))])
    assert response.status_code == 400
    assert "contract.docx" in response.json()["detail"]


def test_preview_requires_source(client: TestClient) -> None:
    assert client.get("/preview").status_code == 400


def test_contracts_lists_sources(client: TestClient) -> None:
    with patch("app.api.routes.list_sources", return_value=["msa.pdf"]):
        response = client.get("/contracts")
    assert response.json() == {"contracts": ["msa.pdf"]}
