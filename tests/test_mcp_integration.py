"""
Integration tests for MCP tool endpoints.

Uses mocks for retrieval/vector_store so tests do not require Milvus or HF API.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.main import app


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def test_mcp_lists_tools_with_input_schema(client: TestClient) -> None:
    """GET /mcp/tools returns every registered tool with name, description and input_schema."""
    response = client.get("/mcp/tools")
    assert response.status_code == 200
    tools = {t["name"]: t for t in response.json()["tools"]}
    assert "search_contracts" in tools
    assert tools["search_contracts"]["input_schema"]["required"] == ["query"]


def test_mcp_search_contracts_returns_results(client: TestClient) -> None:
    """POST /mcp/tools/search_contracts runs retrieval and returns formatted passages."""
    fake_chunks = [
        {"id": 101, "text": "Fake clause one.", "score": 0.9, "metadata": {"source": "msa.pdf", "chunk_id": 0}},
        {"id": 102, "text": "Fake clause two.", "score": 0.8, "metadata": {"source": "nda.txt", "chunk_id": 1}},
    ]
    with patch("app.agent.tools.retrieve_context", return_value=fake_chunks):
        response = client.post("/mcp/tools/search_contracts", json={"query": "test question"})
    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert "[id=101 source=msa.pdf chunk=0 score=0.900]" in data["output"]
    assert "Fake clause two." in data["output"]


def test_mcp_invalid_arguments_return_error_result(client: TestClient) -> None:
    """Missing required arguments come back as ok=false without calling retrieval."""
    with patch("app.agent.tools.retrieve_context") as mock_retrieve:
        response = client.post("/mcp/tools/search_contracts", json={})
    assert response.status_code == 200
    assert response.json()["ok"] is False
    mock_retrieve.assert_not_called()


def test_mcp_list_contracts_empty(client: TestClient) -> None:
    with patch("app.agent.tools.list_sources", return_value=[]):
        response = client.post("/mcp/tools/list_contracts")
    assert response.status_code == 200
    assert response.json()["output"] == "No contracts have been indexed yet."


def test_mcp_get_chunk_returns_chunk_json(client: TestClient) -> None:
    fake = {"id": 42, "text": "Chunk content.", "source": "msa.pdf", "chunk_id": 1}
    with patch("app.agent.tools.get_chunk_by_id", return_value=fake):
        response = client.post("/mcp/tools/get_chunk", json={"id": 42})
    assert response.status_code == 200
    assert '"text": "Chunk content."' in response.json()["output"]


def test_mcp_calculator(client: TestClient) -> None:
    response = client.post("/mcp/tools/calculator", json={"expression": "2+3"})
    assert response.json() == {"ok": True, "output": "5", "error": None}


def test_mcp_unknown_tool_returns_404(client: TestClient) -> None:
    response = client.post("/mcp/tools/get_weather", json={"city": "Paris"})
    assert response.status_code == 404
