"""
Unit tests for the tool registry and the default contract tools.
"""

import json
from unittest.mock import patch

import pytest
from pydantic import BaseModel

from app.agent.tools import (
    NoArgs,
    SearchContractsArgs,
    ToolRegistry,
    ToolSpec,
    build_default_registry,
)
from app.core.errors import ToolNotFoundError


class EchoArgs(BaseModel):
    text: str


@pytest.fixture
def registry() -> ToolRegistry:
    reg = ToolRegistry()

    @reg.tool("echo", "Echo the text back.", EchoArgs)
    def echo(args: EchoArgs) -> str:
        return f"echo: {args.text}"

    @reg.tool("stats", "Return a dict.")
    def stats(_: NoArgs) -> dict:
        return {"total_chunks": 3}

    @reg.tool("boom", "Always fails.")
    def boom(_: NoArgs) -> str:
        raise RuntimeError("vector store exploded")

    return reg


class TestRegistry:
    def test_names_keep_registration_order(self, registry: ToolRegistry) -> None:
        assert registry.names() == ["echo", "stats", "boom"]
        assert "echo" in registry
        assert len(registry) == 3

    def test_duplicate_registration_raises(self, registry: ToolRegistry) -> None:
        with pytest.raises(ValueError):
            registry.register(ToolSpec("echo", "again", EchoArgs, lambda a: a.text))

    def test_resolve_unknown_raises_key_error(self, registry: ToolRegistry) -> None:
        with pytest.raises(ToolNotFoundError):
            registry.resolve("missing")
        with pytest.raises(KeyError):
            registry.resolve("missing")

    def test_openai_declarations(self, registry: ToolRegistry) -> None:
        decl = registry.declarations("openai")[0]
        assert decl["type"] == "function"
        assert decl["function"]["name"] == "echo"
        params = decl["function"]["parameters"]
        assert params["type"] == "object"
        assert params["required"] == ["text"]
        assert params["properties"]["text"]["type"] == "string"
        assert "title" not in params

    def test_anthropic_declarations(self, registry: ToolRegistry) -> None:
        decl = registry.declarations("anthropic")[1]
        assert decl["name"] == "stats"
        assert decl["input_schema"] == {"properties": {}, "type": "object"}

    def test_unknown_provider_raises(self, registry: ToolRegistry) -> None:
        with pytest.raises(ValueError):
            registry.declarations("gemini")


class TestExecute:
    def test_success(self, registry: ToolRegistry) -> None:
        outcome = registry.execute("echo", {"text": "hi"})
        assert outcome.ok is True
        assert outcome.output == "echo: hi"
        assert outcome.error is None

    def test_non_string_output_is_json(self, registry: ToolRegistry) -> None:
        outcome = registry.execute("stats", None)
        assert json.loads(outcome.output) == {"total_chunks": 3}

    def test_unknown_tool_becomes_error_result(self, registry: ToolRegistry) -> None:
        outcome = registry.execute("nope", {})
        assert outcome.ok is False
        assert outcome.output.startswith("Error: Tool 'nope' is not registered")
        assert "echo" in outcome.output

    def test_invalid_arguments_become_error_result(self, registry: ToolRegistry) -> None:
        outcome = registry.execute("echo", {"txt": "typo"})
        assert outcome.ok is False
        assert "invalid arguments for echo" in outcome.output
        assert "text" in outcome.output

    def test_handler_exception_becomes_error_result(self, registry: ToolRegistry) -> None:
        outcome = registry.execute("boom", {})
        assert outcome.ok is False
        assert "vector store exploded" in outcome.output


class TestDefaultTools:
    @pytest.fixture
    def default_registry(self) -> ToolRegistry:
        return build_default_registry()

    def test_default_tool_set(self, default_registry: ToolRegistry) -> None:
        assert default_registry.names() == [
            "search_contracts",
            "list_contracts",
            "get_chunk",
            "system_stats",
            "current_date",
            "date_offset",
            "calculator",
        ]

    def test_search_contracts_formats_chunks(self, default_registry: ToolRegistry) -> None:
        chunks = [{"id": 7, "text": "Either party may terminate.", "score": 0.8123, "metadata": {"source": "msa.pdf", "chunk_id": 3}}]
        with patch("app.agent.tools.retrieve_context", return_value=chunks) as mock_retrieve:
            outcome = default_registry.execute("search_contracts", {"query": "termination", "source": "msa.pdf"})
        mock_retrieve.assert_called_once_with("termination", source="msa.pdf")
        assert outcome.ok
        assert outcome.output.startswith("[id=7 source=msa.pdf chunk=3 score=0.812]\nEither party may terminate.")

    def test_search_contracts_no_results(self, default_registry: ToolRegistry) -> None:
        with patch("app.agent.tools.retrieve_context", return_value=[]):
            outcome = default_registry.execute("search_contracts", {"query": "indemnity"})
        assert outcome.output == "No matching contract clauses found."

    def test_search_contracts_requires_query(self) -> None:
        assert SearchContractsArgs.model_json_schema()["required"] == ["query"]

    def test_list_contracts(self, default_registry: ToolRegistry) -> None:
        with patch("app.agent.tools.list_sources", return_value=["msa.pdf", "nda.txt"]):
            outcome = default_registry.execute("list_contracts", {})
        assert outcome.output == "Contracts in knowledge base:\n- msa.pdf\n- nda.txt"

    def test_get_chunk_not_found(self, default_registry: ToolRegistry) -> None:
        with patch("app.agent.tools.get_chunk_by_id", return_value=None):
            outcome = default_registry.execute("get_chunk", {"id": 99})
        assert outcome.output == "No chunk found with id=99."

    @pytest.mark.parametrize(
        ("arguments", "expected"),
        [
            ({"start_date": "2024-01-31", "months": 1}, "2024-02-29 (Thursday)"),
            ({"start_date": "2024-03-01", "days": -1}, "2024-02-29 (Thursday)"),
            ({"start_date": "2024-02-29", "years": 1}, "2025-02-28 (Friday)"),
        ],
    )
    def test_date_offset(self, default_registry: ToolRegistry, arguments: dict, expected: str) -> None:
        outcome = default_registry.execute("date_offset", arguments)
        assert outcome.ok
        assert outcome.output == expected

    def test_date_offset_rejects_bad_date(self, default_registry: ToolRegistry) -> None:
        outcome = default_registry.execute("date_offset", {"start_date": "next tuesday"})
        assert outcome.ok is False

    @pytest.mark.parametrize(
        ("expression", "expected"),
        [
            ("(100 + 50) / 3", "50.0"),
            ("2 ** 10", "Error: only numbers and + - * / % ( ) . allowed"),
            ("__import__('os')", "Error: only numbers and + - * / % ( ) . allowed"),
            ("1/0", "Error: division by zero"),
        ],
    )
    def test_calculator(self, default_registry: ToolRegistry, expression: str, expected: str) -> None:
        assert default_registry.execute("calculator", {"expression": expression}).output == expected
