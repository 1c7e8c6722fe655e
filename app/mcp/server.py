"""
Minimal MCP-style tool server: exposes the agent's tool registry through a
standardized HTTP interface so external agents can discover and call the same
contract tools the built-in agent uses.
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, HTTPException
from pydantic import BaseModel

from app.agent.tools import get_registry

logger = logging.getLogger(__name__)

mcp_router = APIRouter(tags=["mcp"])


class ToolResult(BaseModel):
    """Result of one MCP tool call."""

    ok: bool
    output: str
    error: str | None = None


@mcp_router.get(
    "/tools",
    summary="MCP tool discovery",
    description="List every registered tool with its description and JSON input schema.",
)
def mcp_list_tools() -> dict[str, list[dict[str, Any]]]:
    return {"tools": get_registry().declarations("anthropic")}


@mcp_router.post(
    "/tools/{name}",
    response_model=ToolResult,
    summary="MCP tool call",
    description="Execute a registered tool with a JSON object of arguments. 404 for unknown tools.",
)
def mcp_call_tool(name: str, arguments: dict[str, Any] | None = Body(None)) -> ToolResult:
    logger.info("MCP tool called: %s", name)
    registry = get_registry()
    if name not in registry:
        raise HTTPException(status_code=404, detail=f"Unknown tool: {name!r}")
    outcome = registry.execute(name, arguments or {})
    return ToolResult(ok=outcome.ok, output=outcome.output, error=outcome.error)
