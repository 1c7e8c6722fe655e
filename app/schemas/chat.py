"""Schemas for the chat and session endpoints."""

from typing import Any

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """Request body for POST /chat and POST /chat/stream. History is stored server-side by session_id."""

    question: str = Field(..., min_length=1, description="User question about the uploaded contracts.")
    session_id: str = Field(..., min_length=1, description="Session ID; chat history is stored on the server for this session.")


class ToolCallRecord(BaseModel):
    """One tool call requested by the agent during a chat turn."""

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    ok: bool
    skipped: bool = False


class ChatResponse(BaseModel):
    """Response for POST /chat."""

    answer: str = Field(..., description="Final answer from the agent.")
    tools_used: list[str] = Field(default_factory=list, description="Tools executed, in order (e.g. search_contracts, date_offset).")
    tool_calls: list[ToolCallRecord] = Field(default_factory=list, description="Every tool call the agent requested, including skipped ones.")
    stop_reason: str = Field("final_answer", description="final_answer, tool_limit or round_limit.")

    model_config = {
        "json_schema_extra": {
            "examples": [{
                "answer": "Either party may terminate for convenience on 60 days' written notice (msa.pdf, s. 12.2).",
                "tools_used": ["search_contracts"],
                "tool_calls": [{"name": "search_contracts", "arguments": {"query": "termination for convenience"}, "ok": True, "skipped": False}],
                "stop_reason": "final_answer",
            }]
        }
    }


class Message(BaseModel):
    role: str
    content: str


class SessionHistory(BaseModel):
    """Stored turns for a session, oldest first."""

    session_id: str
    messages: list[Message]
