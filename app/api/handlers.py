"""
API handlers: read request data (e.g. UploadFile), call services, map results/errors to HTTP.

Responsibility: Bridge HTTP types and services. Marshalling and exception-to-HTTP mapping.
Lives in the API layer so services stay free of FastAPI/HTTP types.
"""

import asyncio
import json
import logging
from typing import Iterator

from fastapi import HTTPException, UploadFile

from app.agent.executor import run_agent, run_agent_stream
from app.core.errors import ServiceUnavailableError
from app.core.session_store import append_turn, get_history
from app.schemas.chat import ChatRequest, ChatResponse, ToolCallRecord
from app.schemas.upload import UploadResponse
from app.services.ingestion_service import InvalidFileTypeError, process_documents, save_uploaded_files

logger = logging.getLogger(__name__)

# Keep references so background ingestion tasks are not garbage collected mid-run
_ingest_tasks: set[asyncio.Task] = set()


def _on_ingest_done(task: asyncio.Task) -> None:
    _ingest_tasks.discard(task)
    if task.cancelled():
        logger.warning("[api:upload] background ingestion cancelled")
        return
    exc = task.exception()
    if exc is not None:
        logger.error("[api:upload] background ingestion failed", exc_info=exc)


async def handle_upload(files: list[UploadFile]) -> UploadResponse:
    """
    Read uploaded files, call ingestion service, map service errors to HTTP 400/500.
    Kicks off process_documents in background so the response returns immediately.
    """
    if not files:
        raise HTTPException(status_code=400, detail="At least one file is required.")

    items: list[tuple[str, bytes]] = []
    for upload in files:
        items.append((upload.filename or "", await upload.read()))

    try:
        result = save_uploaded_files(items)
    except InvalidFileTypeError as e:
        raise HTTPException(
            status_code=400,
            detail=f"Only .pdf and .txt contracts are allowed. Rejected: {', '.join(e.invalid)}",
        ) from e
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Failed to save files: {e!s}") from e

    if result.paths:
        task = asyncio.create_task(process_documents(result.paths))
        _ingest_tasks.add(task)
        task.add_done_callback(_on_ingest_done)

    return UploadResponse(files_saved=result.files_saved, paths=result.paths)


def handle_chat(body: ChatRequest) -> ChatResponse:
    """Run the agent on the session's history; store the turn only when an answer was produced."""
    logger.info("[api:chat] IN  question=%r session_id=%s", body.question, body.session_id)
    if not body.question.strip():
        raise HTTPException(status_code=400, detail="question is required")
    history = get_history(body.session_id)
    try:
        result = run_agent(body.question, history=history)
    except ServiceUnavailableError as e:
        logger.warning("[api:chat] dependency unavailable: %s", e.message)
        raise HTTPException(status_code=503, detail=e.message) from e
    except Exception as e:
        logger.exception("Agent failed")
        raise HTTPException(status_code=500, detail=str(e)) from e
    append_turn(body.session_id, body.question, result.answer)
    logger.info("[api:chat] OUT tools_used=%s stop_reason=%s answer_len=%d",
                result.tools_used, result.stop_reason, len(result.answer))
    return ChatResponse(
        answer=result.answer,
        tools_used=result.tools_used,
        tool_calls=[
            ToolCallRecord(name=t["name"], arguments=t["arguments"], ok=t["ok"], skipped=t["skipped"])
            for t in result.tool_calls
        ],
        stop_reason=result.stop_reason,
    )


def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def chat_event_stream(question: str, session_id: str) -> Iterator[str]:
    """Yield Server-Sent Events for a streamed agent run; the turn is stored when 'done' is reached."""
    history = get_history(session_id)
    for evt in run_agent_stream(question, history=history):
        event_type = evt.pop("event", "")
        if event_type == "done":
            append_turn(session_id, question, evt.get("answer", ""))
        if event_type in ("tool", "tool_result", "answer_delta", "done", "error"):
            yield _sse(event_type, evt)
