"""
API route aggregator: register endpoints; no logic, only delegate to handlers and services.
"""

import logging

from fastapi import APIRouter, File, HTTPException, UploadFile
from fastapi.responses import StreamingResponse

from app.agent.tools import get_registry
from app.api.handlers import chat_event_stream, handle_chat, handle_upload
from app.core.errors import ServiceUnavailableError
from app.core.session_store import clear_session, get_history
from app.core.upload_db import clear_all as clear_upload_db, list_uploads
from app.schemas.chat import ChatRequest, ChatResponse, SessionHistory
from app.schemas.upload import UploadRecord, UploadResponse
from app.services.ingestion_service import clear_upload_dir, get_preview
from app.services.vector_store import clear_knowledge_base, list_sources

logger = logging.getLogger(__name__)
router = APIRouter()


# --- System ---

@router.get("/", tags=["system"])
def root():
    return {"status": "Contract analysis agent running"}


@router.get("/health", tags=["system"])
def health():
    return {"ok": True}


@router.get("/tools", tags=["system"], summary="Tool declarations offered to the LLM")
def get_tools() -> dict:
    return {"tools": get_registry().declarations("openai")}


# --- Ingestion ---

@router.get("/contracts", tags=["ingestion"], summary="List contracts in the knowledge base")
def get_contracts() -> dict:
    """Return contract names currently in the vector store."""
    try:
        sources = list_sources()
    except ServiceUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message) from e
    return {"contracts": sources}


@router.get(
    "/preview",
    tags=["ingestion"],
    summary="Preview how a contract is processed (raw → cleaned → chunks)",
    description="Returns raw excerpt, cleaned excerpt, and first N chunks for a source. Source must exist in data/uploads/.",
)
def preview_source(source: str = "") -> dict:
    if not source or not source.strip():
        raise HTTPException(status_code=400, detail="Query parameter 'source' is required")
    data = get_preview(source.strip())
    if data is None:
        raise HTTPException(status_code=404, detail=f"Source not found or unreadable: {source.strip()!r}")
    return data


@router.get(
    "/uploads",
    tags=["ingestion"],
    summary="List uploaded contracts and their indexing status",
    response_model=list[UploadRecord],
)
def get_uploads() -> list[dict]:
    return list_uploads()


@router.delete("/contracts", tags=["ingestion"], summary="Clear the knowledge base")
def delete_contracts() -> dict:
    """Drop the vector store collection, delete all files in data/uploads/, and clear the upload registry."""
    try:
        clear_knowledge_base()
    except ServiceUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message) from e
    files_removed = clear_upload_dir()
    clear_upload_db()
    return {"cleared": True, "files_removed": files_removed}


@router.post(
    "/upload",
    response_model=UploadResponse,
    tags=["ingestion"],
    summary="Upload contracts",
    description="Accept multiple .pdf or .txt files; save to data/uploads/ and index them in the background. "
                "Rejects other types with 400. Returns 500 if saving fails.",
)
async def upload_contracts(
    files: list[UploadFile] = File(..., description="One or more .pdf or .txt contracts."),
) -> UploadResponse:
    return await handle_upload(files)


# --- Chat ---

@router.post(
    "/chat",
    response_model=ChatResponse,
    tags=["chat"],
    summary="Ask the contract agent (sync)",
    description="Send a question; receive the answer and the tools the agent used. "
                "400 on invalid input, 503 when the LLM or vector store is unavailable, 500 on agent failure.",
)
def post_chat(body: ChatRequest) -> ChatResponse:
    return handle_chat(body)


@router.post(
    "/chat/stream",
    tags=["chat"],
    summary="Ask the contract agent (SSE stream)",
    description="Events: tool, tool_result, answer_delta, done, error.",
)
def post_chat_stream(body: ChatRequest) -> StreamingResponse:
    logger.info("[api:chat_stream] IN  question=%r session_id=%s", body.question, body.session_id)
    return StreamingResponse(
        chat_event_stream(body.question, body.session_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# --- Sessions ---

@router.get("/sessions/{session_id}", tags=["chat"], response_model=SessionHistory)
def get_session(session_id: str) -> SessionHistory:
    return SessionHistory(session_id=session_id, messages=get_history(session_id))


@router.delete("/sessions/{session_id}", tags=["chat"])
def delete_session(session_id: str) -> dict:
    return {"cleared": clear_session(session_id)}
