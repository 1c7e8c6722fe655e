"""
Contract ingestion: save uploads, then load, clean, chunk and index them for RAG.

Responsibility: Orchestrate reading files (txt, pdf), chunking and persistence,
and record each upload's status. Called by the API layer; no HTTP or FastAPI here.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from pymilvus.exceptions import MilvusException

from app.core.config import ALLOWED_EXTENSIONS, CHUNK_OVERLAP, CHUNK_SIZE, UPLOAD_DIR_NAME
from app.core.errors import ServiceUnavailableError
from app.core.upload_db import STATUS_FAILED, STATUS_INDEXED, add_upload, set_status
from app.ingest.loader import UnreadableDocumentError, bytes_to_text
from app.services.text_processing import chunk_text, clean_text
from app.services.vector_store import delete_source, store_chunks

logger = logging.getLogger(__name__)


class InvalidFileTypeError(Exception):
    """Raised when one or more files have disallowed extensions."""

    def __init__(self, invalid: list[str]) -> None:
        self.invalid = invalid
        super().__init__(f"Rejected: {', '.join(invalid)}")


@dataclass
class SaveUploadResult:
    """Result of saving uploaded files to disk."""

    files_saved: int
    paths: list[str]


@dataclass
class IngestResult:
    """Per-file outcome of the indexing pipeline."""

    path: str
    source: str
    chunks: int
    error: str | None = None


def _project_root() -> Path:
    return Path(__file__).resolve().parent.parent.parent


def _upload_dir() -> Path:
    return _project_root() / UPLOAD_DIR_NAME


def clear_upload_dir() -> int:
    """
    Delete all files in data/uploads/. Returns the number of files removed.
    Used when clearing the knowledge base so uploads are wiped too.
    """
    root = _upload_dir()
    if not root.is_dir():
        return 0
    removed = 0
    for p in root.iterdir():
        if p.is_file():
            try:
                p.unlink()
                removed += 1
            except OSError as e:
                logger.warning("Failed to remove %s: %s", p, e)
    if removed:
        logger.info("Cleared %d files from %s", removed, UPLOAD_DIR_NAME)
    return removed


def sanitize_filename(filename: str) -> str:
    """Sanitize filename to prevent path traversal (../). Returns safe basename."""
    if not filename or not filename.strip():
        return "unnamed"
    base = Path(filename.replace("\\", "/")).name
    safe = re.sub(r"[^\w.\-]", "_", base)
    return safe.strip() or "unnamed"


def _unique_name(root: Path, name: str, taken: set[str]) -> str:
    """Append _1, _2, ... to the stem until the name is free on disk and in this batch."""
    stem, suffix = Path(name).stem, Path(name).suffix
    candidate, n = name, 0
    while candidate in taken or (root / candidate).exists():
        n += 1
        candidate = f"{stem}_{n}{suffix}"
    return candidate


def save_uploaded_files(items: list[tuple[str, bytes]]) -> SaveUploadResult:
    """
    Validate, sanitize, and persist uploaded contracts under data/uploads/.

    Args:
        items: List of (filename, raw_bytes) for each file.

    Returns:
        SaveUploadResult with files_saved count and relative paths (e.g. data/uploads/msa.pdf).

    Raises:
        InvalidFileTypeError: If any file has a disallowed extension (.txt, .pdf only).
            Nothing is written in that case.
        OSError: If creating the upload dir or writing a file fails.
    """
    if not items:
        raise InvalidFileTypeError([])
    # The stored name is what the loader dispatches on, so check the sanitized suffix too
    invalid = [
        name for name, _ in items
        if Path(name or "").suffix.lower() not in ALLOWED_EXTENSIONS
        or Path(sanitize_filename(name)).suffix.lower() not in ALLOWED_EXTENSIONS
    ]
    if invalid:
        raise InvalidFileTypeError(invalid)

    root = _upload_dir()
    root.mkdir(parents=True, exist_ok=True)
    saved_paths: list[str] = []
    taken: set[str] = set()
    for filename, content in items:
        safe_name = _unique_name(root, sanitize_filename(filename), taken)
        taken.add(safe_name)
        dest = root / safe_name
        if dest.resolve().parent != root.resolve():
            raise InvalidFileTypeError([filename])
        dest.write_bytes(content)
        rel_path = f"{UPLOAD_DIR_NAME}/{safe_name}"
        add_upload(rel_path)
        saved_paths.append(rel_path)
    logger.info("[ingestion:save] saved=%d paths=%s", len(saved_paths), saved_paths)
    return SaveUploadResult(files_saved=len(saved_paths), paths=saved_paths)


def load_chunks(path: Path) -> list[dict]:
    """Read one file -> clean -> chunk. Returns chunk dicts with source/chunk_id metadata."""
    text = bytes_to_text(path.read_bytes(), path.name)
    cleaned = clean_text(text)
    return [
        {"text": chunk, "metadata": {"source": path.name, "chunk_id": i}}
        for i, chunk in enumerate(chunk_text(cleaned, chunk_size=CHUNK_SIZE, overlap=CHUNK_OVERLAP))
    ]


def ingest_file(rel_path: str) -> IngestResult:
    """Index one uploaded file and record the outcome in the upload registry."""
    full_path = _project_root() / rel_path
    source = Path(rel_path).name
    try:
        chunks = load_chunks(full_path)
        if not chunks:
            raise UnreadableDocumentError(f"{source}: no extractable text")
        delete_source(source)
        stored = store_chunks(chunks)
    except (OSError, UnreadableDocumentError, ServiceUnavailableError, MilvusException) as e:
        logger.warning("[ingestion:ingest_file] %s failed: %s", rel_path, e)
        set_status(rel_path, STATUS_FAILED, error=str(e))
        return IngestResult(path=rel_path, source=source, chunks=0, error=str(e))
    except Exception as e:
        # One bad file must not leave the rest of the batch pending
        logger.exception("[ingestion:ingest_file] %s failed unexpectedly", rel_path)
        set_status(rel_path, STATUS_FAILED, error=f"{type(e).__name__}: {e}")
        return IngestResult(path=rel_path, source=source, chunks=0, error=f"{type(e).__name__}: {e}")
    set_status(rel_path, STATUS_INDEXED, chunk_count=stored)
    logger.info("[ingestion:ingest_file] %s -> %d chunks", source, stored)
    return IngestResult(path=rel_path, source=source, chunks=stored)


def process_documents_sync(paths: list[str]) -> list[IngestResult]:
    return [ingest_file(p) for p in paths]


async def process_documents(paths: list[str]) -> list[IngestResult]:
    """
    Index each file. Runs in a thread pool so the event loop is not blocked by disk/CPU/HTTP work.
    """
    return await asyncio.to_thread(process_documents_sync, paths)


def get_preview(
    source_name: str,
    raw_limit: int = 4000,
    cleaned_limit: int = 4000,
    max_chunks: int = 10,
) -> dict | None:
    """
    Preview how a contract is processed: raw -> cleaned -> chunks.
    Returns None if the file is not in data/uploads/ or cannot be read.
    """
    if not source_name or not str(source_name).strip():
        return None
    safe_name = Path(source_name).name
    full_path = _upload_dir() / safe_name
    if not full_path.is_file():
        return None
    try:
        text = bytes_to_text(full_path.read_bytes(), safe_name)
    except (OSError, UnreadableDocumentError) as e:
        logger.warning("Failed to read %s for preview: %s", safe_name, e)
        return None
    cleaned = clean_text(text)
    chunks = chunk_text(cleaned, chunk_size=CHUNK_SIZE, overlap=CHUNK_OVERLAP)
    return {
        "source": safe_name,
        "raw_excerpt": text[:raw_limit],
        "raw_len": len(text),
        "cleaned_excerpt": cleaned[:cleaned_limit],
        "cleaned_len": len(cleaned),
        "chunks": [{"chunk_id": i, "text": c} for i, c in enumerate(chunks[:max_chunks])],
        "chunk_count": len(chunks),
    }
