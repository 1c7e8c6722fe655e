"""
Lightweight SQLite registry of uploaded contracts and their ingestion status.

Creates data/uploads.db (relative to project root). Table: uploads
(id, path, source, status, chunk_count, error, created_at, updated_at).
Status moves pending -> indexed | failed as the background ingestion runs.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from app.core.config import UPLOAD_DB_NAME

logger = logging.getLogger(__name__)

# Project root
_ROOT = Path(__file__).resolve().parent.parent.parent
_DB_PATH = _ROOT / UPLOAD_DB_NAME
_TABLE = "uploads"

STATUS_PENDING = "pending"
STATUS_INDEXED = "indexed"
STATUS_FAILED = "failed"
STATUSES = frozenset({STATUS_PENDING, STATUS_INDEXED, STATUS_FAILED})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _get_conn() -> sqlite3.Connection:
    _DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(_DB_PATH))
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create the uploads table if it does not exist."""
    conn = _get_conn()
    try:
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {_TABLE} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                path TEXT NOT NULL,
                source TEXT NOT NULL,
                status TEXT NOT NULL,
                chunk_count INTEGER NOT NULL DEFAULT 0,
                error TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.commit()
    finally:
        conn.close()


def add_upload(path: str) -> int | None:
    """Register an uploaded file as pending. Path is relative (e.g. data/uploads/msa.pdf). Returns row id."""
    if not path or not str(path).strip():
        return None
    path = str(path).strip()
    init_db()
    conn = _get_conn()
    try:
        now = _now()
        cur = conn.execute(
            f"INSERT INTO {_TABLE} (path, source, status, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            (path, Path(path).name, STATUS_PENDING, now, now),
        )
        conn.commit()
        logger.info("[upload_db] added path=%s id=%s", path, cur.lastrowid)
        return cur.lastrowid
    finally:
        conn.close()


def set_status(path: str, status: str, chunk_count: int = 0, error: str | None = None) -> None:
    """Update the most recent row for path."""
    if status not in STATUSES:
        raise ValueError(f"Unknown upload status: {status!r}")
    init_db()
    conn = _get_conn()
    try:
        conn.execute(
            f"""
            UPDATE {_TABLE} SET status = ?, chunk_count = ?, error = ?, updated_at = ?
            WHERE id = (SELECT MAX(id) FROM {_TABLE} WHERE path = ?)
            """,
            (status, chunk_count, error, _now(), path),
        )
        conn.commit()
        logger.info("[upload_db] path=%s status=%s chunks=%d", path, status, chunk_count)
    finally:
        conn.close()


def list_uploads() -> list[dict]:
    """Return all upload rows, oldest first."""
    init_db()
    conn = _get_conn()
    try:
        cur = conn.execute(
            f"SELECT id, path, source, status, chunk_count, error, created_at, updated_at FROM {_TABLE} ORDER BY id ASC"
        )
        return [dict(row) for row in cur.fetchall()]
    finally:
        conn.close()


def clear_all() -> None:
    """Delete all rows. Call when clearing the knowledge base."""
    init_db()
    conn = _get_conn()
    try:
        conn.execute(f"DELETE FROM {_TABLE}")
        conn.commit()
        logger.info("[upload_db] cleared all uploads")
    finally:
        conn.close()
