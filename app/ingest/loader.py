# Minimal contract loader. No embeddings, no vector DB, no chunking.
# Supports .txt and .pdf. Single place for "file/bytes -> text".

import io
import logging
from pathlib import Path

from pypdf import PdfReader
from pypdf.errors import PyPdfError

logger = logging.getLogger(__name__)


class UnreadableDocumentError(Exception):
    """Raised when a file cannot be turned into text (corrupt, or encrypted without a usable key)."""


def bytes_to_text(raw: bytes, filename: str) -> str:
    """
    Convert raw file bytes to text by extension. Unknown or missing extensions
    are decoded as UTF-8.
    """
    ext = Path(filename).suffix.lower() if filename else ""
    if ext == ".pdf":
        return _read_pdf(raw, filename)
    return raw.decode("utf-8", errors="replace")


def _read_pdf(raw: bytes, filename: str) -> str:
    try:
        reader = PdfReader(io.BytesIO(raw))
        if reader.is_encrypted:
            # Many contracts are "encrypted" with an empty owner password only
            reader.decrypt("")
        pages = [page.extract_text() or "" for page in reader.pages]
    except (PyPdfError, ValueError) as e:
        raise UnreadableDocumentError(f"{filename}: {e}") from e
    text = "\n".join(pages)
    logger.info("[loader] %s pages=%d chars=%d", filename, len(pages), len(text))
    return text
