"""
Text processing for contract RAG: cleaning and chunking.

Cleaning removes PDF extraction noise so embeddings focus on clause content.
Chunking is a recursive splitter: paragraphs first, then lines, sentences and
finally words, so clauses stay intact whenever they fit in one chunk.
"""

import re
import unicodedata

# Control characters PDF extractors leave behind (keep \t and \n)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
_INLINE_SPACE = re.compile(r"[ \t]+")

# (split pattern, joiner used when pieces are merged back together)
_SEPARATORS: list[tuple[str, str]] = [
    (r"\n\s*\n", "\n\n"),
    (r"\n", "\n"),
    (r"(?<=[.!?;:])\s+", " "),
    (r"\s+", " "),
]


def clean_text(text: str) -> str:
    """
    Normalize and clean raw contract text.

    NFKC-normalizes, drops control characters, collapses inline whitespace,
    removes consecutive duplicate lines (repeated headers/footers on page
    breaks) and collapses runs of blank lines to one.
    """
    if not text or not text.strip():
        return ""
    text = unicodedata.normalize("NFKC", text)
    text = _CONTROL_CHARS.sub(" ", text)
    lines = [_INLINE_SPACE.sub(" ", line).strip() for line in text.splitlines()]
    deduped: list[str] = []
    for line in lines:
        if deduped and deduped[-1] == line:
            continue
        deduped.append(line)
    result: list[str] = []
    for line in deduped:
        if line == "":
            if result and result[-1] != "":
                result.append("")
        else:
            result.append(line)
    return "\n".join(result).strip()


def _split(text: str, chunk_size: int, level: int = 0) -> list[tuple[str, str]]:
    """Split text into (piece, joiner) pairs where every piece fits chunk_size, except unsplittable words."""
    if len(text) <= chunk_size or level >= len(_SEPARATORS):
        return [(text, "")]
    pattern, joiner = _SEPARATORS[level]
    out: list[tuple[str, str]] = []
    for part in re.split(pattern, text):
        part = part.strip()
        if not part:
            continue
        for i, (piece, inner_joiner) in enumerate(_split(part, chunk_size, level + 1)):
            out.append((piece, joiner if i == 0 else inner_joiner))
    return out


def _join(pieces: list[tuple[str, str]]) -> str:
    parts: list[str] = []
    for i, (piece, joiner) in enumerate(pieces):
        if i > 0:
            parts.append(joiner)
        parts.append(piece)
    return "".join(parts)


def _length(pieces: list[tuple[str, str]]) -> int:
    return sum(len(p) for p, _ in pieces) + sum(len(j) for _, j in pieces[1:])


def chunk_text(text: str, chunk_size: int = 800, overlap: int = 100) -> list[str]:
    """
    Split text into chunks of at most chunk_size characters.

    Pieces from the recursive split are merged greedily; when a chunk is
    flushed, its trailing pieces totalling at most `overlap` characters are
    carried into the next chunk.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError("overlap must be >= 0 and smaller than chunk_size")
    if not text or not text.strip():
        return []
    text = text.strip()
    if len(text) <= chunk_size:
        return [text]

    chunks: list[str] = []
    current: list[tuple[str, str]] = []
    for piece, joiner in _split(text, chunk_size):
        candidate = current + [(piece, joiner)]
        if not current or _length(candidate) <= chunk_size:
            current = candidate
            continue
        chunks.append(_join(current))
        carried: list[tuple[str, str]] = []
        for prev in reversed(current):
            if _length([prev] + carried) > overlap:
                break
            carried.insert(0, prev)
        current = carried + [(piece, joiner)]
        if _length(current) > chunk_size:
            current = [(piece, joiner)]
    if current:
        chunks.append(_join(current))
    return chunks
