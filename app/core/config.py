"""
Application configuration (env, settings, constants).

Responsibility: Centralize config loading, environment variables, and app-wide
constants. Keeps the rest of the app decoupled from how config is sourced.
"""

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("[config] %s=%r is not an integer; using %d", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("[config] %s=%r is not a number; using %s", name, raw, default)
        return default


# Upload storage
UPLOAD_DIR_NAME: str = "data/uploads"
UPLOAD_DB_NAME: str = "data/uploads.db"

# Contracts are PDFs or plain text exports
ALLOWED_EXTENSIONS: frozenset[str] = frozenset({".txt", ".pdf"})

# Chunking defaults (clause-sized chunks retrieve better than page-sized ones)
CHUNK_SIZE: int = _env_int("CHUNK_SIZE", 800)
CHUNK_OVERLAP: int = _env_int("CHUNK_OVERLAP", 100)

# Milvus Cloud (from env)
MILVUS_URI: str = os.getenv("MILVUS_URI", "").strip()
MILVUS_TOKEN: str = os.getenv("MILVUS_TOKEN", "").strip()

# Hugging Face (embeddings / rerank)
HF_API_KEY: str = os.getenv("HF_API_KEY", "").strip()

# Vector collection: default embedding dim (sentence-transformers/all-MiniLM-L6-v2 = 384)
VECTOR_DIM: int = 384

# Milvus collection and embedding/rerank
COLLECTION_NAME: str = os.getenv("COLLECTION_NAME", "contracts").strip() or "contracts"
HF_EMBED_MODEL: str = "sentence-transformers/all-MiniLM-L6-v2"
HF_RERANK_MODEL: str = "BAAI/bge-reranker-base"
EMBED_BATCH_SIZE: int = 32

# Retrieval: top-K from the vector store, then threshold and rerank down to RETRIEVAL_TOP_K
SEARCH_TOP_K: int = _env_int("SEARCH_TOP_K", 40)
RETRIEVAL_TOP_K: int = _env_int("RETRIEVAL_TOP_K", 6)
SIMILARITY_THRESHOLD: float = _env_float("SIMILARITY_THRESHOLD", 0.25)
RERANK_ENABLED: bool = os.getenv("RERANK_ENABLED", "true").strip().lower() not in ("0", "false", "no")

# API timeouts (seconds) and retries
EMBED_API_TIMEOUT: float = 30.0
RERANK_API_TIMEOUT: float = 60.0
LLM_API_TIMEOUT: float = _env_float("LLM_API_TIMEOUT", 60.0)
HTTP_MAX_RETRIES: int = _env_int("HTTP_MAX_RETRIES", 3)
LLM_MAX_RETRIES: int = _env_int("LLM_MAX_RETRIES", 3)

# Agent loop ceilings
MAX_TOOL_CALLS: int = _env_int("MAX_TOOL_CALLS", 8)
MAX_AGENTIC_ROUNDS: int = _env_int("MAX_AGENTIC_ROUNDS", 6)
MAX_TOOL_RESULT_CHARS: int = _env_int("MAX_TOOL_RESULT_CHARS", 6000)
AGENT_MAX_TOKENS: int = _env_int("AGENT_MAX_TOKENS", 1024)
HISTORY_WINDOW_MESSAGES: int = _env_int("HISTORY_WINDOW_MESSAGES", 10)

# Conversation store bounds
SESSION_MAX_TURNS: int = _env_int("SESSION_MAX_TURNS", 10)
SESSION_MAX_SESSIONS: int = _env_int("SESSION_MAX_SESSIONS", 1000)

# LLM provider: "openai" or "anthropic". Empty -> whichever key is set (OpenAI first).
LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "").strip().lower()

# OpenAI (agent LLM)
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_LLM_MODEL: str = (
    os.getenv("OPENAI_LLM_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
)

# Anthropic (alternative agent LLM)
ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "").strip()
ANTHROPIC_LLM_MODEL: str = (
    os.getenv("ANTHROPIC_LLM_MODEL", "claude-3-5-sonnet-latest").strip()
    or "claude-3-5-sonnet-latest"
)
