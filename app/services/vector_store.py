"""
Vector store client: Milvus Cloud connection, embeddings (HF Inference API), and chunk storage.

Responsibility: Connect to Milvus, embed texts via all-MiniLM-L6-v2, store and search
contract chunks with metadata (text, source, chunk_id).
"""

import logging
from typing import Any

import httpx
from pymilvus import MilvusClient
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.core.config import (
    COLLECTION_NAME,
    EMBED_API_TIMEOUT,
    EMBED_BATCH_SIZE,
    HF_API_KEY,
    HF_EMBED_MODEL,
    HTTP_MAX_RETRIES,
    MILVUS_TOKEN,
    MILVUS_URI,
    VECTOR_DIM,
)
from app.core.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

HF_EMBED_URL = (
    "https://router.huggingface.co/hf-inference/models/"
    f"{HF_EMBED_MODEL}/pipeline/feature-extraction"
)
OUTPUT_FIELDS = ["text", "source", "chunk_id"]


class TransientAPIError(Exception):
    """HF returned a status worth retrying (model loading, 429, 5xx)."""


def _normalize(vec: list[float]) -> list[float]:
    norm = sum(x * x for x in vec) ** 0.5
    if norm == 0:
        norm = 1.0
    return [x / norm for x in vec]


@retry(
    retry=retry_if_exception_type((TransientAPIError, httpx.TransportError)),
    stop=stop_after_attempt(HTTP_MAX_RETRIES + 1),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)
def _embed_batch(client: httpx.Client, batch: list[str]) -> list[list[float]]:
    headers = {
        "Authorization": f"Bearer {HF_API_KEY}",
        "Content-Type": "application/json",
    }
    payload = {"inputs": batch, "options": {"wait_for_model": True}}
    response = client.post(HF_EMBED_URL, json=payload, headers=headers)
    if response.status_code == 429 or response.status_code >= 500:
        logger.warning("[vector_store:embed] HF %s, retrying: %s", response.status_code, response.text[:200])
        raise TransientAPIError(f"HF API {response.status_code}")
    if response.status_code == 401:
        raise ServiceUnavailableError(
            "Invalid HF API key. Check HF_API_KEY at https://huggingface.co/settings/tokens"
        )
    if response.status_code != 200:
        raise ServiceUnavailableError(f"HF embedding API error {response.status_code}: {response.text[:200]}")
    result = response.json()
    if isinstance(result, list) and result and isinstance(result[0], list):
        return result
    raise ServiceUnavailableError(f"Unexpected embedding response shape: {type(result).__name__}")


def embed_texts(texts: list[str], batch_size: int | None = None) -> list[list[float]]:
    """
    Batch embed texts using Hugging Face Inference API (all-MiniLM-L6-v2).

    Returns list of 384-dim vectors normalized for cosine similarity.
    Transient HTTP failures are retried with exponential backoff.
    """
    batch_size = batch_size if batch_size is not None else EMBED_BATCH_SIZE
    if not texts:
        return []
    if not HF_API_KEY:
        raise ServiceUnavailableError(
            "HF_API_KEY must be set in .env. Get a token from https://huggingface.co/settings/tokens"
        )
    all_embeddings: list[list[float]] = []
    try:
        with httpx.Client(timeout=EMBED_API_TIMEOUT) as client:
            for i in range(0, len(texts), batch_size):
                batch = texts[i : i + batch_size]
                all_embeddings.extend(_normalize(v) for v in _embed_batch(client, batch))
    except (TransientAPIError, httpx.TransportError) as e:
        raise ServiceUnavailableError(f"Embedding service unavailable: {e}") from e
    logger.info("[vector_store:embed] OUT texts=%d", len(all_embeddings))
    return all_embeddings


_client: MilvusClient | None = None


def get_milvus_client() -> MilvusClient:
    """
    Connect to Milvus Cloud and return a shared client. Creates the contracts
    collection if it does not exist (dim 384 for all-MiniLM-L6-v2).
    """
    global _client
    if not MILVUS_URI or not MILVUS_TOKEN:
        raise ServiceUnavailableError("MILVUS_URI and MILVUS_TOKEN must be set in .env")
    if _client is None:
        _client = MilvusClient(uri=MILVUS_URI, token=MILVUS_TOKEN)
        logger.info("Milvus connection established")
    if not _client.has_collection(COLLECTION_NAME):
        _client.create_collection(
            collection_name=COLLECTION_NAME,
            dimension=VECTOR_DIM,
            primary_field_name="id",
            vector_field_name="vector",
            metric_type="COSINE",
            auto_id=True,
        )
        logger.info("Collection %s created (dim=%s)", COLLECTION_NAME, VECTOR_DIM)
    return _client


def store_chunks(chunks: list[dict]) -> int:
    """
    Embed each chunk, insert into Milvus with metadata (text, source, chunk_id),
    then flush the collection. Returns number of rows inserted.
    """
    if not chunks:
        return 0
    embeddings = embed_texts([c["text"] for c in chunks])
    client = get_milvus_client()
    rows = []
    for c, emb in zip(chunks, embeddings):
        meta = c.get("metadata", {})
        rows.append({
            "vector": emb,
            "text": c["text"],
            "source": meta.get("source", ""),
            "chunk_id": meta.get("chunk_id", 0),
        })
    client.insert(collection_name=COLLECTION_NAME, data=rows)
    client.flush(collection_name=COLLECTION_NAME)
    logger.info("Embedded and stored %d chunks", len(rows))
    return len(rows)


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def search(vector: list[float], top_k: int, source: str | None = None) -> list[dict[str, Any]]:
    """
    Nearest-neighbour search for one query vector. Returns hits as
    {"id", "text", "score", "metadata": {"source", "chunk_id"}}, best first.
    COSINE metric: score is the similarity, higher is better.
    """
    client = get_milvus_client()
    results = client.search(
        collection_name=COLLECTION_NAME,
        data=[vector],
        limit=top_k,
        filter=f'source == "{_escape(source)}"' if source else "",
        output_fields=OUTPUT_FIELDS,
    )
    hits = results[0] if results else []
    out = []
    for h in hits:
        entity = h.get("entity") or h
        out.append({
            "id": h.get("id", entity.get("id")),
            "text": entity.get("text", ""),
            "score": float(h.get("distance", h.get("score", 0.0))),
            "metadata": {
                "source": entity.get("source", ""),
                "chunk_id": entity.get("chunk_id", 0),
            },
        })
    return out


def list_sources(limit: int = 16_384) -> list[str]:
    """Return distinct contract source names in the collection."""
    client = get_milvus_client()
    results = client.query(
        collection_name=COLLECTION_NAME,
        filter="",
        limit=limit,
        output_fields=["source"],
    )
    return sorted({(r.get("source") or "").strip() for r in results if (r.get("source") or "").strip()})


def delete_source(source: str) -> None:
    """Remove every chunk of one contract (used before re-indexing a file with the same name)."""
    client = get_milvus_client()
    client.delete(collection_name=COLLECTION_NAME, filter=f'source == "{_escape(source)}"')
    logger.info("Deleted chunks for source=%s", source)


def clear_knowledge_base() -> None:
    """
    Remove all data from the knowledge base by dropping the Milvus collection.
    The collection will be recreated empty on next get_milvus_client() call.
    """
    client = get_milvus_client()
    if client.has_collection(COLLECTION_NAME):
        client.drop_collection(collection_name=COLLECTION_NAME)
        logger.info("Knowledge base cleared: collection %s dropped", COLLECTION_NAME)


def get_chunk_by_id(chunk_id: int | str) -> dict | None:
    """Fetch a single chunk by its Milvus primary key. Returns dict with id, text, source, chunk_id."""
    client = get_milvus_client()
    results = client.get(
        collection_name=COLLECTION_NAME,
        ids=[chunk_id],
        output_fields=OUTPUT_FIELDS,
    )
    if not results:
        return None
    r = results[0]
    return {
        "id": r.get("id", chunk_id),
        "text": r.get("text", ""),
        "source": r.get("source", ""),
        "chunk_id": r.get("chunk_id", 0),
    }


def get_collection_stats() -> dict:
    """Return knowledge-base stats: total chunks, contract count, sources list, collection name."""
    client = get_milvus_client()
    stats = client.get_collection_stats(collection_name=COLLECTION_NAME)
    sources = list_sources()
    return {
        "collection_name": COLLECTION_NAME,
        "total_chunks": int(stats.get("row_count", 0)),
        "source_count": len(sources),
        "sources": sources,
    }
