"""
Retrieval: semantic search, similarity threshold, keyword boost and HF rerank.

Responsibility: Turn a query into the most relevant contract chunks for the agent.
Embedding and nearest-neighbour search are delegated to the vector store.
"""

import logging

import httpx

from app.core.config import (
    HF_API_KEY,
    HF_RERANK_MODEL,
    RERANK_API_TIMEOUT,
    RERANK_ENABLED,
    RETRIEVAL_TOP_K,
    SEARCH_TOP_K,
    SIMILARITY_THRESHOLD,
)
from app.services.vector_store import embed_texts, search

logger = logging.getLogger(__name__)

HF_RERANK_URL = f"https://router.huggingface.co/hf-inference/models/{HF_RERANK_MODEL}"


def search_vectors(query: str, top_k: int = SEARCH_TOP_K, source: str | None = None) -> list[dict]:
    """Embed query and fetch the top_k nearest chunks, optionally restricted to one contract."""
    logger.info("[retrieval:search_vectors] IN  query=%r top_k=%d source=%r", query, top_k, source)
    if not query or not query.strip():
        return []
    vectors = embed_texts([query.strip()])
    if not vectors:
        logger.warning("[retrieval:search_vectors] embed_texts returned empty")
        return []
    candidates = search(vectors[0], top_k=top_k, source=source)
    logger.info(
        "[retrieval:search_vectors] OUT candidates=%d first_scores=%s",
        len(candidates),
        [round(c.get("score", 0.0), 4) for c in candidates[:5]],
    )
    return candidates


def apply_threshold(chunks: list[dict], min_score: float = SIMILARITY_THRESHOLD) -> list[dict]:
    """Drop chunks whose cosine similarity is below min_score."""
    kept = [c for c in chunks if float(c.get("score", 0.0)) >= min_score]
    logger.info("[retrieval:apply_threshold] min_score=%.3f kept=%d/%d", min_score, len(kept), len(chunks))
    return kept


def boost_by_keywords(query: str, candidates: list[dict]) -> list[dict]:
    """
    Reorder candidates so chunks containing query words (e.g. 'termination',
    'indemnify') come first, then by vector score.
    """
    words = [w for w in (query or "").lower().split() if len(w) >= 3]
    if not candidates or not words:
        return candidates

    def keyword_score(c: dict) -> int:
        text = (c.get("text") or "").lower()
        return sum(1 for w in words if w in text)

    return sorted(candidates, key=lambda c: (-keyword_score(c), -c.get("score", 0.0)))


def _parse_rerank_scores(data) -> list[float] | None:
    # Router returns either [s1, s2, ...], [[s1, s2, ...]] or [{"score": s}, ...]
    if isinstance(data, dict):
        data = data.get("scores")
    if not isinstance(data, list) or not data:
        return None
    if len(data) == 1 and isinstance(data[0], list):
        data = data[0]
    scores = []
    for item in data:
        if isinstance(item, (int, float)):
            scores.append(float(item))
        elif isinstance(item, dict):
            scores.append(float(item.get("score", 0.0)))
        elif isinstance(item, list) and item and isinstance(item[0], (int, float)):
            scores.append(float(item[0]))
        else:
            scores.append(0.0)
    return scores


def rerank(query: str, chunks: list[dict], top_k: int = RETRIEVAL_TOP_K) -> list[dict]:
    """
    Rerank candidates with a cross-encoder through the HF Inference API.
    On any failure, or when reranking is disabled, keeps the incoming order.
    """
    if not chunks or not query or not HF_API_KEY or not RERANK_ENABLED:
        return chunks[:top_k]
    inputs = [{"text": query, "text_pair": c.get("text", "")} for c in chunks]
    headers = {"Authorization": f"Bearer {HF_API_KEY}", "Content-Type": "application/json"}
    try:
        with httpx.Client(timeout=RERANK_API_TIMEOUT) as client:
            response = client.post(
                HF_RERANK_URL,
                json={"inputs": inputs, "options": {"wait_for_model": True}},
                headers=headers,
            )
    except httpx.HTTPError as e:
        logger.warning("[retrieval:rerank] request failed: %s", e)
        return chunks[:top_k]
    if response.status_code != 200:
        logger.warning("[retrieval:rerank] HF error %s: %s", response.status_code, response.text[:200])
        return chunks[:top_k]
    scores = _parse_rerank_scores(response.json())
    if scores is None or len(scores) != len(chunks):
        logger.warning("[retrieval:rerank] unexpected response shape; keeping vector order")
        return chunks[:top_k]
    order = sorted(range(len(chunks)), key=lambda i: -scores[i])
    reranked = [chunks[i] for i in order[:top_k]]
    logger.info(
        "[retrieval:rerank] OUT reranked=%d sources=%s",
        len(reranked),
        [r.get("metadata", {}).get("source") for r in reranked],
    )
    return reranked


def retrieve_context(query: str, source: str | None = None, top_k: int = RETRIEVAL_TOP_K) -> list[dict]:
    """
    Pipeline: semantic search (Milvus) -> similarity threshold -> keyword boost -> HF rerank -> top chunks.
    """
    logger.info("[retrieval:retrieve_context] IN  query=%r source=%r", query, source)
    if not query or not query.strip():
        return []
    candidates = search_vectors(query, top_k=SEARCH_TOP_K, source=source)
    candidates = apply_threshold(candidates)
    candidates = boost_by_keywords(query, candidates)
    reranked = rerank(query, candidates, top_k=top_k)
    logger.info("[retrieval:retrieve_context] OUT retrieved %d -> %d", len(candidates), len(reranked))
    return reranked
