"""Context retrieval for RAG turns.

Two legs feed the reranker:
  - hybrid search: one ``ai_corpus_rrf_search`` RPC call with the query text
    and its embedding, returning combined-score-ranked corpus rows
  - structured fetch: keywords the caller referenced explicitly by id

The embedding is a hard dependency (EmbeddingError propagates). The search leg
degrades: failure or timeout is logged and yields no candidates, which the
pipeline treats as an insufficient-context condition rather than an error.

Usage:
    from askbrain.core.retrieval import fetch_full_context

    result = await fetch_full_context(
        query="What are the top trending keywords in the wedding niche?",
        user_id=user_id,
        capability="market_brief",
        keyword_ids=["b1f6..."],
    )
    candidates = result.candidates()
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from askbrain.core.config import get_settings
from askbrain.core.embeddings import embed_query
from askbrain.core.logging import get_logger, log_with_context

logger = get_logger(__name__)

LABEL_MAX_CHARS = 100

KEYWORD_METRIC_FIELDS = (
    "demand_index",
    "competition_score",
    "trend_momentum",
    "engagement_score",
    "ai_opportunity_score",
)


# =============================================================================
# Result Models
# =============================================================================


@dataclass
class RetrievalCandidate:
    """One piece of grounding evidence. Never persisted directly."""

    source_id: str
    source_type: str
    source_label: str
    similarity_score: float
    owner_scope: str
    chunk: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def summary(self) -> dict[str, Any]:
        """Compact form stored on the assistant message."""
        return {"id": self.source_id, "type": self.source_type, "score": self.similarity_score}


@dataclass
class RetrievalResult:
    """Joined output of the hybrid search and structured legs."""

    vector_results: list[RetrievalCandidate] = field(default_factory=list)
    structured_keywords: list[dict[str, Any]] = field(default_factory=list)
    degraded: bool = False  # hybrid search failed or timed out

    def candidates(self) -> list[RetrievalCandidate]:
        """Structured keywords (as max-confidence user evidence) plus search rows."""
        structured = [keyword_to_candidate(k) for k in self.structured_keywords]
        seen = {c.source_id for c in structured}
        return structured + [c for c in self.vector_results if c.source_id not in seen]


# =============================================================================
# Row conversion
# =============================================================================


def row_to_candidate(row: dict[str, Any]) -> RetrievalCandidate:
    """Convert an ``ai_corpus_rrf_search`` row into a candidate."""
    chunk = row.get("chunk") or ""
    return RetrievalCandidate(
        source_id=str(row.get("id", "")),
        source_type=row.get("source_type") or "doc",
        source_label=chunk[:LABEL_MAX_CHARS] or "Untitled",
        similarity_score=float(row.get("combined_score") or 0),
        owner_scope=row.get("owner_scope") or "global",
        chunk=chunk,
        metadata=row.get("metadata") or {},
    )


def keyword_to_candidate(keyword: dict[str, Any]) -> RetrievalCandidate:
    """Explicitly requested keywords rank as the caller's own, fully relevant evidence."""
    term = keyword.get("term") or "Untitled"
    return RetrievalCandidate(
        source_id=str(keyword.get("id", "")),
        source_type="keyword",
        source_label=term[:LABEL_MAX_CHARS],
        similarity_score=1.0,
        owner_scope="user",
        chunk=term,
        metadata={k: keyword.get(k) for k in KEYWORD_METRIC_FIELDS if keyword.get(k) is not None},
    )


# =============================================================================
# Retrieval legs
# =============================================================================


async def _hybrid_search(
    query: str,
    embedding: list[float],
    user_id: str,
    capability: str,
    marketplace: str | None,
    language: str | None,
    limit: int,
) -> tuple[list[RetrievalCandidate], bool]:
    """Run the hybrid search leg. Returns (candidates, degraded)."""
    from askbrain.db.corpus import search_corpus

    settings = get_settings()
    start = time.monotonic()

    try:
        rows = await asyncio.wait_for(
            asyncio.to_thread(
                search_corpus,
                query,
                embedding,
                capability,
                marketplace,
                language,
                limit,
            ),
            timeout=settings.SEARCH_TIMEOUT_SECONDS,
        )
    except Exception as e:
        reason = "timeout" if isinstance(e, asyncio.TimeoutError) else str(e)
        log_with_context(
            logger,
            logging.ERROR,
            "Vector search failed",
            event_type="rag_retrieval_error",
            user_id=user_id,
            capability=capability,
            error=reason,
            latency_ms=int((time.monotonic() - start) * 1000),
        )
        return [], True

    # User-scoped rows are visible to their owner only
    candidates = [
        row_to_candidate(row)
        for row in rows
        if row.get("owner_scope") != "user"
        or not row.get("owner_user_id")
        or str(row["owner_user_id"]) == str(user_id)
    ]

    log_with_context(
        logger,
        logging.INFO,
        "Vector search completed",
        event_type="rag_retrieval_success",
        user_id=user_id,
        capability=capability,
        results_count=len(candidates),
        latency_ms=int((time.monotonic() - start) * 1000),
    )
    return candidates, False


async def retrieve(
    query: str,
    user_id: str,
    capability: str,
    marketplace: str | None = None,
    language: str | None = None,
    limit: int | None = None,
) -> list[RetrievalCandidate]:
    """Embed the query and return hybrid search candidates.

    Raises:
        EmbeddingError: If the query cannot be embedded
    """
    settings = get_settings()
    embedding = await embed_query(query)
    candidates, _ = await _hybrid_search(
        query,
        embedding,
        user_id,
        capability,
        marketplace,
        language,
        limit or settings.RAG_SEARCH_LIMIT,
    )
    return candidates


async def fetch_by_ids(entity_ids: list[str]) -> list[dict[str, Any]]:
    """Fetch explicitly referenced keywords. Failures are logged and yield []."""
    if not entity_ids:
        return []

    from askbrain.db.corpus import fetch_keywords_by_ids

    try:
        return await asyncio.to_thread(fetch_keywords_by_ids, entity_ids)
    except Exception as e:
        log_with_context(
            logger,
            logging.ERROR,
            "Failed to fetch keywords by IDs",
            event_type="rag_keyword_fetch_error",
            error=str(e),
        )
        return []


async def fetch_full_context(
    query: str,
    user_id: str,
    capability: str,
    marketplace: str | None = None,
    language: str | None = None,
    keyword_ids: list[str] | None = None,
    limit: int | None = None,
) -> RetrievalResult:
    """Embed once, then run hybrid search and the structured fetch concurrently.

    Raises:
        EmbeddingError: If the query cannot be embedded
    """
    settings = get_settings()
    embedding = await embed_query(query)

    (vector_results, degraded), structured = await asyncio.gather(
        _hybrid_search(
            query,
            embedding,
            user_id,
            capability,
            marketplace,
            language,
            limit or settings.RAG_SEARCH_LIMIT,
        ),
        fetch_by_ids(keyword_ids or []),
    )

    return RetrievalResult(
        vector_results=vector_results,
        structured_keywords=structured,
        degraded=degraded,
    )
