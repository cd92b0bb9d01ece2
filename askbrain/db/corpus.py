"""Database operations for the retrieval corpus (hybrid search + keywords)."""

from typing import Any

from askbrain.core.logging import get_logger
from askbrain.db.supabase_client import get_supabase

logger = get_logger(__name__)

KEYWORD_COLUMNS = (
    "id, term, demand_index, competition_score, trend_momentum, "
    "engagement_score, ai_opportunity_score"
)


def search_corpus(
    query: str,
    embedding: list[float],
    capability: str,
    marketplace: str | None = None,
    language: str | None = None,
    limit: int = 40,
) -> list[dict[str, Any]]:
    """
    Run the hybrid (vector + full-text) corpus search RPC.

    Args:
        query: Raw query text for the full-text leg
        embedding: Query embedding for the vector leg
        capability: Capability used by the RPC to scope source types
        marketplace: Optional marketplace filter
        language: Optional two-letter language filter
        limit: Max rows to return

    Returns:
        Rows ranked by combined score, each with id, source_type, chunk,
        combined_score, owner_scope and metadata

    Raises:
        Exception: If the RPC call fails
    """
    supabase = get_supabase()

    response = supabase.rpc(
        "ai_corpus_rrf_search",
        {
            "p_query": query or None,
            "p_query_embedding": embedding,
            "p_capability": capability,
            "p_marketplace": marketplace,
            "p_language": language,
            "p_limit": limit,
        },
    ).execute()

    return response.data or []


def fetch_keywords_by_ids(keyword_ids: list[str]) -> list[dict[str, Any]]:
    """
    Fetch keyword metrics for explicitly referenced keyword ids.

    Args:
        keyword_ids: Keyword UUIDs as strings

    Returns:
        Keyword rows (empty when no ids are given)

    Raises:
        Exception: If the query fails
    """
    if not keyword_ids:
        return []

    supabase = get_supabase()

    response = (
        supabase.table("keywords")
        .select(KEYWORD_COLUMNS)
        .in_("id", keyword_ids)
        .execute()
    )

    return response.data or []
