"""Database operations for fine-tuning capture (lexybrain_requests/responses)."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from askbrain.core.logging import get_logger
from askbrain.db.supabase_client import get_supabase

logger = get_logger(__name__)


def insert_training_request(
    user_id: UUID | str,
    prompt: str,
    context_json: dict[str, Any],
    insight_type: str,
    market: str | None = None,
    niche_terms: list[str] | None = None,
) -> str:
    """
    Insert the request half of a training pair.

    Returns:
        New request id

    Raises:
        ValueError: If no row is returned
        Exception: If the insert fails
    """
    supabase = get_supabase()

    response = (
        supabase.table("lexybrain_requests")
        .insert(
            {
                "user_id": str(user_id),
                "prompt": prompt,
                "context_json": context_json,
                "requested_at": datetime.now(timezone.utc).isoformat(),
                "insight_type": insight_type,
                "market": market or "general",
                "niche_terms": niche_terms or [],
            }
        )
        .execute()
    )

    if not response.data:
        raise ValueError("Failed to insert training request")

    return response.data[0]["id"]


def insert_training_response(
    request_id: str,
    answer: str,
    tokens_in: int,
    tokens_out: int,
    model_name: str = "rag_chat",
    latency_ms: int = 0,
) -> None:
    """
    Insert the response half of a training pair, linked to request_id.

    Raises:
        Exception: If the insert fails
    """
    supabase = get_supabase()

    supabase.table("lexybrain_responses").insert(
        {
            "request_id": request_id,
            "model_name": model_name,
            "output_json": {"answer": answer},
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "latency_ms": latency_ms,
            "success": True,
            "tokens_in": tokens_in,
            "tokens_out": tokens_out,
        }
    ).execute()
