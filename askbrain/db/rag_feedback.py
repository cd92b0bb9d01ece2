"""Database operations for operator feedback on assistant messages."""

from typing import Any
from uuid import UUID

from askbrain.core.errors import PersistenceError
from askbrain.core.logging import get_logger
from askbrain.db.supabase_client import get_supabase

logger = get_logger(__name__)


def insert_feedback(
    message_id: UUID | str,
    user_id: UUID | str,
    rating: str,
    feedback_text: str | None = None,
) -> dict[str, Any]:
    """
    Record a rating on a message. Ownership is checked by the caller.

    Raises:
        PersistenceError: If the insert fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("rag_feedback")
            .insert(
                {
                    "message_id": str(message_id),
                    "user_id": str(user_id),
                    "rating": rating,
                    "feedback_text": feedback_text,
                }
            )
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to record feedback on message {message_id}: {e}")
        raise PersistenceError(f"Failed to record feedback: {e}") from e

    if not response.data:
        raise PersistenceError("Failed to record feedback: no data returned")

    return response.data[0]
