"""Database operations for RAG messages (append-only, soft delete)."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from askbrain.core.errors import NotFoundError, PersistenceError
from askbrain.core.logging import get_logger
from askbrain.db.rag_threads import get_thread, update_thread_stats
from askbrain.db.supabase_client import get_supabase

logger = get_logger(__name__)


def _insert_message(row: dict[str, Any]) -> dict[str, Any]:
    supabase = get_supabase()

    try:
        response = supabase.table("rag_messages").insert(row).execute()
    except Exception as e:
        logger.error(f"Failed to insert {row['role']} message in thread {row['thread_id']}: {e}")
        raise PersistenceError(f"Failed to insert {row['role']} message: {e}") from e

    if not response.data:
        raise PersistenceError(f"Failed to insert {row['role']} message: no data returned")

    message = response.data[0]
    logger.debug(f"Inserted {row['role']} message {message['id']} in thread {row['thread_id']}")
    return message


def insert_user_message(
    thread_id: UUID | str,
    content: str,
    capability: str | None = None,
    context_json: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Append a user turn.

    Args:
        thread_id: Owning thread
        content: Message text
        capability: Capability override supplied with the request, if any
        context_json: Structured request context (ids, marketplaces, time range)

    Returns:
        Inserted message row

    Raises:
        PersistenceError: If the insert fails
    """
    return _insert_message(
        {
            "thread_id": str(thread_id),
            "role": "user",
            "content": content,
            "capability": capability,
            "context_json": context_json,
            "training_eligible": False,
        }
    )


def insert_assistant_message(
    thread_id: UUID | str,
    content: str,
    model_id: str,
    retrieved_source_ids: list[dict[str, Any]],
    generation_metadata: dict[str, Any],
    flags: dict[str, bool],
    training_eligible: bool = False,
    capability: str | None = None,
) -> dict[str, Any]:
    """
    Append an assistant turn with its retrieval and generation record.

    Args:
        thread_id: Owning thread
        content: Answer text
        model_id: Generation model identifier ("n/a" when generation was skipped)
        retrieved_source_ids: Ranked source summaries [{id, type, score}]
        generation_metadata: {tokens_in, tokens_out, latencyMs, temperature}
        flags: {usedRag, fallbackToGeneric, insufficientContext}
        training_eligible: Whether this turn may be captured for fine-tuning
        capability: Resolved capability

    Returns:
        Inserted message row

    Raises:
        PersistenceError: If the insert fails
    """
    return _insert_message(
        {
            "thread_id": str(thread_id),
            "role": "assistant",
            "content": content,
            "capability": capability,
            "model_id": model_id,
            "retrieved_source_ids": retrieved_source_ids,
            "generation_metadata": generation_metadata,
            "flags": flags,
            "training_eligible": training_eligible,
        }
    )


def load_thread_history(thread_id: UUID | str, max_messages: int = 10) -> list[dict[str, str]]:
    """
    Load the most recent live messages in chronological order.

    Returns:
        List of {role, content}, oldest first
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("rag_messages")
            .select("role, content, created_at")
            .eq("thread_id", str(thread_id))
            .is_("deleted_at", "null")
            .order("created_at", desc=True)
            .limit(max_messages)
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to load history for thread {thread_id}: {e}")
        raise PersistenceError(f"Failed to load thread history: {e}") from e

    # Newest-first from the query; reverse to chronological order
    rows = list(reversed(response.data or []))
    return [{"role": row["role"], "content": row["content"]} for row in rows]


def list_messages(
    thread_id: UUID | str,
    include_deleted: bool = False,
    limit: int = 100,
) -> list[dict[str, Any]]:
    """List a thread's messages oldest first."""
    supabase = get_supabase()

    try:
        query = supabase.table("rag_messages").select("*").eq("thread_id", str(thread_id))
        if not include_deleted:
            query = query.is_("deleted_at", "null")
        response = query.order("created_at").limit(limit).execute()
    except Exception as e:
        logger.error(f"Failed to list messages for thread {thread_id}: {e}")
        raise PersistenceError(f"Failed to list messages: {e}") from e

    return response.data or []


def get_owned_message(message_id: UUID | str, user_id: UUID | str) -> dict[str, Any]:
    """
    Get a message whose thread belongs to user_id.

    Raises:
        NotFoundError: If the message is absent or in another user's thread
        PersistenceError: If a query fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("rag_messages")
            .select("id, thread_id, role, deleted_at")
            .eq("id", str(message_id))
            .maybe_single()
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to fetch message {message_id}: {e}")
        raise PersistenceError(f"Failed to fetch message: {e}") from e

    if not response or not response.data:
        raise NotFoundError(f"Message {message_id} not found")

    message = response.data
    if not get_thread(message["thread_id"], user_id):
        raise NotFoundError(f"Message {message_id} not found")

    return message


def delete_message(message_id: UUID | str, user_id: UUID | str | None = None) -> None:
    """
    Soft-delete a message by stamping deleted_at, then refresh the thread's
    message_count and last_message_at. No cascade, no renumbering.

    When user_id is given the message's thread must belong to that user.

    Raises:
        NotFoundError: If ownership is checked and fails
        PersistenceError: If the update fails
    """
    thread_id = None
    if user_id is not None:
        thread_id = get_owned_message(message_id, user_id)["thread_id"]

    supabase = get_supabase()

    try:
        response = supabase.table("rag_messages").update(
            {"deleted_at": datetime.now(timezone.utc).isoformat()}
        ).eq("id", str(message_id)).execute()
    except Exception as e:
        logger.error(f"Failed to delete message {message_id}: {e}")
        raise PersistenceError(f"Failed to delete message: {e}") from e

    if thread_id is None and response.data:
        thread_id = response.data[0].get("thread_id")
    if thread_id is not None:
        update_thread_stats(thread_id)

    logger.debug(f"Soft deleted message {message_id}")
