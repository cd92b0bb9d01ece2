"""Database operations for RAG conversation threads.

Threads are never hard-deleted; archiving hides them from default listings.
``message_count`` and ``last_message_at`` are derived from live messages and
recomputed by ``update_thread_stats`` after each insert.

Ownership mismatches are reported as NotFoundError so callers cannot probe
for other users' thread ids.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from askbrain.core.errors import NotFoundError, PersistenceError
from askbrain.core.logging import get_logger
from askbrain.db.supabase_client import get_supabase

logger = get_logger(__name__)

TITLE_MAX_CHARS = 100


def get_thread(thread_id: UUID | str, user_id: UUID | str) -> dict[str, Any] | None:
    """
    Get a thread owned by user_id.

    Returns:
        Thread row, or None when absent or owned by someone else

    Raises:
        PersistenceError: If the query fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("rag_threads")
            .select("*")
            .eq("id", str(thread_id))
            .eq("user_id", str(user_id))
            .maybe_single()
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to fetch thread {thread_id}: {e}")
        raise PersistenceError(f"Failed to fetch thread: {e}") from e

    if not response or not response.data:
        return None
    return response.data


def ensure_thread(
    user_id: UUID | str,
    thread_id: UUID | str | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Fetch the caller's thread, or create a new one when thread_id is omitted.

    Args:
        user_id: Owning user
        thread_id: Existing thread to continue (optional)
        metadata: Metadata for a newly created thread (client, version)

    Returns:
        Thread row

    Raises:
        NotFoundError: If thread_id is unknown or owned by another user
        PersistenceError: If the fetch or insert fails
    """
    if thread_id:
        thread = get_thread(thread_id, user_id)
        if not thread:
            logger.warning(f"Thread {thread_id} not found for user {user_id}")
            raise NotFoundError(f"Thread {thread_id} not found")
        return thread

    supabase = get_supabase()

    try:
        response = (
            supabase.table("rag_threads")
            .insert(
                {
                    "user_id": str(user_id),
                    "title": None,  # Set from the first user message
                    "metadata": metadata or {},
                }
            )
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to create thread for user {user_id}: {e}")
        raise PersistenceError(f"Failed to create thread: {e}") from e

    if not response.data:
        raise PersistenceError("Failed to create thread: no data returned")

    thread = response.data[0]
    logger.info(f"Created thread {thread['id']} for user {user_id}")
    return thread


def update_thread_title(thread_id: UUID | str, title: str) -> str:
    """
    Set the thread title, truncated to 100 characters. Idempotent.

    Returns:
        The stored title
    """
    truncated = title[:TITLE_MAX_CHARS]
    supabase = get_supabase()

    try:
        supabase.table("rag_threads").update({"title": truncated}).eq(
            "id", str(thread_id)
        ).execute()
    except Exception as e:
        logger.error(f"Failed to update title for thread {thread_id}: {e}")
        raise PersistenceError(f"Failed to update thread title: {e}") from e

    logger.debug(f"Thread {thread_id} title set to '{truncated}'")
    return truncated


def update_thread_stats(thread_id: UUID | str) -> dict[str, Any]:
    """
    Recompute message_count and last_message_at from live messages.

    Reads only the newest live message plus an exact count, so the cost does
    not grow with thread length beyond the count itself.

    Returns:
        Dict with the written message_count and last_message_at
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("rag_messages")
            .select("id, created_at", count="exact")
            .eq("thread_id", str(thread_id))
            .is_("deleted_at", "null")
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )

        rows = response.data or []
        count = response.count if response.count is not None else len(rows)
        stats = {
            "message_count": count,
            "last_message_at": rows[0]["created_at"]
            if rows
            else datetime.now(timezone.utc).isoformat(),
        }

        supabase.table("rag_threads").update(stats).eq("id", str(thread_id)).execute()
    except Exception as e:
        logger.error(f"Failed to update stats for thread {thread_id}: {e}")
        raise PersistenceError(f"Failed to update thread stats: {e}") from e

    return stats


def archive_thread(thread_id: UUID | str, user_id: UUID | str) -> None:
    """
    Archive a thread owned by user_id.

    Raises:
        NotFoundError: If the thread is absent or owned by another user
        PersistenceError: If the update fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("rag_threads")
            .update({"archived": True})
            .eq("id", str(thread_id))
            .eq("user_id", str(user_id))
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to archive thread {thread_id}: {e}")
        raise PersistenceError(f"Failed to archive thread: {e}") from e

    if not response.data:
        raise NotFoundError(f"Thread {thread_id} not found")

    logger.info(f"Archived thread {thread_id} for user {user_id}")


def list_threads(
    user_id: UUID | str,
    limit: int = 20,
    include_archived: bool = False,
) -> list[dict[str, Any]]:
    """List a user's threads, most recently active first."""
    supabase = get_supabase()

    try:
        query = supabase.table("rag_threads").select("*").eq("user_id", str(user_id))
        if not include_archived:
            query = query.eq("archived", False)
        response = query.order("last_message_at", desc=True).limit(limit).execute()
    except Exception as e:
        logger.error(f"Failed to list threads for user {user_id}: {e}")
        raise PersistenceError(f"Failed to list threads: {e}") from e

    return response.data or []
