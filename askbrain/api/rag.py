"""Ask-LexyBrain RAG chat endpoints."""

import asyncio
from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from askbrain.core.auth_middleware import AuthContext, require_auth
from askbrain.core.config import get_settings
from askbrain.core.errors import (
    EmbeddingError,
    GenerationError,
    NotFoundError,
    PersistenceError,
    RagError,
)
from askbrain.core.logging import get_logger
from askbrain.core.rag_pipeline import record_feedback, run_rag_turn
from askbrain.core.schemas_rag import (
    FeedbackRequest,
    LexyBrainPreferences,
    RagRequest,
    RagResponse,
)
from askbrain.core.training_collector import TrainingCollector
from askbrain.db.rag_messages import delete_message, list_messages
from askbrain.db.rag_threads import archive_thread, get_thread, list_threads
from askbrain.db.user_preferences import get_lexybrain_preferences, update_lexybrain_preferences

logger = get_logger(__name__)

router = APIRouter()


def get_training_collector(request: Request) -> TrainingCollector:
    """Collector owned by the app; created on first use when lifespan didn't run."""
    collector = getattr(request.app.state, "training_collector", None)
    if collector is None:
        collector = TrainingCollector(get_settings().TRAINING_QUEUE_SIZE)
        request.app.state.training_collector = collector
    return collector


def _to_http_error(e: RagError) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, EmbeddingError):
        return HTTPException(status_code=503, detail="Embedding service unavailable")
    if isinstance(e, GenerationError):
        return HTTPException(status_code=502, detail="Failed to generate an answer")
    if isinstance(e, PersistenceError):
        return HTTPException(status_code=500, detail="Storage unavailable")
    return HTTPException(status_code=500, detail="Request failed")


@router.post("/rag", response_model=RagResponse, response_model_by_alias=True)
async def ask(
    body: RagRequest,
    auth: AuthContext = Depends(require_auth),
    collector: TrainingCollector = Depends(get_training_collector),
) -> RagResponse:
    """
    Answer one message, creating the thread when threadId is omitted.

    Returns:
        Stored assistant turn with sources, references, model metadata and flags
    """
    try:
        return await run_rag_turn(auth.user_id, body, collector=collector)
    except NotFoundError as e:
        logger.warning(f"RAG request rejected for user {auth.user_id}: {e}")
        raise _to_http_error(e)
    except RagError as e:
        logger.error(f"RAG request failed for user {auth.user_id}: {e}", exc_info=True)
        raise _to_http_error(e)


@router.get("/rag/threads")
async def get_threads(
    limit: int = Query(20, ge=1, le=100, description="Maximum number of threads to return"),
    include_archived: bool = Query(False),
    auth: AuthContext = Depends(require_auth),
) -> Dict[str, Any]:
    """List the caller's threads, most recently active first."""
    try:
        threads = await asyncio.to_thread(list_threads, auth.user_id, limit, include_archived)
    except RagError as e:
        logger.error(f"Error listing threads: {e}", exc_info=True)
        raise _to_http_error(e)

    return {"threads": threads, "total": len(threads)}


@router.get("/rag/threads/{thread_id}/messages")
async def get_thread_messages(
    thread_id: UUID,
    limit: int = Query(100, ge=1, le=500, description="Maximum number of messages to return"),
    auth: AuthContext = Depends(require_auth),
) -> Dict[str, Any]:
    """Live (non-deleted) messages of one of the caller's threads, oldest first."""
    try:
        thread = await asyncio.to_thread(get_thread, thread_id, auth.user_id)
        if not thread:
            raise HTTPException(status_code=404, detail="Thread not found")

        messages = await asyncio.to_thread(list_messages, thread_id, False, limit)
    except RagError as e:
        logger.error(f"Error getting messages: {e}", exc_info=True)
        raise _to_http_error(e)

    return {"thread": thread, "messages": messages, "total": len(messages)}


@router.post("/rag/threads/{thread_id}/archive")
async def archive(
    thread_id: UUID,
    auth: AuthContext = Depends(require_auth),
) -> Dict[str, Any]:
    try:
        await asyncio.to_thread(archive_thread, thread_id, auth.user_id)
    except RagError as e:
        raise _to_http_error(e)

    return {"success": True, "thread_id": str(thread_id)}


@router.delete("/rag/messages/{message_id}")
async def remove_message(
    message_id: UUID,
    auth: AuthContext = Depends(require_auth),
) -> Dict[str, Any]:
    """Soft-delete a message. It stays stored but leaves history and listings."""
    try:
        await asyncio.to_thread(delete_message, message_id, auth.user_id)
    except RagError as e:
        raise _to_http_error(e)

    return {"success": True, "message_id": str(message_id)}


@router.post("/rag/messages/{message_id}/feedback")
async def submit_feedback(
    message_id: UUID,
    body: FeedbackRequest,
    auth: AuthContext = Depends(require_auth),
) -> Dict[str, Any]:
    try:
        feedback = await record_feedback(
            str(message_id), auth.user_id, body.rating, body.feedback_text
        )
    except RagError as e:
        raise _to_http_error(e)

    return {"success": True, "feedback_id": feedback.get("id")}


@router.get("/rag/training/stats")
async def training_stats(
    auth: AuthContext = Depends(require_auth),
    collector: TrainingCollector = Depends(get_training_collector),
) -> Dict[str, Any]:
    """Collector counters plus the caller's own recent collection errors."""
    return collector.stats(user_id=auth.user_id)


@router.get("/rag/preferences", response_model=LexyBrainPreferences, response_model_by_alias=True)
async def get_preferences(auth: AuthContext = Depends(require_auth)) -> LexyBrainPreferences:
    try:
        prefs = await asyncio.to_thread(get_lexybrain_preferences, auth.user_id)
    except RagError as e:
        logger.error(f"Error loading preferences: {e}", exc_info=True)
        raise _to_http_error(e)

    return LexyBrainPreferences(**prefs)


@router.put("/rag/preferences", response_model=LexyBrainPreferences, response_model_by_alias=True)
async def put_preferences(
    body: LexyBrainPreferences,
    auth: AuthContext = Depends(require_auth),
) -> LexyBrainPreferences:
    """Opt in to (or out of) training data capture."""
    try:
        updated = await asyncio.to_thread(
            update_lexybrain_preferences, auth.user_id, body.model_dump()
        )
    except RagError as e:
        logger.error(f"Error updating preferences: {e}", exc_info=True)
        raise _to_http_error(e)

    if not updated:
        raise HTTPException(status_code=404, detail="User profile not found")

    return body
