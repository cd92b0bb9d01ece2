"""One Ask-LexyBrain turn: persist, detect, retrieve, rank, prompt, generate, persist.

The pipeline is fail-loud. A thread that cannot be resolved, a query that
cannot be embedded, or a completion that cannot be generated aborts the turn
with a typed RagError. Two things degrade instead of failing:

- hybrid search errors: the turn continues on the structured leg and the
  response carries ``fallbackToGeneric``
- an empty ranked source list: no model call is made and the fixed refusal is
  stored and returned (``insufficientContext``)
"""

import asyncio
import logging
import time
from typing import Any

from askbrain.core.capability_detector import CapabilityDetector, get_capability_detector
from askbrain.core.config import get_settings
from askbrain.core.generation import GenerationResult, generate_answer
from askbrain.core.llm_usage import log_llm_usage
from askbrain.core.logging import get_logger, log_with_context
from askbrain.core.prompt_builder import build_rag_prompt, estimate_tokens
from askbrain.core.reranker import rerank
from askbrain.core.retrieval import RetrievalCandidate, fetch_full_context
from askbrain.core.schemas_rag import (
    RagFlags,
    RagModelMetadata,
    RagReferences,
    RagRequest,
    RagResponse,
    RagSource,
    RagUsage,
)
from askbrain.core.training_collector import TrainingCollector, TrainingSample
from askbrain.db.rag_feedback import insert_feedback
from askbrain.db.rag_messages import (
    get_owned_message,
    insert_assistant_message,
    insert_user_message,
    load_thread_history,
)
from askbrain.db.rag_threads import ensure_thread, update_thread_stats, update_thread_title

logger = get_logger(__name__)

NO_MODEL = "n/a"

_REFERENCE_BUCKETS = {
    "keyword": "keywords",
    "listing": "listings",
    "alert": "alerts",
}


def build_references(sources: list[RetrievalCandidate]) -> RagReferences:
    """Group source ids by type; anything unrecognised is a doc."""
    refs = RagReferences()
    for source in sources:
        bucket = _REFERENCE_BUCKETS.get(source.source_type, "docs")
        getattr(refs, bucket).append(source.source_id)
    return refs


def _to_response_sources(sources: list[RetrievalCandidate]) -> list[RagSource]:
    return [
        RagSource(
            id=s.source_id,
            type=s.source_type,
            label=s.source_label,
            score=s.similarity_score,
        )
        for s in sources
    ]


def _flags_dict(flags: RagFlags) -> dict[str, bool]:
    return flags.model_dump(by_alias=True)


async def _prepare_thread(user_id: str, request: RagRequest) -> tuple[dict[str, Any], str]:
    """Resolve the thread and append the user turn. Returns (thread, user_message_id)."""
    thread_metadata = request.meta.model_dump(by_alias=True, exclude_none=True) if request.meta else {}

    thread = await asyncio.to_thread(
        ensure_thread,
        user_id,
        str(request.thread_id) if request.thread_id else None,
        thread_metadata,
    )

    context_json = (
        request.context.model_dump(mode="json", by_alias=True, exclude_none=True)
        if request.context
        else None
    )
    user_message = await asyncio.to_thread(
        insert_user_message,
        thread["id"],
        request.message,
        request.capability,
        context_json,
    )

    if not thread.get("title") and not thread.get("message_count"):
        await asyncio.to_thread(update_thread_title, thread["id"], request.message)

    await asyncio.to_thread(update_thread_stats, thread["id"])
    return thread, user_message["id"]


async def _refuse(
    thread_id: str,
    capability: str,
    degraded: bool,
    started: float,
) -> RagResponse:
    """Persist and return the fixed refusal without calling the model."""
    settings = get_settings()
    refusal = settings.RAG_NO_DATA_MESSAGE
    flags = RagFlags(used_rag=False, fallback_to_generic=degraded, insufficient_context=True)
    latency_ms = int((time.monotonic() - started) * 1000)

    assistant = await asyncio.to_thread(
        insert_assistant_message,
        thread_id,
        refusal,
        NO_MODEL,
        [],
        {"tokens_in": 0, "tokens_out": 0, "latencyMs": latency_ms, "temperature": None},
        _flags_dict(flags),
        False,
        capability,
    )
    await asyncio.to_thread(update_thread_stats, thread_id)

    log_with_context(
        logger,
        logging.WARNING,
        "No sources retrieved, returning refusal",
        event_type="rag_insufficient_context",
        thread_id=thread_id,
        capability=capability,
        degraded=degraded,
    )

    return RagResponse(
        thread_id=thread_id,
        message_id=assistant["id"],
        answer=refusal,
        capability=capability,
        sources=[],
        references=RagReferences(),
        model=RagModelMetadata(
            id=NO_MODEL,
            usage=RagUsage(input_tokens=0, output_tokens=0),
            latency_ms=latency_ms,
        ),
        flags=flags,
    )


async def run_rag_turn(
    user_id: str,
    request: RagRequest,
    detector: CapabilityDetector | None = None,
    collector: TrainingCollector | None = None,
) -> RagResponse:
    """
    Answer one user message inside a thread.

    Args:
        user_id: Authenticated caller
        request: Validated RAG request
        detector: Capability detector (defaults to the configured one)
        collector: Training collector; no capture is attempted when None

    Returns:
        RagResponse for the stored assistant message

    Raises:
        NotFoundError: thread_id unknown or not owned by the caller
        EmbeddingError: query could not be embedded
        GenerationError: model call failed, timed out or returned nothing
        PersistenceError: a thread/message write failed
    """
    settings = get_settings()
    started = time.monotonic()

    thread, _ = await _prepare_thread(user_id, request)
    thread_id = thread["id"]

    detector = detector or get_capability_detector()
    capability = request.capability or detector.detect(request.message)

    context = request.context
    options = request.options
    marketplace = context.marketplaces[0] if context and context.marketplaces else None
    language = options.language if options else None
    keyword_ids = [str(k) for k in context.keyword_ids] if context and context.keyword_ids else []

    log_with_context(
        logger,
        logging.INFO,
        "RAG turn started",
        event_type="rag_turn_start",
        user_id=user_id,
        thread_id=thread_id,
        capability=capability,
        capability_overridden=request.capability is not None,
        marketplace=marketplace,
        keyword_ids=len(keyword_ids),
    )

    retrieval = await fetch_full_context(
        query=request.message,
        user_id=user_id,
        capability=capability,
        marketplace=marketplace,
        language=language,
        keyword_ids=keyword_ids,
    )
    sources = rerank(retrieval.candidates(), top_n=settings.RAG_TOP_N)

    if not sources:
        return await _refuse(thread_id, capability, retrieval.degraded, started)

    history = await asyncio.to_thread(
        load_thread_history, thread_id, settings.RAG_HISTORY_MESSAGES
    )
    # The current turn is already stored; it goes in the prompt as the query
    if history and history[-1] == {"role": "user", "content": request.message}:
        history = history[:-1]

    prompt = await build_rag_prompt(capability, sources, history, request.message)
    prompt_tokens = estimate_tokens(prompt)

    max_tokens = options.max_tokens if options and options.max_tokens else None
    temperature = options.temperature if options else None
    result: GenerationResult = await generate_answer(
        prompt, max_tokens=max_tokens, temperature=temperature
    )

    training_eligible = (
        await collector.check_eligibility(user_id) if collector is not None else False
    )

    flags = RagFlags(
        used_rag=len(sources) > 0,
        fallback_to_generic=retrieval.degraded,
        insufficient_context=False,
    )
    assistant = await asyncio.to_thread(
        insert_assistant_message,
        thread_id,
        result.text,
        result.model,
        [s.summary() for s in sources],
        {
            "tokens_in": result.input_tokens,
            "tokens_out": result.output_tokens,
            "promptTokensEstimate": prompt_tokens,
            "latencyMs": result.latency_ms,
            "temperature": temperature if temperature is not None else settings.RAG_DEFAULT_TEMPERATURE,
        },
        _flags_dict(flags),
        training_eligible,
        capability,
    )
    await asyncio.to_thread(update_thread_stats, thread_id)

    await asyncio.to_thread(
        log_llm_usage, result, user_id, thread_id, assistant["id"], capability
    )

    if training_eligible:
        collector.submit(
            TrainingSample(
                user_id=user_id,
                message_id=assistant["id"],
                prompt=prompt,
                response=result.text,
                sources=sources,
                capability=capability,
                market=marketplace,
                niche_terms=[s.source_label for s in sources if s.source_type == "keyword"],
                model_id=result.model,
                latency_ms=result.latency_ms,
            )
        )

    log_with_context(
        logger,
        logging.INFO,
        "RAG turn completed",
        event_type="rag_turn_complete",
        thread_id=thread_id,
        message_id=assistant["id"],
        capability=capability,
        sources=len(sources),
        degraded=retrieval.degraded,
        training_eligible=training_eligible,
        total_ms=int((time.monotonic() - started) * 1000),
    )

    return RagResponse(
        thread_id=thread_id,
        message_id=assistant["id"],
        answer=result.text,
        capability=capability,
        sources=_to_response_sources(sources),
        references=build_references(sources),
        model=RagModelMetadata(
            id=result.model,
            usage=RagUsage(input_tokens=result.input_tokens, output_tokens=result.output_tokens),
            latency_ms=result.latency_ms,
        ),
        flags=flags,
    )


async def record_feedback(
    message_id: str,
    user_id: str,
    rating: str,
    feedback_text: str | None = None,
) -> dict[str, Any]:
    """
    Rate a message in one of the caller's threads.

    Raises:
        NotFoundError: message absent or in another user's thread
        PersistenceError: the write failed
    """
    await asyncio.to_thread(get_owned_message, message_id, user_id)
    feedback = await asyncio.to_thread(
        insert_feedback, message_id, user_id, rating, feedback_text
    )
    logger.info(f"Feedback '{rating}' recorded on message {message_id}")
    return feedback
