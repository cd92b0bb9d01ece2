"""Best-effort capture of prompt/response pairs for fine-tuning.

Turns are handed to a bounded queue drained by one background worker, so the
answer path never waits on (or fails because of) training writes. Nothing here
raises to the caller: eligibility and persistence failures are logged and kept
in an error channel exposed through ``stats()``.

Eligibility is opt-in: a user is eligible only when collection is enabled in
settings AND their LexyBrain preferences carry ``training_opt_in``.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from askbrain.core.config import get_settings
from askbrain.core.logging import get_logger, log_with_context

if TYPE_CHECKING:
    from askbrain.core.retrieval import RetrievalCandidate

logger = get_logger(__name__)


@dataclass
class TrainingSample:
    """One eligible turn awaiting capture."""

    user_id: str
    message_id: str
    prompt: str
    response: str
    sources: list[RetrievalCandidate]
    capability: str
    market: str | None = None
    niche_terms: list[str] = field(default_factory=list)
    model_id: str = "rag_chat"
    latency_ms: int = 0

    def context_json(self) -> dict[str, Any]:
        return {
            "capability": self.capability,
            "market": self.market,
            "niche_terms": self.niche_terms,
            "message_id": self.message_id,
            "sources": [
                {
                    "id": s.source_id,
                    "type": s.source_type,
                    "label": s.source_label,
                    "score": s.similarity_score,
                }
                for s in self.sources
            ],
        }


class TrainingCollector:
    """Bounded background queue that writes training pairs."""

    def __init__(self, max_queue_size: int = 100, max_recent_errors: int = 20):
        self.max_queue_size = max_queue_size
        self.processed = 0
        self.failed = 0
        self.dropped = 0
        self.recent_errors: deque[dict[str, Any]] = deque(maxlen=max_recent_errors)
        self._queue: asyncio.Queue[TrainingSample] | None = None
        self._worker: asyncio.Task | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    # ------------------------------------------------------------------
    # Error channel
    # ------------------------------------------------------------------

    def _record_error(self, stage: str, error: Exception, **context: Any) -> None:
        self.recent_errors.append(
            {
                "stage": stage,
                "error": str(error),
                "at": datetime.now(timezone.utc).isoformat(),
                **context,
            }
        )
        log_with_context(
            logger,
            logging.ERROR,
            "Training data collection failed",
            event_type="training_collection_error",
            stage=stage,
            error=str(error),
            **context,
        )

    def stats(self, user_id: str | None = None) -> dict[str, Any]:
        """Counters plus recent errors, limited to one user's errors when user_id is given."""
        errors = list(self.recent_errors)
        if user_id is not None:
            errors = [e for e in errors if str(e.get("user_id")) == str(user_id)]
        return {
            "running": self.is_running,
            "queued": self._queue.qsize() if self._queue else 0,
            "processed": self.processed,
            "failed": self.failed,
            "dropped": self.dropped,
            "recent_errors": errors,
        }

    # ------------------------------------------------------------------
    # Eligibility + capture
    # ------------------------------------------------------------------

    async def check_eligibility(self, user_id: str) -> bool:
        """True only for users who opted in while collection is enabled."""
        if not get_settings().TRAINING_COLLECTION_ENABLED:
            return False

        from askbrain.db.user_preferences import get_lexybrain_preferences

        try:
            prefs = await asyncio.to_thread(get_lexybrain_preferences, user_id)
        except Exception as e:
            self._record_error("eligibility", e, user_id=user_id)
            return False

        return bool(prefs.get("training_opt_in"))

    async def collect(self, sample: TrainingSample) -> None:
        """Write the request + linked response rows. Never raises."""
        from askbrain.db.training_data import insert_training_request, insert_training_response

        try:
            request_id = await asyncio.to_thread(
                insert_training_request,
                sample.user_id,
                sample.prompt,
                sample.context_json(),
                sample.capability,
                sample.market,
                sample.niche_terms,
            )
            await asyncio.to_thread(
                insert_training_response,
                request_id,
                sample.response,
                math.ceil(len(sample.prompt) / 4),
                math.ceil(len(sample.response) / 4),
                sample.model_id,
                sample.latency_ms,
            )
        except Exception as e:
            self.failed += 1
            self._record_error(
                "persist", e, user_id=sample.user_id, message_id=sample.message_id
            )
            return

        self.processed += 1
        log_with_context(
            logger,
            logging.DEBUG,
            "Training data collected",
            event_type="training_data_collected",
            user_id=sample.user_id,
            message_id=sample.message_id,
            request_id=request_id,
        )

    # ------------------------------------------------------------------
    # Worker lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        """Start the worker on the running event loop."""
        loop = asyncio.get_running_loop()
        if self.is_running and self._loop is loop:
            return

        self._loop = loop
        self._queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._worker = loop.create_task(self._run(self._queue))
        logger.info(f"Training collector started (queue size {self.max_queue_size})")

    async def stop(self, drain_timeout: float = 5.0) -> None:
        """Drain queued samples (bounded wait) and stop the worker."""
        if not self.is_running or self._queue is None:
            return

        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Training collector stopped with {self._queue.qsize()} samples undrained"
            )

        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    def submit(self, sample: TrainingSample) -> bool:
        """Enqueue without blocking. Returns False when the sample is dropped."""
        if not self.is_running or self._loop is not asyncio.get_running_loop():
            self.start()

        try:
            self._queue.put_nowait(sample)
        except asyncio.QueueFull:
            self.dropped += 1
            log_with_context(
                logger,
                logging.WARNING,
                "Training queue full, sample dropped",
                event_type="training_sample_dropped",
                user_id=sample.user_id,
                message_id=sample.message_id,
            )
            return False
        return True

    async def _run(self, queue: asyncio.Queue[TrainingSample]) -> None:
        while True:
            sample = await queue.get()
            try:
                await self.collect(sample)
            finally:
                queue.task_done()
