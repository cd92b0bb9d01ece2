"""Answer generation against the configured chat model."""

import asyncio
import logging
import time
from dataclasses import dataclass

from anthropic import AsyncAnthropic

from askbrain.core.config import get_settings
from askbrain.core.errors import GenerationError
from askbrain.core.logging import get_logger, log_with_context

logger = get_logger(__name__)


@dataclass
class GenerationResult:
    text: str
    model: str
    input_tokens: int
    output_tokens: int
    latency_ms: int


def _get_client() -> AsyncAnthropic:
    settings = get_settings()
    if not settings.ANTHROPIC_API_KEY:
        raise GenerationError("ANTHROPIC_API_KEY is not configured")
    return AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)


async def generate_answer(
    prompt: str,
    max_tokens: int | None = None,
    temperature: float | None = None,
) -> GenerationResult:
    """
    Send the assembled prompt as a single user turn and return the completion.

    Args:
        prompt: Fully assembled RAG prompt
        max_tokens: Output cap (defaults to RAG_DEFAULT_MAX_TOKENS)
        temperature: Sampling temperature (defaults to RAG_DEFAULT_TEMPERATURE)

    Returns:
        GenerationResult with text, model id, token usage and latency

    Raises:
        GenerationError: On client errors, timeout, or an empty completion
    """
    settings = get_settings()
    model = settings.CHAT_MODEL
    max_tokens = max_tokens or settings.RAG_DEFAULT_MAX_TOKENS
    if temperature is None:
        temperature = settings.RAG_DEFAULT_TEMPERATURE

    client = _get_client()
    start = time.monotonic()

    try:
        response = await asyncio.wait_for(
            client.messages.create(
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=[{"role": "user", "content": prompt}],
            ),
            timeout=settings.GENERATION_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as e:
        log_with_context(
            logger,
            logging.ERROR,
            "Generation timed out",
            event_type="rag_generation_timeout",
            model=model,
            timeout_seconds=settings.GENERATION_TIMEOUT_SECONDS,
        )
        raise GenerationError(
            f"Generation timed out after {settings.GENERATION_TIMEOUT_SECONDS}s"
        ) from e
    except Exception as e:
        log_with_context(
            logger,
            logging.ERROR,
            "Generation failed",
            event_type="rag_generation_error",
            model=model,
            error=str(e),
        )
        raise GenerationError(f"Generation failed: {e}") from e

    latency_ms = int((time.monotonic() - start) * 1000)

    text = "".join(
        block.text for block in (response.content or []) if getattr(block, "type", "") == "text"
    ).strip()
    if not text:
        raise GenerationError("Generation returned an empty completion")

    usage = getattr(response, "usage", None)
    result = GenerationResult(
        text=text,
        model=getattr(response, "model", None) or model,
        input_tokens=getattr(usage, "input_tokens", 0) or 0,
        output_tokens=getattr(usage, "output_tokens", 0) or 0,
        latency_ms=latency_ms,
    )

    log_with_context(
        logger,
        logging.INFO,
        "Generation completed",
        event_type="rag_generation_success",
        model=result.model,
        tokens_in=result.input_tokens,
        tokens_out=result.output_tokens,
        latency_ms=latency_ms,
    )
    return result
