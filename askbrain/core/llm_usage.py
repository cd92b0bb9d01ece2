"""Token and cost accounting for answered RAG turns."""

from typing import Any

from askbrain.core.generation import GenerationResult
from askbrain.core.logging import get_logger
from askbrain.db.supabase_client import get_supabase

logger = get_logger(__name__)

WORKFLOW = "ask_lexybrain"
PROVIDER = "anthropic"

# USD per 1M tokens: (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "claude-haiku-4-5": (0.80, 4.0),
    "claude-3-5-haiku": (0.80, 4.0),
    "claude-sonnet-4-5": (3.0, 15.0),
    "claude-sonnet-4": (3.0, 15.0),
}


def estimate_cost(model: str, tokens_input: int, tokens_output: int) -> float:
    """Estimate cost in USD from the longest matching model family. Unknown models cost $0."""
    family = max((key for key in MODEL_PRICING if model.startswith(key)), key=len, default=None)
    if family is None:
        logger.warning(f"No pricing found for model '{model}', using $0")
        return 0.0

    input_rate, output_rate = MODEL_PRICING[family]
    return round((tokens_input * input_rate + tokens_output * output_rate) / 1_000_000, 6)


def usage_row(
    result: GenerationResult,
    user_id: str,
    thread_id: str,
    message_id: str,
    capability: str,
) -> dict[str, Any]:
    return {
        "workflow": WORKFLOW,
        "model": result.model,
        "provider": PROVIDER,
        "tokens_input": result.input_tokens,
        "tokens_output": result.output_tokens,
        "estimated_cost_usd": estimate_cost(
            result.model, result.input_tokens, result.output_tokens
        ),
        "duration_ms": result.latency_ms,
        "user_id": str(user_id),
        "thread_id": str(thread_id),
        "message_id": str(message_id),
        "capability": capability,
    }


def log_llm_usage(
    result: GenerationResult,
    user_id: str,
    thread_id: str,
    message_id: str,
    capability: str,
) -> None:
    """Record one generation call in llm_usage_log. Failures are logged, never raised."""
    row = usage_row(result, user_id, thread_id, message_id, capability)
    try:
        get_supabase().table("llm_usage_log").insert(row).execute()
    except Exception as e:
        logger.error(f"Failed to log LLM usage for message {message_id}: {e}")
        return

    logger.debug(
        f"LLM usage logged: {capability} model={result.model} "
        f"tokens={result.input_tokens}+{result.output_tokens} "
        f"cost=${row['estimated_cost_usd']:.4f}"
    )
