"""Layered prompt assembly for RAG generation.

Fixed section order:
  1. system instructions
  2. capability role instructions
  3. retrieved context (or the no-data refusal instruction)
  4. conversation history (omitted when the thread has none)
  5. current user query
  6. closing directives

Instructions come from ``lexybrain_prompt_configs`` when an active row exists,
otherwise from the defaults below, so a missing config never blocks a turn.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import TYPE_CHECKING, Any

from askbrain.core.config import get_settings
from askbrain.core.logging import get_logger, log_with_context

if TYPE_CHECKING:
    from askbrain.core.retrieval import RetrievalCandidate

logger = get_logger(__name__)


DEFAULT_SYSTEM_INSTRUCTIONS = """You are LexyBrain, an AI analyst for LexyHub, a marketplace intelligence platform for online sellers.

STRICT RULES:
1. Base factual claims ONLY on the retrieved context
2. Cite sources when referencing specific metrics or trends
3. When data is missing, say what you don't know
4. Never invent metrics, listings, or seller names
5. Prefer quantitative insights over opinions"""

DEFAULT_CAPABILITY_INSTRUCTIONS: dict[str, str] = {
    "market_brief": (
        "Give a market overview from the provided keywords and trends: overall demand and "
        "competition, top opportunities, key risks, and recommended actions."
    ),
    "competitor_intel": (
        "Analyze competitor listings and shops: top performers, pricing patterns, "
        "and differentiation opportunities, with concrete examples."
    ),
    "keyword_explanation": (
        "Explain why the keyword matters: its metrics, seasonality, related keywords, "
        "and any trademark or policy risk."
    ),
    "alert_explanation": (
        "Explain why the alert fired, how severe it is, and the steps to mitigate it."
    ),
    "general_chat": (
        "Answer general questions about marketplace selling and LexyHub. "
        "Be honest about what the available data does not cover."
    ),
}

NO_DATA_INSTRUCTION = (
    "No specific data retrieved: there is no data in the LexyHub corpus for this query.\n"
    "Do not invent metrics, keywords, listings, or seller names.\n"
    'Reply with exactly this sentence and nothing else: "{refusal}"'
)

CLOSING_DIRECTIVES = [
    "Answer the query based on the retrieved context. Cite sources when referencing specific data.",
    "If the context is insufficient, clearly state what information is missing instead of guessing.",
    "Be concise, actionable, and data-driven.",
]

# Keyword metric fields rendered into the evidence block, in display order
_KEYWORD_DETAILS = (
    ("demand_index", "Demand: {}"),
    ("competition_score", "Competition: {}"),
    ("trend_momentum", "Trend: {}%"),
    ("ai_opportunity_score", "Opportunity: {}"),
)


def estimate_tokens(text: str) -> int:
    """Rough token estimate (~4 chars per token), rounded up."""
    return math.ceil(len(text) / 4)


def format_sources(sources: list[RetrievalCandidate], refusal: str | None = None) -> str:
    """Render ranked evidence, or the refusal instruction when there is none."""
    if not sources:
        refusal = refusal or get_settings().RAG_NO_DATA_MESSAGE
        return NO_DATA_INSTRUCTION.format(refusal=refusal)

    lines = [f"Retrieved {len(sources)} relevant sources from LexyHub database:", ""]

    for index, source in enumerate(sources, start=1):
        lines.append(f'{index}. [{source.source_type.upper()}] "{source.source_label}"')

        if source.source_type == "keyword" and source.metadata:
            details = [
                template.format(source.metadata[key])
                for key, template in _KEYWORD_DETAILS
                if source.metadata.get(key) is not None
            ]
            if details:
                lines.append(f"   {', '.join(details)}")

        lines.append(f"   Similarity: {source.similarity_score * 100:.1f}%")
        lines.append(f"   Scope: {source.owner_scope}")
        lines.append("")

    return "\n".join(lines).rstrip()


def format_history(history: list[dict[str, Any]]) -> str:
    """Render prior turns chronologically; empty string when there are none."""
    if not history:
        return ""

    lines = ["=== CONVERSATION HISTORY ==="]
    for msg in history:
        speaker = "User" if msg.get("role") == "user" else "Assistant"
        lines.append(f"{speaker}: {msg.get('content', '')}")
    return "\n".join(lines)


def assemble_prompt(
    capability: str,
    sources: list[RetrievalCandidate],
    history: list[dict[str, Any]],
    user_message: str,
    system_instructions: str | None = None,
    capability_instructions: str | None = None,
    refusal: str | None = None,
) -> str:
    """Compose the prompt from already-loaded instructions. Pure."""
    system_text = system_instructions or DEFAULT_SYSTEM_INSTRUCTIONS
    role_text = capability_instructions or DEFAULT_CAPABILITY_INSTRUCTIONS.get(
        capability, DEFAULT_CAPABILITY_INSTRUCTIONS["general_chat"]
    )

    sections = [
        f"=== SYSTEM INSTRUCTIONS ===\n{system_text}",
        f"=== YOUR ROLE ===\n{role_text}",
        f"=== RETRIEVED CONTEXT ===\n{format_sources(sources, refusal)}",
    ]

    history_text = format_history(history)
    if history_text:
        sections.append(history_text)

    sections.append(f"=== CURRENT USER QUERY ===\n{user_message}")
    sections.append("=== INSTRUCTIONS ===\n" + "\n".join(CLOSING_DIRECTIVES))

    return "\n\n".join(sections)


async def load_instructions(capability: str) -> tuple[str | None, str | None]:
    """Load (system, capability) instructions; failures fall back to defaults."""
    from askbrain.db.prompt_configs import get_capability_prompt, get_system_prompt

    try:
        system_prompt, capability_config = await asyncio.gather(
            asyncio.to_thread(get_system_prompt),
            asyncio.to_thread(get_capability_prompt, capability),
        )
    except Exception as e:
        logger.warning(f"Prompt config load failed, using defaults: {e}")
        return None, None

    role = capability_config["system_instructions"] if capability_config else None
    return system_prompt, role


async def build_rag_prompt(
    capability: str,
    sources: list[RetrievalCandidate],
    history: list[dict[str, Any]],
    user_message: str,
) -> str:
    """Build the complete RAG prompt for one turn."""
    system_prompt, role = await load_instructions(capability)

    prompt = assemble_prompt(
        capability=capability,
        sources=sources,
        history=history,
        user_message=user_message,
        system_instructions=system_prompt,
        capability_instructions=role,
    )

    log_with_context(
        logger,
        logging.DEBUG,
        "RAG prompt constructed",
        event_type="rag_prompt_built",
        capability=capability,
        context_count=len(sources),
        history_count=len(history),
        prompt_length=len(prompt),
    )
    return prompt
