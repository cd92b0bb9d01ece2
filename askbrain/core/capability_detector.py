"""Keyword-pattern capability detection for RAG queries.

Cheap, explainable first pass: count how many trigger phrases of each
capability appear in the lowercased query and pick the strict winner. Ties at
the top and queries with no trigger default to ``general_chat``.

The trigger table is plain data handed to the detector, so tenants and tests
can run different rule sets side by side.
"""

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Mapping, Sequence, get_args

from askbrain.core.config import get_settings
from askbrain.core.logging import get_logger, log_with_context
from askbrain.core.schemas_rag import Capability

logger = get_logger(__name__)

CAPABILITIES: tuple[str, ...] = get_args(Capability)

DEFAULT_CAPABILITY: Capability = "general_chat"

DEFAULT_CAPABILITY_PATTERNS: dict[str, list[str]] = {
    "competitor_intel": [
        "competitor",
        "competing",
        "competition listing",
        "other seller",
        "shop performance",
        "top seller",
        "bestseller",
        "similar shop",
        "pricing strategy",
    ],
    "alert_explanation": [
        "alert",
        "warning",
        "risk",
        "violation",
        "compliance",
        "policy",
        "trademark",
        "copyright",
        "banned",
        "suspended",
    ],
    "keyword_explanation": [
        "keyword",
        "term",
        "search term",
        "why is",
        "what does",
        "explain",
        "meaning of",
        "definition",
        "related keyword",
    ],
    "market_brief": [
        "market",
        "niche",
        "industry",
        "overview",
        "analysis",
        "trend",
        "opportunity",
        "brief",
        "summary",
        "state of",
    ],
    "general_chat": [],
}

# Corpus scopes each capability draws evidence from
RETRIEVAL_SCOPES: dict[str, list[str]] = {
    "market_brief": ["keywords", "trends"],
    "competitor_intel": ["listings", "shops", "keywords"],
    "keyword_explanation": ["keywords", "keyword_history", "alerts"],
    "alert_explanation": ["alerts", "risk_rules", "docs"],
    "general_chat": ["docs", "user_keywords", "user_watchlists"],
}


class CapabilityDetector:
    """Maps free-text queries to a capability using a trigger-phrase table."""

    def __init__(self, patterns: Mapping[str, Sequence[str]] | None = None):
        table = DEFAULT_CAPABILITY_PATTERNS if patterns is None else patterns

        unknown = set(table) - set(CAPABILITIES)
        if unknown:
            raise ValueError(f"Unknown capabilities in pattern table: {sorted(unknown)}")

        self._patterns: dict[str, tuple[str, ...]] = {
            capability: tuple(p.lower() for p in table.get(capability, ()))
            for capability in CAPABILITIES
        }

    @classmethod
    def from_json_file(cls, path: str | Path) -> "CapabilityDetector":
        """Load a ``{capability: [trigger, ...]}`` table from a JSON file."""
        with open(path, encoding="utf-8") as f:
            return cls(json.load(f))

    @property
    def patterns(self) -> dict[str, tuple[str, ...]]:
        return dict(self._patterns)

    def scores(self, query: str) -> dict[str, int]:
        """Count matching trigger phrases per capability."""
        normalized = query.lower().strip()
        return {
            capability: sum(1 for trigger in triggers if trigger in normalized)
            for capability, triggers in self._patterns.items()
        }

    def detect(self, query: str) -> Capability:
        """Return the capability with the strictly highest trigger count."""
        scores = self.scores(query)

        best_score = max(scores.values(), default=0)
        leaders = [c for c, s in scores.items() if s == best_score]
        detected = leaders[0] if best_score > 0 and len(leaders) == 1 else DEFAULT_CAPABILITY

        log_with_context(
            logger,
            logging.DEBUG,
            "Capability detected via heuristics",
            event_type="rag_capability_detected",
            message_preview=query.lower().strip()[:50],
            detected=detected,
            scores=scores,
        )
        return detected  # type: ignore[return-value]


def retrieval_scope_for(capability: str) -> list[str]:
    """Corpus scopes consulted for a capability (``docs`` when unknown)."""
    return list(RETRIEVAL_SCOPES.get(capability, ["docs"]))


@lru_cache(maxsize=1)
def get_capability_detector() -> CapabilityDetector:
    """Detector built from configuration (cached per process)."""
    settings = get_settings()
    if settings.CAPABILITY_PATTERNS_PATH:
        logger.info(f"Loading capability patterns from {settings.CAPABILITY_PATTERNS_PATH}")
        return CapabilityDetector.from_json_file(settings.CAPABILITY_PATTERNS_PATH)
    return CapabilityDetector()
