"""Ownership-aware reranking of retrieval candidates.

The caller's own data outranks shared data even when it is less similar:
primary key is owner scope (user > global > team), secondary key is the
combined similarity score. Python's sort is stable, so candidates that tie on
both keys keep their retrieval order.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from askbrain.core.retrieval import RetrievalCandidate

DEFAULT_TOP_N = 12

SCOPE_PRIORITY: dict[str, int] = {
    "user": 3,
    "global": 2,
    "team": 1,
}


def scope_priority(owner_scope: str | None) -> int:
    """Rank weight of an owner scope; unknown scopes sort last."""
    return SCOPE_PRIORITY.get(owner_scope or "", 0)


def rerank(
    candidates: list[RetrievalCandidate],
    top_n: int = DEFAULT_TOP_N,
) -> list[RetrievalCandidate]:
    """Order candidates by scope priority then similarity, keeping ``top_n``.

    Pure: the input list is not modified.
    """
    if top_n <= 0 or not candidates:
        return []

    ranked = sorted(
        candidates,
        key=lambda c: (scope_priority(c.owner_scope), c.similarity_score),
        reverse=True,
    )
    return ranked[:top_n]
