"""Pydantic schemas for the RAG chat endpoint.

Wire format is camelCase (``threadId``, ``keywordIds`` ...); Python code uses
snake_case attribute names.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Capability = Literal[
    "market_brief",
    "competitor_intel",
    "keyword_explanation",
    "alert_explanation",
    "general_chat",
]

OwnerScope = Literal["user", "team", "global"]

FeedbackRating = Literal["positive", "negative", "neutral"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Request
# ============================================================================


class TimeRange(_CamelModel):
    from_: datetime = Field(..., alias="from")
    to: datetime


class RagRequestContext(_CamelModel):
    """Structured context explicitly referenced by the caller."""

    keyword_ids: list[UUID] = Field(default_factory=list, max_length=50)
    watchlist_ids: list[UUID] = Field(default_factory=list, max_length=10)
    listing_ids: list[UUID] = Field(default_factory=list, max_length=20)
    alert_ids: list[UUID] = Field(default_factory=list, max_length=10)
    shop_url: str | None = None
    marketplaces: list[str] = Field(default_factory=list, max_length=5)
    time_range: TimeRange | None = None


class RagRequestOptions(_CamelModel):
    max_tokens: int | None = Field(default=None, ge=256, le=2048)
    temperature: float | None = Field(default=None, ge=0, le=1)
    language: str | None = Field(default=None, min_length=2, max_length=2)
    plan_code: str | None = None


class RagRequestMeta(_CamelModel):
    client: Literal["web", "extension", "api"] | None = None
    version: str | None = None


class RagRequest(_CamelModel):
    """One conversational turn submitted by an operator."""

    thread_id: UUID | None = None
    message: str = Field(..., min_length=1, max_length=4000)
    capability: Capability | None = None
    context: RagRequestContext | None = None
    options: RagRequestOptions | None = None
    meta: RagRequestMeta | None = None


# ============================================================================
# Response
# ============================================================================


class RagSource(_CamelModel):
    id: str
    type: str
    label: str
    score: float


class RagReferences(_CamelModel):
    keywords: list[str] = Field(default_factory=list)
    listings: list[str] = Field(default_factory=list)
    alerts: list[str] = Field(default_factory=list)
    docs: list[str] = Field(default_factory=list)


class RagUsage(_CamelModel):
    input_tokens: int
    output_tokens: int


class RagModelMetadata(_CamelModel):
    id: str
    usage: RagUsage | None = None
    latency_ms: int


class RagFlags(_CamelModel):
    used_rag: bool = False
    fallback_to_generic: bool = False
    insufficient_context: bool = False


class RagResponse(_CamelModel):
    thread_id: str
    message_id: str
    answer: str
    capability: Capability
    sources: list[RagSource] = Field(default_factory=list)
    references: RagReferences = Field(default_factory=RagReferences)
    model: RagModelMetadata
    flags: RagFlags


# ============================================================================
# Thread management
# ============================================================================


class FeedbackRequest(_CamelModel):
    rating: FeedbackRating
    feedback_text: str | None = Field(default=None, max_length=2000)


class LexyBrainPreferences(_CamelModel):
    training_opt_in: bool = False
