"""Typed containers shared across pipeline modules."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class MatchBand(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class RetrievalPlan(str, Enum):
    """Which ladder step produced the candidate set."""

    TEXT = "TEXT"
    A = "A"
    B = "B"
    C = "C"
    D = "D"


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------

class SearchCriteria(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: Optional[str] = None
    type: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    min_candidates: Optional[int] = Field(None, ge=1)
    limit: Optional[int] = Field(None, ge=1)

    def has_terms(self) -> bool:
        return bool(self.category or self.type or self.keywords)


class Product(BaseModel):
    """
    Catalog entity as returned by the store. Documents keyed by ``_id``
    are accepted and exposed as a string ``id``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    title: str = Field(min_length=1)
    description: str = ""
    category: str
    type: str
    price: float = Field(ge=0)
    width: Optional[float] = Field(None, ge=0)
    height: Optional[float] = Field(None, ge=0)
    depth: Optional[float] = Field(None, ge=0)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        if value is None:
            raise ValueError("product id is required")
        text = str(value).strip()
        if not text:
            raise ValueError("product id is required")
        return text

    @field_validator("description", mode="before")
    @classmethod
    def _none_description(cls, value):
        return "" if value is None else value


class ScoredCandidate(Product):
    score: float
    match_band: MatchBand
    reasons: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Signals (produced by the vision extractor; camelCase on the wire)
# ---------------------------------------------------------------------------

class _CamelModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)


class Guess(_CamelModel):
    value: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class SignalAttributes(_CamelModel):
    style: List[str] = Field(default_factory=list)
    material: List[str] = Field(default_factory=list)
    color: List[str] = Field(default_factory=list)

    def all_terms(self) -> List[str]:
        return [*self.style, *self.material, *self.color]


class SearchIntent(_CamelModel):
    price_min: Optional[float] = Field(None, ge=0)
    price_max: Optional[float] = Field(None, ge=0)
    preferred_width: Optional[float] = Field(None, ge=0)
    preferred_height: Optional[float] = Field(None, ge=0)
    preferred_depth: Optional[float] = Field(None, ge=0)

    def has_price(self) -> bool:
        return bool(self.price_min or self.price_max)

    def has_dimensions(self) -> bool:
        return bool(self.preferred_width or self.preferred_height or self.preferred_depth)


class ImageSignals(_CamelModel):
    category_guess: Guess = Field(default_factory=Guess)
    type_guess: Guess = Field(default_factory=Guess)
    keywords: List[str] = Field(default_factory=list)
    attributes: SignalAttributes = Field(default_factory=SignalAttributes)
    intent: Optional[SearchIntent] = None


# ---------------------------------------------------------------------------
# Rerank
# ---------------------------------------------------------------------------

class RerankResult(BaseModel):
    ranked_ids: List[str] = Field(default_factory=list)
    reasons: Dict[str, List[str]] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------

class StageTimings(BaseModel):
    total_ms: float = 0.0
    vision_ms: float = 0.0
    retrieval_ms: float = 0.0
    rerank_ms: float = 0.0


class PipelineCounts(BaseModel):
    retrieved: int = 0
    reranked: int = 0
    returned: int = 0


class PipelineFallbacks(BaseModel):
    vision_fallback: bool = False
    rerank_fallback: bool = False
    broad_retrieval: bool = False


class TelemetryEvent(BaseModel):
    request_id: str
    timestamp: str = ""
    timings: StageTimings = Field(default_factory=StageTimings)
    counts: PipelineCounts = Field(default_factory=PipelineCounts)
    fallbacks: PipelineFallbacks = Field(default_factory=PipelineFallbacks)
    retrieval_plan: Optional[RetrievalPlan] = None
    error: Optional[str] = None
    error_detail: Optional[str] = None


# ---------------------------------------------------------------------------
# Pipeline output
# ---------------------------------------------------------------------------

class SearchOutcome(BaseModel):
    request_id: str
    signals: ImageSignals
    plan: RetrievalPlan
    results: List[ScoredCandidate] = Field(default_factory=list)
    timings: StageTimings = Field(default_factory=StageTimings)
    fallbacks: PipelineFallbacks = Field(default_factory=PipelineFallbacks)
    notices: List[str] = Field(default_factory=list)
