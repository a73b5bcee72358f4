from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------
# Paths
# ---------------------------

PROJECT_ROOT = Path(__file__).resolve().parents[1]

DATA_DIR = PROJECT_ROOT / "data"
CATALOG_SNAPSHOT_PATH = DATA_DIR / "catalog_snapshot.json"
GOLDEN_SET_PATH = DATA_DIR / "golden_set.json"


# ---------------------------
# Env helpers
# ---------------------------

def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


# ---------------------------
# Model names (pinned)
# ---------------------------

VISION_MODEL = os.getenv("PM_VISION_MODEL", "gemini-1.5-flash")
RERANK_MODEL = os.getenv("PM_RERANK_MODEL", "gemini-1.5-flash")
REPAIR_MODEL = os.getenv("PM_REPAIR_MODEL", RERANK_MODEL)

RERANK_TEMPERATURE = 0.1
RERANK_MAX_OUTPUT_TOKENS = 2000
REPAIR_TEMPERATURE = 0.0
MAX_REPAIR_ATTEMPTS = 2


# ---------------------------
# Retrieval settings
# ---------------------------

DEFAULT_MIN_CANDIDATES = 10
DEFAULT_RETRIEVAL_LIMIT = 60

# fields returned for every candidate query
PRODUCT_PROJECTION: Dict[str, int] = {
    "title": 1,
    "description": 1,
    "category": 1,
    "type": 1,
    "price": 1,
    "width": 1,
    "height": 1,
    "depth": 1,
}


# ---------------------------
# Scoring / rerank presentation
# ---------------------------

MAX_REASONS = 3
MIN_TOKEN_LENGTH = 3          # tokens of length <= 2 are dropped
RERANK_DESC_CHARS = 200


# ---------------------------
# Telemetry
# ---------------------------

TELEMETRY_CAPACITY = 50


# ---------------------------
# HTTP surface
# ---------------------------

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
MAX_PROMPT_CHARS = 500
ALLOWED_IMAGE_TYPES: List[str] = ["image/jpeg", "image/png", "image/webp"]
ADMIN_TOKEN = os.getenv("PM_ADMIN_TOKEN", "")
CORS_ORIGIN = os.getenv("PM_CORS_ORIGIN", "*")
DEFAULT_USER_INTENT = "Find products similar to the image."


# ---------------------------
# Admin config models
# ---------------------------

class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ScoringWeights(_Strict):
    """Per-factor weights. Not required to sum to 1."""

    text: float = Field(0.35, ge=0.0, le=1.0)
    category: float = Field(0.15, ge=0.0, le=1.0)
    type: float = Field(0.20, ge=0.0, le=1.0)
    attributes: float = Field(0.15, ge=0.0, le=1.0)
    price: float = Field(0.10, ge=0.0, le=1.0)
    dimensions: float = Field(0.05, ge=0.0, le=1.0)


class MatchBandThresholds(_Strict):
    high: float = Field(0.70, ge=0.0, le=2.0)
    medium: float = Field(0.40, ge=0.0, le=2.0)

    @model_validator(mode="after")
    def _ordered(self) -> "MatchBandThresholds":
        if self.high < self.medium:
            raise ValueError("match band 'high' must be >= 'medium'")
        return self


class StageTimeouts(_Strict):
    vision: int = Field(15_000, ge=100, le=120_000)
    retrieval: int = Field(5_000, ge=100, le=120_000)
    rerank: int = Field(12_000, ge=100, le=120_000)
    total: int = Field(30_000, ge=100, le=120_000)


class AdminConfig(_Strict):
    """
    Tunables for a search request. Read once at the start of a request,
    replaced wholesale by ConfigProvider.update_config.
    """

    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    match_bands: MatchBandThresholds = Field(default_factory=MatchBandThresholds)
    candidate_top_n: int = Field(60, ge=1, le=200)
    min_category_confidence: float = Field(0.5, ge=0.0, le=1.0)
    llm_rerank_top_m: int = Field(20, ge=1, le=100)
    enable_llm_rerank: bool = True
    use_category_filter: bool = True
    timeouts_ms: StageTimeouts = Field(default_factory=StageTimeouts)


def boot_admin_config() -> AdminConfig:
    """
    Defaults with stage timeouts overridden from the environment.
    """
    defaults = StageTimeouts()
    timeouts = StageTimeouts(
        vision=_env_int("PM_VISION_TIMEOUT_MS", defaults.vision),
        retrieval=_env_int("PM_RETRIEVAL_TIMEOUT_MS", defaults.retrieval),
        rerank=_env_int("PM_RERANK_TIMEOUT_MS", defaults.rerank),
        total=_env_int("PM_TOTAL_TIMEOUT_MS", defaults.total),
    )
    return AdminConfig(timeouts_ms=timeouts)


# ---------------------------
# Pydantic models shared around the app
# ---------------------------

class ErrorBody(BaseModel):
    code: str
    message: str


class ResponseMeta(BaseModel):
    request_id: str
    timings: Optional[Dict[str, float]] = None
    notices: List[str] = Field(default_factory=list)


class SearchEnvelope(BaseModel):
    """
    Response body for POST /api/search. Exactly one of data / error is set.
    """

    data: Optional[Dict[str, Any]] = None
    error: Optional[ErrorBody] = None
    meta: ResponseMeta


class HealthResponse(BaseModel):
    """
    Response body for GET /health.
    """

    status: str
