from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from .config import (
    MAX_REASONS,
    MAX_REPAIR_ATTEMPTS,
    RERANK_MAX_OUTPUT_TOKENS,
    RERANK_MODEL,
    RERANK_TEMPERATURE,
    REPAIR_MODEL,
    REPAIR_TEMPERATURE,
)
from .errors import PipelineError, ProviderInvalidResponseError
from .llm_client import LLMClient, classify_provider_error
from .pipeline_types import ImageSignals, Product, RerankResult, ScoredCandidate
from .prompts import (
    REPAIR_SYSTEM_PROMPT,
    RERANK_SYSTEM_PROMPT,
    build_repair_prompt,
    build_rerank_user_prompt,
)


# ---------------------------------------------------------------------------
# Output schema
# ---------------------------------------------------------------------------

class RankedItem(BaseModel):
    """One element of the strict reranker output array."""

    model_config = ConfigDict(extra="ignore")

    id: str
    reasons: List[str] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


_RANKING_ADAPTER = TypeAdapter(List[RankedItem])
RERANK_RESPONSE_SCHEMA = List[RankedItem]


# ---------------------------------------------------------------------------
# Parse outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Ok:
    items: List[RankedItem]


@dataclass(frozen=True)
class NeedsRepair:
    raw: str
    problem: str


@dataclass(frozen=True)
class Fatal:
    error: PipelineError


ParseOutcome = Union[Ok, NeedsRepair, Fatal]

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", re.DOTALL)


def _unwrap_fence(text: str) -> str:
    m = _FENCE_RE.match(text.strip())
    return m.group(1).strip() if m else text.strip()


def _legacy_items(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """{"rankedIds": [...], "reasons": {id: [...]}} -> strict element list."""
    ranked_ids = payload.get("rankedIds")
    if not isinstance(ranked_ids, list):
        raise ValueError("'rankedIds' must be an array")
    reasons = payload.get("reasons") or {}
    if not isinstance(reasons, dict):
        raise ValueError("'reasons' must be an object keyed by id")
    return [{"id": rid, "reasons": reasons.get(str(rid), [])} for rid in ranked_ids]


def parse_rerank_output(raw: Optional[str]) -> ParseOutcome:
    """
    Pure parse of the model text. Accepts the strict array, an object with a
    "ranking" array, or {"rankedIds", "reasons"}; markdown fences are
    stripped. Anything else needs repair; empty output cannot be repaired.
    """
    if raw is None or not raw.strip():
        return Fatal(ProviderInvalidResponseError("Reranker returned an empty response"))

    text = _unwrap_fence(raw)
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        return NeedsRepair(raw, f"invalid JSON: {e.msg} at position {e.pos}")

    try:
        if isinstance(payload, dict):
            if "ranking" in payload:
                payload = payload["ranking"]
            elif "rankedIds" in payload:
                payload = _legacy_items(payload)
            else:
                return NeedsRepair(raw, "expected a JSON array of {id, reasons}")
        items = _RANKING_ADAPTER.validate_python(payload)
    except ValueError as e:
        # pydantic's ValidationError is a ValueError subclass
        problem = e.errors()[0]["msg"] if isinstance(e, PydanticValidationError) else str(e)
        return NeedsRepair(raw, f"schema mismatch: {problem}")

    return Ok(items)


def finalize_ranking(items: Sequence[RankedItem], candidates: Sequence[Product]) -> RerankResult:
    """
    Keep only known ids (first occurrence wins), then append every candidate
    the model left out in its original order. Reasons are trimmed and capped.
    """
    known = [c.id for c in candidates]
    known_set = set(known)

    ranked: List[str] = []
    seen = set()
    reasons: Dict[str, List[str]] = {}
    dropped = 0
    for item in items:
        if item.id not in known_set or item.id in seen:
            dropped += 1
            continue
        seen.add(item.id)
        ranked.append(item.id)
        cleaned = [r.strip() for r in item.reasons if isinstance(r, str) and r.strip()]
        if cleaned:
            reasons[item.id] = cleaned[:MAX_REASONS]

    if dropped:
        logger.warning("Reranker returned {} unknown or duplicate id(s); dropped", dropped)

    missing = [cid for cid in known if cid not in seen]
    if missing:
        logger.info("Reranker omitted {} candidate(s); appended in original order", len(missing))
    ranked.extend(missing)

    return RerankResult(ranked_ids=ranked, reasons=reasons)


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RerankCallConfig:
    temperature: float = RERANK_TEMPERATURE
    max_output_tokens: int = RERANK_MAX_OUTPUT_TOKENS


class Reranker:
    def __init__(
        self,
        llm: LLMClient,
        model: str = RERANK_MODEL,
        repair_model: str = REPAIR_MODEL,
        max_repair_attempts: int = MAX_REPAIR_ATTEMPTS,
    ) -> None:
        self.llm = llm
        self.model = model
        self.repair_model = repair_model
        self.max_repair_attempts = max_repair_attempts

    def _call(self, system: str, prompt: str, temperature: float, max_tokens: int, model: str) -> str:
        try:
            return self.llm.generate_json(
                system,
                prompt,
                temperature,
                max_tokens,
                response_schema=RERANK_RESPONSE_SCHEMA,
                model=model,
            )
        except Exception as e:
            raise classify_provider_error(e) from e

    def rerank(
        self,
        signals: ImageSignals,
        candidates: Sequence[Product],
        prompt: Optional[str] = None,
        config: Optional[RerankCallConfig] = None,
    ) -> RerankResult:
        """
        Ask the model to order ``candidates``. The result is always a
        permutation of the candidate ids.

        Raises:
            ProviderAuthError / ProviderRateLimitError: immediately, no repair.
            ProviderInvalidResponseError: output still invalid after repair.
            InternalError: any other provider failure.
        """
        if not candidates:
            return RerankResult()

        cfg = config or RerankCallConfig()
        user_prompt = build_rerank_user_prompt(signals, candidates, prompt)
        logger.info("Reranking {} candidates with {}", len(candidates), self.model)

        raw = self._call(RERANK_SYSTEM_PROMPT, user_prompt, cfg.temperature, cfg.max_output_tokens, self.model)
        outcome = parse_rerank_output(raw)

        attempts = 0
        while isinstance(outcome, NeedsRepair):
            if attempts >= self.max_repair_attempts:
                raise ProviderInvalidResponseError(
                    "Reranker output failed validation after repair",
                    detail=f"attempts={attempts} problem={outcome.problem}",
                )
            attempts += 1
            logger.warning("Reranker output needs repair (attempt {}): {}", attempts, outcome.problem)
            raw = self._call(
                REPAIR_SYSTEM_PROMPT,
                build_repair_prompt(outcome.raw, outcome.problem),
                REPAIR_TEMPERATURE,
                cfg.max_output_tokens,
                self.repair_model,
            )
            outcome = parse_rerank_output(raw)

        if isinstance(outcome, Fatal):
            raise outcome.error

        result = finalize_ranking(outcome.items, candidates)
        if attempts:
            logger.info("Reranker output repaired after {} attempt(s)", attempts)
        return result


# ---------------------------------------------------------------------------
# Merge with heuristic order
# ---------------------------------------------------------------------------

def _merge_reasons(heuristic: Sequence[str], model: Sequence[str]) -> List[str]:
    out: List[str] = []
    seen = set()
    for r in [*heuristic, *model]:
        key = r.strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(r.strip())
    return out[:MAX_REASONS]


def apply_rerank(scored: Sequence[ScoredCandidate], result: RerankResult) -> List[ScoredCandidate]:
    """
    Reorder ``scored`` by ``result.ranked_ids``. Candidates the reranker never
    saw keep their heuristic order after the reranked head.
    """
    by_id = {c.id: c for c in scored}
    head: List[ScoredCandidate] = []
    placed = set()
    for cid in result.ranked_ids:
        cand = by_id.get(cid)
        if cand is None or cid in placed:
            continue
        placed.add(cid)
        extra = result.reasons.get(cid, [])
        if extra:
            cand = cand.model_copy(update={"reasons": _merge_reasons(cand.reasons, extra)})
        head.append(cand)

    tail = [c for c in scored if c.id not in placed]
    return head + tail


def split_for_rerank(
    scored: Sequence[ScoredCandidate], top_m: int
) -> Tuple[List[ScoredCandidate], List[ScoredCandidate]]:
    return list(scored[:top_m]), list(scored[top_m:])
