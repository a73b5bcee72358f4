from __future__ import annotations
"""
Candidate retrieval for the visual product search.

The planner walks a relaxation ladder of progressively looser store queries
and stops at the first step that returns at least ``min_candidates`` products:

    TEXT  full-text search over the keywords (soft-fails when unindexed)
    A     category AND type AND any keyword in title/description
    B     category AND any keyword
    C     any keyword
    D     category OR type (only when no keyword step found anything)

If no step reaches the threshold, the largest partial set wins (earliest
step on ties). Documents that do not fit the Product shape are dropped.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from .config import DEFAULT_MIN_CANDIDATES, DEFAULT_RETRIEVAL_LIMIT, PRODUCT_PROJECTION
from .errors import StoreError
from .pipeline_types import Product, RetrievalPlan, SearchCriteria
from .store import ProductStore


# =============================================================================
# Query builders
# =============================================================================

def clean_keywords(keywords: Sequence[str]) -> List[str]:
    """Strip, drop empties and de-duplicate case-insensitively (order kept)."""
    seen = set()
    out: List[str] = []
    for kw in keywords:
        k = str(kw or "").strip()
        if not k or k.lower() in seen:
            continue
        seen.add(k.lower())
        out.append(k)
    return out


def keyword_clause(keywords: Sequence[str]) -> Dict[str, Any]:
    """Any keyword as a case-insensitive substring of title or description."""
    return {
        "$or": [
            {
                "$or": [
                    {"title": {"$regex": re.escape(kw), "$options": "i"}},
                    {"description": {"$regex": re.escape(kw), "$options": "i"}},
                ]
            }
            for kw in keywords
        ]
    }


def _text_query(c: SearchCriteria) -> Dict[str, Any]:
    return {"$text": {"$search": " ".join(clean_keywords(c.keywords))}}


def _plan_a_query(c: SearchCriteria) -> Dict[str, Any]:
    return {"category": c.category, "type": c.type, **keyword_clause(clean_keywords(c.keywords))}


def _plan_b_query(c: SearchCriteria) -> Dict[str, Any]:
    return {"category": c.category, **keyword_clause(clean_keywords(c.keywords))}


def _plan_c_query(c: SearchCriteria) -> Dict[str, Any]:
    return keyword_clause(clean_keywords(c.keywords))


def _plan_d_query(c: SearchCriteria) -> Dict[str, Any]:
    filters: List[Dict[str, Any]] = []
    if c.category:
        filters.append({"category": c.category})
    if c.type:
        filters.append({"type": c.type})
    return {"$or": filters}


# =============================================================================
# Strategy descriptors
# =============================================================================

@dataclass(frozen=True)
class RetrievalStrategy:
    """
    One rung of the ladder.

    ``applies(criteria)`` decides whether the rung has enough terms to run.
    Rungs are only reached while the minimum is still unmet; ``soft_fail``
    rungs swallow store errors and are skipped.
    """

    plan: RetrievalPlan
    applies: Callable[[SearchCriteria], bool]
    build_query: Callable[[SearchCriteria], Dict[str, Any]]
    soft_fail: bool = False


def _has_keywords(c: SearchCriteria) -> bool:
    return bool(clean_keywords(c.keywords))


DEFAULT_STRATEGIES: Tuple[RetrievalStrategy, ...] = (
    RetrievalStrategy(
        RetrievalPlan.TEXT,
        _has_keywords,
        _text_query,
        soft_fail=True,
    ),
    RetrievalStrategy(
        RetrievalPlan.A,
        lambda c: bool(c.category and c.type and _has_keywords(c)),
        _plan_a_query,
    ),
    RetrievalStrategy(
        RetrievalPlan.B,
        lambda c: bool(c.category and _has_keywords(c)),
        _plan_b_query,
    ),
    RetrievalStrategy(
        RetrievalPlan.C,
        _has_keywords,
        _plan_c_query,
    ),
    RetrievalStrategy(
        RetrievalPlan.D,
        lambda c: bool(c.category or c.type),
        _plan_d_query,
    ),
)


# =============================================================================
# Planner
# =============================================================================

def validate_products(docs: Sequence[Dict[str, Any]], plan: RetrievalPlan) -> List[Product]:
    """Parse store documents; invalid ones are logged and dropped."""
    out: List[Product] = []
    for doc in docs:
        try:
            out.append(Product.model_validate(doc))
        except PydanticValidationError as e:
            logger.warning(
                "Dropping invalid product document id={} (plan {}): {} error(s)",
                doc.get("id", doc.get("_id")), plan.value, e.error_count(),
            )
    return out


class RetrievalPlanner:
    def __init__(
        self,
        store: ProductStore,
        min_candidates: int = DEFAULT_MIN_CANDIDATES,
        limit: int = DEFAULT_RETRIEVAL_LIMIT,
        strategies: Sequence[RetrievalStrategy] = DEFAULT_STRATEGIES,
    ) -> None:
        self.store = store
        self.min_candidates = min_candidates
        self.limit = limit
        self.strategies = tuple(strategies)

    def _run(self, strategy: RetrievalStrategy, criteria: SearchCriteria, limit: int) -> Optional[List[Product]]:
        query = strategy.build_query(criteria)
        try:
            docs = self.store.find(query, projection=PRODUCT_PROJECTION, limit=limit)
        except StoreError as e:
            if strategy.soft_fail:
                logger.warning("Plan {} unavailable, skipping: {}", strategy.plan.value, e.message)
                return None
            raise
        return validate_products(docs, strategy.plan)

    def find_candidates(self, criteria: SearchCriteria) -> Tuple[List[Product], RetrievalPlan]:
        """
        Returns: (products, plan that produced them). Never raises for an
        empty result; ([], D) when nothing matched.
        """
        minimum = criteria.min_candidates or self.min_candidates
        limit = criteria.limit or self.limit

        best: List[Product] = []
        best_plan: Optional[RetrievalPlan] = None
        attempted: List[str] = []

        for strategy in self.strategies:
            if not strategy.applies(criteria):
                continue
            products = self._run(strategy, criteria, limit)
            if products is None:
                continue
            attempted.append(f"{strategy.plan.value}={len(products)}")

            if len(products) >= minimum:
                logger.info(
                    "find_candidates: plan {} satisfied min={} ({}) attempts=[{}]",
                    strategy.plan.value, minimum, len(products), ", ".join(attempted),
                )
                return products, strategy.plan
            if len(products) > len(best):
                best, best_plan = products, strategy.plan

        if best_plan is None:
            logger.info("find_candidates: no results, attempts=[{}]", ", ".join(attempted))
            return [], RetrievalPlan.D

        logger.info(
            "find_candidates: best partial set from plan {} ({} < min={}) attempts=[{}]",
            best_plan.value, len(best), minimum, ", ".join(attempted),
        )
        return best, best_plan

    # -------------------------------------------------------------------------
    # Point lookups
    # -------------------------------------------------------------------------

    def _one(self, query: Dict[str, Any]) -> Optional[Product]:
        doc = self.store.find_one(query)
        if doc is None:
            return None
        products = validate_products([doc], RetrievalPlan.D)
        return products[0] if products else None

    def find_by_id(self, product_id: str) -> Optional[Product]:
        if not product_id or not str(product_id).strip():
            return None
        return self._one({"id": str(product_id).strip()})

    def find_by_title(self, title: str) -> Optional[Product]:
        return self._one({"title": title})

    def sample(self) -> Optional[Product]:
        return self._one({})
