from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from loguru import logger

from .config import MAX_REASONS, AdminConfig
from .normalize import contains_either, fraction_matched, stem_match, tokenize_all
from .pipeline_types import ImageSignals, MatchBand, Product, ScoredCandidate, SearchIntent


# ---------------------------------------------------------------------------
# Sub-scores
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SubScores:
    text: float = 0.0
    category: float = 0.0
    type: float = 0.0
    attributes: float = 0.0
    price: float = 0.0
    dimensions: float = 0.0


def _content_tokens(product: Product) -> List[str]:
    return tokenize_all([product.title, product.description])


def text_similarity(keywords: Sequence[str], content_tokens: List[str]) -> float:
    query_tokens = tokenize_all(keywords)
    return fraction_matched(query_tokens, content_tokens)


def category_score(guess: str, product: Product) -> float:
    return 1.0 if stem_match(guess, product.category) else 0.0


def type_score(guess: str, product: Product) -> float:
    if stem_match(guess, product.type) or contains_either(guess, product.type):
        return 1.0
    return 0.0


def price_score(price: float, intent: SearchIntent) -> float:
    lo, hi = intent.price_min, intent.price_max
    if hi and price > hi:
        return max(0.0, 1.0 - (price - hi) / hi)
    if lo and price < lo:
        return max(0.0, 1.0 - (lo - price) / lo)
    return 1.0


def dimension_score(product: Product, intent: SearchIntent) -> float:
    """
    Mean closeness over the preferred dimensions the product also has;
    0.5 when none can be compared.
    """
    pairs = (
        (intent.preferred_width, product.width),
        (intent.preferred_height, product.height),
        (intent.preferred_depth, product.depth),
    )
    parts = [
        max(0.0, 1.0 - 2.0 * abs(actual - preferred) / preferred)
        for preferred, actual in pairs
        if preferred and actual is not None
    ]
    if not parts:
        return 0.5
    return sum(parts) / len(parts)


def compute_subscores(product: Product, signals: ImageSignals) -> SubScores:
    content = _content_tokens(product)
    intent: Optional[SearchIntent] = signals.intent

    text = text_similarity(signals.keywords, content) if signals.keywords else 0.0
    attributes = fraction_matched(tokenize_all(signals.attributes.all_terms()), content)

    price = 0.0
    if intent is not None and intent.has_price():
        price = price_score(product.price, intent)

    dims = 0.0
    if intent is not None and intent.has_dimensions():
        dims = dimension_score(product, intent)

    return SubScores(
        text=text,
        category=category_score(signals.category_guess.value, product),
        type=type_score(signals.type_guess.value, product),
        attributes=attributes,
        price=price,
        dimensions=dims,
    )


# ---------------------------------------------------------------------------
# Band + reasons
# ---------------------------------------------------------------------------

def match_band(total: float, config: AdminConfig) -> MatchBand:
    if total >= config.match_bands.high:
        return MatchBand.HIGH
    if total >= config.match_bands.medium:
        return MatchBand.MEDIUM
    return MatchBand.LOW


def build_reasons(sub: SubScores) -> List[str]:
    checks = (
        (sub.text > 0.6, "Keyword match"),
        (sub.category == 1.0, "Category match"),
        (sub.type == 1.0, "Type match"),
        (sub.attributes > 0.5, "Visual attributes match"),
        (sub.price > 0.8, "Price matches preference"),
        (sub.dimensions > 0.8, "Dimensions match preference"),
    )
    return [label for hit, label in checks if hit][:MAX_REASONS]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def score(product: Product, signals: ImageSignals, config: AdminConfig) -> ScoredCandidate:
    """
    Weighted sum of the sub-scores (weights are not normalised), rounded to
    4 decimals, plus its band and up to three reasons.
    """
    sub = compute_subscores(product, signals)
    w = config.weights
    total = (
        sub.text * w.text
        + sub.category * w.category
        + sub.type * w.type
        + sub.attributes * w.attributes
        + sub.price * w.price
        + sub.dimensions * w.dimensions
    )
    total = round(total, 4)

    logger.debug(
        "score id={} total={} text={:.3f} cat={:.0f} type={:.0f} attr={:.3f} price={:.3f} dims={:.3f}",
        product.id, total, sub.text, sub.category, sub.type, sub.attributes, sub.price, sub.dimensions,
    )

    return ScoredCandidate(
        **product.model_dump(),
        score=total,
        match_band=match_band(total, config),
        reasons=build_reasons(sub),
    )


def score_all(
    products: Sequence[Product],
    signals: ImageSignals,
    config: AdminConfig,
) -> List[ScoredCandidate]:
    """Score and sort by score desc, id asc."""
    scored = [score(p, signals, config) for p in products]
    scored.sort(key=lambda c: (-c.score, c.id))
    return scored
