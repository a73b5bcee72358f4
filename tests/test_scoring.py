import pytest

from product_match.config import AdminConfig, MatchBandThresholds, ScoringWeights
from product_match.pipeline_types import (
    Guess,
    ImageSignals,
    MatchBand,
    Product,
    SearchIntent,
    SignalAttributes,
)
from product_match.scoring import dimension_score, price_score, score, score_all


SOFA = Product(
    id="p0",
    title="Sofá Minimalista Velvet",
    description="Sofá de 3 lugares com revestimento em veludo cinza, pés de madeira clara e design escandinavo.",
    category="Sala de Estar",
    type="Sofá",
    price=2499.0,
    width=210,
    height=85,
    depth=90,
)

CHAIR = Product(
    id="p1",
    title="Cadeira Eames Wood",
    description="Cadeira icônica com assento em polipropileno branco e base em madeira e metal.",
    category="Sala de Jantar",
    type="Cadeira",
    price=189.9,
)


def test_velvet_sofa_scores_high(velvet_signals):
    scored = score(SOFA, velvet_signals, AdminConfig())

    # text 1.0 * 0.35 + category 0.15 + type 0.20
    assert scored.score == pytest.approx(0.70)
    assert scored.match_band == MatchBand.HIGH
    assert scored.reasons == ["Keyword match", "Category match", "Type match"]
    assert scored.id == "p0"
    assert scored.title == SOFA.title


def test_scoring_is_deterministic(velvet_signals):
    config = AdminConfig()
    assert score(SOFA, velvet_signals, config) == score(SOFA, velvet_signals, config)


def test_no_keywords_means_zero_text_score():
    signals = ImageSignals(category_guess=Guess(value="Sala de Estar", confidence=1.0))
    scored = score(SOFA, signals, AdminConfig())
    assert scored.score == pytest.approx(0.15)
    assert scored.reasons == ["Category match"]
    assert scored.match_band == MatchBand.LOW


def test_category_uses_plural_folding_and_type_allows_containment():
    signals = ImageSignals(
        category_guess=Guess(value="Salas de Estar", confidence=0.9),
        type_guess=Guess(value="Mesa", confidence=0.9),
    )
    table = Product(id="t", title="Mesa de Centro", category="Sala de Estar", type="Mesa de Centro", price=10)
    scored = score(table, signals, AdminConfig())
    assert scored.reasons == ["Category match", "Type match"]


def test_weights_are_not_normalised(velvet_signals):
    config = AdminConfig(
        weights=ScoringWeights(text=1, category=1, type=1, attributes=1, price=1, dimensions=1)
    )
    assert score(SOFA, velvet_signals, config).score == pytest.approx(3.0)


def test_band_boundaries_are_inclusive(velvet_signals):
    config = AdminConfig(match_bands=MatchBandThresholds(high=0.9, medium=0.7))
    assert score(SOFA, velvet_signals, config).match_band == MatchBand.MEDIUM


def test_reasons_are_capped_at_three():
    signals = ImageSignals(
        category_guess=Guess(value="Sala de Estar", confidence=0.9),
        type_guess=Guess(value="Sofá", confidence=0.9),
        keywords=["veludo", "cinza"],
        attributes=SignalAttributes(material=["veludo"], color=["cinza"]),
        intent=SearchIntent(price_max=3000),
    )
    scored = score(SOFA, signals, AdminConfig())
    assert len(scored.reasons) == 3
    assert scored.reasons[0] == "Keyword match"


def test_price_score():
    assert price_score(2499, SearchIntent(price_max=3000)) == 1.0
    assert price_score(2499, SearchIntent(price_max=2000)) == pytest.approx(1 - 499 / 2000)
    assert price_score(2499, SearchIntent(price_min=3000)) == pytest.approx(1 - 501 / 3000)
    assert price_score(10000, SearchIntent(price_max=2000)) == 0.0


def test_price_only_counts_when_intent_has_price(velvet_signals):
    with_price = velvet_signals.model_copy(update={"intent": SearchIntent(price_max=3000)})
    assert score(SOFA, with_price, AdminConfig()).score == pytest.approx(0.80)


def test_dimension_score():
    assert dimension_score(SOFA, SearchIntent(preferred_width=210)) == 1.0
    # 50% off -> 1 - 2 * 0.5 = 0
    assert dimension_score(SOFA, SearchIntent(preferred_width=420)) == 0.0
    assert dimension_score(SOFA, SearchIntent(preferred_width=210, preferred_height=170)) == pytest.approx(0.5)
    # nothing comparable -> neutral
    assert dimension_score(CHAIR, SearchIntent(preferred_width=50)) == 0.5


def test_score_all_sorts_by_score_then_id(velvet_signals):
    twin = SOFA.model_copy(update={"id": "p00"})
    ranked = score_all([CHAIR, twin, SOFA], velvet_signals, AdminConfig())
    assert [c.id for c in ranked] == ["p0", "p00", "p1"]
