import pytest
from pydantic import ValidationError

from product_match.config import (
    AdminConfig,
    ErrorBody,
    HealthResponse,
    MatchBandThresholds,
    ResponseMeta,
    SearchEnvelope,
)


def test_admin_config_rejects_unknown_keys():
    with pytest.raises(ValidationError):
        AdminConfig.model_validate({"candidate_top_n": 10, "surprise": True})


def test_match_bands_must_be_ordered():
    with pytest.raises(ValidationError):
        MatchBandThresholds(high=0.2, medium=0.5)
    assert MatchBandThresholds(high=0.5, medium=0.5).high == 0.5


def test_search_envelope_structure():
    env = SearchEnvelope(
        error=ErrorBody(code="VALIDATION_ERROR", message="bad"),
        meta=ResponseMeta(request_id="req_1"),
    )
    dumped = env.model_dump(mode="json")
    assert dumped["data"] is None
    assert dumped["error"] == {"code": "VALIDATION_ERROR", "message": "bad"}
    assert dumped["meta"]["notices"] == []


def test_health_response():
    health = HealthResponse(status="healthy")
    assert health.status == "healthy"
