import json

import pytest

from product_match.config import AdminConfig
from product_match.errors import ProviderInvalidResponseError, ProviderRateLimitError
from product_match.pipeline_types import Guess, ImageSignals
from product_match.signals import GeminiSignalExtractor, criteria_from_signals, signals_from_prompt


MODEL_REPLY = {
    "categoryGuess": {"value": "Sala de Estar", "confidence": 0.92},
    "typeGuess": {"value": "Sofá", "confidence": 0.88},
    "keywords": ["veludo", "cinza", "3 lugares"],
    "attributes": {"style": ["escandinavo"], "material": ["veludo"], "color": ["cinza"]},
    "intent": {"priceMax": 3000},
}


class FakeVisionClient:
    def __init__(self, reply):
        self.reply = reply
        self.calls = []

    def generate_json_from_image(self, system_instruction, prompt, image_bytes, mime_type, temperature,
                                 response_schema=None, model=None):
        self.calls.append({"prompt": prompt, "mime_type": mime_type, "model": model})
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


class FakeAPIError(Exception):
    code = 429


def test_extractor_parses_camel_case_reply():
    client = FakeVisionClient(json.dumps(MODEL_REPLY))
    signals = GeminiSignalExtractor(client, model="vision-x").extract(b"\x89PNG", "image/png", "até 3000 reais")

    assert signals.category_guess.value == "Sala de Estar"
    assert signals.type_guess.confidence == pytest.approx(0.88)
    assert signals.attributes.material == ["veludo"]
    assert signals.intent.price_max == 3000
    assert client.calls[0]["mime_type"] == "image/png"
    assert client.calls[0]["model"] == "vision-x"
    assert "até 3000 reais" in client.calls[0]["prompt"]


def test_extractor_rejects_invalid_reply():
    bad = dict(MODEL_REPLY, categoryGuess={"value": "Sala", "confidence": 7})
    with pytest.raises(ProviderInvalidResponseError):
        GeminiSignalExtractor(FakeVisionClient(json.dumps(bad))).extract(b"", "image/png")

    with pytest.raises(ProviderInvalidResponseError):
        GeminiSignalExtractor(FakeVisionClient("not json")).extract(b"", "image/png")


def test_extractor_classifies_provider_errors():
    with pytest.raises(ProviderRateLimitError):
        GeminiSignalExtractor(FakeVisionClient(FakeAPIError("quota"))).extract(b"", "image/png")


def test_signals_from_prompt_keeps_unique_tokens():
    signals = signals_from_prompt("Sofá de veludo, veludo cinza")
    assert signals.keywords == ["sofá", "veludo", "cinza"]
    assert signals.category_guess.value == ""
    assert signals_from_prompt(None).keywords == []


def test_criteria_uses_confident_category_and_type():
    signals = ImageSignals.model_validate(MODEL_REPLY)
    criteria = criteria_from_signals(signals, AdminConfig())
    assert criteria.category == "Sala de Estar"
    assert criteria.type == "Sofá"
    assert criteria.keywords == ["veludo", "cinza", "3 lugares"]
    assert criteria.limit == 60


def test_criteria_drops_low_confidence_guesses():
    signals = ImageSignals(
        category_guess=Guess(value="Quarto", confidence=0.3),
        type_guess=Guess(value="Cama", confidence=0.5),
        keywords=["Veludo", "veludo ", "  "],
    )
    criteria = criteria_from_signals(signals, AdminConfig())
    assert criteria.category is None
    # threshold is inclusive
    assert criteria.type == "Cama"
    assert criteria.keywords == ["Veludo"]


def test_criteria_respects_category_filter_switch():
    signals = ImageSignals.model_validate(MODEL_REPLY)
    config = AdminConfig(use_category_filter=False, candidate_top_n=25)
    criteria = criteria_from_signals(signals, config)
    assert criteria.category is None
    assert criteria.type is None
    assert criteria.limit == 25
