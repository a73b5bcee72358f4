from __future__ import annotations

from typing import List, Optional, Protocol

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from .config import VISION_MODEL, AdminConfig
from .errors import ProviderInvalidResponseError
from .llm_client import GeminiClient, classify_provider_error
from .normalize import tokenize
from .pipeline_types import ImageSignals, SearchCriteria
from .prompts import SIGNAL_SYSTEM_PROMPT, build_signal_prompt

VISION_TEMPERATURE = 0.2


class SignalExtractor(Protocol):
    def extract(self, image_bytes: bytes, mime_type: str, prompt: Optional[str] = None) -> ImageSignals: ...


class GeminiSignalExtractor:
    """Image (+ optional user text) -> ImageSignals via a Gemini vision model."""

    def __init__(self, client: GeminiClient, model: str = VISION_MODEL) -> None:
        self.client = client
        self.model = model

    def extract(self, image_bytes: bytes, mime_type: str, prompt: Optional[str] = None) -> ImageSignals:
        try:
            raw = self.client.generate_json_from_image(
                SIGNAL_SYSTEM_PROMPT,
                build_signal_prompt(prompt),
                image_bytes,
                mime_type,
                VISION_TEMPERATURE,
                response_schema=ImageSignals,
                model=self.model,
            )
        except Exception as e:
            raise classify_provider_error(e) from e

        try:
            signals = ImageSignals.model_validate_json(raw)
        except PydanticValidationError as e:
            raise ProviderInvalidResponseError(
                "Vision model returned invalid signals", detail=str(e)
            ) from e

        logger.info(
            "Extracted signals: category={!r} ({:.2f}) type={!r} ({:.2f}) keywords={}",
            signals.category_guess.value, signals.category_guess.confidence,
            signals.type_guess.value, signals.type_guess.confidence,
            signals.keywords,
        )
        return signals


def signals_from_prompt(prompt: Optional[str]) -> ImageSignals:
    """Keyword-only signals built from the user's text, used when vision is unavailable."""
    keywords: List[str] = []
    seen = set()
    for tok in tokenize(prompt):
        if tok not in seen:
            seen.add(tok)
            keywords.append(tok)
    return ImageSignals(keywords=keywords)


def _dedupe_keywords(keywords: List[str]) -> List[str]:
    out: List[str] = []
    seen = set()
    for kw in keywords:
        k = (kw or "").strip()
        if not k or k.lower() in seen:
            continue
        seen.add(k.lower())
        out.append(k)
    return out


def criteria_from_signals(signals: ImageSignals, config: AdminConfig) -> SearchCriteria:
    """
    Category and type filters are only used when the category filter is on
    and the guess is confident enough.
    """
    category: Optional[str] = None
    type_: Optional[str] = None
    threshold = config.min_category_confidence

    if config.use_category_filter:
        if signals.category_guess.value and signals.category_guess.confidence >= threshold:
            category = signals.category_guess.value
        if signals.type_guess.value and signals.type_guess.confidence >= threshold:
            type_ = signals.type_guess.value

    return SearchCriteria(
        category=category,
        type=type_,
        keywords=_dedupe_keywords(signals.keywords),
        limit=config.candidate_top_n,
    )
