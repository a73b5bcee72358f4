from __future__ import annotations

from typing import Any, Optional, Protocol

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from loguru import logger

from .errors import (
    InternalError,
    PipelineError,
    ProviderAuthError,
    ProviderRateLimitError,
)


class LLMClient(Protocol):
    """Anything that turns a prompt into raw JSON text."""

    def generate_json(
        self,
        system_instruction: str,
        prompt: str,
        temperature: float,
        max_output_tokens: int,
        response_schema: Optional[Any] = None,
        model: Optional[str] = None,
    ) -> str: ...


def _status_of(exc: BaseException) -> Optional[int]:
    for attr in ("code", "status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def classify_provider_error(exc: BaseException) -> PipelineError:
    """
    Map an SDK / transport exception onto the error taxonomy:
    401/403 -> auth, 429 -> rate limit, anything else -> internal.
    Already-classified errors pass through unchanged.
    """
    if isinstance(exc, PipelineError):
        return exc

    status = _status_of(exc)
    detail = f"{type(exc).__name__}: {exc}"
    if status in (401, 403):
        return ProviderAuthError("Invalid API key", detail=detail)
    if status == 429:
        return ProviderRateLimitError("Provider quota exceeded", detail=detail)
    return InternalError(str(exc) or "Unknown provider error", detail=detail)


class GeminiClient:
    """Thin wrapper over google-genai with errors mapped to our taxonomy."""

    def __init__(
        self,
        api_key: str,
        model: str,
        client: Optional[genai.Client] = None,
        timeout_ms: Optional[int] = None,
    ) -> None:
        self.model = model
        self.timeout_ms = timeout_ms
        if client is None:
            # per-request HTTP timeout, milliseconds
            http_options = types.HttpOptions(timeout=timeout_ms) if timeout_ms else None
            client = genai.Client(api_key=api_key, http_options=http_options)
        self._client = client

    def _generate(self, model: str, contents: Any, config: types.GenerateContentConfig) -> str:
        try:
            response = self._client.models.generate_content(
                model=model,
                contents=contents,
                config=config,
            )
        except genai_errors.APIError as e:
            err = classify_provider_error(e)
            logger.warning("Gemini call failed ({}): {}", err.code.value, e)
            raise err from e

        text = response.text
        if not text:
            raise InternalError("Empty response from provider", detail=f"model={model}")
        return text

    def generate_json(
        self,
        system_instruction: str,
        prompt: str,
        temperature: float,
        max_output_tokens: int,
        response_schema: Optional[Any] = None,
        model: Optional[str] = None,
    ) -> str:
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            response_mime_type="application/json",
            response_schema=response_schema,
        )
        return self._generate(model or self.model, prompt, config)

    def generate_json_from_image(
        self,
        system_instruction: str,
        prompt: str,
        image_bytes: bytes,
        mime_type: str,
        temperature: float,
        response_schema: Optional[Any] = None,
        model: Optional[str] = None,
    ) -> str:
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=temperature,
            response_mime_type="application/json",
            response_schema=response_schema,
        )
        contents = [
            types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
            prompt,
        ]
        return self._generate(model or self.model, contents, config)


def make_client(api_key: str, model: str, timeout_ms: Optional[int] = None) -> GeminiClient:
    if not api_key or not api_key.strip():
        raise ProviderAuthError("Missing API key")
    return GeminiClient(api_key=api_key.strip(), model=model, timeout_ms=timeout_ms)


__all__ = [
    "LLMClient",
    "GeminiClient",
    "classify_provider_error",
    "make_client",
]
