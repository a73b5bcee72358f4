"""Error taxonomy for the search pipeline.

Every terminal failure carries a stable ``code`` and a human-readable
``message``. ``detail`` holds provider payloads / internal context for
operators (logs, telemetry) and is never part of ``to_payload()``.

Usage:
    from product_match.errors import ProviderRateLimitError

    raise ProviderRateLimitError("Quota exceeded", detail=str(exc))
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PROVIDER_AUTH_ERROR = "PROVIDER_AUTH_ERROR"
    PROVIDER_RATE_LIMIT = "PROVIDER_RATE_LIMIT"
    PROVIDER_INVALID_RESPONSE = "PROVIDER_INVALID_RESPONSE"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    STORE_ERROR = "STORE_ERROR"
    TIMEOUT = "TIMEOUT"
    FORBIDDEN = "FORBIDDEN"


class PipelineError(Exception):
    """Base class for all classified errors raised by this package."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_payload(self) -> Dict[str, str]:
        return {"code": self.code.value, "message": self.message}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value!r}, message={self.message!r})"


class ValidationError(PipelineError):
    code = ErrorCode.VALIDATION_ERROR


class ConfigValidationError(ValidationError):
    pass


class ForbiddenError(PipelineError):
    code = ErrorCode.FORBIDDEN


class ProviderError(PipelineError):
    """Failure at the LLM / vision provider boundary."""


class ProviderAuthError(ProviderError):
    code = ErrorCode.PROVIDER_AUTH_ERROR


class ProviderRateLimitError(ProviderError):
    code = ErrorCode.PROVIDER_RATE_LIMIT


class ProviderInvalidResponseError(ProviderError):
    code = ErrorCode.PROVIDER_INVALID_RESPONSE


class InternalError(ProviderError):
    code = ErrorCode.INTERNAL_ERROR


class StoreError(PipelineError):
    code = ErrorCode.STORE_ERROR


class StageTimeoutError(PipelineError):
    code = ErrorCode.TIMEOUT

    def __init__(self, stage: str, timeout_ms: int) -> None:
        super().__init__(
            f"Stage '{stage}' exceeded its {timeout_ms} ms budget",
            detail=f"stage={stage} timeout_ms={timeout_ms}",
        )
        self.stage = stage
        self.timeout_ms = timeout_ms
