from __future__ import annotations

"""
FastAPI application for the visual product search.

- POST /api/search: multipart image (+ optional prompt) -> ranked products
- /api/admin/*: live config and telemetry, guarded by X-Admin-Token
- Every search response uses the {data, error, meta} envelope
"""

import hmac
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from fastapi import Body, Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from .catalog_build import load_catalog_snapshot
from .config import (
    ADMIN_TOKEN,
    ALLOWED_IMAGE_TYPES,
    CORS_ORIGIN,
    MAX_PROMPT_CHARS,
    MAX_UPLOAD_BYTES,
    RERANK_MODEL,
    VISION_MODEL,
    ErrorBody,
    HealthResponse,
    ResponseMeta,
    SearchEnvelope,
)
from .config_provider import ConfigProvider
from .errors import ErrorCode, ForbiddenError, PipelineError, ProviderError, ValidationError
from .llm_client import make_client
from .pipeline import SearchPipeline, new_request_id
from .pipeline_types import SearchOutcome, TelemetryEvent
from .rerank import Reranker
from .retrieval import RetrievalPlanner
from .signals import GeminiSignalExtractor
from .store import FrameProductStore
from .telemetry import TelemetrySink


# -----------------------
# Error mapping
# -----------------------

_STATUS_BY_CODE = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.PROVIDER_AUTH_ERROR: 401,
    ErrorCode.PROVIDER_RATE_LIMIT: 429,
    ErrorCode.TIMEOUT: 504,
}


def http_status_for(error: PipelineError) -> int:
    status = _STATUS_BY_CODE.get(error.code)
    if status is not None:
        return status
    if isinstance(error, ProviderError):
        return 502
    return 500


def _error_response(error: PipelineError, request_id: str) -> JSONResponse:
    envelope = SearchEnvelope(
        data=None,
        error=ErrorBody(**error.to_payload()),
        meta=ResponseMeta(request_id=request_id),
    )
    return JSONResponse(status_code=http_status_for(error), content=envelope.model_dump(mode="json"))


# -----------------------
# Upload validation
# -----------------------

def sniff_image_type(data: bytes) -> Optional[str]:
    """Content type from magic bytes (jpeg / png / webp), else None."""
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data[:4] == b"\x89PNG":
        return "image/png"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def _read_image(image: Optional[UploadFile]) -> Tuple[bytes, str]:
    if image is None:
        raise ValidationError("Missing image file in multipart body")
    if image.content_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationError(
            f"Invalid file type: {image.content_type}. Allowed types: {', '.join(ALLOWED_IMAGE_TYPES)}"
        )
    data = image.file.read(MAX_UPLOAD_BYTES + 1)
    if not data:
        raise ValidationError("Empty image file")
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValidationError(f"Image exceeds the {MAX_UPLOAD_BYTES // (1024 * 1024)} MB limit")
    if sniff_image_type(data) is None:
        raise ValidationError("Invalid image content: magic bytes do not match expected format.")
    return data, image.content_type


def _clean_prompt(prompt: Optional[str]) -> Optional[str]:
    if prompt is None:
        return None
    if len(prompt) > MAX_PROMPT_CHARS:
        raise ValidationError(f"Prompt must be at most {MAX_PROMPT_CHARS} characters")
    return prompt.strip() or None


# -----------------------
# Composition root
# -----------------------

config_provider = ConfigProvider()
telemetry = TelemetrySink()

_pipeline: Optional[SearchPipeline] = None
_pipeline_lock = threading.Lock()


def _default_extractor(api_key: str) -> GeminiSignalExtractor:
    timeout_ms = config_provider.get_config().timeouts_ms.vision
    return GeminiSignalExtractor(make_client(api_key, VISION_MODEL, timeout_ms=timeout_ms), model=VISION_MODEL)


def _default_reranker(api_key: str) -> Reranker:
    timeout_ms = config_provider.get_config().timeouts_ms.rerank
    return Reranker(make_client(api_key, RERANK_MODEL, timeout_ms=timeout_ms), model=RERANK_MODEL)


def build_pipeline() -> SearchPipeline:
    store = FrameProductStore(load_catalog_snapshot())
    return SearchPipeline(
        planner=RetrievalPlanner(store),
        config_provider=config_provider,
        telemetry=telemetry,
        extractor_factory=_default_extractor,
        reranker_factory=_default_reranker,
    )


def get_pipeline() -> SearchPipeline:
    global _pipeline
    with _pipeline_lock:
        if _pipeline is None:
            _pipeline = build_pipeline()
        return _pipeline


def _record_rejection(request_id: str, error: PipelineError) -> None:
    logger.info("[{}] search rejected: {}", request_id, error.message)
    telemetry.record(
        TelemetryEvent(request_id=request_id, error=error.code.value, error_detail=error.detail or error.message)
    )


def _outcome_payload(outcome: SearchOutcome) -> Dict[str, Any]:
    return {
        "query": {
            "signals": outcome.signals.model_dump(mode="json"),
            "plan": outcome.plan.value,
        },
        "results": [c.model_dump(mode="json") for c in outcome.results],
    }


# -----------------------
# App
# -----------------------

app = FastAPI(title="product-match")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in CORS_ORIGIN.split(",") if o.strip()],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PipelineError)
def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    return _error_response(exc, new_request_id())


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    loc = ".".join(str(p) for p in first.get("loc", ()))
    message = f"Invalid request: {loc} {first.get('msg', '')}".strip()
    return _error_response(ValidationError(message), new_request_id())


@app.on_event("startup")
def startup_event() -> None:
    logger.info("Starting app warmup...")
    try:
        get_pipeline()
    except (OSError, ValueError) as e:
        logger.warning("Catalog warmup failed; will retry on first request: {}", e)
    logger.info("Warmup complete.")


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="healthy")


@app.get("/debug/catalog")
def debug_catalog() -> Dict[str, Any]:
    sample = get_pipeline().planner.sample()
    return {
        "store": "connected",
        "sample_product": sample.model_dump(mode="json") if sample else None,
    }


@app.post("/api/search", response_model=SearchEnvelope)
def search(
    image: Optional[UploadFile] = File(None),
    prompt: Optional[str] = Form(None),
    x_ai_api_key: Optional[str] = Header(None),
):
    request_id = new_request_id()
    try:
        if not x_ai_api_key or not x_ai_api_key.strip():
            raise ValidationError("AI API key is required (X-AI-API-Key header)")
        data, mime_type = _read_image(image)
        user_prompt = _clean_prompt(prompt)
    except ValidationError as e:
        _record_rejection(request_id, e)
        return _error_response(e, request_id)

    try:
        outcome = get_pipeline().search(
            data, mime_type, x_ai_api_key.strip(), prompt=user_prompt, request_id=request_id
        )
    except PipelineError as e:
        return _error_response(e, request_id)
    except Exception as e:
        logger.exception("[{}] unexpected search failure: {}", request_id, e)
        return _error_response(PipelineError("Internal server error", detail=repr(e)), request_id)

    return SearchEnvelope(
        data=_outcome_payload(outcome),
        error=None,
        meta=ResponseMeta(
            request_id=outcome.request_id,
            timings=outcome.timings.model_dump(),
            notices=outcome.notices,
        ),
    )


# -----------------------
# Admin
# -----------------------

def require_admin(x_admin_token: Optional[str] = Header(None)) -> None:
    expected = ADMIN_TOKEN
    if not expected or not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        logger.warning(
            "Unauthorized admin access attempt (token {})",
            "provided" if x_admin_token else "missing",
        )
        raise ForbiddenError("Forbidden: valid admin token required")


@app.get("/api/admin/config", dependencies=[Depends(require_admin)])
def get_config() -> Dict[str, Any]:
    return {"data": config_provider.get_config().model_dump(mode="json")}


@app.patch("/api/admin/config", dependencies=[Depends(require_admin)])
def patch_config(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    updated = config_provider.update_config(payload)
    return {"data": updated.model_dump(mode="json")}


@app.post("/api/admin/config/reset", dependencies=[Depends(require_admin)])
def reset_config() -> Dict[str, Any]:
    return {"data": config_provider.reset_to_defaults().model_dump(mode="json")}


@app.get("/api/admin/telemetry", dependencies=[Depends(require_admin)])
def get_telemetry() -> Dict[str, Any]:
    events = telemetry.get_events()
    return {
        "data": [e.model_dump(mode="json") for e in events],
        "meta": {"count": len(events)},
    }


@app.delete("/api/admin/telemetry", dependencies=[Depends(require_admin)])
def clear_telemetry() -> Dict[str, Any]:
    telemetry.clear()
    return {"data": [], "meta": {"count": 0}}


@app.get("/api/admin/telemetry/export", dependencies=[Depends(require_admin)])
def export_telemetry() -> JSONResponse:
    payload = telemetry.export()
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return JSONResponse(
        content=payload,
        headers={"Content-Disposition": f'attachment; filename="telemetry-export-{stamp}.json"'},
    )
