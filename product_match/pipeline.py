from __future__ import annotations

import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, List, Optional, Tuple, TypeVar

from loguru import logger

from .config import AdminConfig
from .config_provider import ConfigProvider
from .errors import (
    ErrorCode,
    InternalError,
    PipelineError,
    ProviderInvalidResponseError,
    StageTimeoutError,
)
from .pipeline_types import (
    ImageSignals,
    PipelineCounts,
    PipelineFallbacks,
    RetrievalPlan,
    ScoredCandidate,
    SearchOutcome,
    StageTimings,
    TelemetryEvent,
)
from .rerank import Reranker, apply_rerank, split_for_rerank
from .retrieval import RetrievalPlanner
from .scoring import score_all
from .signals import SignalExtractor, criteria_from_signals, signals_from_prompt
from .telemetry import TelemetrySink

T = TypeVar("T")

BROAD_PLANS = (RetrievalPlan.C, RetrievalPlan.D)

NOTICE_VISION_FALLBACK = "Image analysis unavailable; results are based on your text only."
NOTICE_RERANK_FALLBACK = "AI ranking unavailable; showing heuristic ranking."
NOTICE_BROAD_RETRIEVAL = "Few close matches found; showing broader results."
NOTICE_NO_RESULTS = "No matching products found."

# vision failures that may fall back to prompt-derived signals
_VISION_RECOVERABLE = (StageTimeoutError, ProviderInvalidResponseError, InternalError)


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000.0, 1)


class SearchPipeline:
    """
    Vision -> retrieval ladder -> heuristic scoring -> optional LLM rerank.

    Every call records exactly one telemetry event, success or failure.
    """

    def __init__(
        self,
        planner: RetrievalPlanner,
        config_provider: ConfigProvider,
        telemetry: TelemetrySink,
        extractor_factory: Callable[[str], SignalExtractor],
        reranker_factory: Callable[[str], Reranker],
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self.planner = planner
        self.config_provider = config_provider
        self.telemetry = telemetry
        self.extractor_factory = extractor_factory
        self.reranker_factory = reranker_factory
        self.executor = executor

    # -----------------------------------------------------------------------
    # Stage runner
    # -----------------------------------------------------------------------

    def _run_stage(self, stage: str, fn: Callable[[], T], stage_ms: int, deadline: float, total_ms: int) -> T:
        remaining_ms = (deadline - time.perf_counter()) * 1000.0
        if remaining_ms <= 0:
            raise StageTimeoutError("total", total_ms)
        budget_ms = min(float(stage_ms), remaining_ms)

        # one worker per stage call unless a pool was injected; an overrunning
        # call keeps only its own thread busy
        executor = self.executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"pm-{stage}")
        future = executor.submit(fn)
        try:
            return future.result(timeout=budget_ms / 1000.0)
        except FutureTimeoutError as e:
            future.cancel()
            logger.warning("Stage {} overran {:.0f} ms; abandoning the call", stage, budget_ms)
            if budget_ms < stage_ms:
                raise StageTimeoutError("total", total_ms) from e
            raise StageTimeoutError(stage, stage_ms) from e
        finally:
            if executor is not self.executor:
                executor.shutdown(wait=False)

    # -----------------------------------------------------------------------
    # Stages
    # -----------------------------------------------------------------------

    def _extract(
        self,
        image_bytes: bytes,
        mime_type: str,
        api_key: str,
        prompt: Optional[str],
        config: AdminConfig,
        deadline: float,
        fallbacks: PipelineFallbacks,
        notices: List[str],
    ) -> ImageSignals:
        extractor = self.extractor_factory(api_key)
        try:
            return self._run_stage(
                "vision",
                lambda: extractor.extract(image_bytes, mime_type, prompt),
                config.timeouts_ms.vision,
                deadline,
                config.timeouts_ms.total,
            )
        except _VISION_RECOVERABLE as e:
            fallback = signals_from_prompt(prompt)
            if not fallback.keywords:
                raise
            logger.warning("Vision failed ({}); falling back to prompt keywords {}", e.code.value, fallback.keywords)
            fallbacks.vision_fallback = True
            notices.append(NOTICE_VISION_FALLBACK)
            return fallback

    def _rerank(
        self,
        scored: List[ScoredCandidate],
        signals: ImageSignals,
        api_key: str,
        prompt: Optional[str],
        config: AdminConfig,
        deadline: float,
        fallbacks: PipelineFallbacks,
        notices: List[str],
    ) -> Tuple[List[ScoredCandidate], int]:
        head, tail = split_for_rerank(scored, config.llm_rerank_top_m)
        try:
            reranker = self.reranker_factory(api_key)
            result = self._run_stage(
                "rerank",
                lambda: reranker.rerank(signals, head, prompt),
                config.timeouts_ms.rerank,
                deadline,
                config.timeouts_ms.total,
            )
        except PipelineError as e:
            logger.warning("Rerank failed ({}: {}); keeping heuristic order", e.code.value, e.message)
            fallbacks.rerank_fallback = True
            notices.append(NOTICE_RERANK_FALLBACK)
            return scored, 0
        except Exception as e:
            logger.exception("Unexpected rerank failure; keeping heuristic order: {}", e)
            fallbacks.rerank_fallback = True
            notices.append(NOTICE_RERANK_FALLBACK)
            return scored, 0
        return apply_rerank(head, result) + tail, len(head)

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    def search(
        self,
        image_bytes: bytes,
        mime_type: str,
        api_key: str,
        prompt: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> SearchOutcome:
        request_id = request_id or new_request_id()
        config = self.config_provider.get_config()
        total_ms = config.timeouts_ms.total

        start = time.perf_counter()
        deadline = start + total_ms / 1000.0
        timings = StageTimings()
        counts = PipelineCounts()
        fallbacks = PipelineFallbacks()
        notices: List[str] = []
        plan: Optional[RetrievalPlan] = None

        logger.info("[{}] search started (prompt={})", request_id, bool(prompt))
        try:
            t0 = time.perf_counter()
            signals = self._extract(image_bytes, mime_type, api_key, prompt, config, deadline, fallbacks, notices)
            timings.vision_ms = _elapsed_ms(t0)

            criteria = criteria_from_signals(signals, config)
            t0 = time.perf_counter()
            products, plan = self._run_stage(
                "retrieval",
                lambda: self.planner.find_candidates(criteria),
                config.timeouts_ms.retrieval,
                deadline,
                total_ms,
            )
            timings.retrieval_ms = _elapsed_ms(t0)
            counts.retrieved = len(products)
            if plan in BROAD_PLANS and products:
                fallbacks.broad_retrieval = True
                notices.append(NOTICE_BROAD_RETRIEVAL)

            scored = score_all(products, signals, config)

            if config.enable_llm_rerank and scored:
                t0 = time.perf_counter()
                scored, counts.reranked = self._rerank(
                    scored, signals, api_key, prompt, config, deadline, fallbacks, notices
                )
                timings.rerank_ms = _elapsed_ms(t0)

            if not scored:
                notices.append(NOTICE_NO_RESULTS)
            counts.returned = len(scored)
        except PipelineError as e:
            timings.total_ms = _elapsed_ms(start)
            self._record(request_id, timings, counts, fallbacks, plan, e.code.value, e.detail or e.message)
            logger.warning("[{}] search failed: {!r}", request_id, e)
            raise
        except Exception as e:
            timings.total_ms = _elapsed_ms(start)
            self._record(request_id, timings, counts, fallbacks, plan, ErrorCode.INTERNAL_ERROR.value, repr(e))
            raise

        timings.total_ms = _elapsed_ms(start)
        self._record(request_id, timings, counts, fallbacks, plan, None, None)
        logger.info(
            "[{}] search done: plan={} retrieved={} reranked={} returned={} total_ms={}",
            request_id, plan.value, counts.retrieved, counts.reranked, counts.returned, timings.total_ms,
        )
        return SearchOutcome(
            request_id=request_id,
            signals=signals,
            plan=plan,
            results=scored,
            timings=timings,
            fallbacks=fallbacks,
            notices=notices,
        )

    def _record(
        self,
        request_id: str,
        timings: StageTimings,
        counts: PipelineCounts,
        fallbacks: PipelineFallbacks,
        plan: Optional[RetrievalPlan],
        error: Optional[str],
        error_detail: Optional[str],
    ) -> None:
        self.telemetry.record(
            TelemetryEvent(
                request_id=request_id,
                timings=timings,
                counts=counts,
                fallbacks=fallbacks,
                retrieval_plan=plan,
                error=error,
                error_detail=error_detail,
            )
        )
