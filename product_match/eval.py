# product_match/eval.py
from __future__ import annotations

import argparse
import json
import mimetypes
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from . import config
from .errors import PipelineError
from .pipeline import SearchPipeline

# ---------- golden set ----------
#
# [{"id": "case-1", "label": "grey velvet sofa", "expected_ids": ["p0"],
#   "expected_category": "Sala de Estar", "expected_type": "Sofá",
#   "image_path": "golden_images/velvet-sofa.jpg", "prompt": "..."}]
#
# image_path is relative to the golden set file.


def load_golden_set(path: Path = config.GOLDEN_SET_PATH) -> List[Dict[str, Any]]:
    if not path.exists():
        raise FileNotFoundError(f"Golden set not found: {path}")
    cases = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(cases, list):
        raise ValueError(f"Expected a JSON array of cases in {path}")
    for case in cases:
        if "id" not in case:
            raise ValueError(f"Golden case without 'id': {case}")
    return cases


def load_predictions(path: Path) -> Dict[str, List[str]]:
    """{case_id: [product ids in rank order]}"""
    if not path.exists():
        raise FileNotFoundError(f"Predictions not found: {path}")
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"Expected a JSON object keyed by case id in {path}")
    return {str(k): [str(x) for x in v] for k, v in raw.items()}


# ---------- metrics ----------

def _dedupe(ids: Sequence[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for i in ids:
        if i and i not in seen:
            seen.add(i)
            out.append(i)
    return out


def hit_at_k(expected: Sequence[str], predicted: Sequence[str], k: int) -> float:
    if not expected or k <= 0:
        return 0.0
    top = set(_dedupe(predicted)[:k])
    return 1.0 if top.intersection(expected) else 0.0


def reciprocal_rank(expected: Sequence[str], predicted: Sequence[str]) -> float:
    wanted = set(expected)
    for rank, pid in enumerate(_dedupe(predicted), start=1):
        if pid in wanted:
            return 1.0 / rank
    return 0.0


def evaluate(
    golden: Sequence[Dict[str, Any]],
    predictions: Dict[str, List[str]],
    ks=(1, 3, 5),
) -> Dict[str, Any]:
    """
    Hit@K rates and MRR over the golden cases that have predictions and at
    least one expected id. Cases without predictions count as misses.
    """
    hits = {k: 0.0 for k in ks}
    rr = 0.0
    n = 0
    missing: List[str] = []
    for case in golden:
        expected = [str(x) for x in case.get("expected_ids", [])]
        if not expected:
            continue
        case_id = str(case["id"])
        predicted = predictions.get(case_id)
        if predicted is None:
            missing.append(case_id)
            predicted = []
        for k in ks:
            hits[k] += hit_at_k(expected, predicted, k)
        rr += reciprocal_rank(expected, predicted)
        n += 1

    if n == 0:
        return {"cases": 0, "hit_at_k": {k: 0.0 for k in ks}, "mrr": 0.0, "missing": missing}
    return {
        "cases": n,
        "hit_at_k": {k: hits[k] / n for k in ks},
        "mrr": rr / n,
        "missing": missing,
    }


# ---------- end-to-end run ----------

def _mime_for(path: Path) -> str:
    mime, _ = mimetypes.guess_type(path.name)
    return mime or "image/jpeg"


def run_golden_set(
    pipeline: SearchPipeline,
    golden: Sequence[Dict[str, Any]],
    api_key: str,
    base_dir: Path,
) -> Dict[str, List[str]]:
    """
    Search every case's ``image_path`` (relative to ``base_dir``) with its
    optional prompt and return {case_id: ranked product ids}. Cases without
    an image on disk, or whose search fails, get no prediction.
    """
    predictions: Dict[str, List[str]] = {}
    for case in golden:
        case_id = str(case["id"])
        image_path = case.get("image_path")
        if not image_path:
            logger.warning("[{}] no image_path; skipping", case_id)
            continue
        path = base_dir / image_path
        if not path.exists():
            logger.warning("[{}] image missing at {}; skipping", case_id, path)
            continue

        try:
            outcome = pipeline.search(path.read_bytes(), _mime_for(path), api_key, prompt=case.get("prompt"))
        except PipelineError as e:
            logger.warning("[{}] search failed: {} {}", case_id, e.code.value, e.message)
            continue

        predictions[case_id] = [c.id for c in outcome.results]
        logger.info("[{}] plan={} top={}", case_id, outcome.plan.value, predictions[case_id][:5])
    return predictions


# ---------- CLI ----------

def main(argv: Optional[Sequence[str]] = None) -> None:
    ap = argparse.ArgumentParser(description="Hit@K / MRR over a golden set")
    ap.add_argument("--golden", type=Path, default=config.GOLDEN_SET_PATH,
                    help="Golden set JSON (list of cases)")
    source = ap.add_mutually_exclusive_group(required=True)
    source.add_argument("--preds", type=Path,
                        help="Predictions JSON: {case_id: [product ids in rank order]}")
    source.add_argument("--run", action="store_true",
                        help="Search every case's image through the pipeline")
    ap.add_argument("--api-key", default=os.getenv("GEMINI_API_KEY", ""),
                    help="Provider key for --run (default: $GEMINI_API_KEY)")
    ap.add_argument("--k", type=int, nargs="+", default=[1, 3, 5])
    args = ap.parse_args(argv)

    golden = load_golden_set(args.golden)
    if args.run:
        if not args.api_key:
            ap.error("--run needs --api-key or GEMINI_API_KEY")
        from .api import build_pipeline

        preds = run_golden_set(build_pipeline(), golden, args.api_key, args.golden.parent)
    else:
        preds = load_predictions(args.preds)
    report = evaluate(golden, preds, ks=args.k)

    print(f"Cases: {report['cases']}")
    for k in args.k:
        print(f"Hit@{k}: {report['hit_at_k'][k]:.4f}")
    print(f"MRR: {report['mrr']:.4f}")
    if report["missing"]:
        print(f"Missing predictions: {', '.join(report['missing'])}")


if __name__ == "__main__":
    main()
