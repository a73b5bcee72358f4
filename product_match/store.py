from __future__ import annotations
"""
Product store query interface.

The retrieval planner talks to the store only through ``find`` / ``find_one``
with document-store style filters:

    {"category": "Quarto"}                                  exact match
    {"$or": [{...}, {...}]} / {"$and": [...]}               boolean clauses
    {"title": {"$regex": "veludo", "$options": "i"}}        regex match
    {"type": {"$in": ["Mesa", "Cadeira"]}}                  membership
    {"$text": {"$search": "veludo cinza"}}                  full-text (index)

``FrameProductStore`` evaluates exactly these shapes over an in-memory pandas
frame; it backs tests, the demo catalogue and offline evaluation.
"""

import math
import re
from typing import Any, Dict, List, Optional, Protocol, Set

import pandas as pd
from loguru import logger

from .errors import StoreError
from .normalize import stem, tokenize

TEXT_INDEX_FIELDS = ("title", "description", "category", "type")


class ProductStore(Protocol):
    def find(
        self,
        query: Dict[str, Any],
        projection: Optional[Dict[str, int]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]: ...

    def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]: ...


def _clean_value(value: Any) -> Any:
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


class FrameProductStore:
    """In-memory store over a catalog frame (see catalog_build.build_catalog_df)."""

    def __init__(self, df: pd.DataFrame, text_index: bool = True) -> None:
        self._df = df.reset_index(drop=True)
        self.text_index = text_index
        self._text_tokens: List[Set[str]] = []
        if text_index:
            self._text_tokens = [self._row_tokens(row) for _, row in self._df.iterrows()]
        logger.info("FrameProductStore ready ({} products, text_index={})", len(self._df), text_index)

    def __len__(self) -> int:
        return len(self._df)

    # -----------------------------------------------------------------------
    # Query evaluation
    # -----------------------------------------------------------------------

    @staticmethod
    def _row_tokens(row: pd.Series) -> Set[str]:
        tokens: Set[str] = set()
        for field in TEXT_INDEX_FIELDS:
            value = row.get(field)
            if isinstance(value, str):
                tokens.update(stem(t) for t in tokenize(value))
        return tokens

    def _all(self) -> pd.Series:
        return pd.Series(True, index=self._df.index, dtype=bool)

    def _text_mask(self, clause: Any) -> pd.Series:
        if not self.text_index:
            raise StoreError("Full-text search unavailable", detail="text index not built")
        if not isinstance(clause, dict) or not isinstance(clause.get("$search"), str):
            raise StoreError("Malformed $text clause", detail=repr(clause))
        wanted = {stem(t) for t in tokenize(clause["$search"])}
        if not wanted:
            return ~self._all()
        return pd.Series([bool(wanted & toks) for toks in self._text_tokens], index=self._df.index, dtype=bool)

    def _field_mask(self, field: str, cond: Any) -> pd.Series:
        if field not in self._df.columns:
            return ~self._all()
        column = self._df[field]
        if not isinstance(cond, dict):
            return column == cond

        mask = self._all()
        for op, arg in cond.items():
            if op == "$regex":
                options = str(cond.get("$options", ""))
                flags = re.IGNORECASE if "i" in options else 0
                try:
                    pattern = re.compile(str(arg), flags)
                except re.error as e:
                    raise StoreError("Invalid regex", detail=f"{arg!r}: {e}") from e
                mask &= column.apply(lambda v: isinstance(v, str) and bool(pattern.search(v))).astype(bool)
            elif op == "$options":
                continue
            elif op == "$in":
                mask &= column.isin(list(arg))
            elif op == "$eq":
                mask &= column == arg
            else:
                raise StoreError(f"Unsupported operator {op}", detail=repr(cond))
        return mask

    def _mask(self, query: Dict[str, Any]) -> pd.Series:
        mask = self._all()
        for key, cond in query.items():
            if key == "$or":
                if not cond:
                    raise StoreError("$or requires a non-empty array")
                sub = ~self._all()
                for clause in cond:
                    sub |= self._mask(clause)
                mask &= sub
            elif key == "$and":
                for clause in cond:
                    mask &= self._mask(clause)
            elif key == "$text":
                mask &= self._text_mask(cond)
            elif key.startswith("$"):
                raise StoreError(f"Unsupported operator {key}")
            else:
                mask &= self._field_mask(key, cond)
        return mask

    def _to_docs(self, frame: pd.DataFrame, projection: Optional[Dict[str, int]]) -> List[Dict[str, Any]]:
        if projection:
            wanted = ["id"] + [c for c, keep in projection.items() if keep and c != "id"]
            cols = [c for c in wanted if c in frame.columns]
            frame = frame[cols]
        return [
            {k: _clean_value(v) for k, v in rec.items()}
            for rec in frame.to_dict(orient="records")
        ]

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    def find(
        self,
        query: Dict[str, Any],
        projection: Optional[Dict[str, int]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        hits = self._df[self._mask(query)]
        if limit is not None:
            hits = hits.head(limit)
        return self._to_docs(hits, projection)

    def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        docs = self.find(query, limit=1)
        return docs[0] if docs else None
