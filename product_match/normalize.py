from __future__ import annotations

"""
Text normalisation helpers shared across catalog loading, retrieval and
scoring.

Public helpers:

* basic_clean(text) -> str
    Light-weight clean used when loading catalog records.

* tokenize(text) -> List[str]
    Lower-cased tokens split on whitespace / punctuation, short tokens dropped.

* stem(word) -> str
    Plural folding used for category / type equality.

* stem_match(a, b) -> bool
    Symmetric equality of two labels after plural folding.
"""

from typing import Iterable, List
import re
import unicodedata

from .config import MIN_TOKEN_LENGTH

MAX_INPUT_CHARS = 20_000

_TOKEN_SPLIT_RE = re.compile(r"[\W_]+", flags=re.UNICODE)

# (suffix, chars to drop, replacement), checked in order
_PLURAL_RULES = (
    ("ves", 3, "f"),
    ("ies", 3, "y"),
    ("shes", 2, ""),
    ("ches", 2, ""),
    ("xes", 2, ""),
    ("zes", 2, ""),
    ("ses", 2, ""),
)


# ---------------------------------------------------------------------------
# Low-level helpers
# ---------------------------------------------------------------------------


def _strip_tags(text: str) -> str:
    return re.sub(r"<[^>]+>", " ", text)


def _normalise_unicode(text: str) -> str:
    text = unicodedata.normalize("NFKC", text)
    # Replace fancy quotes / dashes with ASCII variants
    text = text.replace("‘", "'").replace("’", "'")
    text = text.replace("“", '"').replace("”", '"')
    text = text.replace("–", "-").replace("—", "-")
    return text


def _label(text: str | None) -> str:
    if not text:
        return ""
    norm = _normalise_unicode(str(text)).lower()
    return re.sub(r"\s+", " ", norm).strip()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def basic_clean(text: str | None) -> str:
    """Light-weight clean for catalog fields.

    * strips simple HTML tags
    * normalises unicode and whitespace
    * truncates excessively long inputs
    """
    if text is None:
        return ""
    if not isinstance(text, str):
        text = str(text)

    if len(text) > MAX_INPUT_CHARS:
        text = text[:MAX_INPUT_CHARS]

    text = _strip_tags(text)
    text = _normalise_unicode(text)
    text = text.replace("\r", " ").replace("\n", " ").replace("\t", " ")
    text = re.sub(r"\s+", " ", text).strip()
    return text


def tokenize(text: str | None) -> List[str]:
    """Split on whitespace and punctuation; drop tokens of length <= 2."""
    norm = _label(text)
    if not norm:
        return []
    return [t for t in _TOKEN_SPLIT_RE.split(norm) if len(t) >= MIN_TOKEN_LENGTH]


def tokenize_all(texts: Iterable[str]) -> List[str]:
    tokens: List[str] = []
    for text in texts:
        tokens.extend(tokenize(text))
    return tokens


def stem(word: str) -> str:
    """Fold common English plural endings onto the singular form."""
    w = word.lower()
    for suffix, drop, repl in _PLURAL_RULES:
        if w.endswith(suffix):
            return w[:-drop] + repl
    if w.endswith("oes") and len(w) > 4:
        return w[:-2]
    if w.endswith("s") and not w.endswith("ss"):
        return w[:-1]
    return w


def stem_label(text: str | None) -> str:
    """Normalise a multi-word label and stem each word."""
    norm = _label(text)
    if not norm:
        return ""
    return " ".join(stem(part) for part in norm.split(" "))


def stem_match(a: str | None, b: str | None) -> bool:
    """Label equality modulo case, unicode form and plural endings."""
    sa, sb = stem_label(a), stem_label(b)
    if not sa or not sb:
        return False
    return sa == sb


def contains_either(a: str | None, b: str | None) -> bool:
    """True when one normalised label is a substring of the other."""
    la, lb = _label(a), _label(b)
    if not la or not lb:
        return False
    return la in lb or lb in la


def fraction_matched(query_tokens: List[str], content_tokens: List[str]) -> float:
    """
    Share of query tokens that substring-match (either direction) at least
    one content token.
    """
    if not query_tokens:
        return 0.0
    matches = 0
    for q in query_tokens:
        if any(q in c or c in q for c in content_tokens):
            matches += 1
    return matches / len(query_tokens)
