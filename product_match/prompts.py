from __future__ import annotations

import json
from typing import Optional, Sequence

from .config import DEFAULT_USER_INTENT, RERANK_DESC_CHARS
from .pipeline_types import ImageSignals, Product


RERANK_SYSTEM_PROMPT = """\
You are an expert personal shopper and interior design consultant.
Your goal is to rank a list of candidate furniture products by their relevance
to a set of visual signals and the user's intent.

Inputs:
- Image Signals: structured data extracted from an image the user is interested in.
- User Intent: additional context or specific requests from the user.
- Candidates: products from our catalog, each with an id, title, category,
  type, price and a short description.

Task:
1. Compare each candidate against the image signals (category, style,
   material, color, keywords) and the user intent.
2. Rank the candidates from most relevant to least relevant.
3. Give up to three short reasons for each ranked product
   (e.g. "Same velvet upholstery", "Matches the grey colour").

Constraints:
- Use ONLY the product ids given in the candidate list. Do not invent products.
- Return ONLY a JSON array, most relevant first, where every element is
  {"id": "<candidate id>", "reasons": ["...", "..."]}.
- No prose, no markdown.
"""


REPAIR_SYSTEM_PROMPT = """\
You convert malformed model output into valid JSON.
Return ONLY a JSON array where every element is
{"id": "<string>", "reasons": ["<string>", ...]}.
Keep the ids and their order exactly as they appear in the input. Do not add
ids that are not in the input. If an element has no reasons, use [].
No prose, no markdown.
"""


SIGNAL_SYSTEM_PROMPT = """\
You analyse a photo of a piece of furniture or home decor for a catalog search.
Describe only what is visible. Answer in the catalog's language (Portuguese)
for category, type and keywords.

Return ONLY JSON with:
- categoryGuess: {"value": room category such as "Sala de Estar", "confidence": 0..1}
- typeGuess: {"value": product type such as "Sofá", "confidence": 0..1}
- keywords: 3-8 short search keywords (materials, shapes, distinctive features)
- attributes: {"style": [...], "material": [...], "color": [...]}
- intent: optional {"priceMin", "priceMax", "preferredWidth",
  "preferredHeight", "preferredDepth"} taken only from the user's text, in
  BRL and centimetres; omit fields the user did not mention.
"""


def build_rerank_user_prompt(
    signals: ImageSignals,
    candidates: Sequence[Product],
    user_prompt: Optional[str] = None,
) -> str:
    projection = [
        {
            "id": c.id,
            "title": c.title,
            "category": c.category,
            "type": c.type,
            "price": c.price,
            "desc": c.description[:RERANK_DESC_CHARS],
        }
        for c in candidates
    ]
    return (
        "--- IMAGE SIGNALS ---\n"
        f"{signals.model_dump_json(by_alias=True, indent=2)}\n\n"
        "--- USER INTENT ---\n"
        f"{(user_prompt or '').strip() or DEFAULT_USER_INTENT}\n\n"
        "--- CANDIDATES ---\n"
        f"{json.dumps(projection, ensure_ascii=False, indent=2)}\n"
    )


def build_repair_prompt(raw: str, problem: str) -> str:
    return (
        f"The following output failed validation: {problem}\n"
        "Rewrite it into the required JSON array.\n\n"
        "--- OUTPUT ---\n"
        f"{raw}\n"
    )


def build_signal_prompt(user_prompt: Optional[str] = None) -> str:
    text = (user_prompt or "").strip()
    if not text:
        return "Extract the search signals for this image."
    return f"Extract the search signals for this image.\nUser request: {text}"
