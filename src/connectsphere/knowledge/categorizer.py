"""Keyword prefilter that guesses which knowledge categories a message touches."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

GENERAL = "general"

CATEGORY_PATTERNS: dict[str, re.Pattern[str]] = {
    "product": re.compile(
        r"\b(products?|items?|models?|prices?|pricing|costs?|buy|purchase|stock|specs?|features?|sizes?|colou?rs?)\b",
        re.I,
    ),
    "service": re.compile(
        r"\b(services?|repairs?|install\w*|support|consult\w*|appointments?|sessions?|treatments?|delivery)\b",
        re.I,
    ),
    "policy": re.compile(
        r"\b(polic(y|ies)|refunds?|returns?|warrant(y|ies)|guarantees?|terms|cancell?ation|privacy|exchange)\b",
        re.I,
    ),
    "faq": re.compile(
        r"\b(hours|open|timings?|contact|address|location|where|payment|pay)\b",
        re.I,
    ),
}

_QUESTION = re.compile(r"\?\s*$|^(how|what|when|where|why|which|who|can|do|does|is|are)\b", re.I)
_COMPARISON = re.compile(r"\b(compare|comparison|vs\.?|versus|difference|better|best)\b", re.I)

# Characters beyond which a query counts as "long".
LONG_QUERY = 80


@dataclass(frozen=True)
class CategoryMatch:
    categories: tuple[str, ...]
    chunk_limit: int

    @property
    def filtered(self) -> bool:
        """Whether results must be narrowed to specific categories."""
        return any(c != GENERAL for c in self.categories)


class CategoryClassifier(Protocol):
    def categorize(self, message: str) -> CategoryMatch:
        ...


class KeywordCategoryClassifier:
    """Regex heuristics; under-fetching is acceptable, over-fetching costs a few chunks."""

    def __init__(self, patterns: dict[str, re.Pattern[str]] | None = None):
        self._patterns = patterns or CATEGORY_PATTERNS

    def categorize(self, message: str) -> CategoryMatch:
        text = (message or "").strip()
        matched = [name for name, pattern in self._patterns.items() if pattern.search(text)]
        if not matched and _QUESTION.search(text):
            matched = ["faq"]

        if len(matched) >= 2:
            limit = 3
        elif len(text) > LONG_QUERY or _COMPARISON.search(text):
            limit = 2
        else:
            limit = 1

        return CategoryMatch(categories=tuple(sorted({GENERAL, *matched})), chunk_limit=limit)
