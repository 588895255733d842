"""Multi-factor result scoring and highlight extraction."""

from __future__ import annotations

import re
from collections import Counter

from trove.config import ScoringWeights
from trove.search.types import (
    CATEGORY_CODE,
    CATEGORY_DOCUMENTATION,
    ScoreBreakdown,
)

_SECONDS_PER_DAY = 86_400.0

_CODE_KEYWORDS = frozenset(
    {
        "function",
        "func",
        "class",
        "interface",
        "const",
        "let",
        "var",
        "import",
        "export",
        "return",
        "async",
        "await",
        "struct",
        "method",
        "impl",
        "def",
        "type",
        "enum",
    }
)
_DOC_KEYWORDS = frozenset(
    {
        "how",
        "why",
        "what",
        "guide",
        "tutorial",
        "docs",
        "documentation",
        "readme",
        "explain",
        "overview",
        "setup",
        "install",
        "configure",
        "usage",
    }
)
_CODE_TOKEN = re.compile(r"[a-z]+[A-Z]\w*|\w+_\w+|\w+\(\)?|[{}();=<>]|\w+\.\w+")
_WORD = re.compile(r"[A-Za-z0-9_]+")


def query_terms(query: str) -> list[str]:
    """Lowercased words of *query* longer than one character."""
    return [w.lower() for w in _WORD.findall(query) if len(w) > 1]


def infer_category(query: str) -> str | None:
    """Guess whether *query* asks for code or documentation.

    Identifiers (camelCase, snake_case, calls, member access), punctuation
    and language keywords count toward code; question words and doc
    vocabulary count toward documentation.  Ties favour neither.
    """
    words = query_terms(query)
    code_votes = len(_CODE_TOKEN.findall(query)) + sum(w in _CODE_KEYWORDS for w in words)
    doc_votes = sum(w in _DOC_KEYWORDS for w in words)
    if code_votes > doc_votes:
        return CATEGORY_CODE
    if doc_votes > code_votes:
        return CATEGORY_DOCUMENTATION
    return None


def normalize_similarity(score: float) -> float:
    """Clamp a backend similarity into [0, 1]."""
    return min(max(score, 0.0), 1.0)


def recency_score(modified_time: float, now: float, max_age_days: float) -> float:
    """Linear decay from 1.0 (modified now) to 0.0 at *max_age_days*."""
    if modified_time <= 0 or max_age_days <= 0:
        return 0.0
    age_days = max(now - modified_time, 0.0) / _SECONDS_PER_DAY
    return max(0.0, 1.0 - age_days / max_age_days)


def affinity_score(category: str, preferred: str | None) -> float:
    """1.0 when the hit's category matches the inferred one, else 0.0."""
    return 1.0 if preferred is not None and category == preferred else 0.0


class UsageTracker:
    """Counts how often each vector id has been returned to a caller."""

    def __init__(self) -> None:
        self._hits: Counter[str] = Counter()

    def record(self, ids: list[str]) -> None:
        self._hits.update(ids)

    def score(self, record_id: str) -> float:
        """Hit count of *record_id* normalized by the most-hit id."""
        if not self._hits:
            return 0.0
        top = self._hits.most_common(1)[0][1]
        return self._hits[record_id] / top

    def forget(self, ids: list[str]) -> None:
        for record_id in ids:
            self._hits.pop(record_id, None)

    def __len__(self) -> int:
        return len(self._hits)


def blend(breakdown: ScoreBreakdown, weights: ScoringWeights) -> float:
    """Weighted sum of the components, normalized by the total weight."""
    total = weights.similarity + weights.recency + weights.affinity + weights.usage
    if total <= 0:
        return breakdown.similarity
    score = (
        weights.similarity * breakdown.similarity
        + weights.recency * breakdown.recency
        + weights.affinity * breakdown.affinity
        + weights.usage * breakdown.usage
    )
    return score / total


def extract_highlights(content: str, terms: list[str], limit: int) -> tuple[str, ...]:
    """Up to *limit* stripped lines of *content* that mention any of *terms*."""
    if not terms or limit <= 0:
        return ()
    highlights: list[str] = []
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        lowered = stripped.lower()
        if any(term in lowered for term in terms):
            highlights.append(stripped)
            if len(highlights) >= limit:
                break
    return tuple(highlights)
