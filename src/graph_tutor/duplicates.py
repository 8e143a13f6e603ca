"""Duplicate-concept detection.

Scores existing concept titles against a candidate title so likely
duplicates can be offered as merge targets.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Iterable

from rapidfuzz.distance import Levenshtein

from .constants import (
    DUPLICATE_BIGRAM_WEIGHT,
    DUPLICATE_CONTAINMENT_BONUS,
    DUPLICATE_LEVENSHTEIN_WEIGHT,
    DUPLICATE_MAX_RESULTS,
    DUPLICATE_SAME_KIND_BONUS,
    DUPLICATE_SAME_MODULE_BONUS,
    DUPLICATE_STOP_WORDS,
    DUPLICATE_THRESHOLD,
    DUPLICATE_TOKEN_WEIGHT,
)
from .models import ConceptSummary

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


@dataclass
class DuplicateCandidate:
    id: str
    title: str
    kind: str
    module: str | None
    score: float
    reason: str


def normalize_title(value: str) -> str:
    """Lowercase ASCII tokens with marketing stop words removed."""
    decomposed = unicodedata.normalize("NFKD", value)
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    normalized = _NON_ALNUM.sub(" ", ascii_only.lower()).strip()
    if not normalized:
        return ""
    tokens = [t for t in normalized.split() if t not in DUPLICATE_STOP_WORDS]
    return " ".join(tokens) if tokens else normalized


def char_similarity(a: str, b: str) -> float:
    """Normalized Levenshtein similarity, ``1 - distance / max(len)``."""
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def _bigrams(value: str) -> dict[str, int]:
    padded = f" {value} "
    counts: dict[str, int] = {}
    for i in range(len(padded) - 1):
        gram = padded[i:i + 2]
        counts[gram] = counts.get(gram, 0) + 1
    return counts


def bigram_similarity(a: str, b: str) -> float:
    """Dice coefficient over padded character bigrams."""
    a_counts, b_counts = _bigrams(a), _bigrams(b)
    denom = len(a_counts) + len(b_counts)
    if denom == 0:
        return 1.0
    shared = sum(min(count, a_counts.get(gram, 0)) for gram, count in b_counts.items())
    return 2 * shared / denom


def token_similarity(a: str, b: str) -> float:
    """Jaccard similarity on whitespace tokens."""
    a_tokens, b_tokens = set(a.split()), set(b.split())
    if not a_tokens or not b_tokens:
        return 0.0
    return len(a_tokens & b_tokens) / len(a_tokens | b_tokens)


def score_titles(
    target: str,
    candidate: ConceptSummary,
    module: str | None = None,
    kind: str | None = None,
) -> tuple[float, str]:
    """Score one candidate against an already-normalised target title."""
    normalized = normalize_title(candidate.title)
    if not target or not normalized:
        return 0.0, "low_information"
    if normalized == target:
        return 1.0, "normalized_exact"

    contains = normalized in target or target in normalized
    reason = "contains" if contains else "similar"

    char_score = char_similarity(target, normalized)
    token_score = token_similarity(target, normalized)
    if token_score >= 0.85:
        reason = "token_overlap"
    if char_score >= 0.92:
        reason = "typo_close"

    score = (
        DUPLICATE_LEVENSHTEIN_WEIGHT * char_score
        + DUPLICATE_BIGRAM_WEIGHT * bigram_similarity(target, normalized)
        + DUPLICATE_TOKEN_WEIGHT * token_score
    )
    if contains:
        score += DUPLICATE_CONTAINMENT_BONUS
    if module and candidate.module == module:
        score += DUPLICATE_SAME_MODULE_BONUS
    if kind and candidate.kind == kind:
        score += DUPLICATE_SAME_KIND_BONUS
    return min(1.0, score), reason


def find_duplicate_candidates(
    title: str,
    summaries: Iterable[ConceptSummary],
    module: str | None = None,
    kind: str | None = None,
    threshold: float = DUPLICATE_THRESHOLD,
    exclude_ids: Iterable[str] = (),
) -> list[DuplicateCandidate]:
    """Return likely duplicates of ``title``, best first.

    Args:
        title: Title of the concept being checked.
        summaries: Existing concepts to compare against.
        module: Optional module of the checked concept (small bonus on match).
        kind: Optional kind of the checked concept (small bonus on match).
        threshold: Minimum score to report.
        exclude_ids: Concept ids to skip, e.g. the concept itself.
    """
    target = normalize_title(title)
    if not target:
        return []

    excluded = set(exclude_ids)
    results = []
    for summary in summaries:
        if summary.id in excluded:
            continue
        score, reason = score_titles(target, summary, module, kind)
        if score < threshold:
            continue
        results.append(DuplicateCandidate(
            id=summary.id,
            title=summary.title,
            kind=summary.kind,
            module=summary.module,
            score=round(score, 4),
            reason=reason,
        ))

    results.sort(key=lambda c: (-c.score, c.title.lower(), c.id))
    return results[:DUPLICATE_MAX_RESULTS]
