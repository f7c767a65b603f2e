"""
Response Comparator for Authz Probe.

Scores how alike two response bodies are after volatile content has been
normalized away. The score blends vocabulary overlap (robust to field
reordering) with edit-distance similarity (catches near-identical bodies
that share little distinct vocabulary, such as numeric-heavy payloads).
"""

import re
from typing import Set

from rapidfuzz.distance import Levenshtein

from .normalizer import normalize


JACCARD_WEIGHT = 0.6
EDIT_WEIGHT = 0.4

TOKEN_SEPARATOR = re.compile(r"[^a-z0-9_\-]+")


def token_set(text: str) -> Set[str]:
    """Lower-cased word tokens of `text`, duplicates collapsed."""
    return set(TOKEN_SEPARATOR.sub(" ", text.lower()).split())


def jaccard(a: Set[str], b: Set[str]) -> float:
    """Intersection over union; 0.0 when both sets are empty."""
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance between two strings, over their full length."""
    return Levenshtein.distance(a, b)


def edit_similarity(a: str, b: str) -> float:
    """1 minus the edit distance relative to the longer string."""
    distance = edit_distance(a, b)
    return 1.0 - min(1.0, distance / max(len(a), len(b), 1))


def similarity(a: str, b: str) -> float:
    """
    Similarity between two response bodies in [0, 1].

    Both inputs are normalized first; the result is
    0.6 * Jaccard(token sets) + 0.4 * edit similarity.
    """
    norm_a = normalize(a)
    norm_b = normalize(b)

    if norm_a == norm_b:
        # Identical texts score 1.0 even when neither has a token.
        return 1.0

    score = (
        JACCARD_WEIGHT * jaccard(token_set(norm_a), token_set(norm_b))
        + EDIT_WEIGHT * edit_similarity(norm_a, norm_b)
    )
    return max(0.0, min(1.0, score))
