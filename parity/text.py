"""
Text normalization and comparison helpers shared by the layout and
content metrics.

Similarity is the normalized Levenshtein ratio ``1 - distance / max(len)``.
Pairwise matrices are computed in one ``rapidfuzz`` call over labels that
were normalized once each.
"""

from __future__ import annotations

import re
from typing import Sequence

import numpy as np
from rapidfuzz import process
from rapidfuzz.distance import Levenshtein

_PUNCT_RE = re.compile(r"[^\w\s]+")
_SPACE_RE = re.compile(r"\s+")


def clamp01(x: float) -> float:
    if x < 0.0:
        return 0.0
    if x > 1.0:
        return 1.0
    return float(x)


def collapse_whitespace(s: str | None) -> str | None:
    """Trim and collapse runs of whitespace. Empty input becomes None."""
    if s is None:
        return None
    t = _SPACE_RE.sub(" ", str(s)).strip()
    return t or None


def normalize_text(s: str | None) -> str:
    """Case-fold, strip punctuation and collapse whitespace."""
    t = str(s or "").casefold()
    t = _PUNCT_RE.sub(" ", t)
    return _SPACE_RE.sub(" ", t).strip()


def levenshtein_distance(a: Sequence[str], b: Sequence[str]) -> int:
    return int(Levenshtein.distance(a, b))


def levenshtein_similarity(a: Sequence[str], b: Sequence[str]) -> float:
    """Normalized edit-distance ratio in [0, 1]; two empty inputs score 0."""
    if not a and not b:
        return 0.0
    return clamp01(Levenshtein.normalized_similarity(a, b))


def similarity_matrix(a: Sequence[str], b: Sequence[str]) -> np.ndarray:
    """Pairwise ``levenshtein_similarity`` of already normalized strings.

    Rows follow ``a``, columns follow ``b``. Empty strings score 0 against
    everything.
    """
    out = np.zeros((len(a), len(b)), dtype=np.float64)
    rows = [i for i, s in enumerate(a) if s]
    cols = [j for j, s in enumerate(b) if s]
    if not rows or not cols:
        return out
    block = process.cdist(
        [a[i] for i in rows],
        [b[j] for j in cols],
        scorer=Levenshtein.normalized_similarity,
        dtype=np.float64,
    )
    out[np.ix_(rows, cols)] = np.clip(block, 0.0, 1.0)
    return out


def label_similarity(a: str | None, b: str | None) -> float:
    """Similarity of two element labels; 0 when either label is absent."""
    na = normalize_text(a)
    nb = normalize_text(b)
    if not na or not nb:
        return 0.0
    return levenshtein_similarity(na, nb)


def label_similarity_matrix(a: Sequence[str | None], b: Sequence[str | None]) -> np.ndarray:
    """``label_similarity`` for every pair, normalizing each label once."""
    return similarity_matrix([normalize_text(s) for s in a], [normalize_text(s) for s in b])
