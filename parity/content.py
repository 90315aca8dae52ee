from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from parity.config import ContentSettings
from parity.errors import PartialDataError
from parity.models import CanonicalElement, ContentDiff, MetricResult
from parity.text import clamp01, normalize_text, similarity_matrix

logger = logging.getLogger(__name__)

PROMINENT_TYPES = {"heading", "button"}


@dataclass(frozen=True)
class _TextItem:
    text: str
    element_type: str


def collect_texts(elements: list[CanonicalElement]) -> list[_TextItem]:
    items: list[_TextItem] = []
    for el in elements:
        text = normalize_text(el.label)
        if text:
            items.append(_TextItem(text=text, element_type=el.type))
    return items


def is_significant(item: _TextItem, settings: ContentSettings) -> bool:
    if item.element_type in PROMINENT_TYPES:
        return True
    return len(item.text.split()) >= settings.significant_words or len(item.text) >= settings.significant_chars


def match_texts(
    ref_items: list[_TextItem],
    impl_items: list[_TextItem],
    threshold: float,
) -> tuple[list[tuple[int, int, float]], list[int], list[int]]:
    """Pair each reference string with its best unused implementation string."""
    sims = similarity_matrix([r.text for r in ref_items], [i.text for i in impl_items])
    available = np.ones(len(impl_items), dtype=bool)
    pairs: list[tuple[int, int, float]] = []
    missing: list[int] = []
    for ri in range(len(ref_items)):
        if not available.any():
            missing.append(ri)
            continue
        row = np.where(available, sims[ri], -1.0)
        best_j = int(np.argmax(row))
        best_sim = float(row[best_j])
        if best_sim >= threshold:
            available[best_j] = False
            pairs.append((ri, best_j, best_sim))
        else:
            missing.append(ri)
    extra = [j for j in range(len(impl_items)) if available[j]]
    return pairs, missing, extra


def compute_content_metric(
    ref_elements: list[CanonicalElement] | None,
    impl_elements: list[CanonicalElement] | None,
    settings: ContentSettings | None = None,
) -> MetricResult:
    settings = settings or ContentSettings()
    if ref_elements is None or impl_elements is None:
        raise PartialDataError("element tree missing on one side", metric="content")

    ref_items = collect_texts(ref_elements)
    impl_items = collect_texts(impl_elements)
    if not ref_items and not impl_items:
        raise PartialDataError("no text on either side", metric="content")

    pairs, missing, extra = match_texts(ref_items, impl_items, settings.match_threshold)

    match_rate = len(pairs) / len(ref_items) if ref_items else 1.0
    significant_extra = [j for j in extra if is_significant(impl_items[j], settings)]
    extra_penalty = len(significant_extra) / max(1, len(impl_items))
    score = clamp01(match_rate - settings.extra_penalty_weight * extra_penalty)

    missing_text = [ref_items[i].text for i in missing]
    extra_text = [impl_items[j].text for j in significant_extra]
    diffs = [ContentDiff(kind="missing_text", text=t) for t in missing_text]
    diffs.extend(ContentDiff(kind="extra_text", text=t) for t in extra_text)

    logger.info(
        "content: ref=%d impl=%d matched=%d missing=%d extra=%d score=%.4f",
        len(ref_items),
        len(impl_items),
        len(pairs),
        len(missing_text),
        len(extra_text),
        score,
    )
    return MetricResult(
        name="content",
        score=score,
        diffs=diffs,
        details={
            "matchRate": match_rate,
            "extraPenalty": extra_penalty,
            "missingText": missing_text,
            "extraText": extra_text,
        },
    )
