"""
Layout metric.

Each side's canonical elements become a relation graph; elements are
paired one-to-one by a weighted candidate score (type, label, proximity),
and the pairing drives the layout score and the missing / extra / shifted /
resized element diffs. The pairing is also the input of the typography
metric.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np
from scipy.optimize import linear_sum_assignment

from parity.config import LayoutSettings
from parity.errors import PartialDataError
from parity.models import CanonicalElement, ElementMatch, LayoutDiff, MetricResult
from parity.text import clamp01, label_similarity, label_similarity_matrix

logger = logging.getLogger(__name__)

# Center offsets smaller than this are treated as aligned when ordering siblings.
ALIGN_TOLERANCE = 0.005
_MAX_CENTER_DISTANCE = math.sqrt(2.0)


# ---------------------------------------------------------------------------
# Relation graph
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RelationGraph:
    elements: tuple[CanonicalElement, ...]
    parents: tuple[int | None, ...]
    relations: frozenset[tuple[str, int, int]]

    def has(self, kind: str, a: int, b: int) -> bool:
        return (kind, a, b) in self.relations

    def children(self, index: int | None) -> list[int]:
        return [i for i, p in enumerate(self.parents) if p == index]


def build_relation_graph(elements: list[CanonicalElement]) -> RelationGraph:
    parents: list[int | None] = []
    for i, el in enumerate(elements):
        best: int | None = None
        best_key: tuple[float, int] | None = None
        for j, other in enumerate(elements):
            if j == i or not other.box.contains(el.box):
                continue
            # Identical boxes nest in document order so the tree stays acyclic.
            if other.box.area == el.box.area and j > i:
                continue
            key = (other.box.area, -j)
            if best_key is None or key < best_key:
                best, best_key = j, key
        parents.append(best)

    relations: set[tuple[str, int, int]] = set()
    for child, parent in enumerate(parents):
        if parent is not None:
            relations.add(("contains", parent, child))

    groups: dict[int | None, list[int]] = {}
    for i, parent in enumerate(parents):
        groups.setdefault(parent, []).append(i)
    for members in groups.values():
        for pos, a in enumerate(members):
            ax, ay = elements[a].box.center
            for b in members[pos + 1 :]:
                bx, by = elements[b].box.center
                if ay + ALIGN_TOLERANCE < by:
                    relations.add(("above", a, b))
                elif by + ALIGN_TOLERANCE < ay:
                    relations.add(("above", b, a))
                if ax + ALIGN_TOLERANCE < bx:
                    relations.add(("left_of", a, b))
                elif bx + ALIGN_TOLERANCE < ax:
                    relations.add(("left_of", b, a))

    return RelationGraph(elements=tuple(elements), parents=tuple(parents), relations=frozenset(relations))


def relations_preserved(
    ref_graph: RelationGraph,
    impl_graph: RelationGraph,
    matches: list[ElementMatch],
) -> float | None:
    """Fraction of reference relations between matched elements that hold on the other side."""
    mapping = {m.ref_index: m.impl_index for m in matches}
    total = 0
    kept = 0
    for kind, a, b in sorted(ref_graph.relations):
        if a not in mapping or b not in mapping:
            continue
        total += 1
        if impl_graph.has(kind, mapping[a], mapping[b]):
            kept += 1
    if total == 0:
        return None
    return kept / total


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

def candidate_score(ref: CanonicalElement, impl: CanonicalElement, settings: LayoutSettings) -> float:
    type_match = 1.0 if ref.type == impl.type else 0.0
    label = label_similarity(ref.label, impl.label)
    proximity = clamp01(1.0 - ref.box.center_distance(impl.box) / _MAX_CENTER_DISTANCE)
    return (
        settings.type_weight * type_match
        + settings.label_weight * label
        + settings.proximity_weight * proximity
    )


def score_matrix(
    ref_elements: list[CanonicalElement],
    impl_elements: list[CanonicalElement],
    settings: LayoutSettings,
) -> np.ndarray:
    """``candidate_score`` for every (reference, implementation) pair."""
    ref_types = np.array([el.type for el in ref_elements])
    impl_types = np.array([el.type for el in impl_elements])
    type_match = (ref_types[:, None] == impl_types[None, :]).astype(np.float64)

    labels = label_similarity_matrix(
        [el.label for el in ref_elements],
        [el.label for el in impl_elements],
    )

    ref_centers = np.array([el.box.center for el in ref_elements], dtype=np.float64).reshape(-1, 2)
    impl_centers = np.array([el.box.center for el in impl_elements], dtype=np.float64).reshape(-1, 2)
    offsets = ref_centers[:, None, :] - impl_centers[None, :, :]
    distance = np.hypot(offsets[..., 0], offsets[..., 1])
    proximity = np.clip(1.0 - distance / _MAX_CENTER_DISTANCE, 0.0, 1.0)

    return (
        settings.type_weight * type_match
        + settings.label_weight * labels
        + settings.proximity_weight * proximity
    )


def match_elements(
    ref_elements: list[CanonicalElement],
    impl_elements: list[CanonicalElement],
    settings: LayoutSettings | None = None,
) -> list[ElementMatch]:
    """Pair elements one-to-one; the result is ordered by reference index."""
    settings = settings or LayoutSettings()
    if not ref_elements or not impl_elements:
        return []

    scores = score_matrix(ref_elements, impl_elements, settings)
    if settings.strategy == "optimal":
        matches = _match_optimal(scores, settings.min_accept)
    else:
        matches = _match_greedy(scores, settings.min_accept)
    return sorted(matches, key=lambda m: m.ref_index)


def _match_greedy(scores: np.ndarray, min_accept: float) -> list[ElementMatch]:
    rows, cols = np.nonzero(scores > min_accept)
    values = scores[rows, cols]
    # Highest score first, ties broken by reference then implementation index.
    order = np.lexsort((cols, rows, -values))

    used_ref: set[int] = set()
    used_impl: set[int] = set()
    matches: list[ElementMatch] = []
    limit = min(scores.shape)
    for k in order:
        if len(matches) == limit:
            break
        i, j = int(rows[k]), int(cols[k])
        if i in used_ref or j in used_impl:
            continue
        used_ref.add(i)
        used_impl.add(j)
        matches.append(ElementMatch(ref_index=i, impl_index=j, score=float(values[k])))
    return matches


def _match_optimal(scores: np.ndarray, min_accept: float) -> list[ElementMatch]:
    gated = np.where(scores > min_accept, scores, 0.0)
    rows, cols = linear_sum_assignment(gated, maximize=True)
    return [
        ElementMatch(ref_index=int(i), impl_index=int(j), score=float(scores[i, j]))
        for i, j in zip(rows, cols)
        if scores[i, j] > min_accept
    ]


# ---------------------------------------------------------------------------
# Metric
# ---------------------------------------------------------------------------

def compute_layout_metric(
    ref_elements: list[CanonicalElement] | None,
    impl_elements: list[CanonicalElement] | None,
    settings: LayoutSettings | None = None,
) -> tuple[MetricResult, list[ElementMatch]]:
    settings = settings or LayoutSettings()
    if ref_elements is None:
        raise PartialDataError("reference snapshot has no element tree", metric="layout")
    if impl_elements is None:
        raise PartialDataError("implementation snapshot has no element tree", metric="layout")

    matches = match_elements(ref_elements, impl_elements, settings)
    n_ref, n_impl, n_match = len(ref_elements), len(impl_elements), len(matches)

    ious = [ref_elements[m.ref_index].box.iou(impl_elements[m.impl_index].box) for m in matches]
    avg_iou = sum(ious) / len(ious) if ious else 0.0
    extra_rate = max(0, n_impl - n_match) / max(1, n_impl)

    if n_ref == 0:
        match_rate = 0.0
        score = 1.0 if n_impl == 0 else 0.0
    else:
        match_rate = n_match / n_ref
        score = clamp01(0.5 * match_rate + 0.5 * avg_iou - settings.extra_penalty * extra_rate)

    diffs = layout_diffs(ref_elements, impl_elements, matches, settings)

    ref_graph = build_relation_graph(ref_elements)
    impl_graph = build_relation_graph(impl_elements)
    preserved = relations_preserved(ref_graph, impl_graph, matches)

    logger.info(
        "layout: ref=%d impl=%d matched=%d score=%.4f diffs=%d",
        n_ref,
        n_impl,
        n_match,
        score,
        len(diffs),
    )
    result = MetricResult(
        name="layout",
        score=score,
        diffs=diffs,
        details={
            "refCount": n_ref,
            "implCount": n_impl,
            "matchCount": n_match,
            "matchRate": match_rate,
            "avgIou": avg_iou,
            "extraRate": extra_rate,
            "relationsPreserved": preserved,
        },
    )
    return result, matches


def layout_diffs(
    ref_elements: list[CanonicalElement],
    impl_elements: list[CanonicalElement],
    matches: list[ElementMatch],
    settings: LayoutSettings,
) -> list[LayoutDiff]:
    matched_ref = {m.ref_index for m in matches}
    matched_impl = {m.impl_index for m in matches}
    diffs: list[LayoutDiff] = []

    for i, el in enumerate(ref_elements):
        if i not in matched_ref:
            diffs.append(
                LayoutDiff(kind="missing_element", element_type=el.type, label=el.label, ref_box=el.box, ref_index=i)
            )
    for j, el in enumerate(impl_elements):
        if j not in matched_impl:
            diffs.append(
                LayoutDiff(kind="extra_element", element_type=el.type, label=el.label, impl_box=el.box, impl_index=j)
            )

    for m in matches:
        ref = ref_elements[m.ref_index]
        impl = impl_elements[m.impl_index]
        common = dict(
            element_type=ref.type,
            label=ref.label,
            ref_box=ref.box,
            impl_box=impl.box,
            ref_index=m.ref_index,
            impl_index=m.impl_index,
        )
        if ref.box.center_distance(impl.box) > settings.position_tolerance:
            diffs.append(LayoutDiff(kind="position_shift", **common))
        w_ratio = impl.box.w / ref.box.w if ref.box.w > 0 else 1.0
        h_ratio = impl.box.h / ref.box.h if ref.box.h > 0 else 1.0
        if abs(w_ratio - 1.0) > settings.size_tolerance or abs(h_ratio - 1.0) > settings.size_tolerance:
            diffs.append(LayoutDiff(kind="size_change", **common))

    return diffs
