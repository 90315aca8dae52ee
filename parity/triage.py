from __future__ import annotations

from typing import Any, Mapping

from parity.models import (
    METRIC_NAMES,
    ColorDiff,
    ContentDiff,
    LayoutDiff,
    MetricResult,
    PixelDiffRegion,
    TypographyDiff,
)

TOP_ISSUES_LIMIT = 10

PIXEL_SEVERITY = {"minor": 0.2, "moderate": 0.5, "major": 1.0}
LAYOUT_SEVERITY = {
    "missing_element": 1.0,
    "extra_element": 0.6,
    "position_shift": 0.4,
    "size_change": 0.4,
}
CONTENT_SEVERITY = {"missing_text": 0.8, "extra_text": 0.5}
COLOR_ROLE_FACTOR = {
    "primary_color_shift": 1.0,
    "background_color_shift": 0.8,
    "accent_color_shift": 0.6,
}
PALETTE_COUNT_SEVERITY = 0.3
# Color distance at which a palette shift is considered fully severe.
COLOR_SEVERITY_SCALE = 50.0


def diff_severity(diff: Any) -> float:
    """Severity in [0, 1] of a single diff entry."""
    if isinstance(diff, PixelDiffRegion):
        return PIXEL_SEVERITY.get(diff.severity, 0.0)
    if isinstance(diff, LayoutDiff):
        return LAYOUT_SEVERITY.get(diff.kind, 0.0)
    if isinstance(diff, TypographyDiff):
        return float(diff.penalty)
    if isinstance(diff, ColorDiff):
        if diff.kind == "palette_count_mismatch":
            return PALETTE_COUNT_SEVERITY
        distance = 1.0 if diff.delta_e is None else min(1.0, diff.delta_e / COLOR_SEVERITY_SCALE)
        return COLOR_ROLE_FACTOR.get(diff.kind, 0.5) * distance
    if isinstance(diff, ContentDiff):
        return CONTENT_SEVERITY.get(diff.kind, 0.0)
    return 0.0


def diff_kind(diff: Any) -> str:
    if isinstance(diff, PixelDiffRegion):
        return diff.reason
    if isinstance(diff, TypographyDiff):
        return diff.issues[0] if diff.issues else "typography"
    return str(getattr(diff, "kind", "unknown"))


def build_top_issues(
    metrics: Mapping[str, MetricResult],
    weights: Mapping[str, float],
    limit: int = TOP_ISSUES_LIMIT,
) -> list[dict[str, Any]]:
    """Rank diff entries across metrics by severity scaled with the metric weight."""
    ranked: list[tuple[float, int, int, dict[str, Any]]] = []
    for order, name in enumerate(METRIC_NAMES):
        result = metrics.get(name)
        if result is None or not result.computed:
            continue
        weight = float(weights.get(name, 0.0))
        for index, diff in enumerate(result.diffs):
            severity = diff_severity(diff)
            priority = severity * weight
            if priority <= 0.0:
                continue
            ranked.append(
                (
                    priority,
                    order,
                    index,
                    {
                        "metric": name,
                        "kind": diff_kind(diff),
                        "severity": round(severity, 4),
                        "priority": round(priority, 4),
                        "index": index,
                    },
                )
            )
    ranked.sort(key=lambda row: (-row[0], row[1], row[2]))
    return [row[3] for row in ranked[:limit]]


def summarize_kinds(metrics: Mapping[str, MetricResult]) -> dict[str, list[str]]:
    """Distinct diff kinds per metric, in first-seen order."""
    out: dict[str, list[str]] = {}
    for name in METRIC_NAMES:
        result = metrics.get(name)
        if result is None:
            continue
        kinds: list[str] = []
        for diff in result.diffs:
            if isinstance(diff, TypographyDiff):
                kinds.extend(diff.issues)
            else:
                kinds.append(diff_kind(diff))
        out[name] = _uniq(kinds)
    return out


def _uniq(items: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        result.append(item)
    return result
