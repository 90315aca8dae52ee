"""
JSON shape of a ComparisonReport.

Floats are rounded and keys sorted so two runs over the same inputs
serialize to byte-identical documents.
"""

from __future__ import annotations

import json
from typing import Any

from parity.models import (
    Box,
    ColorDiff,
    ComparisonReport,
    ContentDiff,
    LayoutDiff,
    MetricResult,
    PixelDiffRegion,
    TypographyDiff,
)

FLOAT_DIGITS = 6


def _box(box: Box | None) -> dict[str, float] | None:
    return None if box is None else box.to_dict()


def diff_to_dict(diff: Any) -> dict[str, Any]:
    if isinstance(diff, PixelDiffRegion):
        return {
            "x": diff.x,
            "y": diff.y,
            "width": diff.width,
            "height": diff.height,
            "severity": diff.severity,
            "reason": diff.reason,
            "peak": diff.peak,
        }
    if isinstance(diff, LayoutDiff):
        return {
            "kind": diff.kind,
            "elementType": diff.element_type,
            "label": diff.label,
            "refBox": _box(diff.ref_box),
            "implBox": _box(diff.impl_box),
            "refIndex": diff.ref_index,
            "implIndex": diff.impl_index,
        }
    if isinstance(diff, TypographyDiff):
        return {
            "refIndex": diff.ref_index,
            "implIndex": diff.impl_index,
            "elementType": diff.element_type,
            "label": diff.label,
            "box": _box(diff.box),
            "issues": list(diff.issues),
            "penalty": diff.penalty,
        }
    if isinstance(diff, ColorDiff):
        out: dict[str, Any] = {"kind": diff.kind}
        if diff.kind == "palette_count_mismatch":
            out.update(refCount=diff.ref_count, implCount=diff.impl_count)
        else:
            out.update(
                refColor=diff.ref_color,
                implColor=diff.impl_color,
                deltaE=diff.delta_e,
                coverage=diff.coverage,
            )
        return out
    if isinstance(diff, ContentDiff):
        return {"kind": diff.kind, "text": diff.text}
    raise TypeError(f"unsupported diff entry: {type(diff).__name__}")


def metric_to_dict(result: MetricResult) -> dict[str, Any]:
    return {
        "score": result.score,
        "diagnostic": result.diagnostic,
        "diffs": [diff_to_dict(d) for d in result.diffs],
        "details": dict(result.details),
    }


def _rounded(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float):
        rounded = round(value, FLOAT_DIGITS)
        return 0.0 if rounded == 0 else rounded
    if isinstance(value, dict):
        return {str(k): _rounded(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_rounded(v) for v in value]
    if hasattr(value, "item"):
        # numpy scalar
        return _rounded(value.item())
    return value


def report_to_dict(report: ComparisonReport) -> dict[str, Any]:
    return _rounded(
        {
            "score": report.score,
            "threshold": report.threshold,
            "passed": report.passed,
            "weights": dict(report.weights),
            "metrics": {name: metric_to_dict(result) for name, result in report.metrics.items()},
            "topIssues": list(report.top_issues),
        }
    )


def report_to_json(report: ComparisonReport, indent: int | None = 2) -> str:
    return json.dumps(report_to_dict(report), indent=indent, sort_keys=True, ensure_ascii=False)
