from __future__ import annotations

import logging

from parity.config import TypographySettings
from parity.errors import PartialDataError
from parity.models import (
    CanonicalElement,
    ElementMatch,
    ElementStyle,
    MetricResult,
    TypographyDiff,
    weight_category,
)
from parity.text import clamp01

logger = logging.getLogger(__name__)

# Family names (lowercase, unquoted) and the canonical group they collapse to.
FAMILY_GROUPS = {
    "system-ui": "system-ui",
    "-apple-system": "system-ui",
    "blinkmacsystemfont": "system-ui",
    "segoe ui": "system-ui",
    "segoe ui variable": "system-ui",
    "roboto": "system-ui",
    "ubuntu": "system-ui",
    "cantarell": "system-ui",
    "oxygen": "system-ui",
    "noto sans": "system-ui",
    "sf pro": "system-ui",
    "sf pro text": "system-ui",
    "sf pro display": "system-ui",
    ".sfnstext": "system-ui",
    "ui-sans-serif": "system-ui",
    "sans-serif": "sans-serif",
    "arial": "sans-serif",
    "helvetica": "sans-serif",
    "helvetica neue": "sans-serif",
    "liberation sans": "sans-serif",
    "dejavu sans": "sans-serif",
    "serif": "serif",
    "ui-serif": "serif",
    "times": "serif",
    "times new roman": "serif",
    "liberation serif": "serif",
    "georgia": "serif",
    "monospace": "monospace",
    "ui-monospace": "monospace",
    "sfmono-regular": "monospace",
    "sf mono": "monospace",
    "menlo": "monospace",
    "monaco": "monospace",
    "consolas": "monospace",
    "courier": "monospace",
    "courier new": "monospace",
    "liberation mono": "monospace",
    "dejavu sans mono": "monospace",
}


def family_group(family: str | None) -> str | None:
    """Collapse a font-family chain to the group of its first family."""
    if not family:
        return None
    for part in family.split(","):
        name = part.strip().strip("'\"").strip().lower()
        if name:
            return FAMILY_GROUPS.get(name, name)
    return None


def _relative_excess(ref: float, impl: float, tolerance: float) -> float:
    if ref <= 0:
        return 0.0 if impl <= 0 else 1.0
    rel = abs(impl - ref) / ref
    return max(0.0, rel - tolerance)


def pair_penalty(
    ref: ElementStyle,
    impl: ElementStyle,
    settings: TypographySettings,
) -> tuple[float, list[str]]:
    """Penalty and issue tags for one matched pair; attributes missing on either side are skipped."""
    penalty = 0.0
    issues: list[str] = []

    ref_family, impl_family = family_group(ref.font_family), family_group(impl.font_family)
    if ref_family is not None and impl_family is not None and ref_family != impl_family:
        penalty += settings.family_penalty
        issues.append("font_family_mismatch")

    if ref.font_size_px is not None and impl.font_size_px is not None:
        excess = _relative_excess(ref.font_size_px, impl.font_size_px, settings.size_tolerance)
        if excess > 0:
            penalty += min(settings.size_penalty_cap, excess / settings.size_tolerance)
            issues.append("font_size_diff")

    ref_weight, impl_weight = weight_category(ref.font_weight), weight_category(impl.font_weight)
    if ref_weight is not None and impl_weight is not None and ref_weight != impl_weight:
        penalty += settings.weight_penalty
        issues.append("font_weight_diff")

    if ref.line_height_px is not None and impl.line_height_px is not None:
        excess = _relative_excess(ref.line_height_px, impl.line_height_px, settings.line_height_tolerance)
        if excess > 0:
            penalty += min(settings.line_height_penalty_cap, excess / settings.line_height_tolerance)
            issues.append("line_height_diff")

    return min(1.0, penalty), issues


def compute_typography_metric(
    ref_elements: list[CanonicalElement] | None,
    impl_elements: list[CanonicalElement] | None,
    matches: list[ElementMatch],
    settings: TypographySettings | None = None,
) -> MetricResult:
    settings = settings or TypographySettings()
    if ref_elements is None or impl_elements is None:
        raise PartialDataError("element tree missing on one side", metric="typography")

    penalties: list[float] = []
    diffs: list[TypographyDiff] = []
    for m in matches:
        ref = ref_elements[m.ref_index]
        impl = impl_elements[m.impl_index]
        if ref.style is None or impl.style is None:
            continue
        if not (ref.style.has_typography and impl.style.has_typography):
            continue
        penalty, issues = pair_penalty(ref.style, impl.style, settings)
        penalties.append(penalty)
        if issues:
            diffs.append(
                TypographyDiff(
                    ref_index=m.ref_index,
                    impl_index=m.impl_index,
                    element_type=ref.type,
                    label=ref.label,
                    box=ref.box,
                    issues=tuple(issues),
                    penalty=penalty,
                )
            )

    if not penalties:
        raise PartialDataError("no matched pair has font information on both sides", metric="typography")

    mean_penalty = sum(penalties) / len(penalties)
    score = 1.0 - clamp01(mean_penalty)
    logger.info("typography: pairs=%d issues=%d score=%.4f", len(penalties), len(diffs), score)
    return MetricResult(
        name="typography",
        score=score,
        diffs=diffs,
        details={"comparedPairs": len(penalties), "meanPenalty": mean_penalty},
    )
