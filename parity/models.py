"""
Canonical data classes for design parity comparison between a
reference snapshot and an implementation snapshot.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

SNAPSHOT_KINDS = ("image", "rendered-page", "design-document")

METRIC_NAMES = ("pixel", "layout", "typography", "color", "content")

# Rounding slack allowed on the far edge of a normalized box.
BOX_EPSILON = 1e-6

# Ordered font weight categories with their exclusive upper bounds.
WEIGHT_CATEGORIES = (
    ("light", 350.0),
    ("regular", 450.0),
    ("medium", 550.0),
    ("semibold", 650.0),
    ("bold", math.inf),
)


def weight_category(weight: float | None) -> str | None:
    if weight is None:
        return None
    for name, upper in WEIGHT_CATEGORIES:
        if weight < upper:
            return name
    return WEIGHT_CATEGORIES[-1][0]


# ---------------------------------------------------------------------------
# Native element trees (produced by capture adapters)
# ---------------------------------------------------------------------------

@dataclass
class PixelBox:
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0


@dataclass
class DomNode:
    tag: str = ""
    role: str | None = None
    box: PixelBox = field(default_factory=PixelBox)
    text: str | None = None
    attributes: dict[str, str] = field(default_factory=dict)
    computed_style: dict[str, str] = field(default_factory=dict)
    children: list["DomNode"] = field(default_factory=list)


@dataclass
class DesignTypography:
    font_family: str | None = None
    font_size: float | None = None
    font_weight: float | None = None
    line_height: float | None = None


@dataclass
class DesignNode:
    id: str = ""
    node_type: str = ""
    name: str | None = None
    box: PixelBox = field(default_factory=PixelBox)
    text: str | None = None
    typography: DesignTypography | None = None
    fills: list[str] = field(default_factory=list)
    children: list["DesignNode"] = field(default_factory=list)


@dataclass
class TextBlock:
    text: str = ""
    box: PixelBox = field(default_factory=PixelBox)
    confidence: float = 1.0


@dataclass(frozen=True)
class Snapshot:
    """One side of a comparison.

    The raster is either an in-memory RGB ``uint8`` array (``image``) or a
    file on disk (``image_path``); the in-memory array wins when both are set.
    At most one native element tree is expected, and only when the capture
    layer really had one.
    """

    kind: str
    width: int
    height: int
    image_path: Path | None = None
    image: np.ndarray | None = field(default=None, compare=False, repr=False)
    dom: list[DomNode] | None = None
    design_nodes: list[DesignNode] | None = None
    text_blocks: list[TextBlock] | None = None


# ---------------------------------------------------------------------------
# Canonical elements
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Box:
    """Axis-aligned box in normalized [0, 1] coordinates."""

    x: float
    y: float
    w: float
    h: float

    @property
    def right(self) -> float:
        return self.x + self.w

    @property
    def bottom(self) -> float:
        return self.y + self.h

    @property
    def area(self) -> float:
        return self.w * self.h

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.w / 2.0, self.y + self.h / 2.0)

    def center_distance(self, other: Box) -> float:
        (ax, ay), (bx, by) = self.center, other.center
        return math.hypot(ax - bx, ay - by)

    def iou(self, other: Box) -> float:
        if self == other:
            return 1.0 if self.area > 0.0 else 0.0
        ix = max(0.0, min(self.right, other.right) - max(self.x, other.x))
        iy = max(0.0, min(self.bottom, other.bottom) - max(self.y, other.y))
        inter = ix * iy
        union = self.area + other.area - inter
        if union <= 0.0:
            return 0.0
        return inter / union

    def contains(self, other: Box, tolerance: float = BOX_EPSILON) -> bool:
        return (
            self.x <= other.x + tolerance
            and self.y <= other.y + tolerance
            and other.right <= self.right + tolerance
            and other.bottom <= self.bottom + tolerance
        )

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.w, "height": self.h}


@dataclass(frozen=True)
class ElementStyle:
    font_family: str | None = None
    font_size_px: float | None = None
    font_weight: float | None = None
    line_height_px: float | None = None
    fill_color: str | None = None

    @property
    def font_weight_category(self) -> str | None:
        return weight_category(self.font_weight)

    @property
    def has_typography(self) -> bool:
        return any(
            v is not None
            for v in (self.font_family, self.font_size_px, self.font_weight, self.line_height_px)
        )


@dataclass(frozen=True)
class CanonicalElement:
    type: str
    box: Box
    label: str | None = None
    style: ElementStyle | None = None


@dataclass(frozen=True)
class ElementMatch:
    ref_index: int
    impl_index: int
    score: float


# ---------------------------------------------------------------------------
# Diff entries
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PixelDiffRegion:
    x: float
    y: float
    width: float
    height: float
    severity: str
    reason: str
    peak: float


@dataclass(frozen=True)
class LayoutDiff:
    kind: str
    element_type: str
    label: str | None = None
    ref_box: Box | None = None
    impl_box: Box | None = None
    ref_index: int | None = None
    impl_index: int | None = None


@dataclass(frozen=True)
class TypographyDiff:
    ref_index: int
    impl_index: int
    element_type: str
    label: str | None
    box: Box
    issues: tuple[str, ...]
    penalty: float


@dataclass(frozen=True)
class ColorDiff:
    kind: str
    ref_color: str | None = None
    impl_color: str | None = None
    delta_e: float | None = None
    coverage: float | None = None
    ref_count: int | None = None
    impl_count: int | None = None


@dataclass(frozen=True)
class ContentDiff:
    kind: str
    text: str


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class MetricResult:
    name: str
    score: float | None
    diffs: list[Any] = field(default_factory=list)
    diagnostic: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def computed(self) -> bool:
        return self.score is not None


@dataclass(frozen=True)
class ComparisonReport:
    metrics: dict[str, MetricResult]
    score: float
    threshold: float
    passed: bool
    weights: dict[str, float]
    top_issues: list[dict[str, Any]] = field(default_factory=list)
