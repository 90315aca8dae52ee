"""
Comparison entry point.

Elements are extracted and the layout metric runs first, since typography
consumes its element matches. The remaining metrics then run on a thread
pool and are joined before aggregation. A metric that fails is reported
with ``score=None`` and a diagnostic instead of failing the run.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Iterable, Mapping

import numpy as np

from parity.artifacts import IgnoreRegion, apply_ignore_regions, load_raster
from parity.canonical import apply_ignore_selectors, extract_elements, parse_ignore_selectors
from parity.color import compute_color_metric
from parity.config import CompareConfig
from parity.content import compute_content_metric
from parity.errors import (
    AggregationError,
    ComparisonError,
    ConfigError,
    InputError,
    InternalError,
    PartialDataError,
)
from parity.layout import compute_layout_metric
from parity.models import (
    METRIC_NAMES,
    SNAPSHOT_KINDS,
    CanonicalElement,
    ComparisonReport,
    ElementMatch,
    MetricResult,
    Snapshot,
)
from parity.pixel import compute_pixel_metric
from parity.scoring import aggregate_scores, validate_weights, verdict
from parity.triage import build_top_issues
from parity.typography import compute_typography_metric

logger = logging.getLogger(__name__)

RASTER_METRICS = ("pixel", "color")


def default_max_workers() -> int:
    return min(4, os.cpu_count() or 1)


def validate_snapshot(snapshot: Snapshot, side: str) -> None:
    if not isinstance(snapshot, Snapshot):
        raise InputError(f"{side}: expected a Snapshot, got {type(snapshot).__name__}")
    if snapshot.kind not in SNAPSHOT_KINDS:
        raise InputError(f"{side}: unknown snapshot kind {snapshot.kind!r}")
    if int(snapshot.width) <= 0 or int(snapshot.height) <= 0:
        raise InputError(f"{side}: dimensions must be positive (got {snapshot.width}x{snapshot.height})")
    if snapshot.image is None and snapshot.image_path is None:
        raise InputError(f"{side}: snapshot carries no raster")


def resolve_metrics(metrics: Iterable[str] | None) -> tuple[str, ...]:
    if metrics is None:
        return METRIC_NAMES
    requested = set(metrics)
    unknown = sorted(requested - set(METRIC_NAMES))
    if unknown:
        raise ConfigError(f"unknown metrics requested: {', '.join(unknown)}")
    if not requested:
        raise ConfigError("at least one metric must be requested")
    return tuple(name for name in METRIC_NAMES if name in requested)


def _extract(snapshot: Snapshot, side: str, selectors: list[str]) -> list[CanonicalElement] | None:
    try:
        return extract_elements(apply_ignore_selectors(snapshot, selectors))
    except (ValueError, TypeError, AttributeError) as exc:
        raise InputError(f"{side}: malformed element tree: {exc}") from exc


def _not_computed(name: str, error: ComparisonError) -> MetricResult:
    return MetricResult(
        name=name,
        score=None,
        diagnostic=error.reason,
        details={"errorCategory": error.category},
    )


def _guarded(name: str, fn: Callable[..., MetricResult], *args: Any) -> MetricResult:
    """Run one metric, downgrading any failure to ``score=None``."""
    try:
        return fn(*args)
    except PartialDataError as exc:
        logger.info("%s metric not computable: %s", name, exc.reason)
        return _not_computed(name, exc)
    except Exception as exc:
        logger.warning("%s metric failed: %s", name, exc, exc_info=True)
        return _not_computed(name, InternalError(f"{type(exc).__name__}: {exc}", metric=name))


def _run_layout(
    ref_elements: list[CanonicalElement] | None,
    impl_elements: list[CanonicalElement] | None,
    config: CompareConfig,
) -> tuple[MetricResult, list[ElementMatch]]:
    holder: list[list[ElementMatch]] = [[]]

    def run() -> MetricResult:
        result, holder[0] = compute_layout_metric(ref_elements, impl_elements, config.layout)
        return result

    return _guarded("layout", run), holder[0]


def _load_rasters(
    reference: Snapshot,
    implementation: Snapshot,
    ignore_regions: list[IgnoreRegion],
) -> tuple[tuple[np.ndarray, np.ndarray] | None, str | None]:
    try:
        ref_img = load_raster(reference)
        impl_img = load_raster(implementation)
    except InputError as exc:
        logger.info("raster unavailable: %s", exc.reason)
        return None, exc.reason
    if ignore_regions:
        ref_img = apply_ignore_regions(ref_img, ignore_regions)
        impl_img = apply_ignore_regions(impl_img, ignore_regions)
    return (ref_img, impl_img), None


def compare(
    reference: Snapshot,
    implementation: Snapshot,
    metrics: Iterable[str] | None = None,
    weights: Mapping[str, float] | None = None,
    *,
    threshold: float | None = None,
    config: CompareConfig | None = None,
    ignore_regions: list[IgnoreRegion] | None = None,
    ignore_selectors: str | Iterable[str] | None = None,
) -> ComparisonReport:
    """Compare an implementation snapshot against a reference snapshot.

    ``ignore_regions`` are masked out of both rasters; element-tree nodes
    matching ``ignore_selectors`` (``#id``, ``.class`` or a tag name) are
    pruned with their subtrees before the structural metrics run.

    Raises ``InputError`` for malformed snapshots, ``ConfigError`` for bad
    metric names or weights and ``AggregationError`` when no requested metric
    could be computed.
    """
    config = config or CompareConfig()
    validate_snapshot(reference, "reference")
    validate_snapshot(implementation, "implementation")
    requested = resolve_metrics(metrics)

    metric_weights = config.weights.as_dict()
    if weights is not None:
        metric_weights.update(validate_weights(weights))
    threshold = config.threshold if threshold is None else float(threshold)
    if not 0.0 <= threshold <= 1.0:
        raise ConfigError(f"threshold must lie in [0, 1] (got {threshold})")

    selectors = parse_ignore_selectors(ignore_selectors)
    ref_elements = _extract(reference, "reference", selectors)
    impl_elements = _extract(implementation, "implementation", selectors)

    results: dict[str, MetricResult] = {}
    matches: list[ElementMatch] = []
    if "layout" in requested or "typography" in requested:
        layout_result, matches = _run_layout(ref_elements, impl_elements, config)
        if "layout" in requested:
            results["layout"] = layout_result

    rasters, raster_error = (None, None)
    if any(name in requested for name in RASTER_METRICS):
        rasters, raster_error = _load_rasters(reference, implementation, list(ignore_regions or []))

    futures: dict[str, Future[MetricResult]] = {}
    with ThreadPoolExecutor(max_workers=config.max_workers or default_max_workers()) as pool:
        for name in requested:
            if name == "layout":
                continue
            if name in RASTER_METRICS and rasters is None:
                results[name] = _not_computed(name, InputError(f"raster unavailable: {raster_error}", metric=name))
                continue
            if name == "pixel":
                futures[name] = pool.submit(_guarded, name, compute_pixel_metric, *rasters, config.pixel)
            elif name == "color":
                futures[name] = pool.submit(_guarded, name, compute_color_metric, *rasters, config.color)
            elif name == "content":
                futures[name] = pool.submit(
                    _guarded, name, compute_content_metric, ref_elements, impl_elements, config.content
                )
            elif name == "typography":
                futures[name] = pool.submit(
                    _guarded,
                    name,
                    compute_typography_metric,
                    ref_elements,
                    impl_elements,
                    matches,
                    config.typography,
                )
        for name, future in futures.items():
            results[name] = future.result()

    ordered = {name: results[name] for name in requested}
    scores = {name: result.score for name, result in ordered.items()}
    try:
        score, effective = aggregate_scores(scores, {n: metric_weights.get(n, 0.0) for n in requested})
    except AggregationError as exc:
        raise AggregationError(
            exc.reason,
            diagnostics={name: result.diagnostic for name, result in ordered.items()},
        ) from exc

    passed = verdict(score, threshold)
    logger.info(
        "compare: score=%.4f threshold=%.2f passed=%s computed=%s",
        score,
        threshold,
        passed,
        ",".join(name for name, result in ordered.items() if result.computed),
    )
    return ComparisonReport(
        metrics=ordered,
        score=score,
        threshold=threshold,
        passed=passed,
        weights=effective,
        top_issues=build_top_issues(ordered, effective),
    )
