from __future__ import annotations

from typing import Mapping

from parity.errors import AggregationError, ConfigError
from parity.models import METRIC_NAMES


def validate_weights(weights: Mapping[str, float]) -> dict[str, float]:
    out: dict[str, float] = {}
    for name, value in weights.items():
        if name not in METRIC_NAMES:
            raise ConfigError(f"unknown metric in weights: {name}")
        value = float(value)
        if value < 0.0:
            raise ConfigError(f"weight for {name} must be non-negative (got {value})")
        out[name] = value
    return out


def redistribute_weights(
    weights: Mapping[str, float],
    present: list[str] | set[str],
) -> dict[str, float]:
    """Rescale the weights of present metrics so they sum to 1."""
    remaining = {name: float(weights.get(name, 0.0)) for name in METRIC_NAMES if name in present}
    total = sum(remaining.values())
    if not remaining or total <= 0.0:
        raise AggregationError("no metric with a positive weight produced a score")
    return {name: w / total for name, w in remaining.items()}


def aggregate_scores(
    scores: Mapping[str, float | None],
    weights: Mapping[str, float],
) -> tuple[float, dict[str, float]]:
    """Weighted mean over metrics whose score is not None.

    Returns the aggregate and the effective weights actually applied.
    """
    present = [name for name in METRIC_NAMES if scores.get(name) is not None]
    if not present:
        raise AggregationError("no metric produced a score")

    total = sum(float(weights.get(name, 0.0)) for name in present)
    if total <= 0.0:
        raise AggregationError("no metric with a positive weight produced a score")

    weighted_sum = sum(float(weights.get(name, 0.0)) * float(scores[name]) for name in present)
    effective = redistribute_weights(weights, present)
    return weighted_sum / total, effective


def verdict(score: float, threshold: float) -> bool:
    return bool(score >= threshold)
