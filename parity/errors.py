from __future__ import annotations

from typing import Any


class ComparisonError(Exception):
    """Base class for failures surfaced by a comparison run."""

    category = "unknown"
    remediation = "Re-run with debug logging enabled; file an issue if persistent."

    def __init__(self, reason: str, *, metric: str | None = None):
        super().__init__(reason)
        self.reason = reason
        self.metric = metric

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "category": self.category,
            "message": self.reason,
            "remediation": self.remediation,
        }
        if self.metric is not None:
            payload["metric"] = self.metric
        return payload


class InputError(ComparisonError):
    """Malformed or undecodable snapshot. Not retryable."""

    category = "input"
    remediation = "Verify the snapshot kind, pixel dimensions and raster path/format."


class PartialDataError(ComparisonError):
    """A metric cannot be computed because optional data is missing."""

    category = "partial_data"
    remediation = "Provide the missing element tree or text to enable this metric."


class AggregationError(ComparisonError):
    """No requested metric produced a score."""

    category = "aggregation"
    remediation = "Check per-metric diagnostics; at least one metric must be computable."

    def __init__(self, reason: str, *, diagnostics: dict[str, str | None] | None = None):
        super().__init__(reason)
        self.diagnostics = dict(diagnostics or {})

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["diagnostics"] = self.diagnostics
        return payload


class InternalError(ComparisonError):
    """Unexpected computation failure inside a single metric."""

    category = "metric"
    remediation = "Inspect metric inputs; the metric was excluded from the aggregate."


class ConfigError(ComparisonError):
    category = "config"
    remediation = "Check the config file, weights and threshold values."
