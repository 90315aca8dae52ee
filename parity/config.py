"""
Comparison configuration.

Every tunable constant of the metrics lives here with its default, so a
config file (JSON or TOML) can override any of them. Explicit arguments to
``compare()`` win over the file.
"""

from __future__ import annotations

import json
import os
import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, model_validator

from parity.errors import ConfigError

CONFIG_ENV_VAR = "PARITY_CONFIG"
DEFAULT_THRESHOLD = 0.95


class MetricWeights(BaseModel):
    pixel: float = Field(default=0.35, ge=0.0)
    layout: float = Field(default=0.25, ge=0.0)
    typography: float = Field(default=0.15, ge=0.0)
    color: float = Field(default=0.15, ge=0.0)
    content: float = Field(default=0.10, ge=0.0)

    def as_dict(self) -> dict[str, float]:
        return {
            "pixel": self.pixel,
            "layout": self.layout,
            "typography": self.typography,
            "color": self.color,
            "content": self.content,
        }


class PixelSettings(BaseModel):
    diff_cutoff: float = Field(default=0.15, gt=0.0, lt=1.0)
    minor_cutoff: float = Field(default=0.35, gt=0.0, le=1.0)
    moderate_cutoff: float = Field(default=0.65, gt=0.0, le=1.0)
    merge_gap_px: int = Field(default=8, ge=0)
    min_region_area_px: int = Field(default=16, ge=1)
    max_regions: int = Field(default=50, ge=1)
    thin_px: int = Field(default=2, ge=1)
    thin_aspect: float = Field(default=8.0, ge=1.0)
    thin_max_area_px: int = Field(default=64, ge=1)

    @model_validator(mode="after")
    def _ordered_cutoffs(self) -> "PixelSettings":
        if not self.minor_cutoff < self.moderate_cutoff:
            raise ValueError("minor_cutoff must be below moderate_cutoff")
        return self


class LayoutSettings(BaseModel):
    type_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    label_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    proximity_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    min_accept: float = Field(default=0.3, ge=0.0, le=1.0)
    extra_penalty: float = Field(default=0.1, ge=0.0)
    position_tolerance: float = Field(default=0.005, ge=0.0)
    size_tolerance: float = Field(default=0.1, ge=0.0)
    strategy: Literal["greedy", "optimal"] = "greedy"

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> "LayoutSettings":
        total = self.type_weight + self.label_weight + self.proximity_weight
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"layout candidate weights must sum to 1 (got {total:.6f})")
        return self


class TypographySettings(BaseModel):
    size_tolerance: float = Field(default=0.10, gt=0.0)
    line_height_tolerance: float = Field(default=0.10, gt=0.0)
    family_penalty: float = Field(default=1.0, ge=0.0)
    weight_penalty: float = Field(default=0.5, ge=0.0)
    size_penalty_cap: float = Field(default=1.0, ge=0.0)
    line_height_penalty_cap: float = Field(default=0.5, ge=0.0)


class ColorSettings(BaseModel):
    k: int = Field(default=5, ge=1, le=32)
    seed: int = 0
    distance_scale: float = Field(default=50.0, gt=0.0)
    shift_delta_e: float = Field(default=10.0, ge=0.0)
    visibility: float = Field(default=0.02, ge=0.0, le=1.0)
    background_border_share: float = Field(default=0.5, ge=0.0, le=1.0)
    max_samples: int = Field(default=20_000, ge=100)


class ContentSettings(BaseModel):
    match_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    extra_penalty_weight: float = Field(default=0.5, ge=0.0)
    significant_words: int = Field(default=2, ge=1)
    significant_chars: int = Field(default=12, ge=1)


class CompareConfig(BaseModel):
    threshold: float = Field(default=DEFAULT_THRESHOLD, ge=0.0, le=1.0)
    weights: MetricWeights = Field(default_factory=MetricWeights)
    pixel: PixelSettings = Field(default_factory=PixelSettings)
    layout: LayoutSettings = Field(default_factory=LayoutSettings)
    typography: TypographySettings = Field(default_factory=TypographySettings)
    color: ColorSettings = Field(default_factory=ColorSettings)
    content: ContentSettings = Field(default_factory=ContentSettings)
    max_workers: int | None = Field(default=None, ge=1)


def load_config(path: Path | str | None = None) -> CompareConfig:
    """Load a config file, falling back to ``$PARITY_CONFIG``, then defaults."""
    if path is None:
        env = os.getenv(CONFIG_ENV_VAR, "")
        if not env:
            return CompareConfig()
        path = env

    config_path = Path(path).expanduser()
    if not config_path.exists():
        raise ConfigError(f"config file not found: {config_path}")

    raw = config_path.read_text(encoding="utf-8")
    try:
        if config_path.suffix.lower() == ".toml":
            data = tomllib.loads(raw)
        else:
            data = json.loads(raw)
    except (tomllib.TOMLDecodeError, json.JSONDecodeError) as exc:
        raise ConfigError(f"invalid config file {config_path}: {exc}") from exc

    return config_from_dict(data)


def config_from_dict(data: dict) -> CompareConfig:
    try:
        return CompareConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid config: {exc}") from exc
