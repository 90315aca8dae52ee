from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np
from skimage.color import deltaE_ciede2000, lab2rgb, rgb2lab
from sklearn.cluster import KMeans

from parity.config import ColorSettings
from parity.models import ColorDiff, MetricResult
from parity.text import clamp01

logger = logging.getLogger(__name__)

# Visible palette sizes must differ by at least this much to be reported.
PALETTE_COUNT_SLACK = 2


@dataclass(frozen=True)
class PaletteColor:
    lab: tuple[float, float, float]
    hex: str
    coverage: float
    border_share: float


def _rgb_to_lab(pixels: np.ndarray) -> np.ndarray:
    arr = pixels.reshape(-1, 1, 3).astype(np.float64) / 255.0
    return rgb2lab(arr).reshape(-1, 3)


def _lab_to_hex(lab: np.ndarray) -> str:
    rgb = lab2rgb(np.asarray(lab, dtype=np.float64).reshape(1, 1, 3)).reshape(3)
    r, g, b = (int(round(float(c) * 255.0)) for c in np.clip(rgb, 0.0, 1.0))
    return f"#{r:02x}{g:02x}{b:02x}"


def _border_pixels(img: np.ndarray) -> np.ndarray:
    return np.concatenate(
        [img[0, :, :3], img[-1, :, :3], img[:, 0, :3], img[:, -1, :3]],
        axis=0,
    )


def extract_palette(img: np.ndarray, settings: ColorSettings | None = None) -> list[PaletteColor]:
    """Dominant colors with coverage, ordered by descending coverage."""
    settings = settings or ColorSettings()
    pixels = img[:, :, :3].reshape(-1, 3)
    if len(pixels) == 0:
        return []
    step = max(1, int(math.ceil(len(pixels) / settings.max_samples)))
    sampled = pixels[::step]

    uniq, counts = np.unique(sampled, axis=0, return_counts=True)
    if len(uniq) <= settings.k:
        centers = _rgb_to_lab(uniq)
        hexes = [f"#{int(r):02x}{int(g):02x}{int(b):02x}" for r, g, b in uniq]
    else:
        lab = _rgb_to_lab(sampled)
        km = KMeans(n_clusters=settings.k, random_state=settings.seed, n_init=10)
        labels = km.fit_predict(lab)
        centers = km.cluster_centers_
        counts = np.bincount(labels, minlength=settings.k)
        hexes = [_lab_to_hex(c) for c in centers]

    total = float(counts.sum())
    border_lab = _rgb_to_lab(_border_pixels(img))
    nearest = np.argmin(((border_lab[:, None, :] - centers[None, :, :]) ** 2).sum(axis=2), axis=1)
    border_counts = np.bincount(nearest, minlength=len(centers))

    palette = [
        PaletteColor(
            lab=(float(c[0]), float(c[1]), float(c[2])),
            hex=hexes[i],
            coverage=float(counts[i]) / total,
            border_share=float(border_counts[i]) / float(len(border_lab)),
        )
        for i, c in enumerate(centers)
        if counts[i] > 0
    ]
    palette.sort(key=lambda p: (-p.coverage, p.lab))
    return palette


def delta_e(lab1: tuple[float, float, float], lab2: tuple[float, float, float]) -> float:
    return float(deltaE_ciede2000(np.array(lab1, dtype=np.float64), np.array(lab2, dtype=np.float64)))


def match_palettes(
    ref: list[PaletteColor],
    impl: list[PaletteColor],
) -> list[tuple[int, int | None, float | None]]:
    """Greedy nearest pairing; reference colors go in coverage order."""
    available = list(range(len(impl)))
    pairs: list[tuple[int, int | None, float | None]] = []
    for ri, rc in enumerate(ref):
        if not available:
            pairs.append((ri, None, None))
            continue
        d, _, j = min((delta_e(rc.lab, impl[j].lab), -impl[j].coverage, j) for j in available)
        available.remove(j)
        pairs.append((ri, j, d))
    return pairs


def _role(rank: int, color: PaletteColor, settings: ColorSettings) -> str:
    if rank == 0:
        return "primary_color_shift"
    if color.border_share >= settings.background_border_share:
        return "background_color_shift"
    return "accent_color_shift"


def compute_color_metric(
    ref_img: np.ndarray,
    impl_img: np.ndarray,
    settings: ColorSettings | None = None,
) -> MetricResult:
    settings = settings or ColorSettings()
    ref_palette = extract_palette(ref_img, settings)
    impl_palette = extract_palette(impl_img, settings)
    if not ref_palette or not impl_palette:
        return MetricResult(name="color", score=None, diagnostic="empty raster, no palette")

    pairs = match_palettes(ref_palette, impl_palette)

    weighted = 0.0
    weight_total = 0.0
    diffs: list[ColorDiff] = []
    for ri, ji, d in pairs:
        rc = ref_palette[ri]
        dist = settings.distance_scale if d is None else d
        weighted += rc.coverage * dist
        weight_total += rc.coverage

        if rc.coverage < settings.visibility:
            continue
        if d is not None and d <= settings.shift_delta_e:
            continue
        diffs.append(
            ColorDiff(
                kind=_role(ri, rc, settings),
                ref_color=rc.hex,
                impl_color=impl_palette[ji].hex if ji is not None else None,
                delta_e=d,
                coverage=rc.coverage,
            )
        )

    ref_visible = sum(1 for p in ref_palette if p.coverage >= settings.visibility)
    impl_visible = sum(1 for p in impl_palette if p.coverage >= settings.visibility)
    if abs(ref_visible - impl_visible) >= PALETTE_COUNT_SLACK:
        diffs.append(ColorDiff(kind="palette_count_mismatch", ref_count=ref_visible, impl_count=impl_visible))

    mean_distance = weighted / weight_total if weight_total > 0 else 0.0
    score = 1.0 - clamp01(mean_distance / settings.distance_scale)
    logger.info(
        "color: ref_palette=%d impl_palette=%d mean_delta_e=%.3f score=%.4f",
        len(ref_palette),
        len(impl_palette),
        mean_distance,
        score,
    )
    return MetricResult(
        name="color",
        score=score,
        diffs=diffs,
        details={
            "meanDeltaE": mean_distance,
            "referencePalette": [{"color": p.hex, "coverage": p.coverage} for p in ref_palette],
            "implementationPalette": [{"color": p.hex, "coverage": p.coverage} for p in impl_palette],
        },
    )
