from __future__ import annotations

import logging
from dataclasses import dataclass

import cv2
import numpy as np
from scipy import ndimage
from skimage.metrics import structural_similarity as ssim

from parity.config import PixelSettings
from parity.models import MetricResult, PixelDiffRegion
from parity.text import clamp01

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Cluster:
    x0: int
    y0: int
    x1: int  # exclusive
    y1: int  # exclusive
    area: int
    peak: float

    @property
    def width(self) -> int:
        return self.x1 - self.x0

    @property
    def height(self) -> int:
        return self.y1 - self.y0

    def union(self, other: "_Cluster") -> "_Cluster":
        return _Cluster(
            x0=min(self.x0, other.x0),
            y0=min(self.y0, other.y0),
            x1=max(self.x1, other.x1),
            y1=max(self.y1, other.y1),
            area=self.area + other.area,
            peak=max(self.peak, other.peak),
        )


def _win_size(h: int, w: int) -> int:
    win_size = min(7, h, w)
    if win_size % 2 == 0:
        win_size -= 1
    if win_size < 3:
        win_size = 3
    return win_size


def compute_pixel_metric(
    ref_img: np.ndarray,
    impl_img: np.ndarray,
    settings: PixelSettings | None = None,
) -> MetricResult:
    """SSIM-based similarity plus clustered diff regions.

    Both rasters must already share the same dimensions; resizing is the
    capture layer's job, so a mismatch yields ``score=None``.
    """
    settings = settings or PixelSettings()

    if ref_img.shape[:2] != impl_img.shape[:2]:
        return MetricResult(
            name="pixel",
            score=None,
            diagnostic=(
                f"dimension mismatch: reference {ref_img.shape[1]}x{ref_img.shape[0]}, "
                f"implementation {impl_img.shape[1]}x{impl_img.shape[0]}"
            ),
        )
    h, w = ref_img.shape[0], ref_img.shape[1]
    if h < 3 or w < 3:
        return MetricResult(name="pixel", score=None, diagnostic="images too small for comparison")

    if np.array_equal(ref_img, impl_img):
        return MetricResult(name="pixel", score=1.0, details={"ssim": 1.0, "diffPixelRatio": 0.0})

    g1 = cv2.cvtColor(ref_img, cv2.COLOR_RGB2GRAY)
    g2 = cv2.cvtColor(impl_img, cv2.COLOR_RGB2GRAY)
    raw, ssim_map = ssim(g1, g2, win_size=_win_size(h, w), data_range=255, full=True)

    dissim = 1.0 - np.clip(ssim_map, 0.0, 1.0)
    mask = (dissim >= settings.diff_cutoff).astype(np.uint8)
    clusters = find_diff_clusters(dissim, mask, settings)

    regions = [
        PixelDiffRegion(
            x=c.x0 / w,
            y=c.y0 / h,
            width=c.width / w,
            height=c.height / h,
            severity=classify_severity(c.peak, settings),
            reason=classify_reason(c, settings),
            peak=c.peak,
        )
        for c in clusters
    ]

    diff_ratio = float(mask.mean())
    logger.debug("pixel: ssim=%.4f diff_ratio=%.4f regions=%d", float(raw), diff_ratio, len(regions))
    return MetricResult(
        name="pixel",
        score=clamp01(float(raw)),
        diffs=regions,
        details={"ssim": float(raw), "diffPixelRatio": diff_ratio},
    )


def find_diff_clusters(dissim: np.ndarray, mask: np.ndarray, settings: PixelSettings) -> list[_Cluster]:
    if not np.any(mask):
        return []

    num_labels, labels, stats, _ = cv2.connectedComponentsWithStats(mask, connectivity=8)
    index = np.arange(1, num_labels)
    peaks = ndimage.maximum(dissim, labels=labels, index=index)

    raw: list[_Cluster] = []
    for label_idx, peak in zip(index, np.atleast_1d(peaks)):
        x = int(stats[label_idx, cv2.CC_STAT_LEFT])
        y = int(stats[label_idx, cv2.CC_STAT_TOP])
        w_box = int(stats[label_idx, cv2.CC_STAT_WIDTH])
        h_box = int(stats[label_idx, cv2.CC_STAT_HEIGHT])
        raw.append(
            _Cluster(
                x0=x,
                y0=y,
                x1=x + w_box,
                y1=y + h_box,
                area=int(stats[label_idx, cv2.CC_STAT_AREA]),
                peak=float(peak),
            )
        )

    merged = merge_clusters(raw, settings.merge_gap_px)
    kept = [c for c in merged if c.area >= settings.min_region_area_px]
    logger.debug(
        "pixel components raw=%d merged=%d after_noise=%d", len(raw), len(merged), len(kept)
    )

    if len(kept) > settings.max_regions:
        kept.sort(key=lambda c: (-c.peak, -c.area, c.y0, c.x0))
        kept = kept[: settings.max_regions]

    kept.sort(key=lambda c: (c.y0, c.x0, c.y1, c.x1))
    return kept


def merge_clusters(clusters: list[_Cluster], gap: int) -> list[_Cluster]:
    """Merge clusters whose boxes are within ``gap`` pixels until stable."""
    current = sorted(clusters, key=lambda c: (c.y0, c.x0, c.y1, c.x1))
    changed = True
    while changed:
        changed = False
        out: list[_Cluster] = []
        for cluster in current:
            for i, other in enumerate(out):
                if _within_gap(other, cluster, gap):
                    out[i] = other.union(cluster)
                    changed = True
                    break
            else:
                out.append(cluster)
        current = sorted(out, key=lambda c: (c.y0, c.x0, c.y1, c.x1))
    return current


def _within_gap(a: _Cluster, b: _Cluster, gap: int) -> bool:
    dx = max(0, max(a.x0, b.x0) - min(a.x1, b.x1))
    dy = max(0, max(a.y0, b.y0) - min(a.y1, b.y1))
    return dx <= gap and dy <= gap


def classify_severity(peak: float, settings: PixelSettings) -> str:
    if peak < settings.minor_cutoff:
        return "minor"
    if peak < settings.moderate_cutoff:
        return "moderate"
    return "major"


def classify_reason(cluster: _Cluster, settings: PixelSettings) -> str:
    short_side = max(1, min(cluster.width, cluster.height))
    long_side = max(cluster.width, cluster.height)
    thin = short_side <= settings.thin_px or (
        long_side / short_side >= settings.thin_aspect and cluster.area <= settings.thin_max_area_px
    )
    if thin and classify_severity(cluster.peak, settings) == "minor":
        return "anti_aliasing"
    return "pixel_change"
