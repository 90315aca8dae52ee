import numpy as np

from parity.config import PixelSettings
from parity.pixel import (
    _Cluster,
    classify_reason,
    classify_severity,
    compute_pixel_metric,
    find_diff_clusters,
    merge_clusters,
)


def _white(h: int = 200, w: int = 300) -> np.ndarray:
    return np.full((h, w, 3), 255, dtype=np.uint8)


def test_identical_images_score_one_without_diffs():
    a = _white()
    a[40:80, 50:150] = (37, 99, 235)

    result = compute_pixel_metric(a, a.copy())

    assert result.score == 1.0
    assert result.diffs == []
    assert result.details["diffPixelRatio"] == 0.0


def test_block_change_is_one_major_region():
    a = _white()
    b = _white()
    b[60:100, 100:140] = 0

    result = compute_pixel_metric(a, b)

    assert 0.0 <= result.score < 1.0
    assert len(result.diffs) == 1
    region = result.diffs[0]
    assert region.severity == "major"
    assert region.reason == "pixel_change"
    assert region.x <= 100 / 300 and region.x + region.width >= 140 / 300
    assert region.y <= 60 / 200 and region.y + region.height >= 100 / 200


def test_regions_ordered_top_to_bottom():
    a = _white()
    b = _white()
    b[140:170, 200:240] = 0
    b[20:50, 20:60] = 0

    result = compute_pixel_metric(a, b)

    ys = [r.y for r in result.diffs]
    assert len(ys) == 2
    assert ys == sorted(ys)


def test_dimension_mismatch_is_not_computable():
    result = compute_pixel_metric(_white(100, 100), _white(100, 120))
    assert result.score is None
    assert "dimension mismatch" in result.diagnostic


def test_tiny_images_are_not_computable():
    result = compute_pixel_metric(_white(2, 2), np.zeros((2, 2, 3), dtype=np.uint8))
    assert result.score is None


def test_pixel_metric_is_deterministic():
    rng = np.random.default_rng(7)
    a = rng.integers(0, 256, size=(120, 160, 3), dtype=np.uint8)
    b = a.copy()
    b[30:60, 40:90] = 255

    first = compute_pixel_metric(a, b)
    second = compute_pixel_metric(a, b)

    assert first.score == second.score
    assert first.diffs == second.diffs


# ---------------------------------------------------------------------------
# Clustering
# ---------------------------------------------------------------------------

def test_small_components_are_noise():
    dissim = np.zeros((50, 50), dtype=np.float64)
    dissim[10:13, 10:13] = 0.9  # 9 px, below the noise floor
    dissim[30:40, 30:40] = 0.5
    mask = (dissim >= 0.15).astype(np.uint8)

    clusters = find_diff_clusters(dissim, mask, PixelSettings())

    assert len(clusters) == 1
    assert (clusters[0].x0, clusters[0].y0, clusters[0].x1, clusters[0].y1) == (30, 30, 40, 40)
    assert clusters[0].peak == 0.5


def test_region_cap_keeps_highest_peaks():
    dissim = np.zeros((60, 200), dtype=np.float64)
    dissim[10:20, 10:20] = 0.3
    dissim[10:20, 80:90] = 0.9
    dissim[10:20, 150:160] = 0.6
    mask = (dissim >= 0.15).astype(np.uint8)

    clusters = find_diff_clusters(dissim, mask, PixelSettings(max_regions=2))

    assert sorted(c.peak for c in clusters) == [0.6, 0.9]
    assert [c.x0 for c in clusters] == [80, 150]


def test_merge_clusters_within_gap():
    a = _Cluster(0, 0, 10, 10, area=100, peak=0.4)
    near = _Cluster(15, 0, 25, 10, area=100, peak=0.8)
    far = _Cluster(60, 0, 70, 10, area=100, peak=0.2)

    merged = merge_clusters([far, near, a], gap=8)

    assert len(merged) == 2
    first = merged[0]
    assert (first.x0, first.x1, first.area, first.peak) == (0, 25, 200, 0.8)


def test_severity_thresholds():
    settings = PixelSettings()
    assert classify_severity(0.2, settings) == "minor"
    assert classify_severity(0.35, settings) == "moderate"
    assert classify_severity(0.649, settings) == "moderate"
    assert classify_severity(0.65, settings) == "major"


def test_thin_minor_cluster_is_anti_aliasing():
    settings = PixelSettings()
    edge = _Cluster(0, 0, 40, 2, area=60, peak=0.25)
    assert classify_reason(edge, settings) == "anti_aliasing"

    strong_edge = _Cluster(0, 0, 40, 2, area=60, peak=0.9)
    assert classify_reason(strong_edge, settings) == "pixel_change"

    blob = _Cluster(0, 0, 20, 20, area=300, peak=0.25)
    assert classify_reason(blob, settings) == "pixel_change"
