import dataclasses
from pathlib import Path

import numpy as np
import pytest

import parity.compare as compare_module
from conftest import blank_canvas, dom_snapshot, node
from parity.artifacts import IgnoreRegion
from parity.compare import compare
from parity.config import CompareConfig, MetricWeights
from parity.errors import AggregationError, ConfigError, InputError
from parity.models import Snapshot
from parity.report import report_to_json


def _page(button_y: float = 30, text: str = "Get started", fill=(37, 99, 235)) -> Snapshot:
    img = blank_canvas(300, 400)
    y = int(button_y)
    img[y : y + 40, 40:200] = fill
    return dom_snapshot(
        [
            node("h1", 40, 100, 300, 40, "Welcome back", computed_style={"font-size": "32px", "font-weight": "700"}),
            node("button", 40, button_y, 160, 40, text, computed_style={"font-size": "16px"}),
        ],
        image=img,
    )


# ---------------------------------------------------------------------------
# Fixture cases
# ---------------------------------------------------------------------------

def test_case_expectations(case_name, load_case_snapshots):
    case, reference, implementation = load_case_snapshots(case_name)
    expect = case.expect

    report = compare(reference, implementation)

    if "score" in expect:
        assert report.score == expect["score"]
    if "passed" in expect:
        assert report.passed is expect["passed"]
    for name in expect.get("nullMetrics", []):
        assert report.metrics[name].score is None, name
        assert report.metrics[name].diagnostic
        assert name not in report.weights
    for name, value in expect.get("scores", {}).items():
        assert report.metrics[name].score == pytest.approx(value), name
    for name in expect.get("below", []):
        assert report.metrics[name].score < 1.0, name
    for name, kinds in expect.get("diffKinds", {}).items():
        seen = _kinds(report.metrics[name])
        for kind in kinds:
            assert kind in seen, f"{name}: {kind} not in {seen}"
    for name, kinds in expect.get("absentKinds", {}).items():
        seen = _kinds(report.metrics[name])
        for kind in kinds:
            assert kind not in seen, f"{name}: unexpected {kind}"
    if expect.get("noDiffs"):
        assert all(not r.diffs for r in report.metrics.values())
        assert report.top_issues == []


def _kinds(result) -> list[str]:
    kinds = []
    for diff in result.diffs:
        kinds.extend(getattr(diff, "issues", None) or [getattr(diff, "kind", None) or diff.reason])
    return kinds


def test_identity_on_every_case(case_name, load_case_snapshots):
    _, reference, _ = load_case_snapshots(case_name)

    report = compare(reference, reference)

    assert report.score == 1.0
    assert report.passed
    assert all(not r.diffs for r in report.metrics.values())


def test_report_json_is_deterministic(load_case_snapshots):
    _, reference, implementation = load_case_snapshots("shifted_button")

    first = report_to_json(compare(reference, implementation))
    second = report_to_json(compare(reference, implementation))

    assert first == second


# ---------------------------------------------------------------------------
# Scheduling and failure isolation
# ---------------------------------------------------------------------------

def test_metric_failure_is_isolated(monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("clustering did not converge")

    monkeypatch.setattr(compare_module, "compute_color_metric", boom)

    report = compare(_page(), _page(button_y=40))

    color = report.metrics["color"]
    assert color.score is None
    assert "RuntimeError" in color.diagnostic
    assert color.details["errorCategory"] == "metric"
    assert "color" not in report.weights
    assert report.metrics["pixel"].score is not None
    assert report.metrics["layout"].score is not None


def test_undecodable_raster_disables_raster_metrics(tmp_path: Path):
    broken = tmp_path / "broken.png"
    broken.write_bytes(b"not a png")
    reference = _page()
    implementation = Snapshot(
        kind="rendered-page",
        width=400,
        height=300,
        image_path=broken,
        dom=reference.dom,
    )

    report = compare(reference, implementation)

    for name in ("pixel", "color"):
        assert report.metrics[name].score is None
        assert report.metrics[name].details["errorCategory"] == "input"
    assert report.metrics["layout"].score == 1.0
    assert report.score == 1.0


def test_aggregation_error_carries_diagnostics(tmp_path: Path):
    reference = Snapshot(kind="image", width=10, height=10, image_path=tmp_path / "missing.png")

    with pytest.raises(AggregationError) as excinfo:
        compare(reference, reference, metrics={"pixel", "layout"})

    payload = excinfo.value.to_payload()
    assert payload["category"] == "aggregation"
    assert set(payload["diagnostics"]) == {"pixel", "layout"}
    assert "raster" in payload["diagnostics"]["pixel"]


def test_zero_text_redistributes_content_weight():
    img = blank_canvas(300, 400)
    img[50:150, 50:150] = (200, 30, 30)
    snap = dom_snapshot([node("img", 50, 50, 100, 100)], image=img)

    report = compare(snap, snap)

    assert report.metrics["content"].score is None
    assert report.metrics["typography"].score is None
    assert "content" not in report.weights
    assert sum(report.weights.values()) == pytest.approx(1.0)
    assert report.weights["pixel"] == pytest.approx(0.35 / 0.75)


# ---------------------------------------------------------------------------
# Arguments
# ---------------------------------------------------------------------------

def test_metric_subset_and_weight_override():
    report = compare(
        _page(),
        _page(button_y=34),
        metrics={"layout", "content"},
        weights={"layout": 3.0, "content": 1.0},
    )

    assert list(report.metrics) == ["layout", "content"]
    assert report.weights == pytest.approx({"layout": 0.75, "content": 0.25})


def test_threshold_argument_overrides_config():
    config = CompareConfig(threshold=0.2)
    report = compare(_page(), _page(text="Start now"), config=config, threshold=1.0)
    assert report.threshold == 1.0
    assert not report.passed


def test_config_weights_are_used():
    config = CompareConfig(weights=MetricWeights(pixel=0.0, layout=1.0, typography=0.0, color=0.0, content=0.0))
    report = compare(_page(), _page(button_y=40), config=config)
    assert report.weights["layout"] == 1.0
    assert report.score == pytest.approx(report.metrics["layout"].score)


def test_ignore_regions_mask_raster_differences():
    reference = _page()
    implementation = _page(fill=(20, 20, 20))

    unmasked = compare(reference, implementation, metrics={"pixel"})
    masked = compare(
        reference,
        implementation,
        metrics={"pixel", "color"},
        ignore_regions=[IgnoreRegion(x=30, y=20, width=200, height=60)],
    )

    assert unmasked.metrics["pixel"].score < 1.0
    assert masked.metrics["pixel"].score == 1.0
    assert masked.metrics["color"].score == 1.0


def test_ignore_selectors_prune_structural_elements():
    reference = _page()
    promo = node("aside", 250, 200, 120, 60, "Limited offer today", attributes={"class": "banner Promo"})
    implementation = dataclasses.replace(reference, dom=[*reference.dom, promo])

    plain = compare(reference, implementation, metrics={"layout", "content"})
    masked = compare(reference, implementation, metrics={"layout", "content"}, ignore_selectors=".PROMO")

    assert "extra_element" in _kinds(plain.metrics["layout"])
    assert plain.metrics["content"].score < 1.0
    assert masked.score == 1.0
    assert all(not r.diffs for r in masked.metrics.values())
    assert len(implementation.dom) == 3


@pytest.mark.parametrize(
    "snapshot",
    [
        Snapshot(kind="screenshot", width=10, height=10, image=np.zeros((10, 10, 3), dtype=np.uint8)),
        Snapshot(kind="image", width=0, height=10, image=np.zeros((10, 10, 3), dtype=np.uint8)),
        Snapshot(kind="image", width=10, height=10),
    ],
)
def test_malformed_snapshot_is_input_error(snapshot):
    with pytest.raises(InputError):
        compare(snapshot, _page())


def test_unknown_metric_is_config_error():
    with pytest.raises(ConfigError):
        compare(_page(), _page(), metrics={"pixel", "motion"})
    with pytest.raises(ConfigError):
        compare(_page(), _page(), weights={"pixel": -1.0})
