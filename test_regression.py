"""
Regression detection.

Compares current scores of every fixture case against stored baselines.
A baseline may pin only some fields; only the fields it carries are checked.
Run with --update-baselines to save the full record for every case.
"""

import json

import pytest

from conftest import AVAILABLE_CASES, BASELINES_DIR
from parity.compare import compare
from parity.triage import summarize_kinds

MAX_DRIFT = 0.02


# ---------------------------------------------------------------------------
# Baseline I/O
# ---------------------------------------------------------------------------

def load_baseline(case_name: str) -> dict | None:
    path = BASELINES_DIR / f"{case_name}.json"
    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def save_baseline(case_name: str, data: dict):
    BASELINES_DIR.mkdir(parents=True, exist_ok=True)
    path = BASELINES_DIR / f"{case_name}.json"
    path.write_text(json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False), encoding="utf-8")


# ---------------------------------------------------------------------------
# Score Collection
# ---------------------------------------------------------------------------

def collect_scores(reference, implementation) -> dict:
    report = compare(reference, implementation)
    return {
        "score": float(report.score),
        "passed": bool(report.passed),
        "metric_scores": {name: None if r.score is None else float(r.score) for name, r in report.metrics.items()},
        "diff_kinds": summarize_kinds(report.metrics),
    }


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestRegression:
    def test_no_regression(self, case_name, load_case_snapshots, request):
        update = request.config.getoption("--update-baselines")
        _, reference, implementation = load_case_snapshots(case_name)
        scores = collect_scores(reference, implementation)

        if update:
            save_baseline(case_name, scores)
            pytest.skip(f"Baseline updated for {case_name}")

        baseline = load_baseline(case_name)
        if baseline is None:
            save_baseline(case_name, scores)
            pytest.skip(f"No baseline found, created initial baseline for {case_name}")

        if "score" in baseline:
            drift = abs(baseline["score"] - scores["score"])
            assert drift <= MAX_DRIFT, (
                f"score drifted {drift:.3f} "
                f"(baseline={baseline['score']:.3f}, current={scores['score']:.3f})"
            )
        if "passed" in baseline:
            assert baseline["passed"] == scores["passed"]

        for name, base in baseline.get("metric_scores", {}).items():
            current = scores["metric_scores"].get(name)
            if base is None or current is None:
                assert base == current, f"{name}: computability changed (baseline={base}, current={current})"
                continue
            drift = abs(base - current)
            assert drift <= MAX_DRIFT, (
                f"{name}: drifted {drift:.3f} "
                f"(baseline={base:.3f}, current={current:.3f})"
            )

        for name, kinds in baseline.get("diff_kinds", {}).items():
            missing = set(kinds) - set(scores["diff_kinds"].get(name, []))
            assert not missing, f"{name}: diff kinds no longer reported: {sorted(missing)}"


def test_every_case_has_a_committed_baseline():
    missing = [name for name in AVAILABLE_CASES if not (BASELINES_DIR / f"{name}.json").exists()]
    assert AVAILABLE_CASES
    assert not missing, f"cases without a baseline: {missing}"
