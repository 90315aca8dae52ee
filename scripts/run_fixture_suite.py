#!/usr/bin/env python3
"""
Run every fixture case in testdata/cases through the comparison engine.

Modes:
  1) Local (default): render each case and call compare() in-process.
  2) Server: with --api-base, write each side as PNG + snapshot JSON under
     --work-dir and POST /api/compare to a running parity server.

Usage:
  python scripts/run_fixture_suite.py
  python scripts/run_fixture_suite.py --cases-dir testdata/cases --out reports/fixtures.json
  python -m parity.server &  python scripts/run_fixture_suite.py --api-base http://localhost:8080

Output:
  - JSON report with results[].score, results[].passed and per-metric scores.
  - CSV with case, score, passed and one column per metric for quick sort.
"""

from __future__ import annotations

import argparse
import asyncio
import csv
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

import httpx

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from parity.compare import compare  # noqa: E402
from parity.errors import ComparisonError  # noqa: E402
from parity.models import METRIC_NAMES  # noqa: E402
from parity.report import report_to_dict  # noqa: E402
from parity.scene import SceneCase, case_snapshots, load_case, write_snapshot  # noqa: E402

DEFAULT_CASES_DIR = REPO_ROOT / "testdata" / "cases"
DEFAULT_OUT_JSON = REPO_ROOT / "reports" / "fixture-suite.json"
DEFAULT_CONCURRENCY = 4


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _result_from_report(name: str, data: dict) -> dict:
    metrics = data.get("metrics") or {}
    return {
        "case": name,
        "score": data.get("score"),
        "passed": data.get("passed", False),
        "metrics": {m: (metrics.get(m) or {}).get("score") for m in METRIC_NAMES},
        "topIssues": data.get("topIssues") or [],
    }


def _eval_local(case: SceneCase) -> tuple[dict | None, dict | None]:
    reference, implementation = case_snapshots(case)
    try:
        report = compare(reference, implementation)
    except ComparisonError as e:
        return None, {"case": case.name, "error": e.to_payload()}
    return _result_from_report(case.name, report_to_dict(report)), None


async def _eval_remote(
    client: httpx.AsyncClient,
    sem: asyncio.Semaphore,
    api_base: str,
    case: SceneCase,
    work_dir: Path,
) -> tuple[dict | None, dict | None]:
    """Evaluate a single case. Returns (result, error); exactly one is non-None."""
    reference, implementation = case_snapshots(case)
    ref_json = write_snapshot(reference, work_dir / case.name, "reference")
    impl_json = write_snapshot(implementation, work_dir / case.name, "implementation")
    async with sem:
        try:
            r = await client.post(
                f"{api_base}/api/compare",
                json={"reference": str(ref_json), "implementation": str(impl_json)},
            )
            data = r.json()
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            return None, {"case": case.name, "error": str(e)}
    if r.status_code != 200:
        return None, {"case": case.name, "error": data.get("error", data)}
    return _result_from_report(case.name, data), None


async def _eval_batch_remote(args: argparse.Namespace, cases: list[SceneCase]) -> list[tuple[dict | None, dict | None]]:
    api_base = args.api_base.rstrip("/")
    work_dir = Path(args.work_dir).resolve()
    sem = asyncio.Semaphore(args.concurrency)
    print(f"server: evaluating {len(cases)} cases (concurrency={args.concurrency})...", file=sys.stderr)
    async with httpx.AsyncClient(timeout=120.0) as client:
        tasks = [_eval_remote(client, sem, api_base, c, work_dir) for c in cases]
        return await asyncio.gather(*tasks)


def _write_csv(path: Path, results: list[dict]) -> None:
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["case", "score", "passed", *METRIC_NAMES])
        for row in sorted(results, key=lambda r: (r["score"] is None, r["score"])):
            writer.writerow(
                [row["case"], row["score"], row["passed"], *(row["metrics"].get(m) for m in METRIC_NAMES)]
            )


def main() -> int:
    parser = argparse.ArgumentParser(description="Run design parity fixture cases")
    parser.add_argument("--cases-dir", default=str(DEFAULT_CASES_DIR), help="Directory with case JSON files")
    parser.add_argument("--out", default=str(DEFAULT_OUT_JSON), help="Output JSON path (CSV is written beside it)")
    parser.add_argument("--api-base", default=None, help="Parity server base URL; local compare() when omitted")
    parser.add_argument("--work-dir", default=str(REPO_ROOT / "reports" / "snapshots"), help="Snapshot output dir")
    parser.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY)
    args = parser.parse_args()

    cases_dir = Path(args.cases_dir)
    if not cases_dir.is_dir():
        print(f"Cases dir: not a directory: {cases_dir}", file=sys.stderr)
        return 2
    cases = [load_case(p) for p in sorted(cases_dir.glob("*.json"))]

    if args.api_base:
        outcomes = asyncio.run(_eval_batch_remote(args, cases))
    else:
        print(f"local: evaluating {len(cases)} cases...", file=sys.stderr)
        outcomes = [_eval_local(c) for c in cases]

    results = [r for r, _ in outcomes if r is not None]
    errors = [e for _, e in outcomes if e is not None]
    print(f"  {len(results)} ok, {len(errors)} errors", file=sys.stderr)

    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    report = {
        "generated_at": _utc_now_iso(),
        "cases_dir": str(cases_dir.resolve()),
        "results": results,
        "errors": errors,
    }
    out_path.write_text(json.dumps(report, indent=2, ensure_ascii=False), encoding="utf-8")
    _write_csv(out_path.with_suffix(".csv"), results)
    print(f"Wrote {out_path}", file=sys.stderr)

    failed = sum(1 for r in results if not r["passed"])
    print(f"{len(results) - failed}/{len(results)} cases passed", file=sys.stderr)
    return 1 if errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
