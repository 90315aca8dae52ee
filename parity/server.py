"""
FastAPI evaluation server for design parity comparisons.

Takes two snapshot sidecar JSON paths (see ``parity.snapshot_io``), runs
``compare()`` off the event loop and returns the report JSON. Optionally
writes a diff heatmap into the reports directory.

Usage:
    python -m parity.server
    PARITY_CONFIG=parity.toml python -m parity.server
"""

from __future__ import annotations

import asyncio
import os
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from parity.artifacts import IgnoreRegion, load_raster, make_diff_heatmap, save_image
from parity.compare import compare
from parity.config import CompareConfig, load_config
from parity.errors import AggregationError, ComparisonError, ConfigError, InputError
from parity.report import report_to_dict
from parity.snapshot_io import load_snapshot

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

PARITY_SERVER_PORT = int(os.getenv("PARITY_PORT", "8080"))
REPORTS_DIR = Path(os.getenv("PARITY_REPORTS_DIR", "reports")).resolve()

ERROR_STATUS = {
    InputError: 400,
    ConfigError: 400,
    AggregationError: 422,
}


@lru_cache(maxsize=1)
def get_config() -> CompareConfig:
    return load_config()


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

app = FastAPI(title="Design Parity Server")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class IgnoreRegionPayload(BaseModel):
    x: float
    y: float
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class ComparePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reference: str = Field(min_length=1)
    implementation: str = Field(min_length=1)
    metrics: list[str] | None = None
    weights: dict[str, float] | None = None
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    ignore_regions: list[IgnoreRegionPayload] = Field(default_factory=list, alias="ignoreRegions")
    ignore_selectors: list[str] = Field(default_factory=list, alias="ignoreSelectors")
    heatmap: bool = False


@app.exception_handler(ComparisonError)
async def comparison_error_handler(request: Request, exc: ComparisonError):
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    return JSONResponse(status_code=status, content={"error": exc.to_payload()})


def _utc_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")


def run_comparison(payload: ComparePayload) -> dict:
    reference = load_snapshot(payload.reference)
    implementation = load_snapshot(payload.implementation)
    regions = [IgnoreRegion(r.x, r.y, r.width, r.height) for r in payload.ignore_regions]
    report = compare(
        reference,
        implementation,
        payload.metrics,
        payload.weights,
        threshold=payload.threshold,
        config=get_config(),
        ignore_regions=regions,
        ignore_selectors=payload.ignore_selectors,
    )
    result = report_to_dict(report)

    if payload.heatmap:
        heatmap = make_diff_heatmap(load_raster(reference), load_raster(implementation))
        path = save_image(heatmap, REPORTS_DIR / f"{_utc_stamp()}_diff.png")
        result["heatmap"] = path.name
    return result


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.get("/api/config")
async def current_config():
    return get_config().model_dump()


@app.post("/api/compare")
async def compare_snapshots(payload: ComparePayload):
    return await asyncio.to_thread(run_comparison, payload)


@app.get("/api/heatmap/{name}")
async def heatmap_image(name: str):
    path = (REPORTS_DIR / name).resolve()
    if path.parent != REPORTS_DIR or not path.exists():
        raise HTTPException(404, f"Heatmap not found: {name}")
    return FileResponse(path, media_type="image/png")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    print(f"Starting Design Parity Server on http://localhost:{PARITY_SERVER_PORT}")
    print(f"Reports: {REPORTS_DIR}")
    uvicorn.run(app, host="0.0.0.0", port=PARITY_SERVER_PORT)
