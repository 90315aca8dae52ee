"""
Shared pytest fixtures.
Provides: element/snapshot factories, rendered fixture cases, parametrized case names.
"""

from pathlib import Path

import numpy as np
import pytest

from parity.models import Box, CanonicalElement, DomNode, ElementStyle, PixelBox, Snapshot
from parity.scene import case_snapshots, load_case

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

REPO_ROOT = Path(__file__).resolve().parent
TESTDATA_DIR = REPO_ROOT / "testdata"
CASES_DIR = TESTDATA_DIR / "cases"
BASELINES_DIR = TESTDATA_DIR / "baselines"

AVAILABLE_CASES = sorted(p.stem for p in CASES_DIR.glob("*.json"))


# ---------------------------------------------------------------------------
# CLI Options
# ---------------------------------------------------------------------------

def pytest_addoption(parser):
    parser.addoption(
        "--update-baselines",
        action="store_true",
        default=False,
        help="Update stored baselines instead of comparing against them",
    )


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def element(
    el_type: str,
    x: float,
    y: float,
    w: float,
    h: float,
    label: str | None = None,
    **style,
) -> CanonicalElement:
    """CanonicalElement with a normalized box; keyword args become its style."""
    return CanonicalElement(
        type=el_type,
        box=Box(x, y, w, h),
        label=label,
        style=ElementStyle(**style) if style else None,
    )


def blank_canvas(height: int = 120, width: int = 160, value: int = 255) -> np.ndarray:
    return np.full((height, width, 3), value, dtype=np.uint8)


def dom_snapshot(nodes: list[DomNode], width: int = 400, height: int = 300, image=None) -> Snapshot:
    return Snapshot(
        kind="rendered-page",
        width=width,
        height=height,
        image=blank_canvas(height, width) if image is None else image,
        dom=nodes,
    )


def node(tag: str, x: float, y: float, w: float, h: float, text: str | None = None, **kwargs) -> DomNode:
    return DomNode(tag=tag, box=PixelBox(x, y, w, h), text=text, **kwargs)


@pytest.fixture
def make_element():
    return element


@pytest.fixture
def canvas():
    return blank_canvas


# ---------------------------------------------------------------------------
# Fixture cases
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def _case_cache():
    """Session-level cache for rendered case snapshots."""
    return {}


@pytest.fixture
def load_case_snapshots(_case_cache):
    """Returns a callable rendering a named case into (case, reference, implementation)."""
    def _load(name: str):
        if name not in _case_cache:
            case = load_case(CASES_DIR / f"{name}.json")
            _case_cache[name] = (case, *case_snapshots(case))
        return _case_cache[name]

    return _load


# ---------------------------------------------------------------------------
# Parametrization Helpers
# ---------------------------------------------------------------------------

def pytest_generate_tests(metafunc):
    """Parametrize tests that request the 'case_name' fixture."""
    if "case_name" in metafunc.fixturenames:
        metafunc.parametrize("case_name", AVAILABLE_CASES)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session", autouse=True)
def ensure_directories():
    """Ensure output directories exist."""
    BASELINES_DIR.mkdir(parents=True, exist_ok=True)
