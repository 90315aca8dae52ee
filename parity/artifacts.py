from __future__ import annotations

import io
from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from parity.errors import InputError
from parity.models import Snapshot


@dataclass(frozen=True)
class IgnoreRegion:
    """Region masked out of both rasters before pixel-level metrics.

    Coordinates are normalized when all four values lie in [0, 1],
    otherwise they are taken as pixels.
    """

    x: float
    y: float
    width: float
    height: float


def load_raster(snapshot: Snapshot) -> np.ndarray:
    """Decode the snapshot raster to an RGB ``uint8`` array."""
    if snapshot.image is not None:
        arr = np.asarray(snapshot.image)
        if arr.dtype != np.uint8:
            raise InputError(f"raster must be uint8, got {arr.dtype}")
        if arr.ndim == 2:
            arr = np.stack([arr] * 3, axis=-1)
        if arr.ndim != 3 or arr.shape[2] not in (3, 4):
            raise InputError(f"unsupported raster shape {arr.shape}")
        if arr.shape[2] == 4:
            arr = arr[:, :, :3]
        return np.ascontiguousarray(arr)

    if snapshot.image_path is None:
        raise InputError("snapshot has neither an image nor an image_path")

    path = Path(snapshot.image_path)
    if not path.exists():
        raise InputError(f"raster not found: {path}")
    try:
        with Image.open(path) as img:
            return np.array(img.convert("RGB"))
    except (UnidentifiedImageError, OSError) as exc:
        raise InputError(f"cannot decode raster {path}: {exc}") from exc


def apply_ignore_regions(img: np.ndarray, regions: list[IgnoreRegion]) -> np.ndarray:
    if not regions:
        return img
    h, w = img.shape[0], img.shape[1]
    out = img.copy()
    for region in regions:
        if region.width <= 0 or region.height <= 0:
            continue
        normalized = (
            0.0 <= region.x <= 1.0
            and 0.0 <= region.y <= 1.0
            and region.width <= 1.0
            and region.height <= 1.0
        )
        if normalized:
            rx, ry, rw, rh = region.x * w, region.y * h, region.width * w, region.height * h
        else:
            rx, ry, rw, rh = region.x, region.y, region.width, region.height

        x0 = min(w, max(0, int(np.floor(rx))))
        y0 = min(h, max(0, int(np.floor(ry))))
        x1 = min(w, max(0, int(np.ceil(rx + rw))))
        y1 = min(h, max(0, int(np.ceil(ry + rh))))
        out[y0:y1, x0:x1] = 0
    return out


def make_diff_heatmap(img1: np.ndarray, img2: np.ndarray) -> np.ndarray:
    h = min(img1.shape[0], img2.shape[0])
    w = min(img1.shape[1], img2.shape[1])
    r1 = cv2.resize(img1, (w, h))
    r2 = cv2.resize(img2, (w, h))
    diff = cv2.absdiff(r1, r2)
    gray_diff = cv2.cvtColor(diff, cv2.COLOR_RGB2GRAY)
    heatmap = cv2.applyColorMap(gray_diff, cv2.COLORMAP_JET)
    return cv2.cvtColor(heatmap, cv2.COLOR_BGR2RGB)


def numpy_to_png(arr: np.ndarray) -> bytes:
    img = Image.fromarray(arr)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def save_image(arr: np.ndarray, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(arr).save(str(path))
    return path
