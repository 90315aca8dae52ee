from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import cv2
import numpy as np

from parity.artifacts import save_image
from parity.models import DomNode, PixelBox, Snapshot

SUPPORTED_TAGS = {"div", "section", "header", "nav", "h1", "h2", "h3", "p", "span", "a", "button", "img", "input"}
DEFAULT_BACKGROUND = "#ffffff"
DEFAULT_TEXT_COLOR = "#111111"
DEFAULT_FONT_FAMILY = "Inter, system-ui, sans-serif"
# Pixel height of FONT_HERSHEY_SIMPLEX glyphs at scale 1.0.
_HERSHEY_PX = 22.0


@dataclass
class SceneCase:
    name: str
    width: int
    height: int
    background: str
    reference: dict[str, Any]
    implementation: dict[str, Any]
    expect: dict[str, Any] = field(default_factory=dict)


def _hex_to_rgb(value: str) -> tuple[int, int, int]:
    v = value.strip().lstrip("#")
    if len(v) == 3:
        v = "".join(c * 2 for c in v)
    if len(v) != 6:
        raise ValueError(f"expected #rrggbb color, got {value!r}")
    return int(v[0:2], 16), int(v[2:4], 16), int(v[4:6], 16)


def _as_box(raw: Any) -> tuple[int, int, int, int]:
    if isinstance(raw, dict):
        raw = [raw.get("x", 0), raw.get("y", 0), raw.get("width", 0), raw.get("height", 0)]
    if not isinstance(raw, (list, tuple)) or len(raw) != 4:
        raise ValueError(f"box must be [x, y, width, height], got {raw!r}")
    return tuple(int(round(float(v))) for v in raw)  # type: ignore[return-value]


def _walk(elements: list[dict]):
    for el in elements:
        yield el
        yield from _walk(el.get("children") or [])


def render_scene(elements: list[dict], width: int, height: int, background: str = DEFAULT_BACKGROUND) -> np.ndarray:
    """Paint element fills and text onto an RGB canvas in document order."""
    canvas = np.zeros((height, width, 3), dtype=np.uint8)
    canvas[:, :] = _hex_to_rgb(background)
    for el in _walk(elements):
        x, y, w, h = _as_box(el["box"])
        if fill := el.get("fill"):
            cv2.rectangle(canvas, (x, y), (x + w - 1, y + h - 1), _hex_to_rgb(fill), thickness=-1)
        if text := el.get("text"):
            font_size = float(el.get("fontSize", 16))
            scale = font_size / _HERSHEY_PX
            thickness = 2 if float(el.get("fontWeight", 400)) >= 600 else 1
            baseline_y = y + int(round((h + font_size * 0.7) / 2.0))
            cv2.putText(
                canvas,
                str(text),
                (x + 4, baseline_y),
                cv2.FONT_HERSHEY_SIMPLEX,
                scale,
                _hex_to_rgb(el.get("color", DEFAULT_TEXT_COLOR)),
                thickness,
                cv2.LINE_AA,
            )
    return canvas


def _dom_node(el: dict) -> DomNode:
    tag = str(el.get("tag", "div")).lower()
    if tag not in SUPPORTED_TAGS:
        raise ValueError(f"unsupported scene tag: {tag}")
    x, y, w, h = _as_box(el["box"])
    style: dict[str, str] = {}
    if el.get("text"):
        style["font-family"] = el.get("fontFamily", DEFAULT_FONT_FAMILY)
        style["font-size"] = f"{float(el.get('fontSize', 16)):g}px"
        style["font-weight"] = str(el.get("fontWeight", 400))
        if "lineHeight" in el:
            style["line-height"] = f"{float(el['lineHeight']):g}px"
    if el.get("fill"):
        style["background-color"] = el["fill"]
    attributes = {str(k): str(v) for k, v in (el.get("attributes") or {}).items()}
    return DomNode(
        tag=tag,
        role=el.get("role"),
        box=PixelBox(x=x, y=y, width=w, height=h),
        text=el.get("text"),
        attributes=attributes,
        computed_style=style,
        children=[_dom_node(c) for c in el.get("children") or []],
    )


def scene_to_snapshot(side: dict, width: int, height: int, background: str = DEFAULT_BACKGROUND) -> Snapshot:
    """Render one side of a case; ``"tree": false`` yields an image-only snapshot."""
    elements = side.get("elements") or []
    with_tree = side.get("tree", True)
    return Snapshot(
        kind="rendered-page" if with_tree else "image",
        width=width,
        height=height,
        image=render_scene(elements, width, height, side.get("background", background)),
        dom=[_dom_node(el) for el in elements] if with_tree else None,
    )


def load_case(path: Path) -> SceneCase:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    for key in ("reference", "implementation"):
        if not isinstance(data.get(key), dict):
            raise ValueError(f"case json must contain a '{key}' object")
    return SceneCase(
        name=data.get("name", Path(path).stem),
        width=int(data.get("width", 480)),
        height=int(data.get("height", 320)),
        background=data.get("background", DEFAULT_BACKGROUND),
        reference=data["reference"],
        implementation=data["implementation"],
        expect=data.get("expect", {}),
    )


def case_snapshots(case: SceneCase) -> tuple[Snapshot, Snapshot]:
    return (
        scene_to_snapshot(case.reference, case.width, case.height, case.background),
        scene_to_snapshot(case.implementation, case.width, case.height, case.background),
    )


def _dom_to_dict(node: DomNode) -> dict[str, Any]:
    return {
        "tag": node.tag,
        "role": node.role,
        "box": {"x": node.box.x, "y": node.box.y, "width": node.box.width, "height": node.box.height},
        "text": node.text,
        "attributes": node.attributes,
        "computedStyle": node.computed_style,
        "children": [_dom_to_dict(c) for c in node.children],
    }


def write_snapshot(snapshot: Snapshot, out_dir: Path, stem: str) -> Path:
    """Write the raster as PNG plus a sidecar JSON readable by ``load_snapshot``."""
    out_dir = Path(out_dir)
    png_path = save_image(snapshot.image, out_dir / f"{stem}.png")
    payload: dict[str, Any] = {
        "kind": snapshot.kind,
        "width": snapshot.width,
        "height": snapshot.height,
        "imagePath": png_path.name,
    }
    if snapshot.dom is not None:
        payload["dom"] = [_dom_to_dict(n) for n in snapshot.dom]
    json_path = out_dir / f"{stem}.json"
    json_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    return json_path
