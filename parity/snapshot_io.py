"""
Snapshot sidecar JSON written by the capture layer.

    {
      "kind": "rendered-page",
      "width": 1440, "height": 900,
      "imagePath": "page.png",
      "dom": [{"tag": "button", "box": {...}, "text": "Get started", "children": []}]
    }

``imagePath`` is resolved relative to the JSON file. At most one of
``dom``, ``designNodes`` and ``textBlocks`` is expected.
"""

from __future__ import annotations

import json
from pathlib import Path

from parity.errors import InputError
from parity.models import (
    DesignNode,
    DesignTypography,
    DomNode,
    PixelBox,
    Snapshot,
    TextBlock,
)


def load_snapshot(path: Path | str) -> Snapshot:
    path = Path(path)
    if not path.exists():
        raise InputError(f"snapshot file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise InputError(f"invalid snapshot JSON {path}: {exc}") from exc
    return snapshot_from_dict(data, base_dir=path.parent)


def snapshot_from_dict(data: dict, base_dir: Path | None = None) -> Snapshot:
    """Convert a camelCase snapshot dict to a Snapshot."""
    if not isinstance(data, dict):
        raise InputError("snapshot must be a JSON object")
    try:
        image_path = None
        if raw_path := data.get("imagePath"):
            image_path = Path(raw_path)
            if base_dir is not None and not image_path.is_absolute():
                image_path = base_dir / image_path

        dom = None
        if (nodes := data.get("dom")) is not None:
            dom = [_dict_to_dom_node(n) for n in nodes]

        design_nodes = None
        if (nodes := data.get("designNodes")) is not None:
            design_nodes = [_dict_to_design_node(n) for n in nodes]

        text_blocks = None
        if (blocks := data.get("textBlocks")) is not None:
            text_blocks = [
                TextBlock(
                    text=b.get("text", ""),
                    box=_dict_to_box(b.get("box")),
                    confidence=float(b.get("confidence", 1.0)),
                )
                for b in blocks
            ]

        return Snapshot(
            kind=data["kind"],
            width=int(data["width"]),
            height=int(data["height"]),
            image_path=image_path,
            dom=dom,
            design_nodes=design_nodes,
            text_blocks=text_blocks,
        )
    except KeyError as exc:
        raise InputError(f"snapshot is missing required field {exc}") from exc
    except (TypeError, ValueError, AttributeError) as exc:
        raise InputError(f"malformed snapshot: {exc}") from exc


def _dict_to_box(b: dict | None) -> PixelBox:
    if not b:
        return PixelBox()
    return PixelBox(
        x=float(b.get("x", 0.0)),
        y=float(b.get("y", 0.0)),
        width=float(b.get("width", 0.0)),
        height=float(b.get("height", 0.0)),
    )


def _opt_float(value) -> float | None:
    return None if value is None else float(value)


def _dict_to_dom_node(n: dict) -> DomNode:
    return DomNode(
        tag=n.get("tag", ""),
        role=n.get("role"),
        box=_dict_to_box(n.get("box")),
        text=n.get("text"),
        attributes={str(k): str(v) for k, v in (n.get("attributes") or {}).items()},
        computed_style={str(k): str(v) for k, v in (n.get("computedStyle") or {}).items()},
        children=[_dict_to_dom_node(c) for c in n.get("children") or []],
    )


def _dict_to_design_node(n: dict) -> DesignNode:
    typography = None
    if t := n.get("typography"):
        typography = DesignTypography(
            font_family=t.get("fontFamily"),
            font_size=_opt_float(t.get("fontSize")),
            font_weight=_opt_float(t.get("fontWeight")),
            line_height=_opt_float(t.get("lineHeight")),
        )
    return DesignNode(
        id=n.get("id", ""),
        node_type=n.get("nodeType", ""),
        name=n.get("name"),
        box=_dict_to_box(n.get("box")),
        text=n.get("text"),
        typography=typography,
        fills=list(n.get("fills") or []),
        children=[_dict_to_design_node(c) for c in n.get("children") or []],
    )
