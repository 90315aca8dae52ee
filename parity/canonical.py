"""
Convert a snapshot's native element tree into a flat, ordered list of
canonical elements with boxes normalized to the snapshot's own pixel size.

Classification is table driven so that behavior is reproducible and
testable in isolation.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Iterable

from parity.models import (
    Box,
    CanonicalElement,
    DesignNode,
    DomNode,
    ElementStyle,
    PixelBox,
    Snapshot,
    TextBlock,
)
from parity.text import collapse_whitespace

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Lookup tables
# ---------------------------------------------------------------------------

ROLE_TYPES = {
    "link": "link",
    "button": "button",
    "menuitem": "button",
    "tab": "button",
    "img": "image",
    "image": "image",
    "figure": "image",
    "heading": "heading",
    "textbox": "input",
    "searchbox": "input",
    "combobox": "input",
    "checkbox": "input",
    "radio": "input",
    "switch": "input",
    "slider": "input",
    "spinbutton": "input",
    "paragraph": "text",
    "banner": "container",
    "navigation": "container",
    "main": "container",
    "contentinfo": "container",
    "region": "container",
    "dialog": "container",
    "list": "container",
    "group": "container",
}

TAG_TYPES = {
    "a": "link",
    "button": "button",
    "img": "image",
    "svg": "image",
    "picture": "image",
    "video": "image",
    "canvas": "image",
    "iframe": "image",
    "input": "input",
    "textarea": "input",
    "select": "input",
    "h1": "heading",
    "h2": "heading",
    "h3": "heading",
    "h4": "heading",
    "h5": "heading",
    "h6": "heading",
    "p": "text",
    "span": "text",
    "label": "text",
    "li": "text",
    "strong": "text",
    "em": "text",
    "b": "text",
    "i": "text",
    "small": "text",
    "code": "text",
    "pre": "text",
    "blockquote": "text",
    "figcaption": "text",
    "td": "text",
    "th": "text",
    "div": "container",
    "section": "container",
    "header": "container",
    "footer": "container",
    "nav": "container",
    "main": "container",
    "article": "container",
    "aside": "container",
    "form": "container",
    "ul": "container",
    "ol": "container",
    "table": "container",
    "figure": "container",
    "dialog": "container",
}

# Tags that never paint a box of their own.
SKIPPED_TAGS = {
    "html",
    "head",
    "body",
    "script",
    "style",
    "meta",
    "link",
    "title",
    "noscript",
    "template",
    "br",
    "wbr",
}

BUTTON_INPUT_TYPES = {"submit", "button", "reset", "image"}

DESIGN_NODE_TYPES = {
    "FRAME": "container",
    "GROUP": "container",
    "COMPONENT": "container",
    "COMPONENT_SET": "container",
    "INSTANCE": "container",
    "SECTION": "container",
    "RECTANGLE": "other",
    "ELLIPSE": "other",
    "VECTOR": "other",
    "LINE": "other",
    "STAR": "other",
    "POLYGON": "other",
    "BOOLEAN_OPERATION": "other",
}

BUTTON_NAME_RE = re.compile(r"\b(button|btn|cta)\b", re.IGNORECASE)
LINK_NAME_RE = re.compile(r"\blink\b", re.IGNORECASE)
INPUT_NAME_RE = re.compile(r"\b(input|text ?field|search ?bar)\b", re.IGNORECASE)
IMAGE_FILL_PREFIX = "image:"

HEADING_MIN_FONT_PX = 24.0
OCR_HEADING_MIN_HEIGHT_PX = 32.0
# Recognized text below this confidence is treated as noise.
OCR_MIN_CONFIDENCE = 0.5


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def extract_elements(snapshot: Snapshot) -> list[CanonicalElement] | None:
    """Return the snapshot's canonical elements, or None without an element tree."""
    width, height = float(snapshot.width), float(snapshot.height)
    if width <= 0 or height <= 0:
        raise ValueError("snapshot dimensions must be positive")

    if snapshot.dom is not None:
        elements = _from_dom(snapshot.dom, width, height)
        source = "dom"
    elif snapshot.design_nodes is not None:
        elements = _from_design(snapshot.design_nodes, width, height)
        source = "design"
    elif snapshot.text_blocks is not None:
        elements = _from_text_blocks(snapshot.text_blocks, width, height)
        source = "text_blocks"
    else:
        return None

    logger.debug("extracted %d elements from %s (%s)", len(elements), source, snapshot.kind)
    return elements


def normalize_box(box: PixelBox, width: float, height: float) -> Box | None:
    """Clip a pixel box to the canvas and normalize it; None when nothing is left."""
    x0 = max(0.0, float(box.x))
    y0 = max(0.0, float(box.y))
    x1 = min(width, float(box.x) + float(box.width))
    y1 = min(height, float(box.y) + float(box.height))
    if x1 <= x0 or y1 <= y0:
        return None
    return Box(x=x0 / width, y=y0 / height, w=(x1 - x0) / width, h=(y1 - y0) / height)


# ---------------------------------------------------------------------------
# Document tree
# ---------------------------------------------------------------------------

def classify_dom_node(node: DomNode) -> str:
    role = (node.role or node.attributes.get("role") or "").strip().lower()
    if role in ROLE_TYPES:
        return ROLE_TYPES[role]

    tag = node.tag.strip().lower()
    if tag == "input" and node.attributes.get("type", "").lower() in BUTTON_INPUT_TYPES:
        return "button"
    el_type = TAG_TYPES.get(tag, "other")
    if el_type == "container" and not node.children and collapse_whitespace(node.text):
        return "text"
    return el_type


def _from_dom(roots: list[DomNode], width: float, height: float) -> list[CanonicalElement]:
    out: list[CanonicalElement] = []
    stack = list(reversed(roots))
    while stack:
        node = stack.pop()
        if node.tag.strip().lower() in SKIPPED_TAGS:
            stack.extend(reversed(node.children))
            continue
        box = normalize_box(node.box, width, height)
        if box is not None:
            label = collapse_whitespace(
                node.text or node.attributes.get("aria-label") or node.attributes.get("alt")
            )
            out.append(
                CanonicalElement(
                    type=classify_dom_node(node),
                    box=box,
                    label=label,
                    style=style_from_css(node.computed_style),
                )
            )
        stack.extend(reversed(node.children))
    return out


def style_from_css(css: dict[str, str]) -> ElementStyle | None:
    if not css:
        return None
    font_size = parse_px(css.get("font-size"))
    style = ElementStyle(
        font_family=collapse_whitespace(css.get("font-family")),
        font_size_px=font_size,
        font_weight=parse_font_weight(css.get("font-weight")),
        line_height_px=parse_line_height(css.get("line-height"), font_size),
        fill_color=parse_color(css.get("background-color")),
    )
    return style if _style_has_data(style) else None


# ---------------------------------------------------------------------------
# Design-tool tree
# ---------------------------------------------------------------------------

def classify_design_node(node: DesignNode) -> str:
    node_type = node.node_type.strip().upper()
    name = node.name or ""
    if node_type == "TEXT":
        size = node.typography.font_size if node.typography else None
        if size is not None and size >= HEADING_MIN_FONT_PX:
            return "heading"
        return "text"
    if any(str(f).lower().startswith(IMAGE_FILL_PREFIX) for f in node.fills):
        return "image"
    if BUTTON_NAME_RE.search(name):
        return "button"
    if INPUT_NAME_RE.search(name):
        return "input"
    if LINK_NAME_RE.search(name):
        return "link"
    return DESIGN_NODE_TYPES.get(node_type, "other")


def _from_design(roots: list[DesignNode], width: float, height: float) -> list[CanonicalElement]:
    out: list[CanonicalElement] = []
    stack = list(reversed(roots))
    while stack:
        node = stack.pop()
        box = normalize_box(node.box, width, height)
        if box is not None:
            out.append(
                CanonicalElement(
                    type=classify_design_node(node),
                    box=box,
                    label=collapse_whitespace(node.text),
                    style=_design_style(node),
                )
            )
        stack.extend(reversed(node.children))
    return out


def _design_style(node: DesignNode) -> ElementStyle | None:
    typo = node.typography
    solid = next((parse_color(f) for f in node.fills if parse_color(f)), None)
    style = ElementStyle(
        font_family=collapse_whitespace(typo.font_family) if typo else None,
        font_size_px=typo.font_size if typo else None,
        font_weight=typo.font_weight if typo else None,
        line_height_px=typo.line_height if typo else None,
        fill_color=solid,
    )
    return style if _style_has_data(style) else None


# ---------------------------------------------------------------------------
# Recognized text blocks
# ---------------------------------------------------------------------------

def _from_text_blocks(blocks: list[TextBlock], width: float, height: float) -> list[CanonicalElement]:
    out: list[CanonicalElement] = []
    for block in blocks:
        if block.confidence < OCR_MIN_CONFIDENCE:
            continue
        label = collapse_whitespace(block.text)
        box = normalize_box(block.box, width, height)
        if box is None or label is None:
            continue
        el_type = "heading" if block.box.height >= OCR_HEADING_MIN_HEIGHT_PX else "text"
        out.append(CanonicalElement(type=el_type, box=box, label=label))
    return out


# ---------------------------------------------------------------------------
# CSS value parsing
# ---------------------------------------------------------------------------

_NUM_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*(px)?\s*$", re.IGNORECASE)
_RGB_RE = re.compile(
    r"^\s*rgba?\(\s*(\d+(?:\.\d+)?)\s*[, ]\s*(\d+(?:\.\d+)?)\s*[, ]\s*(\d+(?:\.\d+)?)"
    r"(?:\s*[,/]\s*(\d*(?:\.\d+)?%?))?\s*\)\s*$",
    re.IGNORECASE,
)
_HEX_RE = re.compile(r"^#([0-9a-f]{3}|[0-9a-f]{6}|[0-9a-f]{8})$", re.IGNORECASE)

_NAMED_WEIGHTS = {"normal": 400.0, "bold": 700.0, "lighter": 300.0, "bolder": 700.0}


def parse_px(value: str | float | None) -> float | None:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    m = _NUM_RE.match(value)
    if not m:
        return None
    return float(m.group(1))


def parse_font_weight(value: str | float | None) -> float | None:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    key = value.strip().lower()
    if key in _NAMED_WEIGHTS:
        return _NAMED_WEIGHTS[key]
    try:
        return float(key)
    except ValueError:
        return None


def parse_line_height(value: str | float | None, font_size: float | None) -> float | None:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    v = value.strip().lower()
    if v == "normal" or not v:
        return None
    if v.endswith("px"):
        return parse_px(v)
    if v.endswith("%"):
        try:
            pct = float(v[:-1])
        except ValueError:
            return None
        return font_size * pct / 100.0 if font_size is not None else None
    try:
        factor = float(v)
    except ValueError:
        return None
    return font_size * factor if font_size is not None else None


def parse_color(value: str | None) -> str | None:
    """Parse ``#rgb``, ``#rrggbb(aa)`` or ``rgb()/rgba()`` into ``#rrggbb``."""
    if not value:
        return None
    v = value.strip()
    m = _HEX_RE.match(v)
    if m:
        digits = m.group(1).lower()
        if len(digits) == 3:
            digits = "".join(c * 2 for c in digits)
        if len(digits) == 8:
            if digits[6:] == "00":
                return None
            digits = digits[:6]
        return f"#{digits}"
    m = _RGB_RE.match(v)
    if m:
        alpha = m.group(4)
        if alpha:
            a = float(alpha[:-1]) / 100.0 if alpha.endswith("%") else float(alpha)
            if a <= 0.0:
                return None
        r, g, b = (max(0, min(255, int(round(float(m.group(i)))))) for i in (1, 2, 3))
        return f"#{r:02x}{g:02x}{b:02x}"
    return None


def _style_has_data(style: ElementStyle) -> bool:
    return style.has_typography or style.fill_color is not None


# ---------------------------------------------------------------------------
# Ignore selectors
# ---------------------------------------------------------------------------

def parse_ignore_selectors(raw: str | Iterable[str] | None) -> list[str]:
    """Split ``"#hero, .ad, footer"`` (or a list) into lowercase selectors."""
    if raw is None:
        return []
    parts = raw.split(",") if isinstance(raw, str) else raw
    selectors: list[str] = []
    for part in parts:
        selector = str(part).strip().lower()
        if selector:
            selectors.append(selector)
    return selectors


def selector_matches(node: DomNode, selector: str) -> bool:
    """Match ``#id``, ``.class`` or a bare tag name, ignoring case."""
    selector = selector.strip().lower()
    if selector.startswith("#"):
        name = selector[1:]
        return bool(name) and node.attributes.get("id", "").strip().lower() == name
    if selector.startswith("."):
        name = selector[1:]
        return bool(name) and any(c.lower() == name for c in node.attributes.get("class", "").split())
    return node.tag.strip().lower() == selector


def prune_dom(roots: list[DomNode], selectors: list[str]) -> list[DomNode]:
    """Drop every node matching a selector, together with its subtree."""
    if not selectors:
        return roots
    kept: list[DomNode] = []
    for node in roots:
        if any(selector_matches(node, s) for s in selectors):
            continue
        kept.append(replace(node, children=prune_dom(node.children, selectors)))
    return kept


def apply_ignore_selectors(snapshot: Snapshot, selectors: list[str]) -> Snapshot:
    if not selectors or snapshot.dom is None:
        return snapshot
    logger.debug("applying ignore selectors: %s", ",".join(selectors))
    return replace(snapshot, dom=prune_dom(snapshot.dom, selectors))
