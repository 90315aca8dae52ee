import json

import numpy as np
import pytest

from parity.scene import load_case, render_scene, scene_to_snapshot


def test_render_paints_fills_in_document_order():
    elements = [
        {"tag": "section", "box": [0, 0, 100, 50], "fill": "#ff0000", "children": [
            {"tag": "div", "box": [10, 10, 20, 20], "fill": "#00f"},
        ]},
    ]

    canvas = render_scene(elements, 120, 80, background="#ffffff")

    assert canvas.shape == (80, 120, 3)
    assert tuple(canvas[40, 60]) == (255, 0, 0)
    assert tuple(canvas[15, 15]) == (0, 0, 255)
    assert tuple(canvas[70, 110]) == (255, 255, 255)


def test_text_is_drawn():
    blank = render_scene([{"tag": "p", "box": [0, 0, 200, 40]}], 200, 40)
    text = render_scene([{"tag": "p", "box": [0, 0, 200, 40], "text": "Hello", "fontSize": 20}], 200, 40)
    assert (blank == 255).all()
    assert (text < 200).any()


def test_dom_carries_typography_style():
    side = {"elements": [{"tag": "H1", "box": [0, 0, 300, 40], "text": "Title", "fontSize": 32, "fontWeight": 700}]}

    snap = scene_to_snapshot(side, 320, 200)

    h1 = snap.dom[0]
    assert snap.kind == "rendered-page"
    assert h1.tag == "h1"
    assert h1.computed_style["font-size"] == "32px"
    assert h1.computed_style["font-weight"] == "700"


def test_tree_false_gives_image_only_snapshot():
    snap = scene_to_snapshot({"tree": False, "elements": [{"tag": "div", "box": [0, 0, 10, 10]}]}, 20, 20)
    assert snap.kind == "image"
    assert snap.dom is None
    assert isinstance(snap.image, np.ndarray)


def test_unsupported_tag_and_bad_box():
    with pytest.raises(ValueError):
        scene_to_snapshot({"elements": [{"tag": "marquee", "box": [0, 0, 10, 10]}]}, 20, 20)
    with pytest.raises(ValueError):
        render_scene([{"tag": "div", "box": [0, 0, 10]}], 20, 20)


def test_load_case(tmp_path):
    path = tmp_path / "tiny.json"
    path.write_text(
        json.dumps({"width": 64, "height": 32, "reference": {"elements": []}, "implementation": {"elements": []}}),
        encoding="utf-8",
    )

    case = load_case(path)

    assert case.name == "tiny"
    assert (case.width, case.height) == (64, 32)
    assert case.expect == {}

    path.write_text(json.dumps({"reference": {}}), encoding="utf-8")
    with pytest.raises(ValueError):
        load_case(path)
