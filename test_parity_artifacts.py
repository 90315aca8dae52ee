import numpy as np
import pytest
from PIL import Image

from parity.artifacts import (
    IgnoreRegion,
    apply_ignore_regions,
    load_raster,
    make_diff_heatmap,
    numpy_to_png,
    save_image,
)
from parity.errors import InputError
from parity.models import Snapshot


def test_load_raster_from_png(tmp_path):
    arr = np.zeros((20, 30, 3), dtype=np.uint8)
    arr[5:10, 5:10] = (255, 0, 0)
    path = save_image(arr, tmp_path / "shot.png")

    loaded = load_raster(Snapshot(kind="image", width=30, height=20, image_path=path))

    assert loaded.shape == (20, 30, 3)
    assert np.array_equal(loaded, arr)


def test_load_raster_drops_alpha(tmp_path):
    path = tmp_path / "rgba.png"
    Image.new("RGBA", (8, 6), (10, 20, 30, 128)).save(path)

    loaded = load_raster(Snapshot(kind="image", width=8, height=6, image_path=path))

    assert loaded.shape == (6, 8, 3)


def test_in_memory_image_wins_and_grayscale_is_stacked(tmp_path):
    gray = np.full((4, 5), 7, dtype=np.uint8)
    loaded = load_raster(Snapshot(kind="image", width=5, height=4, image=gray, image_path=tmp_path / "x.png"))
    assert loaded.shape == (4, 5, 3)
    assert (loaded == 7).all()


def test_load_raster_failures(tmp_path):
    with pytest.raises(InputError):
        load_raster(Snapshot(kind="image", width=5, height=5, image_path=tmp_path / "missing.png"))

    corrupt = tmp_path / "corrupt.png"
    corrupt.write_bytes(b"\x89PNG broken")
    with pytest.raises(InputError):
        load_raster(Snapshot(kind="image", width=5, height=5, image_path=corrupt))

    with pytest.raises(InputError):
        load_raster(Snapshot(kind="image", width=5, height=5, image=np.zeros((5, 5, 2), dtype=np.uint8)))


@pytest.mark.parametrize("dtype", [np.float32, np.uint16, np.int64])
def test_non_uint8_rasters_are_rejected(dtype):
    image = np.full((5, 5, 3), 300, dtype=dtype)
    with pytest.raises(InputError):
        load_raster(Snapshot(kind="image", width=5, height=5, image=image))


def test_ignore_regions_normalized_and_pixel():
    img = np.full((100, 200, 3), 255, dtype=np.uint8)

    normalized = apply_ignore_regions(img, [IgnoreRegion(0.5, 0.5, 0.25, 0.5)])
    assert (normalized[50:100, 100:150] == 0).all()
    assert (normalized[:50] == 255).all()

    pixels = apply_ignore_regions(img, [IgnoreRegion(10, 20, 30, 5)])
    assert (pixels[20:25, 10:40] == 0).all()
    assert (pixels[25:, :] == 255).all()

    assert (img == 255).all()


def test_ignore_regions_clip_and_skip_empty():
    img = np.full((10, 10, 3), 255, dtype=np.uint8)
    out = apply_ignore_regions(img, [IgnoreRegion(5, 5, 50, 50), IgnoreRegion(0, 0, 0, 3)])
    assert (out[5:, 5:] == 0).all()
    assert (out[:5, :] == 255).all()


def test_diff_heatmap_and_png():
    a = np.zeros((10, 12, 3), dtype=np.uint8)
    b = a.copy()
    b[2:5, 2:5] = 255

    heatmap = make_diff_heatmap(a, b)

    assert heatmap.shape == (10, 12, 3)
    assert heatmap.dtype == np.uint8
    assert numpy_to_png(heatmap).startswith(b"\x89PNG")
