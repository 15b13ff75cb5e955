import base64

import numpy as np
import pytest

from tile_overlay.cache import RenderCaches
from tile_overlay.config import (
    ConfigError,
    OverlayItem,
    OverlaySet,
    RenderConfig,
    binarize_alpha,
    load_overlays,
    sample_grid,
)
from tile_overlay.notifications import RecordingNotifier
from tile_overlay.overlay import compose_overlay_for_tile
from tile_overlay.tiles import TileCoord
from tests.image_utils import decode, make_overlay, png_bytes, solid


def test_render_config_validates_values() -> None:
    with pytest.raises(ConfigError):
        RenderConfig(overlay_mode="sideways")
    with pytest.raises(ConfigError):
        RenderConfig(minify_style="stars")
    assert RenderConfig(minify_style="symbols").minify_scale == 7
    assert RenderConfig().minify_scale == 3


def test_render_config_from_store_payload() -> None:
    config = RenderConfig.from_dict({"overlayMode": "Minify", "minifyStyle": "symbols"})
    assert (config.overlay_mode, config.minify_style) == ("minify", "symbols")
    assert RenderConfig.from_dict(config.to_dict()) == config


def test_overlay_item_from_store_payload() -> None:
    image = png_bytes(solid(2, 2, (0, 0, 0, 255)))
    payload = {
        "id": "a",
        "name": "Castle",
        "enabled": True,
        "imageBase64": "data:image/png;base64," + base64.b64encode(image).decode("ascii"),
        "pixelUrl": "https://backend.wplace.live/s0/pixel/1/2?x=3&y=4",
        "offsetX": "5",
        "offsetY": -1,
        "opacity": 0.4,
    }
    overlay = OverlayItem.from_dict(payload)
    assert overlay.image_bytes == image
    assert (overlay.offset_x, overlay.offset_y, overlay.opacity) == (5, -1, 0.4)
    assert OverlayItem.from_dict(overlay.to_dict()) == overlay


@pytest.mark.parametrize(
    "payload",
    [{"name": "no id"}, {"id": "a", "opacity": 2}, {"id": "a", "imageBase64": "data:image/png;base64,@@@"}],
)
def test_overlay_item_rejects_bad_payloads(payload) -> None:
    with pytest.raises(ConfigError):
        OverlayItem.from_dict(payload)


def test_load_overlays_accepts_config_object() -> None:
    overlays = load_overlays({"overlays": [{"id": "a"}, {"id": "b"}]})
    assert [o.id for o in overlays] == ["a", "b"]
    with pytest.raises(ConfigError):
        load_overlays({"overlays": "nope"})


def _warm(caches: RenderCaches) -> None:
    caches.composited.set("k", None)
    caches.rle.set("r", [])


def test_overlay_set_mutations_clear_caches() -> None:
    caches = RenderCaches()
    overlays = OverlaySet(caches=caches)
    first = make_overlay(solid(2, 2, (0, 0, 0, 255)), overlay_id="a")
    second = make_overlay(solid(2, 2, (0, 0, 0, 255)), overlay_id="b")

    _warm(caches)
    overlays.add(first)
    assert len(caches.composited) == 0

    overlays.add(second)
    _warm(caches)
    overlays.reorder(["b", "a"])
    assert [o.id for o in overlays] == ["b", "a"]
    assert len(caches.rle) == 0

    _warm(caches)
    overlays.set_style(minify_style="symbols")
    assert overlays.config.minify_style == "symbols"
    assert len(caches.composited) == 0

    _warm(caches)
    overlays.remove("a")
    assert len(overlays) == 1
    assert len(caches.composited) == 0

    with pytest.raises(ConfigError):
        overlays.add(make_overlay(solid(1, 1, (0, 0, 0, 255)), overlay_id="b"))


def test_replacing_image_clears_too_large_flag() -> None:
    caches = RenderCaches()
    notifier = RecordingNotifier()
    big = make_overlay(solid(2000, 1, (0, 0, 0, 255)), overlay_id="big")
    overlays = OverlaySet([big], caches=caches, notify=notifier)
    assert compose_overlay_for_tile(big, TileCoord(10, 10), caches=caches, notify=notifier) is None
    assert caches.is_too_large("big")

    smaller = overlays.resize("big", 20, 1)
    assert not caches.is_too_large("big")
    assert decode(smaller.image_bytes).shape == (1, 20, 4)
    assert compose_overlay_for_tile(smaller, TileCoord(10, 10), caches=caches, notify=notifier) is not None


def test_resize_failure_is_notified() -> None:
    notifier = RecordingNotifier()
    overlay = OverlayItem(id="x", name="Broken", image_bytes=b"garbage")
    overlays = OverlaySet([overlay], caches=RenderCaches(), notify=notifier)
    assert overlays.resize("x", 10, 10) is None
    assert notifier.messages and notifier.messages[0][1] == "error"
    assert overlays.get("x").image_bytes == b"garbage"


@pytest.mark.parametrize("raw, expected", [(True, True), (False, False), ("false", False), ("True", True), (0, False)])
def test_overlay_item_parses_enabled_flag(raw, expected) -> None:
    assert OverlayItem.from_dict({"id": "a", "enabled": raw}).enabled is expected


def test_overlay_item_rejects_unknown_enabled_value() -> None:
    with pytest.raises(ConfigError):
        OverlayItem.from_dict({"id": "a", "enabled": "maybe"})


def test_resize_rejects_sizes_at_the_limit() -> None:
    notifier = RecordingNotifier()
    overlay = make_overlay(solid(2, 2, (0, 0, 0, 255)), overlay_id="a")
    overlays = OverlaySet([overlay], caches=RenderCaches(), notify=notifier)
    assert overlays.resize("a", 2000, 10) is None
    assert overlays.resize("a", 10, 2000) is None
    assert [level for _, level, _ in notifier.messages] == ["error", "error"]
    assert overlays.get("a").image_bytes == overlay.image_bytes
    assert overlays.resize("a", 1999, 1) is not None


def test_resize_binarizes_alpha() -> None:
    pixels = solid(2, 1, (10, 20, 30, 100))
    pixels[0, 1] = (40, 50, 60, 0)
    overlays = OverlaySet([make_overlay(pixels, overlay_id="a")], caches=RenderCaches())
    resized = decode(overlays.resize("a", 4, 1).image_bytes)
    assert resized[0].tolist() == [[10, 20, 30, 255]] * 2 + [[0, 0, 0, 0]] * 2


def test_binarize_alpha_leaves_input_untouched() -> None:
    pixels = np.array([[[1, 2, 3, 0], [4, 5, 6, 1]]], dtype=np.uint8)
    out = binarize_alpha(pixels)
    assert out.tolist() == [[[0, 0, 0, 0], [4, 5, 6, 255]]]
    assert pixels[0, 1, 3] == 1


def _upscaled_art() -> np.ndarray:
    # 3x2 art magnified 2x; the last cell is transparent, one is half alpha.
    art = np.array(
        [
            [(255, 0, 0, 255), (0, 255, 0, 255), (0, 0, 255, 255)],
            [(9, 9, 9, 40), (255, 255, 255, 255), (7, 7, 7, 0)],
        ],
        dtype=np.uint8,
    )
    return np.repeat(np.repeat(art, 2, axis=0), 2, axis=1)


def test_sample_grid_reads_cell_centers() -> None:
    sampled = sample_grid(_upscaled_art(), 0, 0, 2, 2)
    assert sampled.shape == (2, 3, 4)
    assert sampled[0].tolist() == [[255, 0, 0, 255], [0, 255, 0, 255], [0, 0, 255, 255]]
    assert sampled[1].tolist() == [[9, 9, 9, 255], [255, 255, 255, 255], [0, 0, 0, 0]]


def test_sample_grid_with_offset_drops_partial_cells() -> None:
    sampled = sample_grid(_upscaled_art(), 1, 1, 2, 2)
    # (6 - 1) // 2 columns, (4 - 1) // 2 rows; centers land on x=2, 4 and y=2.
    assert sampled.shape == (1, 2, 4)
    assert sampled[0].tolist() == [[255, 255, 255, 255], [0, 0, 0, 0]]


def test_reconstruct_grid_applies_sampled_image() -> None:
    caches = RenderCaches()
    overlays = OverlaySet([make_overlay(_upscaled_art(), overlay_id="a")], caches=caches)
    caches.composited.set("k", None)
    updated = overlays.reconstruct_grid("a", 0, 0, 2, 2)
    assert decode(updated.image_bytes).shape == (2, 3, 4)
    assert overlays.get("a") is updated
    assert len(caches.composited) == 0


@pytest.mark.parametrize("gap", [(10, 2), (2, 10), (0, 2)])
def test_reconstruct_grid_without_samples_is_notified(gap) -> None:
    notifier = RecordingNotifier()
    overlay = make_overlay(_upscaled_art(), overlay_id="a")
    overlays = OverlaySet([overlay], caches=RenderCaches(), notify=notifier)
    assert overlays.reconstruct_grid("a", 0, 0, *gap) is None
    assert notifier.messages[0][0].startswith("No samples")
    assert overlays.get("a").image_bytes == overlay.image_bytes


def test_reconstruct_grid_rejects_large_output() -> None:
    notifier = RecordingNotifier()
    overlays = OverlaySet([make_overlay(_upscaled_art(), overlay_id="a")], caches=RenderCaches(), notify=notifier)
    assert overlays.reconstruct_grid("a", 0, 0, 0.002, 1) is None
    assert notifier.messages[0][0].startswith("Too large")
