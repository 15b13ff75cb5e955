import pytest

from tile_overlay.tiles import (
    PixelAnchor,
    TileCoord,
    extract_pixel_coords,
    match_pixel_url,
    match_tile_url,
    tile_coord_from_path,
)


def test_match_tile_url() -> None:
    assert match_tile_url("https://backend.wplace.live/files/s0/tiles/1031/690.png") == TileCoord(1031, 690)
    assert match_tile_url("https://backend.wplace.live/files/s0/tiles/1031/690.png?t=123") == TileCoord(1031, 690)


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com/files/s0/tiles/1/2.png",
        "https://backend.wplace.live/other/1/2.png",
        "https://backend.wplace.live/files/s0/tiles/a/2.png",
    ],
)
def test_match_tile_url_rejects_other_urls(url) -> None:
    assert match_tile_url(url) is None


def test_match_pixel_url_normalizes_query() -> None:
    url = "https://backend.wplace.live/s0/pixel/12/34?y=9&x=8&extra=1"
    assert match_pixel_url(url) == "https://backend.wplace.live/s0/pixel/12/34?x=8&y=9"
    assert match_pixel_url("https://backend.wplace.live/s0/pixel/12/34") == (
        "https://backend.wplace.live/s0/pixel/12/34?x=0&y=0"
    )
    assert match_pixel_url("https://backend.wplace.live/s0/tile/12/34") is None


def test_extract_pixel_coords() -> None:
    anchor = extract_pixel_coords("https://backend.wplace.live/s0/pixel/12/34?x=8&y=9")
    assert anchor == PixelAnchor(chunk1=12, chunk2=34, pos_x=8, pos_y=9)


def test_extract_pixel_coords_defaults_missing_position() -> None:
    anchor = extract_pixel_coords("https://backend.wplace.live/s0/pixel/1/2")
    assert (anchor.pos_x, anchor.pos_y) == (0, 0)


def test_extract_pixel_coords_rejects_malformed_url() -> None:
    assert extract_pixel_coords("https://backend.wplace.live/s0/pixel/x/y") is None
    assert extract_pixel_coords("not a url") is None


def test_tile_coord_from_path() -> None:
    assert tile_coord_from_path("tiles/5/6.png") == TileCoord(5, 6)
    assert tile_coord_from_path("tiles/5/six.png") is None
