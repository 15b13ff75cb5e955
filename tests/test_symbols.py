import numpy as np

from tile_overlay.cache import RenderCaches
from tile_overlay.config import MINIFY_SCALE_SYMBOL
from tile_overlay.palette_ops import DEFAULT_PALETTE, Palette
from tile_overlay.symbols import SYMBOL_H, SYMBOL_TILES, SYMBOL_W, glyph_cells, render_symbol


def test_glyph_table_fits_palette() -> None:
    assert len(SYMBOL_TILES) <= DEFAULT_PALETTE.size
    assert len(set(SYMBOL_TILES)) == len(SYMBOL_TILES)
    assert all(0 < mask < (1 << (SYMBOL_W * SYMBOL_H)) for mask in SYMBOL_TILES)


def test_symbol_is_centered_glyph_in_palette_color() -> None:
    caches = RenderCaches()
    index = 6
    tile = render_symbol(index, caches)
    assert tile.shape == (MINIFY_SCALE_SYMBOL, MINIFY_SCALE_SYMBOL, 4)
    offset = (MINIFY_SCALE_SYMBOL - SYMBOL_W) >> 1
    expected = np.zeros_like(tile)
    for x, y in glyph_cells(SYMBOL_TILES[index]):
        expected[y + offset, x + offset] = (*DEFAULT_PALETTE[index], 255)
    assert np.array_equal(tile, expected)


def test_symbol_is_cached_until_cleared() -> None:
    caches = RenderCaches()
    first = render_symbol(3, caches)
    assert render_symbol(3, caches) is first
    caches.clear_all()
    assert render_symbol(3, caches) is not first


def test_indices_without_glyph_render_nothing() -> None:
    caches = RenderCaches()
    assert render_symbol(len(SYMBOL_TILES), caches) is None
    assert render_symbol(-1, caches) is None
    assert len(caches.symbols) == 0


def test_symbol_cache_separates_scale_and_palette() -> None:
    caches = RenderCaches()
    default = render_symbol(0, caches)
    larger = render_symbol(0, caches, scale=9)
    assert larger.shape == (9, 9, 4)
    assert default.shape == (MINIFY_SCALE_SYMBOL, MINIFY_SCALE_SYMBOL, 4)

    red = Palette(((255, 0, 0),))
    recolored = render_symbol(0, caches, red)
    ys, xs = np.nonzero(recolored[..., 3])
    assert recolored[ys[0], xs[0]].tolist() == [255, 0, 0, 255]
    assert render_symbol(0, caches) is default
    assert render_symbol(1, caches, red) is None
