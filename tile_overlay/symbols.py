"""Glyphs drawn for each palette color in symbol-minify mode."""
from __future__ import annotations

import logging
from typing import List, Sequence, Tuple

import numpy as np

from .cache import RenderCaches
from .config import MINIFY_SCALE_SYMBOL
from .palette_ops import DEFAULT_PALETTE, Palette


logger = logging.getLogger(__name__)

SYMBOL_W = 5
SYMBOL_H = 5

# One 5x5 glyph per palette index, in palette order.
_GLYPH_ART: Tuple[Tuple[str, ...], ...] = (
    ("#####", "#...#", "#...#", "#...#", "#####"),
    (".....", ".###.", ".###.", ".###.", "....."),
    ("..#..", "..#..", "#####", "..#..", "..#.."),
    ("#...#", ".#.#.", "..#..", ".#.#.", "#...#"),
    ("..#..", ".#.#.", "#...#", ".#.#.", "..#.."),
    ("..#..", ".###.", "#####", ".###.", "..#.."),
    ("#####", ".....", "#####", ".....", "#####"),
    ("#.#.#", "#.#.#", "#.#.#", "#.#.#", "#.#.#"),
    ("#.#.#", ".#.#.", "#.#.#", ".#.#.", "#.#.#"),
    (".....", ".....", "..#..", ".....", "....."),
    ("#####", "#####", "#####", "#####", "#####"),
    ("#....", "##...", "###..", "####.", "#####"),
    ("....#", "...##", "..###", ".####", "#####"),
    ("#####", "####.", "###..", "##...", "#...."),
    ("#####", ".####", "..###", "...##", "....#"),
    ("..#..", ".###.", "#####", ".....", "....."),
    (".....", ".....", "#####", ".###.", "..#.."),
    ("#....", "#....", "#....", "#....", "#####"),
    ("#####", "....#", "....#", "....#", "....#"),
    ("#...#", "#...#", "#...#", "#...#", "#####"),
    ("#####", "#...#", "#...#", "#...#", "#...#"),
    ("#####", "..#..", "..#..", "..#..", "..#.."),
    ("..#..", "..#..", "..#..", "..#..", "#####"),
    ("#####", "#....", "#####", "....#", "#####"),
    ("#...#", "#...#", "#####", "#...#", "#...#"),
    ("#####", "..#..", "..#..", "..#..", "#####"),
    (".###.", "#...#", "#...#", "#...#", ".###."),
    (".###.", "#####", "#####", "#####", ".###."),
    ("#....", ".#...", "..#..", "...#.", "....#"),
    ("....#", "...#.", "..#..", ".#...", "#...."),
    ("#...#", ".....", "..#..", ".....", "#...#"),
    ("#.#.#", ".....", "#.#.#", ".....", "#.#.#"),
    ("..#..", "..#..", "..#..", "..#..", "..#.."),
    (".....", ".....", "#####", ".....", "....."),
    ("#####", "#...#", "#.#.#", "#...#", "#####"),
    (".###.", "#...#", "#.#.#", "#...#", ".###."),
    ("#####", "#####", ".....", ".....", "....."),
    (".....", ".....", ".....", "#####", "#####"),
    ("##...", "##...", "##...", "##...", "##..."),
    ("...##", "...##", "...##", "...##", "...##"),
    ("##.##", "##.##", ".....", "##.##", "##.##"),
    ("#...#", "##.##", "#.#.#", "#...#", "#...#"),
    ("#...#", "#...#", ".#.#.", ".#.#.", "..#.."),
    ("..#..", ".#.#.", ".#.#.", "#...#", "#...#"),
    ("#####", "...#.", "..#..", ".#...", "#####"),
    ("#####", "#....", "####.", "#....", "#####"),
    ("#####", "#....", "####.", "#....", "#...."),
    ("####.", "#...#", "####.", "#...#", "####."),
    (".####", "#....", "#....", "#....", ".####"),
    ("####.", "#...#", "#...#", "#...#", "####."),
    ("#...#", ".#.#.", "..#..", "..#..", "..#.."),
    ("#...#", "##..#", "#.#.#", "#..##", "#...#"),
    ("#####", "#...#", "#####", "#....", "#...."),
    ("..#..", "#####", "..#..", ".#.#.", "#...#"),
    ("#.#.#", ".###.", "#####", ".###.", "#.#.#"),
    (".#.#.", "#####", ".#.#.", "#####", ".#.#."),
    ("....#", "....#", "#...#", ".#.#.", "..#.."),
    ("##...", "##...", ".....", "...##", "...##"),
    ("...##", "...##", ".....", "##...", "##..."),
    ("#####", "#.#.#", "#####", "#.#.#", "#####"),
    (".#.#.", "#.#.#", ".#.#.", "#.#.#", ".#.#."),
    ("..#..", "..#..", "##.##", "..#..", "..#.."),
    ("###..", "###..", "###..", ".....", "....."),
)


def _art_to_mask(rows: Sequence[str]) -> int:
    mask = 0
    for y, row in enumerate(rows):
        for x, cell in enumerate(row):
            if cell == "#":
                mask |= 1 << (y * SYMBOL_W + x)
    return mask


SYMBOL_TILES: Tuple[int, ...] = tuple(_art_to_mask(rows) for rows in _GLYPH_ART)


def glyph_cells(mask: int) -> List[Tuple[int, int]]:
    """(x, y) cells set in a glyph bitmask."""

    return [
        (x, y)
        for y in range(SYMBOL_H)
        for x in range(SYMBOL_W)
        if (mask >> (y * SYMBOL_W + x)) & 1
    ]


def render_symbol(
    color_index: int,
    caches: RenderCaches,
    palette: Palette | None = None,
    scale: int = MINIFY_SCALE_SYMBOL,
) -> np.ndarray | None:
    """Return the ``scale`` x ``scale`` RGBA tile for ``color_index``.

    The glyph is centered and stamped in the palette color over a transparent
    background. Tiles are cached per index, scale and color. Indices without a
    glyph return None.
    """

    palette = palette or DEFAULT_PALETTE
    if color_index < 0 or color_index >= min(len(SYMBOL_TILES), len(palette)):
        return None
    r, g, b = palette[color_index]
    key = (color_index, scale, r, g, b)
    cached = caches.symbols.get(key)
    if cached is not None:
        return cached
    tile = np.zeros((scale, scale, 4), dtype=np.uint8)
    center_x = (scale - SYMBOL_W) >> 1
    center_y = (scale - SYMBOL_H) >> 1
    for x, y in glyph_cells(SYMBOL_TILES[color_index]):
        tx = x + center_x
        ty = y + center_y
        if 0 <= tx < scale and 0 <= ty < scale:
            tile[ty, tx] = (r, g, b, 255)
    tile.setflags(write=False)
    caches.symbols.set(key, tile)
    return tile
