"""Per-pixel classification of RGBA buffers against the fixed palette."""
from __future__ import annotations

import numpy as np

from .palette_ops import CHROMA_KEY, DEFAULT_PALETTE, Palette

TRANSPARENT = -1
ALPHA_THRESHOLD = 128


def transparent_mask(rgba: np.ndarray) -> np.ndarray:
    """Pixels at or below half alpha, plus chroma-keyed pixels."""

    keyed = (
        (rgba[..., 0] == CHROMA_KEY[0])
        & (rgba[..., 1] == CHROMA_KEY[1])
        & (rgba[..., 2] == CHROMA_KEY[2])
    )
    return (rgba[..., 3] <= ALPHA_THRESHOLD) | keyed


def classify_pixels(
    rgba: np.ndarray,
    *,
    exact: bool,
    palette: Palette | None = None,
) -> np.ndarray:
    """Return an ``int16`` array of palette indices, ``TRANSPARENT`` for no paint.

    ``exact`` selects the exact lookup used for palette-perfect images; colors
    missing from the palette then classify as transparent. Otherwise every
    painted pixel goes through the nearest-color LUT.
    """

    palette = palette or DEFAULT_PALETTE
    rgb = rgba[..., :3]
    indices = palette.exact_indices(rgb) if exact else palette.nearest_indices(rgb)
    indices[transparent_mask(rgba)] = TRANSPARENT
    return indices
