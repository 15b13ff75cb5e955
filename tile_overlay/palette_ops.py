"""Fixed palette, exact color lookups and the nearest-color LUT."""
from __future__ import annotations

import hashlib
import logging
import threading
from typing import Dict, Sequence, Tuple

import numpy as np

from .errors import RenderCancelled


logger = logging.getLogger(__name__)

ColorTuple = Tuple[int, int, int]

FREE_COLORS: Tuple[ColorTuple, ...] = (
    (0, 0, 0),
    (60, 60, 60),
    (120, 120, 120),
    (210, 210, 210),
    (255, 255, 255),
    (96, 0, 24),
    (237, 28, 36),
    (255, 127, 39),
    (246, 170, 9),
    (249, 221, 59),
    (255, 250, 188),
    (14, 185, 104),
    (19, 230, 123),
    (135, 255, 94),
    (12, 129, 110),
    (16, 174, 166),
    (19, 225, 190),
    (40, 80, 158),
    (64, 147, 228),
    (96, 247, 242),
    (107, 80, 246),
    (153, 177, 251),
    (120, 12, 153),
    (170, 56, 185),
    (224, 159, 249),
    (203, 0, 122),
    (236, 31, 128),
    (243, 141, 169),
    (104, 70, 52),
    (149, 104, 42),
    (248, 178, 119),
)

PAID_COLORS: Tuple[ColorTuple, ...] = (
    (170, 170, 170),
    (165, 14, 30),
    (250, 128, 114),
    (228, 92, 26),
    (214, 181, 148),
    (156, 132, 49),
    (197, 173, 49),
    (232, 212, 95),
    (74, 107, 58),
    (90, 148, 74),
    (132, 197, 115),
    (15, 121, 159),
    (187, 250, 242),
    (125, 199, 255),
    (77, 49, 184),
    (74, 66, 132),
    (122, 113, 196),
    (181, 174, 241),
    (219, 164, 99),
    (209, 128, 81),
    (255, 197, 165),
    (155, 82, 73),
    (209, 128, 120),
    (250, 182, 164),
    (123, 99, 82),
    (156, 132, 107),
    (51, 57, 65),
    (109, 117, 141),
    (179, 185, 209),
    (109, 100, 63),
    (148, 140, 107),
    (205, 197, 158),
)

# Pixels of this color mean "no paint" and are never quantized.
CHROMA_KEY: ColorTuple = (0xDE, 0xFA, 0xCE)

LUT_SIZE = 32
LUT_SHIFT = 8 - (LUT_SIZE.bit_length() - 1)


class PaletteError(RuntimeError):
    """Raised when palette processing fails."""


def hex_to_rgb(value: str) -> ColorTuple:
    value = value.strip()
    if value.startswith("#"):
        value = value[1:]
    if len(value) != 6:
        raise ValueError("Expected hex RGB in the form RRGGBB")
    r = int(value[0:2], 16)
    g = int(value[2:4], 16)
    b = int(value[4:6], 16)
    return (r, g, b)


def pack_rgb(r: int, g: int, b: int) -> int:
    return (r << 16) | (g << 8) | b


def _build_color_lut(colors: np.ndarray) -> np.ndarray:
    """Return a ``(LUT_SIZE,) * 3`` table of nearest palette indices.

    Each bucket is sampled at its brightest corner, i.e. the bucket index
    shifted back up with all low bits set.
    """

    low_bits = (1 << LUT_SHIFT) - 1
    axis = (np.arange(LUT_SIZE, dtype=np.int32) << LUT_SHIFT) | low_bits
    r, g, b = np.meshgrid(axis, axis, axis, indexing="ij")
    samples = np.stack((r, g, b), axis=-1).reshape(-1, 1, 3)
    diff = samples - colors.reshape(1, -1, 3).astype(np.int32)
    distances = np.einsum("ijk,ijk->ij", diff, diff)
    # argmin keeps the first minimum, so palette order breaks ties.
    nearest = np.argmin(distances, axis=1).astype(np.uint8)
    return nearest.reshape(LUT_SIZE, LUT_SIZE, LUT_SIZE)


class Palette:
    """An immutable ordered palette with O(1) exact and approximate lookups."""

    __slots__ = ("colors", "fingerprint", "_array", "_exact", "_packed_keys", "_packed_order", "lut")

    def __init__(self, colors: Sequence[ColorTuple]) -> None:
        if not colors:
            raise PaletteError("Palette must contain at least one color")
        if len(colors) > 255:
            raise PaletteError("Palette indices must fit in a uint8 lookup table")
        self.colors: Tuple[ColorTuple, ...] = tuple(tuple(int(c) for c in color) for color in colors)
        self._array = np.array(self.colors, dtype=np.uint8)
        self.fingerprint = hashlib.sha1(self._array.tobytes()).hexdigest()[:12]
        self._exact: Dict[ColorTuple, int] = {}
        for index, color in enumerate(self.colors):
            # First occurrence wins for duplicated colors.
            self._exact.setdefault(color, index)
        packed = np.array([pack_rgb(*color) for color in self.colors], dtype=np.int64)
        self._packed_order = np.argsort(packed, kind="stable")
        self._packed_keys = packed[self._packed_order]
        self.lut = _build_color_lut(self._array)
        logger.debug("palette built colors=%s lut=%s", len(self.colors), self.lut.shape)

    @property
    def size(self) -> int:
        return len(self.colors)

    @property
    def array(self) -> np.ndarray:
        return self._array

    def __len__(self) -> int:
        return len(self.colors)

    def __getitem__(self, index: int) -> ColorTuple:
        return self.colors[index]

    def exact_index(self, r: int, g: int, b: int) -> int | None:
        return self._exact.get((r, g, b))

    def nearest_index(self, r: int, g: int, b: int) -> int:
        return int(self.lut[r >> LUT_SHIFT, g >> LUT_SHIFT, b >> LUT_SHIFT])

    def closest_index(self, r: int, g: int, b: int) -> int:
        """Exhaustive Euclidean search; the LUT is built from this."""

        best_index = 0
        best_distance = None
        for index, (pr, pg, pb) in enumerate(self.colors):
            distance = (r - pr) ** 2 + (g - pg) ** 2 + (b - pb) ** 2
            if best_distance is None or distance < best_distance:
                best_distance = distance
                best_index = index
        return best_index

    def exact_indices(self, rgb: np.ndarray) -> np.ndarray:
        """Vectorized exact lookup; colors not in the palette map to -1."""

        packed = (
            (rgb[..., 0].astype(np.int64) << 16)
            | (rgb[..., 1].astype(np.int64) << 8)
            | rgb[..., 2].astype(np.int64)
        )
        pos = np.searchsorted(self._packed_keys, packed)
        pos = np.clip(pos, 0, len(self._packed_keys) - 1)
        found = self._packed_keys[pos] == packed
        return np.where(found, self._packed_order[pos], -1).astype(np.int16)

    def nearest_indices(self, rgb: np.ndarray) -> np.ndarray:
        return self.lut[
            rgb[..., 0] >> LUT_SHIFT,
            rgb[..., 1] >> LUT_SHIFT,
            rgb[..., 2] >> LUT_SHIFT,
        ].astype(np.int16)


def is_palette_perfect(
    pixels: np.ndarray,
    palette: Palette,
    cancel: threading.Event | None = None,
) -> bool:
    """Return True when every painted pixel of ``pixels`` is a palette color.

    Fully transparent pixels and the chroma key are ignored. ``pixels`` is an
    ``(h, w, 4)`` uint8 array.
    """

    if pixels.size == 0:
        return True
    for row in pixels:
        if cancel is not None and cancel.is_set():
            raise RenderCancelled("palette detection cancelled")
        rgb = row[:, :3]
        painted = row[:, 3] != 0
        keyed = (
            (rgb[:, 0] == CHROMA_KEY[0])
            & (rgb[:, 1] == CHROMA_KEY[1])
            & (rgb[:, 2] == CHROMA_KEY[2])
        )
        candidates = painted & ~keyed
        if not candidates.any():
            continue
        if (palette.exact_indices(rgb[candidates]) < 0).any():
            return False
    return True


ALL_COLORS: Tuple[ColorTuple, ...] = FREE_COLORS + PAID_COLORS

DEFAULT_PALETTE = Palette(ALL_COLORS)
