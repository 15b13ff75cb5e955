"""Tile and pixel-placement URL parsing."""
from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import parse_qs, urlsplit

TILE_HOST = "backend.wplace.live"

_TILE_PATH_RE = re.compile(r"/(\d+)/(\d+)\.png$", re.IGNORECASE)
_PIXEL_PATH_RE = re.compile(r"/s0/pixel/(\d+)/(\d+)$")


@dataclass(frozen=True, slots=True)
class TileCoord:
    chunk1: int
    chunk2: int

    def __str__(self) -> str:
        return f"{self.chunk1},{self.chunk2}"


@dataclass(frozen=True, slots=True)
class PixelAnchor:
    """Tile coordinate plus in-tile pixel offset of an overlay's (0, 0)."""

    chunk1: int
    chunk2: int
    pos_x: int
    pos_y: int


def _int_param(params: dict, name: str) -> int:
    values = params.get(name)
    if not values:
        return 0
    return int(values[0])


def extract_pixel_coords(pixel_url: str) -> PixelAnchor | None:
    """Parse ``.../s0/pixel/{c1}/{c2}?x=&y=`` into an anchor.

    Returns None when the URL does not carry integer tile coordinates.
    """

    try:
        parts = urlsplit(pixel_url)
        segments = parts.path.split("/")
        params = parse_qs(parts.query)
        return PixelAnchor(
            chunk1=int(segments[3]),
            chunk2=int(segments[4]),
            pos_x=_int_param(params, "x"),
            pos_y=_int_param(params, "y"),
        )
    except (ValueError, IndexError):
        return None


def match_tile_url(url: str) -> TileCoord | None:
    parts = urlsplit(url)
    if parts.hostname != TILE_HOST or not parts.path.startswith("/files/"):
        return None
    match = _TILE_PATH_RE.search(parts.path)
    if not match:
        return None
    return TileCoord(int(match.group(1)), int(match.group(2)))


def match_pixel_url(url: str) -> str | None:
    """Return the normalized pixel-placement URL, or None if ``url`` is not one."""

    parts = urlsplit(url)
    if parts.hostname != TILE_HOST:
        return None
    match = _PIXEL_PATH_RE.search(parts.path)
    if not match:
        return None
    params = parse_qs(parts.query)
    x = params.get("x", ["0"])[0] or "0"
    y = params.get("y", ["0"])[0] or "0"
    return f"https://{TILE_HOST}/s0/pixel/{match.group(1)}/{match.group(2)}?x={x}&y={y}"


def tile_coord_from_path(path: str) -> TileCoord | None:
    """Read ``.../{c1}/{c2}.png`` from a filesystem or URL path."""

    match = _TILE_PATH_RE.search(path.replace("\\", "/"))
    if not match:
        return None
    return TileCoord(int(match.group(1)), int(match.group(2)))
