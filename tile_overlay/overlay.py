"""Run-length encoding of overlay rows and per-tile overlay composition."""
from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from .cache import DecodedImage, RenderCaches, default_caches
from .config import MAX_OVERLAY_DIM, OVERLAY_MODES, TILE_SIZE, ConfigError, OverlayItem, RenderConfig
from .errors import InputTooLarge, RenderCancelled
from .notifications import Notifier, log_notifier
from .palette_ops import DEFAULT_PALETTE, Palette
from .quantization import TRANSPARENT, classify_pixels
from .surface import decode_image, image_digest
from .symbols import render_symbol
from .tiles import TileCoord, extract_pixel_coords


logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass(frozen=True, slots=True)
class Run:
    color_index: int
    length: int


RLEData = List[List[Run]]


@dataclass(frozen=True, slots=True)
class Rect:
    x: int
    y: int
    w: int
    h: int

    @property
    def empty(self) -> bool:
        return self.w == 0 or self.h == 0


@dataclass(frozen=True, slots=True)
class CompositedResult:
    """Overlay pixels clipped to one tile, placed at (dx, dy) on the output."""

    pixels: np.ndarray
    dx: int
    dy: int
    scale: int = 1

    @property
    def scaled(self) -> bool:
        return self.scale != 1

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


def _check_cancel(cancel: threading.Event | None, what: str) -> None:
    if cancel is not None and cancel.is_set():
        raise RenderCancelled(f"{what} cancelled")


def rect_intersect(
    ax: int, ay: int, aw: int, ah: int, bx: int, by: int, bw: int, bh: int
) -> Rect:
    x = max(ax, bx)
    y = max(ay, by)
    right = min(ax + aw, bx + bw)
    bottom = min(ay + ah, by + bh)
    return Rect(x, y, max(0, right - x), max(0, bottom - y))


def check_overlay_dimensions(width: int, height: int, limit: int = MAX_OVERLAY_DIM) -> None:
    if width >= limit or height >= limit:
        raise InputTooLarge(width, height, limit)


# --- run-length encoding ---


def _row_runs(row: np.ndarray) -> List[Run]:
    if row.size == 0:
        return []
    starts = np.concatenate(([0], np.flatnonzero(row[1:] != row[:-1]) + 1))
    lengths = np.diff(np.concatenate((starts, [row.size])))
    return [Run(int(row[start]), int(length)) for start, length in zip(starts, lengths)]


def encode_runs(
    pixels: np.ndarray,
    use_palette_exact: bool,
    palette: Palette | None = None,
    cancel: threading.Event | None = None,
) -> RLEData:
    """Encode each row of an RGBA buffer as runs of palette indices.

    Transparent, half-alpha and chroma-keyed pixels become ``TRANSPARENT``.
    Runs never cross a row boundary, so ``sum(run.length)`` equals the width.
    """

    height = pixels.shape[0]
    rows: RLEData = []
    for y in range(height):
        _check_cancel(cancel, "run encoding")
        indices = classify_pixels(pixels[y], exact=use_palette_exact, palette=palette)
        rows.append(_row_runs(indices))
    return rows


def expand_runs(row: Sequence[Run]) -> List[int]:
    expanded: List[int] = []
    for run in row:
        expanded.extend([run.color_index] * run.length)
    return expanded


# --- signatures and cache keys ---


def overlay_signature(
    overlay: OverlayItem,
    palette_perfect: bool | None = None,
    digest: str | None = None,
    palette: Palette | None = None,
) -> str:
    """Deterministic key of every overlay field that changes rendered pixels.

    A palette other than the default adds a trailing ``pal:`` part.
    """

    if overlay.image_bytes:
        digest = digest or image_digest(overlay.image_bytes)
        image_key = f"{digest[:16]}:{len(overlay.image_bytes)}"
    else:
        image_key = "none"
    if palette_perfect is None:
        perfect_flag = "U"
    else:
        perfect_flag = "P" if palette_perfect else "I"
    parts = [
        image_key,
        overlay.pixel_url or "null",
        overlay.offset_x,
        overlay.offset_y,
        overlay.opacity,
        perfect_flag,
    ]
    if palette is not None and palette.fingerprint != DEFAULT_PALETTE.fingerprint:
        parts.append(f"pal:{palette.fingerprint}")
    return "|".join(str(part) for part in parts)


def composite_cache_key(
    overlay_id: str, signature: str, target: TileCoord, mode: str, style: str
) -> str:
    return f"ov:{overlay_id}|sig:{signature}|tile:{target.chunk1},{target.chunk2}|mode:{mode}:{style}"


def rle_cache_key(overlay_id: str, signature: str) -> str:
    return f"{overlay_id}:{signature}"


def overlay_runs(
    overlay: OverlayItem,
    image: DecodedImage,
    signature: str,
    palette_perfect: bool,
    caches: RenderCaches,
    palette: Palette | None = None,
    cancel: threading.Event | None = None,
) -> RLEData:
    key = rle_cache_key(overlay.id, signature)
    runs = caches.rle.get(key)
    if runs is None:
        runs = encode_runs(image.pixels, palette_perfect, palette, cancel)
        caches.rle.set(key, runs)
        logger.debug("rle built overlay=%s rows=%s exact=%s", overlay.id, len(runs), palette_perfect)
    return runs


# --- per-mode rendering ---


def _blit(out: np.ndarray, patch: np.ndarray, x: int, y: int) -> None:
    """Copy ``patch`` into ``out`` at (x, y), clipped to ``out``."""

    h, w = out.shape[:2]
    x0, y0 = max(0, x), max(0, y)
    x1 = min(w, x + patch.shape[1])
    y1 = min(h, y + patch.shape[0])
    if x1 <= x0 or y1 <= y0:
        return
    out[y0:y1, x0:x1] = patch[y0 - y : y1 - y, x0 - x : x1 - x]


def fade_toward_white(region: np.ndarray, opacity: float) -> np.ndarray:
    """Flatten ``region`` onto white, fading colors by ``1 - opacity``.

    The source alpha still shapes the result (fully transparent pixels come out
    white) but every output pixel is opaque.
    """

    rgb = region[..., :3].astype(np.float32)
    weight = (region[..., 3:4].astype(np.float32) / 255.0) * float(opacity)
    out = np.empty(region.shape, dtype=np.uint8)
    out[..., :3] = np.clip(np.rint(255.0 + (rgb - 255.0) * weight), 0, 255).astype(np.uint8)
    out[..., 3] = 255
    return out


def _compose_direct(
    image: DecodedImage, opacity: float, draw_x: int, draw_y: int
) -> CompositedResult | None:
    isect = rect_intersect(0, 0, TILE_SIZE, TILE_SIZE, draw_x, draw_y, image.width, image.height)
    if isect.empty:
        return None
    src_x = isect.x - draw_x
    src_y = isect.y - draw_y
    region = image.pixels[src_y : src_y + isect.h, src_x : src_x + isect.w]
    pixels = fade_toward_white(region, opacity)
    pixels.setflags(write=False)
    return CompositedResult(pixels=pixels, dx=isect.x, dy=isect.y, scale=1)


def _compose_minify(
    overlay: OverlayItem,
    image: DecodedImage,
    draw_x: int,
    draw_y: int,
    signature: str,
    palette_perfect: bool,
    config: RenderConfig,
    caches: RenderCaches,
    palette: Palette,
    cancel: threading.Event | None,
) -> CompositedResult | None:
    scale = config.minify_scale
    tile_scaled = TILE_SIZE * scale
    draw_xs = draw_x * scale
    draw_ys = draw_y * scale
    isect = rect_intersect(
        0, 0, tile_scaled, tile_scaled, draw_xs, draw_ys, image.width * scale, image.height * scale
    )
    if isect.empty:
        return None

    runs = overlay_runs(overlay, image, signature, palette_perfect, caches, palette, cancel)
    out = np.zeros((isect.h, isect.w, 4), dtype=np.uint8)

    start_y = max(0, math.floor((isect.y - draw_ys) / scale))
    end_y = min(image.height, math.ceil((isect.y + isect.h - draw_ys) / scale))
    visible_x0 = math.floor((isect.x - draw_xs) / scale)
    visible_x1 = math.ceil((isect.x + isect.w - draw_xs) / scale)
    center = scale // 2
    symbols = config.minify_style == "symbols"

    for y in range(start_y, end_y):
        _check_cancel(cancel, "minify render")
        out_y = draw_ys + y * scale - isect.y
        current_x = 0
        for run in runs[y]:
            run_start = current_x
            current_x += run.length
            if run.color_index == TRANSPARENT:
                continue
            first = max(run_start, visible_x0)
            last = min(current_x, visible_x1)
            if last <= first:
                continue
            count = last - first
            out_x = draw_xs + first * scale - isect.x
            if symbols:
                glyph = render_symbol(run.color_index, caches, palette, scale)
                if glyph is not None:
                    _blit(out, np.tile(glyph, (1, count, 1)), out_x, out_y)
            else:
                dot_y = out_y + center
                if not 0 <= dot_y < isect.h:
                    continue
                xs = out_x + center + scale * np.arange(count)
                xs = xs[(xs >= 0) & (xs < isect.w)]
                r, g, b = palette[run.color_index]
                out[dot_y, xs] = (r, g, b, 255)

    out.setflags(write=False)
    return CompositedResult(pixels=out, dx=isect.x, dy=isect.y, scale=scale)


def compose_overlay_for_tile(
    overlay: OverlayItem,
    target: TileCoord,
    mode: str | None = None,
    *,
    config: RenderConfig | None = None,
    caches: RenderCaches | None = None,
    notify: Notifier = log_notifier,
    palette: Palette | None = None,
    cancel: threading.Event | None = None,
) -> CompositedResult | None:
    """Render the part of ``overlay`` that falls on ``target``.

    Returns None when there is nothing to draw: the overlay is disabled, has no
    image or anchor, is too large, or does not touch the tile. The outcome for
    a given signature, tile, mode and style is cached, None included.

    Raises DecodeFailure for undecodable image bytes and RenderCancelled when
    ``cancel`` is set mid-render; neither writes to a cache.
    """

    config = config or RenderConfig()
    caches = caches or default_caches()
    palette = palette or DEFAULT_PALETTE
    mode = mode or config.overlay_mode
    if mode not in OVERLAY_MODES:
        raise ConfigError(f"Unknown overlay mode: {mode!r}")

    if not overlay.enabled or not overlay.image_bytes or not overlay.pixel_url:
        return None
    if caches.is_too_large(overlay.id):
        return None

    try:
        image = decode_image(overlay.image_bytes, caches, MAX_OVERLAY_DIM)
        check_overlay_dimensions(image.width, image.height)
    except InputTooLarge as exc:
        if caches.mark_too_large(overlay.id):
            logger.warning("overlay=%s skipped: %s", overlay.id, exc)
            notify(f'Overlay "{overlay.name}" skipped: {exc}.', "error", 5000)
        return None

    anchor = extract_pixel_coords(overlay.pixel_url)
    if anchor is None:
        logger.debug("overlay=%s has no usable anchor url=%s", overlay.id, overlay.pixel_url)
        return None

    draw_x = (anchor.chunk1 * TILE_SIZE + anchor.pos_x + overlay.offset_x) - target.chunk1 * TILE_SIZE
    draw_y = (anchor.chunk2 * TILE_SIZE + anchor.pos_y + overlay.offset_y) - target.chunk2 * TILE_SIZE

    palette_perfect = caches.palette_perfect_for(image, palette, cancel)
    signature = overlay_signature(overlay, palette_perfect, digest=image.digest, palette=palette)
    key = composite_cache_key(overlay.id, signature, target, mode, config.minify_style)
    cached = caches.composited.get(key, _MISSING)
    if cached is not _MISSING:
        return cached

    if mode == "minify":
        result = _compose_minify(
            overlay,
            image,
            draw_x,
            draw_y,
            signature,
            palette_perfect,
            config,
            caches,
            palette,
            cancel,
        )
    else:
        result = _compose_direct(image, overlay.opacity, draw_x, draw_y)

    caches.composited.set(key, result)
    logger.debug(
        "composed overlay=%s tile=%s mode=%s draw=(%s,%s) result=%s",
        overlay.id,
        target,
        mode,
        draw_x,
        draw_y,
        None if result is None else f"{result.width}x{result.height}@({result.dx},{result.dy})",
    )
    return result
