"""High-level tile composition pipeline."""
from __future__ import annotations

import logging
import threading
from typing import Iterable, List, Sequence

from .cache import RenderCaches, default_caches
from .config import OVERLAY_MODES, ConfigError, OverlayItem, RenderConfig
from .errors import OverlayError, RenderCancelled
from .notifications import Notifier, log_notifier
from .overlay import CompositedResult, compose_overlay_for_tile
from .palette_ops import Palette
from .surface import PixelSurface, decode_pixels, upscale_nearest
from .tiles import TileCoord


logger = logging.getLogger(__name__)


def blob_fingerprint(blob: bytes) -> int:
    """XOR of the first and last four bytes, read little-endian."""

    if len(blob) < 4:
        return int.from_bytes(blob, "little")
    return int.from_bytes(blob[:4], "little") ^ int.from_bytes(blob[-4:], "little")


def base_upscale_key(blob: bytes, width: int, height: int, scale: int, style: str) -> str:
    return f"base:{len(blob)}:{blob_fingerprint(blob)}:{width}x{height}:{scale}:{style}"


def _draw_results(canvas: PixelSurface, results: Iterable[CompositedResult | None]) -> None:
    for result in results:
        if result is None:
            continue
        canvas.draw(result.pixels, result.dx, result.dy)


def compose_tile(
    base_blob: bytes,
    results: Sequence[CompositedResult | None],
    mode: str | None = None,
    *,
    config: RenderConfig | None = None,
    caches: RenderCaches | None = None,
) -> bytes:
    """Merge per-overlay results with the base tile and encode to PNG.

    ``behind`` draws overlays first and the base on top, so opaque base pixels
    win. ``above`` draws the base first. ``minify`` draws overlays onto a
    nearest-neighbor magnified base. With no results the base blob is returned
    untouched.
    """

    if not results:
        return base_blob
    config = config or RenderConfig()
    caches = caches or default_caches()
    mode = mode or config.overlay_mode
    if mode not in OVERLAY_MODES:
        raise ConfigError(f"Unknown overlay mode: {mode!r}")

    base_pixels = decode_pixels(base_blob)
    height, width = base_pixels.shape[:2]

    if mode == "minify":
        scale = config.minify_scale
        key = base_upscale_key(base_blob, width, height, scale, config.minify_style)
        scaled = caches.base_upscale.get(key)
        if scaled is None:
            scaled = upscale_nearest(base_pixels, scale)
            scaled.setflags(write=False)
            caches.base_upscale.set(key, scaled)
            logger.debug("base upscale built key=%s", key)
        canvas = PixelSurface.from_pixels(scaled)
        _draw_results(canvas, results)
        return canvas.encode()

    if mode == "behind":
        canvas = PixelSurface.create(width, height)
        _draw_results(canvas, results)
        canvas.draw(base_pixels)
    else:
        canvas = PixelSurface.from_pixels(base_pixels)
        _draw_results(canvas, results)
    return canvas.encode()


def compose_overlays(
    overlays: Iterable[OverlayItem],
    target: TileCoord,
    mode: str | None = None,
    *,
    config: RenderConfig | None = None,
    caches: RenderCaches | None = None,
    notify: Notifier = log_notifier,
    palette: Palette | None = None,
    cancel: threading.Event | None = None,
) -> List[CompositedResult | None]:
    """Compose every overlay for ``target``; a failing overlay yields None.

    Cancellation aborts the whole request.
    """

    results: List[CompositedResult | None] = []
    for overlay in overlays:
        try:
            result = compose_overlay_for_tile(
                overlay,
                target,
                mode,
                config=config,
                caches=caches,
                notify=notify,
                palette=palette,
                cancel=cancel,
            )
        except RenderCancelled:
            raise
        except OverlayError as exc:
            logger.warning("overlay=%s tile=%s failed: %s", overlay.id, target, exc)
            result = None
        results.append(result)
    return results


def render_tile(
    base_blob: bytes,
    overlays: Iterable[OverlayItem],
    target: TileCoord,
    *,
    config: RenderConfig | None = None,
    caches: RenderCaches | None = None,
    notify: Notifier = log_notifier,
    palette: Palette | None = None,
    cancel: threading.Event | None = None,
) -> bytes:
    config = config or RenderConfig()
    caches = caches or default_caches()
    results = compose_overlays(
        overlays,
        target,
        config.overlay_mode,
        config=config,
        caches=caches,
        notify=notify,
        palette=palette,
        cancel=cancel,
    )
    return compose_tile(base_blob, results, config.overlay_mode, config=config, caches=caches)
