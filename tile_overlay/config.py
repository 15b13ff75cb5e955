"""Render configuration, overlay descriptors and the overlay set."""
from __future__ import annotations

import base64
import binascii
import io
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Literal

import numpy as np
from PIL import Image

from .cache import CacheLimits, RenderCaches
from .errors import DecodeFailure
from .notifications import Notifier, log_notifier
from .surface import decode_pixels


logger = logging.getLogger(__name__)

TILE_SIZE = 256
MAX_OVERLAY_DIM = 2000
MINIFY_SCALE = 3
MINIFY_SCALE_SYMBOL = 7

OverlayMode = Literal["behind", "above", "minify"]
MinifyStyle = Literal["dots", "symbols"]

OVERLAY_MODES = ("behind", "above", "minify")
MINIFY_STYLES = ("dots", "symbols")


class ConfigError(ValueError):
    """Raised for invalid render configuration or overlay payloads."""


def minify_scale_for(style: str) -> int:
    return MINIFY_SCALE_SYMBOL if style == "symbols" else MINIFY_SCALE


@dataclass(frozen=True, slots=True)
class RenderConfig:
    overlay_mode: OverlayMode = "behind"
    minify_style: MinifyStyle = "dots"
    cache_limits: CacheLimits = field(default_factory=CacheLimits)

    def __post_init__(self) -> None:
        if self.overlay_mode not in OVERLAY_MODES:
            raise ConfigError(f"Unknown overlay mode: {self.overlay_mode!r}")
        if self.minify_style not in MINIFY_STYLES:
            raise ConfigError(f"Unknown minify style: {self.minify_style!r}")

    @property
    def minify_scale(self) -> int:
        return minify_scale_for(self.minify_style)

    def to_dict(self) -> Dict[str, Any]:
        return {"overlayMode": self.overlay_mode, "minifyStyle": self.minify_style}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "RenderConfig":
        mode = str(payload.get("overlayMode", "behind")).strip().lower()
        style = str(payload.get("minifyStyle", "dots")).strip().lower()
        return cls(overlay_mode=mode, minify_style=style)  # type: ignore[arg-type]


_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off", ""}


def _parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ConfigError(f"Invalid boolean for {name}: {value!r}")


def _decode_data_url(value: str) -> bytes:
    _, sep, data = value.partition("base64,")
    if not sep:
        data = value
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ConfigError(f"Invalid base64 image payload: {exc}") from exc


@dataclass
class OverlayItem:
    id: str
    name: str = ""
    enabled: bool = True
    image_bytes: bytes | None = None
    pixel_url: str | None = None
    offset_x: int = 0
    offset_y: int = 0
    opacity: float = 0.7

    def __post_init__(self) -> None:
        if not 0.0 <= self.opacity <= 1.0:
            raise ConfigError(f"Overlay opacity must be in [0, 1], got {self.opacity}")

    def to_dict(self) -> Dict[str, Any]:
        image = None
        if self.image_bytes:
            image = "data:image/png;base64," + base64.b64encode(self.image_bytes).decode("ascii")
        return {
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            "imageBase64": image,
            "pixelUrl": self.pixel_url,
            "offsetX": self.offset_x,
            "offsetY": self.offset_y,
            "opacity": self.opacity,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "OverlayItem":
        overlay_id = str(payload.get("id", "")).strip()
        if not overlay_id:
            raise ConfigError("Invalid overlay entry: missing id")
        image_raw = payload.get("imageBase64")
        image_bytes = _decode_data_url(str(image_raw)) if image_raw else None
        pixel_url = payload.get("pixelUrl")
        try:
            offset_x = int(payload.get("offsetX", 0))
            offset_y = int(payload.get("offsetY", 0))
            opacity = float(payload.get("opacity", 0.7))
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid overlay entry {overlay_id}: {exc}") from exc
        return cls(
            id=overlay_id,
            name=str(payload.get("name", "") or ""),
            enabled=_parse_bool(payload.get("enabled", True), "enabled"),
            image_bytes=image_bytes,
            pixel_url=str(pixel_url) if pixel_url else None,
            offset_x=offset_x,
            offset_y=offset_y,
            opacity=opacity,
        )


def load_overlays(payload: Any) -> List[OverlayItem]:
    """Accept either a list of overlay dicts or a config dict with ``overlays``."""

    entries = payload.get("overlays", []) if isinstance(payload, dict) else payload
    if not isinstance(entries, list):
        raise ConfigError("Overlays must be a list")
    return [OverlayItem.from_dict(entry) for entry in entries if isinstance(entry, dict)]


def binarize_alpha(pixels: np.ndarray) -> np.ndarray:
    """Clear fully transparent pixels to (0, 0, 0, 0); make every other pixel opaque."""

    out = np.array(pixels, dtype=np.uint8, copy=True)
    clear = out[..., 3] == 0
    out[clear] = 0
    out[~clear, 3] = 255
    return out


def grid_sample_dims(
    width: int, height: int, offset_x: float, offset_y: float, gap_x: float, gap_y: float
) -> tuple[int, int]:
    return math.floor((width - offset_x) / gap_x), math.floor((height - offset_y) / gap_y)


def sample_grid(
    pixels: np.ndarray, offset_x: float, offset_y: float, gap_x: float, gap_y: float
) -> np.ndarray:
    """Sample one pixel at the center of each ``gap_x`` x ``gap_y`` cell.

    Centers are clamped to the image and rounded half up; alpha is binarized.
    """

    height, width = pixels.shape[:2]
    cols, rows = grid_sample_dims(width, height, offset_x, offset_y, gap_x, gap_y)
    if cols <= 0 or rows <= 0:
        return np.zeros((max(rows, 0), max(cols, 0), 4), dtype=np.uint8)
    centers_x = offset_x + gap_x / 2 + np.arange(cols) * gap_x
    centers_y = offset_y + gap_y / 2 + np.arange(rows) * gap_y
    xs = np.floor(np.clip(centers_x, 0, width - 1) + 0.5).astype(np.intp)
    ys = np.floor(np.clip(centers_y, 0, height - 1) + 0.5).astype(np.intp)
    return binarize_alpha(pixels[np.ix_(ys, xs)])


def _encode_png(pixels: np.ndarray) -> bytes:
    with io.BytesIO() as buffer:
        Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8)).save(buffer, format="PNG")
        return buffer.getvalue()



class OverlaySet:
    """Ordered overlays plus the render style; owns cache invalidation.

    Every mutation that can change rendered output clears the caches, since
    some derived data (symbol tiles, for one) is keyed by less than the full
    set of inputs.
    """

    def __init__(
        self,
        overlays: List[OverlayItem] | None = None,
        config: RenderConfig | None = None,
        *,
        caches: RenderCaches | None = None,
        notify: Notifier = log_notifier,
    ) -> None:
        self._overlays: List[OverlayItem] = list(overlays or [])
        self.config = config or RenderConfig()
        self.caches = caches or RenderCaches(self.config.cache_limits)
        self.notify = notify

    def __iter__(self) -> Iterator[OverlayItem]:
        return iter(list(self._overlays))

    def __len__(self) -> int:
        return len(self._overlays)

    def get(self, overlay_id: str) -> OverlayItem | None:
        for overlay in self._overlays:
            if overlay.id == overlay_id:
                return overlay
        return None

    def _index(self, overlay_id: str) -> int:
        for index, overlay in enumerate(self._overlays):
            if overlay.id == overlay_id:
                return index
        raise KeyError(overlay_id)

    def _changed(self, reason: str) -> None:
        logger.debug("overlay set changed reason=%s overlays=%s", reason, len(self._overlays))
        self.caches.clear_all()

    def add(self, overlay: OverlayItem) -> None:
        if self.get(overlay.id) is not None:
            raise ConfigError(f"Duplicate overlay id: {overlay.id}")
        self._overlays.append(overlay)
        self._changed("add")

    def remove(self, overlay_id: str) -> OverlayItem:
        overlay = self._overlays.pop(self._index(overlay_id))
        self.caches.forget_too_large(overlay_id)
        self._changed("remove")
        return overlay

    def reorder(self, overlay_ids: List[str]) -> None:
        if sorted(overlay_ids) != sorted(o.id for o in self._overlays):
            raise ConfigError("Reorder must list every overlay id exactly once")
        by_id = {o.id: o for o in self._overlays}
        self._overlays = [by_id[overlay_id] for overlay_id in overlay_ids]
        self._changed("reorder")

    def update(self, overlay_id: str, **changes: Any) -> OverlayItem:
        index = self._index(overlay_id)
        updated = replace(self._overlays[index], **changes)
        self._overlays[index] = updated
        if "image_bytes" in changes:
            self.caches.forget_too_large(overlay_id)
        self._changed("update")
        return updated

    def replace_image(self, overlay_id: str, image_bytes: bytes) -> OverlayItem:
        return self.update(overlay_id, image_bytes=image_bytes)

    def _source_pixels(self, overlay: OverlayItem, action: str) -> np.ndarray | None:
        if not overlay.image_bytes:
            self.notify(f'{action} failed: overlay "{overlay.name}" has no image.', "error", 3000)
            return None
        try:
            return decode_pixels(overlay.image_bytes)
        except DecodeFailure as exc:
            logger.warning("%s failed overlay=%s: %s", action.lower(), overlay.id, exc)
            self.notify(f'{action} failed for "{overlay.name}": {exc}', "error", 3000)
            return None

    def _too_large(self, width: int, height: int) -> bool:
        if width >= MAX_OVERLAY_DIM or height >= MAX_OVERLAY_DIM:
            self.notify(
                f"Too large. Must be < {MAX_OVERLAY_DIM}x{MAX_OVERLAY_DIM}.", "error", 3000
            )
            return True
        return False

    def resize(self, overlay_id: str, width: int, height: int) -> OverlayItem | None:
        """Nearest-neighbor resize of an overlay's image, then apply it.

        Failures are reported through the notifier and leave the overlay as is.
        """

        overlay = self.get(overlay_id)
        if overlay is None:
            raise KeyError(overlay_id)
        if width <= 0 or height <= 0:
            self.notify(f"Resize failed: invalid size {width}x{height}.", "error", 3000)
            return None
        if self._too_large(width, height):
            return None
        pixels = self._source_pixels(overlay, "Resize")
        if pixels is None:
            return None
        resized = np.array(
            Image.fromarray(pixels).resize((width, height), Image.NEAREST), dtype=np.uint8
        )
        logger.debug(
            "resized overlay=%s from=%sx%s to=%sx%s",
            overlay_id,
            pixels.shape[1],
            pixels.shape[0],
            width,
            height,
        )
        return self.replace_image(overlay_id, _encode_png(binarize_alpha(resized)))

    def reconstruct_grid(
        self,
        overlay_id: str,
        offset_x: float,
        offset_y: float,
        gap_x: float,
        gap_y: float,
    ) -> OverlayItem | None:
        """Rebuild an upscaled pixel-art overlay at one pixel per grid cell.

        Each output pixel samples the center of its cell in the source image.
        """

        overlay = self.get(overlay_id)
        if overlay is None:
            raise KeyError(overlay_id)
        if gap_x <= 0 or gap_y <= 0:
            self.notify("No samples. Adjust multiplier/offset.", "error", 3000)
            return None
        pixels = self._source_pixels(overlay, "Reconstruct")
        if pixels is None:
            return None
        height, width = pixels.shape[:2]
        cols, rows = grid_sample_dims(width, height, offset_x, offset_y, gap_x, gap_y)
        if cols <= 0 or rows <= 0:
            self.notify("No samples. Adjust multiplier/offset.", "error", 3000)
            return None
        if self._too_large(cols, rows):
            return None
        sampled = sample_grid(pixels, offset_x, offset_y, gap_x, gap_y)
        logger.debug(
            "reconstructed overlay=%s from=%sx%s to=%sx%s gap=(%s,%s) offset=(%s,%s)",
            overlay_id,
            width,
            height,
            cols,
            rows,
            gap_x,
            gap_y,
            offset_x,
            offset_y,
        )
        return self.replace_image(overlay_id, _encode_png(sampled))

    def set_style(self, *, overlay_mode: str | None = None, minify_style: str | None = None) -> None:
        self.config = replace(
            self.config,
            overlay_mode=overlay_mode or self.config.overlay_mode,
            minify_style=minify_style or self.config.minify_style,
        )
        self._changed("style")
