"""In-memory RGBA drawing surface backed by a Pillow image."""
from __future__ import annotations

import hashlib
import io
import logging

import numpy as np
from PIL import Image, UnidentifiedImageError

from .cache import DecodedImage, RenderCaches
from .errors import DecodeFailure, InputTooLarge, RenderingContextUnavailable


logger = logging.getLogger(__name__)


class PixelSurface:
    """Single drawing capability used for every canvas in the pipeline.

    ``draw`` is source-over alpha compositing, matching how overlays and base
    tiles stack on each other.
    """

    __slots__ = ("image",)

    def __init__(self, image: Image.Image) -> None:
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        self.image = image

    @classmethod
    def create(cls, width: int, height: int) -> "PixelSurface":
        if width <= 0 or height <= 0:
            raise RenderingContextUnavailable(f"invalid surface size {width}x{height}")
        try:
            image = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        except (MemoryError, ValueError) as exc:
            logger.error("surface allocation failed size=%sx%s: %s", width, height, exc)
            raise RenderingContextUnavailable(
                f"could not allocate {width}x{height} surface"
            ) from exc
        return cls(image)

    @classmethod
    def from_pixels(cls, pixels: np.ndarray) -> "PixelSurface":
        surface = cls.create(int(pixels.shape[1]), int(pixels.shape[0]))
        surface.put_pixels(pixels)
        return surface

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size

    def draw(self, other: "PixelSurface | np.ndarray", dx: int = 0, dy: int = 0) -> None:
        """Composite ``other`` over this surface with its top-left at (dx, dy)."""

        source = other if isinstance(other, PixelSurface) else PixelSurface.from_pixels(other)
        src_x = max(0, -dx)
        src_y = max(0, -dy)
        if src_x >= source.width or src_y >= source.height:
            return
        self.image.alpha_composite(
            source.image, dest=(max(0, dx), max(0, dy)), source=(src_x, src_y)
        )

    def get_pixels(self) -> np.ndarray:
        return np.array(self.image, dtype=np.uint8)

    def put_pixels(self, pixels: np.ndarray, dx: int = 0, dy: int = 0) -> None:
        """Replace pixels without blending, like a raw buffer write."""

        patch = Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8))
        self.image.paste(patch, (dx, dy))

    def encode(self) -> bytes:
        """Encode as PNG; lossless, alpha preserved exactly."""

        with io.BytesIO() as buffer:
            self.image.save(buffer, format="PNG")
            return buffer.getvalue()


def image_digest(payload: bytes) -> str:
    return hashlib.sha1(payload).hexdigest()


def decode_pixels(payload: bytes, max_dim: int | None = None) -> np.ndarray:
    """Decode an encoded raster blob into an ``(h, w, 4)`` uint8 array.

    With ``max_dim`` the header size is checked before any pixel data is
    decoded, raising InputTooLarge when either side reaches the limit.
    Payloads Pillow refuses as decompression bombs are DecodeFailures.
    """

    if not payload:
        raise DecodeFailure("empty image payload")
    try:
        with Image.open(io.BytesIO(payload)) as img:
            width, height = img.size
            if max_dim is not None and (width >= max_dim or height >= max_dim):
                raise InputTooLarge(width, height, max_dim)
            img.load()
            rgba = img.convert("RGBA")
    except Image.DecompressionBombError as exc:
        raise DecodeFailure(f"image too large to decode: {exc}") from exc
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError) as exc:
        raise DecodeFailure(f"could not decode image: {exc}") from exc
    return np.array(rgba, dtype=np.uint8)


def decode_image(payload: bytes, caches: RenderCaches, max_dim: int | None = None) -> DecodedImage:
    """Decode ``payload`` through the decoded-image cache.

    Failures propagate and leave the cache untouched.
    """

    digest = image_digest(payload)
    cached = caches.decoded.get(digest)
    if cached is not None:
        return cached
    pixels = decode_pixels(payload, max_dim)
    pixels.setflags(write=False)
    decoded = DecodedImage(digest=digest, pixels=pixels)
    caches.decoded.set(digest, decoded)
    logger.debug("decoded image digest=%s size=%sx%s", digest[:12], decoded.width, decoded.height)
    return decoded


def upscale_nearest(pixels: np.ndarray, scale: int) -> np.ndarray:
    """Nearest-neighbor magnification by an integer factor."""

    if scale == 1:
        return pixels.copy()
    return np.repeat(np.repeat(pixels, scale, axis=0), scale, axis=1)
