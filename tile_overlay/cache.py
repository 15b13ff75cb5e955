"""In-memory caches shared by the overlay compositor and tile composer.

Everything here is derived data and can be rebuilt from source images, so
nothing is persisted. Keys are content signatures; see ``overlay.py`` for how
they are built.
"""
from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Generic, Hashable, Set, TypeVar

import numpy as np

from .palette_ops import DEFAULT_PALETTE, Palette, is_palette_perfect


logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class LRUCache(Generic[K, V]):
    """Bounded mapping evicting the least recently used entry on overflow.

    Reads and writes both count as a use. A single lock guards the ordered
    dict; callers compute values outside it and only store complete ones.
    """

    def __init__(self, capacity: int, name: str = "cache") -> None:
        if capacity < 1:
            raise ValueError("LRU capacity must be at least 1")
        self.capacity = capacity
        self.name = name
        self._entries: OrderedDict[K, V] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, key: K, default: Any = None) -> Any:
        with self._lock:
            try:
                value = self._entries[key]
            except KeyError:
                self.misses += 1
                return default
            self._entries.move_to_end(key)
            self.hits += 1
            return value

    def set(self, key: K, value: V) -> None:
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                self.evictions += 1
                logger.debug("%s evicted key=%s", self.name, evicted)

    def pop(self, key: K, default: Any = None) -> Any:
        with self._lock:
            return self._entries.pop(key, default)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> list[K]:
        with self._lock:
            return list(self._entries.keys())

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict:
        with self._lock:
            return {
                "name": self.name,
                "size": len(self._entries),
                "capacity": self.capacity,
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
            }


@dataclass(frozen=True, slots=True)
class CacheLimits:
    decoded: int = 32
    palette_perfect: int = 64
    composited: int = 500
    rle: int = 50
    base_upscale: int = 32
    symbols: int = 256


@dataclass(slots=True)
class DecodedImage:
    """Decoded RGBA pixels of an encoded payload, keyed by content digest."""

    digest: str
    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


@dataclass
class RenderCaches:
    """Handle aggregating every cache a composition touches.

    Pass one of these into the compositor and tile composer instead of relying
    on process globals; tests build a fresh instance per case.
    """

    limits: CacheLimits = field(default_factory=CacheLimits)
    decoded: LRUCache = field(init=False)
    palette_perfect: LRUCache = field(init=False)
    composited: LRUCache = field(init=False)
    rle: LRUCache = field(init=False)
    base_upscale: LRUCache = field(init=False)
    symbols: LRUCache = field(init=False)
    too_large: Set[str] = field(init=False, default_factory=set)
    _too_large_lock: threading.Lock = field(init=False, default_factory=threading.Lock, repr=False)

    def __post_init__(self) -> None:
        self.decoded = LRUCache(self.limits.decoded, "decoded")
        self.palette_perfect = LRUCache(self.limits.palette_perfect, "palette_perfect")
        self.composited = LRUCache(self.limits.composited, "composited")
        self.rle = LRUCache(self.limits.rle, "rle")
        self.base_upscale = LRUCache(self.limits.base_upscale, "base_upscale")
        self.symbols = LRUCache(self.limits.symbols, "symbols")

    def palette_perfect_for(
        self,
        image: DecodedImage,
        palette: Palette | None = None,
        cancel: threading.Event | None = None,
    ) -> bool:
        palette = palette or DEFAULT_PALETTE
        key = (image.digest, palette.fingerprint)
        cached = self.palette_perfect.get(key)
        if cached is not None:
            return cached
        verdict = is_palette_perfect(image.pixels, palette, cancel)
        self.palette_perfect.set(key, verdict)
        logger.debug("palette detection digest=%s perfect=%s", image.digest[:12], verdict)
        return verdict

    def mark_too_large(self, overlay_id: str) -> bool:
        """Record ``overlay_id``; return True only the first time."""

        with self._too_large_lock:
            if overlay_id in self.too_large:
                return False
            self.too_large.add(overlay_id)
            return True

    def is_too_large(self, overlay_id: str) -> bool:
        with self._too_large_lock:
            return overlay_id in self.too_large

    def forget_too_large(self, overlay_id: str) -> None:
        with self._too_large_lock:
            self.too_large.discard(overlay_id)

    def clear_composited(self) -> None:
        """Drop per-tile results only; safe when a key dimension already changed."""

        self.composited.clear()

    def clear_all(self) -> None:
        for cache in self._all():
            cache.clear()
        logger.debug("render caches cleared")

    def stats(self) -> list[dict]:
        return [cache.stats() for cache in self._all()]

    def _all(self) -> tuple[LRUCache, ...]:
        return (
            self.decoded,
            self.palette_perfect,
            self.composited,
            self.rle,
            self.base_upscale,
            self.symbols,
        )


_DEFAULT_CACHES: RenderCaches | None = None
_DEFAULT_LOCK = threading.Lock()


def default_caches() -> RenderCaches:
    """Process-wide caches used when callers do not pass their own handle."""

    global _DEFAULT_CACHES
    with _DEFAULT_LOCK:
        if _DEFAULT_CACHES is None:
            _DEFAULT_CACHES = RenderCaches()
        return _DEFAULT_CACHES


def clear_all_caches(caches: RenderCaches | None = None) -> None:
    """Invalidate everything after an overlay-set or style change."""

    (caches or default_caches()).clear_all()
