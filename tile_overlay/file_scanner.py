"""Directory scanning helpers for batch tile composition."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Tuple

from .tiles import TileCoord, tile_coord_from_path

_TILE_EXTENSIONS = {".png"}


def is_tile_image(path: Path) -> bool:
    return path.suffix.lower() in _TILE_EXTENSIONS


@dataclass(slots=True)
class ScanOptions:
    root: Path
    allowed_exts: Iterable[str] | None = None


def iter_tile_files(options: ScanOptions) -> Iterator[Tuple[Path, TileCoord]]:
    """Yield tiles laid out as ``<root>/<chunk1>/<chunk2>.png``, sorted by path."""

    allowed = {
        ext.lower() if ext.startswith(".") else f".{ext.lower()}"
        for ext in (options.allowed_exts or _TILE_EXTENSIONS)
    }
    root = options.root.expanduser()
    for path in sorted(root.glob("*/*")):
        if not path.is_file() or path.suffix.lower() not in allowed:
            continue
        relative = path.relative_to(root).with_suffix(".png").as_posix()
        coord = tile_coord_from_path("/" + relative)
        if coord is not None:
            yield path, coord
