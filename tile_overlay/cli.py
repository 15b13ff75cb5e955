"""Command-line interface for composing overlays onto map tiles."""
from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path
from typing import List

from .config import MINIFY_STYLES, OVERLAY_MODES, OverlaySet, RenderConfig, load_overlays
from .errors import OverlayError
from .file_scanner import ScanOptions, iter_tile_files
from .notifications import log_notifier
from .palette_ops import DEFAULT_PALETTE, FREE_COLORS
from .processing import render_tile
from .symbols import SYMBOL_TILES
from .tiles import TileCoord


logger = logging.getLogger(__name__)


def _setup_debug_logging() -> None:
    if not os.environ.get("TILE_OVERLAY_DEBUG"):
        logging.getLogger("tile_overlay").addHandler(logging.NullHandler())
        return
    log_path = Path(os.environ.get("TILE_OVERLAY_DEBUG_LOG", "tile_overlay_debug.log"))
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    # remove existing file handlers to avoid duplicates
    root_logger.handlers = [h for h in root_logger.handlers if not isinstance(h, logging.FileHandler)]
    root_logger.addHandler(handler)
    root_logger.info("tile_overlay debug logging enabled at %s", log_path)


def _add_render_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--overlays",
        type=Path,
        required=True,
        help="JSON file with an overlay list (or a config object with 'overlays')",
    )
    parser.add_argument("--mode", choices=OVERLAY_MODES, default=None, help="Overlay mode")
    parser.add_argument("--style", choices=MINIFY_STYLES, default=None, help="Minify style")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Compose image overlays onto map tiles")
    sub = parser.add_subparsers(dest="command", required=True)

    compose = sub.add_parser("compose", help="Compose overlays onto a single tile")
    compose.add_argument("tile", type=Path, help="Base tile PNG")
    compose.add_argument(
        "--tile-coord",
        type=int,
        nargs=2,
        metavar=("CHUNK1", "CHUNK2"),
        required=True,
        help="Tile coordinates of the base tile",
    )
    compose.add_argument("--out", type=Path, required=True, help="Output PNG path")
    _add_render_args(compose)

    batch = sub.add_parser("batch", help="Compose every <chunk1>/<chunk2>.png under a folder")
    batch.add_argument("tiles", type=Path, help="Folder of tiles")
    batch.add_argument("--out", type=Path, required=True, help="Destination folder")
    _add_render_args(batch)

    sub.add_parser("palette", help="Print the fixed palette")
    return parser


def _load_overlay_set(args: argparse.Namespace) -> OverlaySet:
    payload = json.loads(args.overlays.read_text(encoding="utf-8"))
    config = RenderConfig.from_dict(payload) if isinstance(payload, dict) else RenderConfig()
    overlay_set = OverlaySet(load_overlays(payload), config, notify=log_notifier)
    if args.mode or args.style:
        overlay_set.set_style(overlay_mode=args.mode, minify_style=args.style)
    return overlay_set


def _render_one(overlay_set: OverlaySet, tile_path: Path, coord: TileCoord, out_path: Path) -> None:
    blob = tile_path.read_bytes()
    output = render_tile(
        blob,
        list(overlay_set),
        coord,
        config=overlay_set.config,
        caches=overlay_set.caches,
        notify=overlay_set.notify,
    )
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(output)


def _print_palette() -> int:
    for index, color in enumerate(DEFAULT_PALETTE.colors):
        tier = "free" if index < len(FREE_COLORS) else "paid"
        glyph = "yes" if index < len(SYMBOL_TILES) else "no"
        print(f"{index:3d} #{color[0]:02x}{color[1]:02x}{color[2]:02x} {tier} glyph={glyph}")
    return 0


def main(argv: List[str] | None = None) -> int:
    _setup_debug_logging()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "palette":
        return _print_palette()

    try:
        overlay_set = _load_overlay_set(args)
    except (OSError, ValueError) as exc:
        parser.error(f"Failed to read overlays: {exc}")

    if args.command == "compose":
        coord = TileCoord(*args.tile_coord)
        try:
            _render_one(overlay_set, args.tile, coord, args.out)
        except (OverlayError, OSError) as exc:
            print(f"[FAIL] {args.tile}: {exc}")
            return 1
        print(f"[OK] {args.tile.name} -> {args.out}")
        return 0

    if not args.tiles.is_dir():
        parser.error(f"Tile folder not found: {args.tiles}")
    tiles = list(iter_tile_files(ScanOptions(root=args.tiles)))
    if not tiles:
        parser.error("No tiles found")

    successes = 0
    failures = 0
    for tile_path, coord in tiles:
        out_path = args.out / str(coord.chunk1) / f"{coord.chunk2}.png"
        try:
            _render_one(overlay_set, tile_path, coord, out_path)
        except (OverlayError, OSError) as exc:
            failures += 1
            print(f"[FAIL] {tile_path}: {exc}")
            continue
        successes += 1
        logger.debug("rendered tile=%s path=%s", coord, out_path)
    print(f"Completed {successes} tile(s), {failures} failure(s).")
    return 0 if failures == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
