import numpy as np

from tile_overlay.overlay import Run, encode_runs, expand_runs
from tile_overlay.palette_ops import CHROMA_KEY, DEFAULT_PALETTE
from tile_overlay.quantization import TRANSPARENT, classify_pixels

RED = (237, 28, 36)
BLACK = (0, 0, 0)


def _row(*pixels):
    return np.array([list(pixels)], dtype=np.uint8)


def test_runs_merge_identical_neighbours() -> None:
    pixels = _row((*RED, 255), (*RED, 255), (*BLACK, 255), (0, 0, 0, 0), (0, 0, 0, 0))
    runs = encode_runs(pixels, use_palette_exact=True)
    red = DEFAULT_PALETTE.exact_index(*RED)
    black = DEFAULT_PALETTE.exact_index(*BLACK)
    assert runs == [[Run(red, 2), Run(black, 1), Run(TRANSPARENT, 2)]]


def test_half_alpha_and_chroma_key_are_transparent() -> None:
    pixels = _row((*RED, 128), (*RED, 129), (*CHROMA_KEY, 255))
    classified = classify_pixels(pixels[0], exact=True).tolist()
    red = DEFAULT_PALETTE.exact_index(*RED)
    assert classified == [TRANSPARENT, red, TRANSPARENT]


def test_exact_mode_drops_unknown_colors() -> None:
    pixels = _row((1, 2, 3, 255))
    assert encode_runs(pixels, use_palette_exact=True) == [[Run(TRANSPARENT, 1)]]


def test_lut_mode_quantizes_unknown_colors() -> None:
    pixels = _row((1, 2, 3, 255))
    expected = DEFAULT_PALETTE.nearest_index(1, 2, 3)
    assert encode_runs(pixels, use_palette_exact=False) == [[Run(expected, 1)]]


def test_round_trip_and_row_widths() -> None:
    rng = np.random.default_rng(7)
    colors = np.array([(*c, 255) for c in DEFAULT_PALETTE.colors[:4]] + [(0, 0, 0, 0)], dtype=np.uint8)
    pixels = colors[rng.integers(0, len(colors), size=(12, 17))]
    runs = encode_runs(pixels, use_palette_exact=True)
    assert len(runs) == 12
    for y, row in enumerate(runs):
        assert sum(run.length for run in row) == 17
        assert all(run.length > 0 for run in row)
        assert all(a.color_index != b.color_index for a, b in zip(row, row[1:]))
        assert expand_runs(row) == classify_pixels(pixels[y], exact=True).tolist()


def test_empty_width_rows() -> None:
    pixels = np.zeros((2, 0, 4), dtype=np.uint8)
    assert encode_runs(pixels, use_palette_exact=False) == [[], []]
