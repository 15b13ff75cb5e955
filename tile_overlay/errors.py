"""Exceptions raised while composing overlays onto tiles."""
from __future__ import annotations


class OverlayError(RuntimeError):
    """Base class for failures scoped to a single overlay or tile request."""


class InputTooLarge(OverlayError):
    """Raised when an overlay image reaches the maximum overlay dimension."""

    def __init__(self, width: int, height: int, limit: int) -> None:
        super().__init__(
            f"image too large (must be smaller than {limit}x{limit}; got {width}x{height})"
        )
        self.width = width
        self.height = height
        self.limit = limit


class DecodeFailure(OverlayError):
    """Raised when image bytes cannot be decoded."""


class RenderingContextUnavailable(OverlayError):
    """Raised when a drawing surface cannot be allocated."""


class RenderCancelled(OverlayError):
    """Raised when a caller abandons a long-running render."""
