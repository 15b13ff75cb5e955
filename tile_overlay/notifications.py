"""User-facing notification sink."""
from __future__ import annotations

import logging
from typing import Literal, Protocol


logger = logging.getLogger(__name__)

NotifyLevel = Literal["info", "success", "warning", "error"]

_LOG_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class Notifier(Protocol):
    def __call__(self, message: str, level: NotifyLevel = "info", duration_ms: int = 3000) -> None:
        ...


def log_notifier(message: str, level: NotifyLevel = "info", duration_ms: int = 3000) -> None:
    """Default sink: route notifications to the log."""

    logger.log(_LOG_LEVELS.get(level, logging.INFO), "%s", message)


class RecordingNotifier:
    """Collects notifications in memory; handy for front ends that batch them."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str, int]] = []

    def __call__(self, message: str, level: NotifyLevel = "info", duration_ms: int = 3000) -> None:
        self.messages.append((message, level, duration_ms))
