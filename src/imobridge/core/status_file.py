"""
Mirror the compact input mode into a small text file for shell prompts and bars.
"""

from __future__ import annotations

import logging
from pathlib import Path

from .contracts import StatusRecord

logger = logging.getLogger(__name__)


class StatusFileWriter:
    """Overwrite `path` with the current short state on every publish."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def write(self, state: StatusRecord) -> None:
        try:
            self._path.write_text(state.short_state or "", encoding="utf-8")
        except OSError as exc:
            logger.warning("Unable to update status file %s: %s", self._path, exc)


__all__ = ["StatusFileWriter"]
