"""
Owner of the canonical status record.
"""

from __future__ import annotations

import logging

from .contracts import StatusRecord, StatusUpdate

logger = logging.getLogger(__name__)

_TEXT_FIELDS = ("keyboard", "short_state", "long_state")


class StateAggregator:
    """
    Merge sparse updates into the single canonical status record.

    Text fields are only overwritten by non-empty values so a partial update
    never erases what an earlier signal reported. ``enable`` is overwritten
    whenever the update carries it, including ``False``.
    """

    def __init__(self, initial: StatusRecord | None = None) -> None:
        self._state = initial if initial is not None else StatusRecord()

    @property
    def snapshot(self) -> StatusRecord:
        """Shallow copy of the current record."""
        return self._state.model_copy()

    def merge(self, update: StatusUpdate) -> StatusRecord:
        if update.enable is not None:
            self._state.enable = update.enable
        for field in _TEXT_FIELDS:
            value = getattr(update, field)
            if value:
                setattr(self._state, field, value)
        logger.debug("Merged update %s", update.model_dump(exclude_none=True))
        return self.snapshot


__all__ = ["StateAggregator"]
