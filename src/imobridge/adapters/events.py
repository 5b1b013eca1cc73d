"""
Raw events decoded from bus signals, before they become status updates.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..core.contracts import StatusUpdate, UpdateHandler

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PropertyUpdate:
    """A panel property blob reported by the input method."""

    text: str = ""
    label: str = ""
    extra: dict[str, str | None] = field(default_factory=dict)
    enable: bool | None = None

    def to_update(self) -> StatusUpdate:
        short_state = self.extra.get("label") or None
        return StatusUpdate(
            enable=self.enable,
            keyboard=self.label or None,
            short_state=short_state,
            long_state=self.text or short_state,
        )


@dataclass(frozen=True, slots=True)
class EngineChanged:
    """The active engine switched; `name` is the resolved display name."""

    name: str

    def to_update(self) -> StatusUpdate:
        return StatusUpdate(enable=True, keyboard=self.name or None)


@dataclass(frozen=True, slots=True)
class InitialEngine:
    """Engine reported by the startup query; seeds `keyboard` only."""

    name: str

    def to_update(self) -> StatusUpdate:
        return StatusUpdate(keyboard=self.name or None)


@dataclass(frozen=True, slots=True)
class EnableChanged:
    """Explicit on/off toggle."""

    flag: bool

    def to_update(self) -> StatusUpdate:
        return StatusUpdate(enable=self.flag)


RawEvent = PropertyUpdate | EngineChanged | InitialEngine | EnableChanged


def dispatch(handlers: Iterable[UpdateHandler], event: RawEvent, *, source: str) -> None:
    """Convert `event` and hand it to every handler, isolating handler failures."""
    update = event.to_update()
    logger.debug("%s: %s", source, event)
    for handler in handlers:
        try:
            handler(update)
        except Exception:
            logger.exception("%s: update handler failed", source)


__all__ = [
    "EnableChanged",
    "EngineChanged",
    "InitialEngine",
    "PropertyUpdate",
    "RawEvent",
    "dispatch",
]
