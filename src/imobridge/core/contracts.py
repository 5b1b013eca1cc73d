"""
Contracts and payload schemas shared by the bridge components.

The status record is the only thing that ever leaves the process; adapters
produce sparse `StatusUpdate` payloads and transports consume full
`StatusRecord` snapshots. Adapters and transports are selected at startup by
name, so both are described as structural protocols rather than base classes.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from .config import BridgeSettings
    from .debounce import DebouncedPublisher
    from .state import StateAggregator


class StatusRecord(BaseModel):
    """Canonical input method status as published to subscribers."""

    model_config = ConfigDict(populate_by_name=True)

    enable: bool | None = Field(default=None, description="Whether the IME is active.")
    keyboard: str | None = Field(
        default=None, description="Display name of the active input engine."
    )
    short_state: str | None = Field(
        default=None, alias="shortState", description="Compact input mode, e.g. 'A_'."
    )
    long_state: str | None = Field(
        default=None,
        alias="longState",
        description="Verbose input mode, e.g. 'Input Mode (A)'.",
    )

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON-ready dictionary using the stable wire field names."""
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class StatusUpdate(BaseModel):
    """Sparse update decoded from a single bus signal."""

    model_config = ConfigDict(frozen=True)

    enable: bool | None = None
    keyboard: str | None = None
    short_state: str | None = None
    long_state: str | None = None


UpdateHandler = Callable[[StatusUpdate], None]


@runtime_checkable
class InputMethodAdapter(Protocol):
    """Decodes one upstream signal family into `StatusUpdate` payloads."""

    name: str

    async def connect(self) -> None: ...

    def on_event(self, handler: UpdateHandler) -> None: ...

    async def disconnect(self) -> None: ...


@runtime_checkable
class Transport(Protocol):
    """Delivers published snapshots to whatever consumes them."""

    name: str

    async def start(self, context: BridgeContext) -> None: ...

    async def broadcast(self, state: StatusRecord) -> None: ...

    async def stop(self) -> None: ...


@dataclass(slots=True)
class BridgeContext:
    """Per-process wiring handed to transports instead of module globals."""

    settings: BridgeSettings
    aggregator: StateAggregator
    publisher: DebouncedPublisher
    request_exit: Callable[[int], None]


__all__ = [
    "BridgeContext",
    "InputMethodAdapter",
    "StatusRecord",
    "StatusUpdate",
    "Transport",
    "UpdateHandler",
]
