"""
Core infrastructure for the input method bridge.

This package exposes the status contracts, the aggregator that owns the
canonical record, the debounced publisher, configuration, and the
orchestrator that wires them together.
"""

from .config import BridgeSettings, ConfigError, ConfigService
from .contracts import (
    BridgeContext,
    InputMethodAdapter,
    StatusRecord,
    StatusUpdate,
    Transport,
)
from .debounce import DebouncedPublisher, Debouncer
from .orchestrator import Orchestrator
from .state import StateAggregator
from .status_file import StatusFileWriter

__all__ = [
    "BridgeContext",
    "BridgeSettings",
    "ConfigError",
    "ConfigService",
    "DebouncedPublisher",
    "Debouncer",
    "InputMethodAdapter",
    "Orchestrator",
    "StateAggregator",
    "StatusFileWriter",
    "StatusRecord",
    "StatusUpdate",
    "Transport",
]
