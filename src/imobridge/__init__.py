"""
imo-bridge - input method status observer

Watches IBus or fcitx status signals on D-Bus and republishes a normalized
status record on stdout, as length-framed native messages, or over WebSocket.
"""

__version__ = "0.1.0"

from imobridge.core import (
    BridgeSettings,
    ConfigService,
    DebouncedPublisher,
    Orchestrator,
    StateAggregator,
    StatusRecord,
    StatusUpdate,
)

__all__ = [
    "BridgeSettings",
    "ConfigService",
    "DebouncedPublisher",
    "Orchestrator",
    "StateAggregator",
    "StatusRecord",
    "StatusUpdate",
]
