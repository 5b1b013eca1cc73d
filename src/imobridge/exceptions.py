"""
Exception hierarchy shared by adapters, transports and the lifecycle manager.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all imo-bridge errors."""


class AdapterError(BridgeError):
    """Raised when an input method bus cannot be reached or queried at startup."""


class ProtocolParseError(BridgeError):
    """Raised when a single bus signal payload cannot be decoded."""


class UnsupportedInputMethodError(BridgeError):
    """Raised when no adapter exists for the requested input method name."""

    def __init__(self, name: str) -> None:
        super().__init__(f'Unsupported input method: "{name}"')
        self.name = name


class ActivationError(BridgeError):
    """Raised when the socket activation environment is inconsistent."""


class TransportError(BridgeError):
    """Raised when a transport cannot open its listener or stream."""


class FrameDecodeError(BridgeError):
    """Raised for a malformed length-prefixed frame on the inbound stream."""


__all__ = [
    "ActivationError",
    "AdapterError",
    "BridgeError",
    "FrameDecodeError",
    "ProtocolParseError",
    "TransportError",
    "UnsupportedInputMethodError",
]
