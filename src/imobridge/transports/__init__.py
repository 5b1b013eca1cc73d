"""Output transports and the factory that picks one by mode."""

from __future__ import annotations

from collections.abc import Callable

from ..core.config import BridgeSettings
from ..core.contracts import Transport
from .console import ConsoleTransport
from .native_message import NativeMessageTransport
from .websocket_gateway import WebsocketGateway

TRANSPORT_REGISTRY: dict[str, Callable[[BridgeSettings], Transport]] = {
    "stdout": ConsoleTransport,
    "native-message": NativeMessageTransport,
    "websocket": WebsocketGateway,
}

MODE_ALIASES: dict[str, str] = {
    "nativemessage": "native-message",
    "ws": "websocket",
}


def resolve_mode(label: str) -> str:
    """Return the canonical output mode for CLI-friendly aliases."""
    normalised = label.strip().lower()
    return MODE_ALIASES.get(normalised, normalised)


def create_transport(settings: BridgeSettings) -> Transport:
    try:
        factory = TRANSPORT_REGISTRY[settings.mode]
    except KeyError as exc:  # pragma: no cover - settings validation guards modes
        raise ValueError(f'Unsupported output mode: "{settings.mode}"') from exc
    return factory(settings)


__all__ = [
    "MODE_ALIASES",
    "TRANSPORT_REGISTRY",
    "ConsoleTransport",
    "NativeMessageTransport",
    "WebsocketGateway",
    "create_transport",
    "resolve_mode",
]
