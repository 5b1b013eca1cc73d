"""
Fcitx adapter speaking the kimpanel protocol on the session bus.

``UpdateProperty`` carries a single colon separated string::

    /Fcitx/im:Skk:fcitx-skk:英数:menu,label=A_

i.e. ``key:label:icon:text[:extra]`` where the optional extra field holds
comma separated ``key=value`` pairs (a bare key maps to ``None``).
``Enable`` carries a boolean.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from dbus_next.aio import MessageBus

from ..core.contracts import UpdateHandler
from ..exceptions import AdapterError, ProtocolParseError
from .events import EnableChanged, PropertyUpdate, dispatch

logger = logging.getLogger(__name__)

KIMPANEL_NAME = "org.kde.kimpanel.inputmethod"
KIMPANEL_PATH = "/kimpanel"
KIMPANEL_INTERFACE = "org.kde.kimpanel.inputmethod"

_PAIR_RE = re.compile(r"^([^=]+)=(.*)$", re.DOTALL)

BusFactory = Callable[[], Awaitable[MessageBus]]


@dataclass(frozen=True, slots=True)
class KimpanelProperty:
    key: str
    label: str
    icon: str
    text: str
    extra: dict[str, str | None] = field(default_factory=dict)

    def to_event(self) -> PropertyUpdate:
        return PropertyUpdate(text=self.text, label=self.label, extra=dict(self.extra))


def parse_extra(raw: str) -> dict[str, str | None]:
    """Parse ``a=1,b`` into ``{"a": "1", "b": None}``, skipping unusable pairs."""
    result: dict[str, str | None] = {}
    for pair in raw.split(","):
        if not pair:
            continue
        match = _PAIR_RE.match(pair)
        if match:
            result[match.group(1)] = match.group(2)
        elif pair.startswith("="):
            logger.debug("Skipping extra pair without a key: %r", pair)
        else:
            result[pair] = None
    return result


def parse_property(raw: str) -> KimpanelProperty:
    """Split a kimpanel property string into its positional fields."""
    if not isinstance(raw, str):
        raise ProtocolParseError(f"UpdateProperty payload must be a string, got {raw!r}")
    parts = raw.split(":", 4)
    if len(parts) < 4:
        raise ProtocolParseError(f"UpdateProperty payload has {len(parts)} fields: {raw!r}")
    key, label, icon, text = parts[:4]
    extra = parse_extra(parts[4]) if len(parts) == 5 and parts[4] else {}
    return KimpanelProperty(key=key, label=label, icon=icon, text=text, extra=extra)


async def _connect_session_bus() -> MessageBus:
    return await MessageBus().connect()


class FcitxAdapter:
    """Observe fcitx / fcitx5 through the kimpanel interface."""

    name = "fcitx"

    def __init__(self, *, bus_factory: BusFactory | None = None) -> None:
        self._bus_factory = bus_factory or _connect_session_bus
        self._bus: MessageBus | None = None
        self._handlers: list[UpdateHandler] = []

    def on_event(self, handler: UpdateHandler) -> None:
        self._handlers.append(handler)

    async def connect(self) -> None:
        try:
            self._bus = await self._bus_factory()
            introspection = await self._bus.introspect(KIMPANEL_NAME, KIMPANEL_PATH)
            proxy = self._bus.get_proxy_object(KIMPANEL_NAME, KIMPANEL_PATH, introspection)
            interface = proxy.get_interface(KIMPANEL_INTERFACE)
            interface.on_update_property(self._on_update_property)
            interface.on_enable(self._on_enable)
        except Exception as exc:
            await self.disconnect()
            raise AdapterError(f"failed to initialize the fcitx observer: {exc}") from exc

    async def disconnect(self) -> None:
        if self._bus is None:
            return
        logger.info("Disconnecting session bus...")
        self._bus.disconnect()
        self._bus = None

    def _on_update_property(self, raw: str) -> None:
        try:
            event = parse_property(raw).to_event()
        except ProtocolParseError as exc:
            logger.warning("Dropping malformed UpdateProperty signal: %s", exc)
            return
        except Exception:
            logger.exception("Failed to decode UpdateProperty signal")
            return
        dispatch(self._handlers, event, source=self.name)

    def _on_enable(self, flag: bool) -> None:
        if not isinstance(flag, bool):
            logger.warning("Dropping Enable signal with non-boolean payload %r", flag)
            return
        dispatch(self._handlers, EnableChanged(flag=flag), source=self.name)


__all__ = ["FcitxAdapter", "KimpanelProperty", "parse_extra", "parse_property"]
