"""
IBus adapter: panel property updates plus global engine changes.

IBus runs its own bus, so the address is resolved with ``ibus address``
before connecting. Two signals are observed:

* ``com.canonical.IBus.Panel.Private.PropertyUpdated`` on the panel object,
  whose variant payload is an ``IBusProperty`` struct. Index 4 is the label
  ``IBusText`` (long mode text) and index 11 the symbol ``IBusText`` (short
  mode label); the string sits at index 2 of each ``IBusText``.
* ``org.freedesktop.IBus.GlobalEngineChanged``. The signal only carries the
  engine id, so the ``GlobalEngine`` property is queried and the long name is
  read from index 3 of the returned ``IBusEngineDesc``.

Engine changes are delivered through a raw message handler on the bus.
Signal callbacks on the proxy interface are not reliable for this member; the
proxy subscription is still registered because it installs the match rule.

Monitor the traffic with::

    dbus-monitor --address $(ibus address) \
        "type='signal',path='/org/freedesktop/IBus',interface='org.freedesktop.IBus'"
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from dbus_next import Message, MessageType, Variant
from dbus_next.aio import MessageBus

from ..core.contracts import UpdateHandler
from ..exceptions import AdapterError, ProtocolParseError
from .events import EngineChanged, InitialEngine, PropertyUpdate, dispatch

logger = logging.getLogger(__name__)

IBUS_NAME = "org.freedesktop.IBus"
IBUS_PATH = "/org/freedesktop/IBus"
IBUS_INTERFACE = "org.freedesktop.IBus"

PANEL_NAME = "org.freedesktop.IBus.Panel"
PANEL_PATH = "/org/freedesktop/IBus/Panel"
PANEL_INTERFACE = "com.canonical.IBus.Panel.Private"

PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"
ENGINE_CHANGED_MEMBER = "GlobalEngineChanged"

# Positions inside the IBusProperty / IBusText / IBusEngineDesc structs.
PROPERTY_LABEL_PATH = (4, 2)
PROPERTY_SYMBOL_PATH = (11, 2)
ENGINE_LONGNAME_PATH = (3,)

BusFactory = Callable[[str], Awaitable[MessageBus]]
AddressResolver = Callable[[], Awaitable[str]]


def _unwrap(value: Any) -> Any:
    while isinstance(value, Variant):
        value = value.value
    return value


def _string_at(value: Any, path: tuple[int, ...], what: str) -> str:
    current = _unwrap(value)
    for index in path:
        try:
            current = _unwrap(current[index])
        except (IndexError, KeyError, TypeError) as exc:
            raise ProtocolParseError(f"{what}: no element at position {path}") from exc
    if not isinstance(current, str):
        raise ProtocolParseError(
            f"{what}: expected a string at position {path}, got {type(current).__name__}"
        )
    return current


def decode_panel_property(prop: Any) -> PropertyUpdate:
    """Extract the mode text and symbol label from an ``IBusProperty`` payload."""
    text = _string_at(prop, PROPERTY_LABEL_PATH, "IBusProperty label")
    symbol = _string_at(prop, PROPERTY_SYMBOL_PATH, "IBusProperty symbol")
    return PropertyUpdate(text=text, extra={"label": symbol}, enable=True)


def decode_engine_name(desc: Any) -> str:
    """Return the display name stored in an ``IBusEngineDesc`` value."""
    return _string_at(desc, ENGINE_LONGNAME_PATH, "IBusEngineDesc")


async def resolve_ibus_address() -> str:
    """Ask the ``ibus`` command line tool for the private bus address."""
    process = await asyncio.create_subprocess_exec(
        "ibus",
        "address",
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        raise AdapterError(
            f"'ibus address' exited with {process.returncode}: "
            f"{stderr.decode(errors='replace').strip()}"
        )
    address = stdout.decode().strip()
    if not address or address == "(null)":
        raise AdapterError("IBus daemon is not running.")
    return address


async def _connect_bus(address: str) -> MessageBus:
    return await MessageBus(bus_address=address).connect()


class IBusAdapter:
    """Observe the IBus panel and global engine."""

    name = "ibus"

    def __init__(
        self,
        *,
        bus_factory: BusFactory | None = None,
        address_resolver: AddressResolver | None = None,
    ) -> None:
        self._bus_factory = bus_factory or _connect_bus
        self._address_resolver = address_resolver or resolve_ibus_address
        self._bus: MessageBus | None = None
        self._properties: Any = None
        self._handlers: list[UpdateHandler] = []
        self._tasks: set[asyncio.Task[None]] = set()

    def on_event(self, handler: UpdateHandler) -> None:
        self._handlers.append(handler)

    async def connect(self) -> None:
        try:
            await self._connect()
        except AdapterError:
            await self.disconnect()
            raise
        except Exception as exc:
            await self.disconnect()
            raise AdapterError(f"failed to initialize the ibus observer: {exc}") from exc

    async def _connect(self) -> None:
        address = await self._address_resolver()
        logger.info('IBus bus address: "%s"', address)
        self._bus = await self._bus_factory(address)

        introspection = await self._bus.introspect(IBUS_NAME, IBUS_PATH)
        ibus_object = self._bus.get_proxy_object(IBUS_NAME, IBUS_PATH, introspection)
        ibus_interface = ibus_object.get_interface(IBUS_INTERFACE)
        self._properties = ibus_object.get_interface(PROPERTIES_INTERFACE)
        ibus_interface.on_global_engine_changed(self._on_global_engine_changed)

        engine_name = await self._query_engine_name()
        logger.info('globalEngine: "%s"', engine_name)
        dispatch(self._handlers, InitialEngine(name=engine_name), source=self.name)

        introspection = await self._bus.introspect(PANEL_NAME, PANEL_PATH)
        panel_object = self._bus.get_proxy_object(PANEL_NAME, PANEL_PATH, introspection)
        panel_interface = panel_object.get_interface(PANEL_INTERFACE)
        panel_interface.on_property_updated(self._on_property_updated)

        self._bus.add_message_handler(self._on_message)

    async def disconnect(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        if self._bus is None:
            return
        logger.info("Disconnecting IBus bus...")
        self._bus.remove_message_handler(self._on_message)
        self._bus.disconnect()
        self._bus = None
        self._properties = None

    async def _query_engine_name(self) -> str:
        if self._properties is None:
            raise AdapterError("IBus properties interface is not available.")
        value = await self._properties.call_get(IBUS_INTERFACE, "GlobalEngine")
        return decode_engine_name(value)

    def _on_global_engine_changed(self, engine_id: str) -> None:
        logger.debug("GlobalEngineChanged via proxy: %s", engine_id)

    def _on_property_updated(self, prop: Any) -> None:
        try:
            event = decode_panel_property(prop)
        except ProtocolParseError as exc:
            logger.warning("Dropping malformed PropertyUpdated signal: %s", exc)
            return
        except Exception:
            logger.exception("Failed to decode PropertyUpdated signal")
            return
        dispatch(self._handlers, event, source=self.name)

    def _on_message(self, message: Message) -> None:
        if (
            message.message_type == MessageType.SIGNAL
            and message.sender == IBUS_NAME
            and message.path == IBUS_PATH
            and message.interface == IBUS_INTERFACE
            and message.member == ENGINE_CHANGED_MEMBER
        ):
            task = asyncio.ensure_future(self._refresh_engine())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _refresh_engine(self) -> None:
        try:
            engine_name = await self._query_engine_name()
        except ProtocolParseError as exc:
            logger.warning("Dropping malformed GlobalEngine value: %s", exc)
            return
        except Exception:
            logger.exception("GlobalEngine query failed")
            return
        dispatch(self._handlers, EngineChanged(name=engine_name), source=self.name)


__all__ = ["IBusAdapter", "decode_engine_name", "decode_panel_property", "resolve_ibus_address"]
