from __future__ import annotations

import asyncio
import textwrap
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from imobridge.adapters import fcitx as fcitx_module
from imobridge.adapters import ibus as ibus_module
from imobridge.core.config import BridgeSettings
from imobridge.core.contracts import BridgeContext, StatusRecord, StatusUpdate, UpdateHandler
from imobridge.core.state import StateAggregator
from imobridge.exceptions import AdapterError, TransportError


def _write_yaml(path: Path, content: str) -> None:
    path.write_text(textwrap.dedent(content).strip() + "\n", encoding="utf-8")


async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll `predicate` on the running loop until it holds or `timeout` elapses."""

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


class RecordingPublisher:
    """Stand-in for DebouncedPublisher that records the calls transports make."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.scheduled: list[StatusRecord] = []

    def schedule(self, state: StatusRecord) -> None:
        self.scheduled.append(state)

    def cancel(self) -> None:
        self.calls.append("cancel")

    def schedule_shutdown(self) -> None:
        self.calls.append("schedule_shutdown")

    def cancel_shutdown(self) -> None:
        self.calls.append("cancel_shutdown")


class FakeAdapter:
    """Input method adapter double driven directly by the test."""

    name = "fake"

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.handlers: list[UpdateHandler] = []
        self.connected = False
        self.disconnect_calls = 0

    def on_event(self, handler: UpdateHandler) -> None:
        self.handlers.append(handler)

    async def connect(self) -> None:
        if self.fail:
            raise AdapterError("bus unavailable")
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False
        self.disconnect_calls += 1

    def emit(self, update: StatusUpdate) -> None:
        for handler in self.handlers:
            handler(update)


class FakeTransport:
    """Transport double that records broadcasts."""

    name = "fake-output"

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.context: BridgeContext | None = None
        self.broadcasts: list[StatusRecord] = []
        self.stop_calls = 0

    async def start(self, context: BridgeContext) -> None:
        if self.fail:
            raise TransportError("address already in use")
        self.context = context

    async def broadcast(self, state: StatusRecord) -> None:
        self.broadcasts.append(state)

    async def stop(self) -> None:
        self.stop_calls += 1


class FakeInterface:
    """Proxy interface double: ``on_<member>`` registers, ``call_get`` reads properties."""

    def __init__(self, properties: dict[str, Any] | None = None) -> None:
        self.callbacks: dict[str, Callable[..., None]] = {}
        self.properties: dict[str, Any] = properties or {}
        self.get_calls: list[tuple[str, str]] = []

    def __getattr__(self, name: str) -> Callable[[Callable[..., None]], None]:
        if name.startswith("on_"):
            member = name[3:]

            def register(callback: Callable[..., None]) -> None:
                self.callbacks[member] = callback

            return register
        raise AttributeError(name)

    async def call_get(self, interface: str, prop: str) -> Any:
        self.get_calls.append((interface, prop))
        value = self.properties[prop]
        if isinstance(value, Exception):
            raise value
        return value


class FakeProxyObject:
    def __init__(self, interfaces: dict[str, FakeInterface]) -> None:
        self.interfaces = interfaces

    def get_interface(self, name: str) -> FakeInterface:
        return self.interfaces[name]


class FakeBus:
    """Just enough of ``dbus_next.aio.MessageBus`` for the adapters."""

    def __init__(self, objects: dict[tuple[str, str], FakeProxyObject]) -> None:
        self.objects = objects
        self.message_handlers: list[Callable[[Any], Any]] = []
        self.disconnect_calls = 0

    async def introspect(self, name: str, path: str) -> str:
        if (name, path) not in self.objects:
            raise RuntimeError(f"The name {name} was not provided by any .service files")
        return f"<node name='{path}'/>"

    def get_proxy_object(self, name: str, path: str, introspection: str) -> FakeProxyObject:
        return self.objects[(name, path)]

    def add_message_handler(self, handler: Callable[[Any], Any]) -> None:
        self.message_handlers.append(handler)

    def remove_message_handler(self, handler: Callable[[Any], Any]) -> None:
        if handler in self.message_handlers:
            self.message_handlers.remove(handler)

    def disconnect(self) -> None:
        self.disconnect_calls += 1


@pytest.fixture
def fast_settings(tmp_path: Path) -> BridgeSettings:
    """Settings with short debounce windows and an isolated status file."""

    return BridgeSettings.model_validate(
        {
            "debounce": {"publish_seconds": 0.02, "idle_shutdown_seconds": 0.1},
            "status_file": str(tmp_path / "imo-current.txt"),
            "xinputrc": str(tmp_path / ".xinputrc"),
            "websocket": {"serve_http": False},
        }
    )


@pytest.fixture
def recording_publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def exit_requests() -> list[int]:
    return []


@pytest.fixture
def bridge_context(
    fast_settings: BridgeSettings,
    recording_publisher: RecordingPublisher,
    exit_requests: list[int],
) -> BridgeContext:
    return BridgeContext(
        settings=fast_settings,
        aggregator=StateAggregator(),
        publisher=recording_publisher,  # type: ignore[arg-type]
        request_exit=exit_requests.append,
    )


@dataclass
class IBusFixture:
    bus: FakeBus
    ibus: FakeInterface
    properties: FakeInterface
    panel: FakeInterface


@pytest.fixture
def ibus_bus() -> IBusFixture:
    """Fake IBus daemon exposing the core object and the panel object."""

    ibus = FakeInterface()
    properties = FakeInterface()
    panel = FakeInterface()
    bus = FakeBus(
        {
            (ibus_module.IBUS_NAME, ibus_module.IBUS_PATH): FakeProxyObject(
                {
                    ibus_module.IBUS_INTERFACE: ibus,
                    ibus_module.PROPERTIES_INTERFACE: properties,
                }
            ),
            (ibus_module.PANEL_NAME, ibus_module.PANEL_PATH): FakeProxyObject(
                {ibus_module.PANEL_INTERFACE: panel}
            ),
        }
    )
    return IBusFixture(bus=bus, ibus=ibus, properties=properties, panel=panel)


@dataclass
class KimpanelFixture:
    bus: FakeBus
    kimpanel: FakeInterface


@pytest.fixture
def kimpanel_bus() -> KimpanelFixture:
    """Fake session bus exposing the kimpanel input method object."""

    kimpanel = FakeInterface()
    bus = FakeBus(
        {
            (fcitx_module.KIMPANEL_NAME, fcitx_module.KIMPANEL_PATH): FakeProxyObject(
                {fcitx_module.KIMPANEL_INTERFACE: kimpanel}
            )
        }
    )
    return KimpanelFixture(bus=bus, kimpanel=kimpanel)


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    return _wait_until


@pytest.fixture
def write_yaml() -> Callable[[Path, str], None]:
    return _write_yaml


@pytest.fixture
def fake_adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()
