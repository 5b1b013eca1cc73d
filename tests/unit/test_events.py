import logging

import pytest

from imobridge.adapters.events import (
    EnableChanged,
    EngineChanged,
    InitialEngine,
    PropertyUpdate,
    dispatch,
)
from imobridge.core.contracts import StatusUpdate


def test_property_update_maps_label_and_text() -> None:
    event = PropertyUpdate(text="英数", label="Skk", extra={"label": "A_"})

    assert event.to_update() == StatusUpdate(
        enable=None, keyboard="Skk", short_state="A_", long_state="英数"
    )


def test_property_update_falls_back_to_short_label_for_long_state() -> None:
    update = PropertyUpdate(text="", extra={"label": "あ"}, enable=True).to_update()

    assert update.short_state == "あ"
    assert update.long_state == "あ"
    assert update.enable is True
    assert update.keyboard is None


def test_property_update_without_extra_label_leaves_state_unset() -> None:
    update = PropertyUpdate(text="", label="", extra={"menu": None}).to_update()

    assert update == StatusUpdate()


def test_engine_change_enables_and_names_keyboard() -> None:
    assert EngineChanged(name="Mozc").to_update() == StatusUpdate(enable=True, keyboard="Mozc")


def test_initial_engine_seeds_keyboard_only() -> None:
    assert InitialEngine(name="Mozc").to_update() == StatusUpdate(keyboard="Mozc")


def test_enable_change_carries_flag_only() -> None:
    assert EnableChanged(flag=False).to_update() == StatusUpdate(enable=False)


def test_dispatch_isolates_failing_handlers(caplog: pytest.LogCaptureFixture) -> None:
    received: list[StatusUpdate] = []

    def broken(update: StatusUpdate) -> None:
        raise RuntimeError("handler exploded")

    with caplog.at_level(logging.ERROR):
        dispatch([broken, received.append], EnableChanged(flag=True), source="test")

    assert received == [StatusUpdate(enable=True)]
    assert "update handler failed" in caplog.text
