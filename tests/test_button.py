import asyncio

import pytest

from ecservices.button import Button, ButtonConfig, Message, check_button_press
from ecservices.debounce import ActiveState, Debouncer


class ManualPin:
    """Active-low pin controlled by a ``pressed`` flag."""

    def __init__(self, pressed=False):
        self.pressed = pressed

    def is_low(self):
        return self.pressed

    def is_high(self):
        return not self.pressed


def make_button(pin, short_press_threshold, timeout):
    debouncer = Debouncer(1, 0.001, ActiveState.ACTIVE_LOW)
    return Button(pin, ButtonConfig(debouncer, short_press_threshold, timeout))


def release_after(pin, delay):
    def release():
        pin.pressed = False

    asyncio.get_running_loop().call_later(delay, release)


def test_default_config():
    config = ButtonConfig()
    assert config.short_press_threshold == pytest.approx(2.0)
    assert config.timeout == pytest.approx(5.0)
    assert config.debouncer.threshold == 3


@pytest.mark.asyncio
async def test_get_button_state_pressed():
    button = make_button(ManualPin(True), 0.5, 1.0)
    state = await button.get_button_state()
    assert state.pressed is True


@pytest.mark.asyncio
async def test_short_press():
    pin = ManualPin(True)
    button = make_button(pin, 0.5, 1.0)
    release_after(pin, 0.01)
    assert await check_button_press(button) is Message.SHORT_PRESS


@pytest.mark.asyncio
async def test_long_press():
    pin = ManualPin(True)
    button = make_button(pin, 0.05, 1.0)
    release_after(pin, 0.15)
    assert await check_button_press(button) is Message.LONG_PRESS


@pytest.mark.asyncio
async def test_press_and_hold_then_release_ignored():
    pin = ManualPin(True)
    button = make_button(pin, 0.02, 0.05)
    assert await check_button_press(button) is Message.PRESS_AND_HOLD
    pin.pressed = False
    assert await check_button_press(button) is None


@pytest.mark.asyncio
async def test_press_duration_is_capped_by_timeout():
    pin = ManualPin(True)
    button = make_button(pin, 0.02, 0.05)
    duration = await button.get_press_duration()
    assert 0.05 <= duration < 0.5


@pytest.mark.asyncio
async def test_press_duration_measures_hold():
    pin = ManualPin(True)
    button = make_button(pin, 0.5, 1.0)
    release_after(pin, 0.1)
    duration = await button.get_press_duration()
    assert 0.08 <= duration < 1.0