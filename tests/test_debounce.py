import asyncio

import pytest

from ecservices.debounce import ActiveState, Debouncer


class ScriptedPin:
    """Pin whose levels (True = high) come from a script; the last one repeats."""

    def __init__(self, levels):
        self._levels = list(levels)
        self.reads = 0

    def _next(self):
        self.reads += 1
        if len(self._levels) > 1:
            return self._levels.pop(0)
        return self._levels[0]

    def is_low(self):
        return not self._next()

    def is_high(self):
        return self._next()


class BrokenPin:
    def is_low(self):
        raise OSError("pin read failed")

    def is_high(self):
        raise OSError("pin read failed")


def fast(threshold=3, active_state=ActiveState.ACTIVE_LOW):
    return Debouncer(threshold, 0.0, active_state)


@pytest.mark.asyncio
async def test_active_low_press_after_threshold_samples():
    pin = ScriptedPin([False])
    debouncer = fast()
    assert await debouncer.debounce(pin) is True
    assert pin.reads == debouncer.threshold
    assert debouncer.pressed


@pytest.mark.asyncio
async def test_active_high_press():
    pin = ScriptedPin([True])
    debouncer = fast(active_state=ActiveState.ACTIVE_HIGH)
    assert await debouncer.debounce(pin) is True
    assert pin.reads == debouncer.threshold


@pytest.mark.asyncio
async def test_press_then_release():
    pin = ScriptedPin([False, False, False, True])
    debouncer = fast()
    assert await debouncer.debounce(pin) is True
    assert await debouncer.debounce(pin) is False
    assert not debouncer.pressed
    assert pin.reads == 2 * debouncer.threshold


@pytest.mark.asyncio
async def test_glitch_delays_press():
    pin = ScriptedPin([False, True, False, False, False])
    debouncer = fast()
    assert await debouncer.debounce(pin) is True
    assert pin.reads == 5


@pytest.mark.asyncio
async def test_unpressed_pin_never_settles():
    debouncer = fast()
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(debouncer.debounce(ScriptedPin([True])), 0.05)
    assert not debouncer.pressed


@pytest.mark.asyncio
async def test_read_error_counts_as_released():
    debouncer = fast(threshold=1)
    assert await debouncer.debounce(ScriptedPin([False])) is True
    assert await debouncer.debounce(BrokenPin()) is False


def test_defaults():
    debouncer = Debouncer()
    assert debouncer.threshold == 3
    assert debouncer.sample_interval == pytest.approx(0.01)
    assert debouncer.active_state is ActiveState.ACTIVE_LOW