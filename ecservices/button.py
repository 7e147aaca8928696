"""Power button with press-duration measurement and interpretation."""

from __future__ import annotations

import asyncio
import enum
import time
from dataclasses import dataclass, field

from .debounce import Debouncer, _InputPin

_RELEASE_POLL_INTERVAL = 0.01


@dataclass
class ButtonConfig:
    """Debouncer and timing thresholds (seconds) for a button."""

    debouncer: Debouncer = field(default_factory=Debouncer)
    short_press_threshold: float = 2.0
    timeout: float = 5.0


@dataclass(frozen=True)
class ButtonState:
    """Debounced button state and the monotonic time it was observed."""

    pressed: bool
    instant: float


class Message(enum.Enum):
    """Interpretation of a button press."""

    LONG_PRESS = "long_press"
    SHORT_PRESS = "short_press"
    PRESS_AND_HOLD = "press_and_hold"


class Button:
    """A button on a GPIO pin."""

    def __init__(self, gpio: _InputPin, config: ButtonConfig | None = None) -> None:
        self.gpio = gpio
        self.config = config if config is not None else ButtonConfig()

    async def get_button_state(self) -> ButtonState:
        """Wait for the debounced state to change and return it."""
        pressed = await self.config.debouncer.debounce(self.gpio)
        return ButtonState(pressed, time.monotonic())

    async def get_press_duration(self) -> float | None:
        """Return how long the button was held, capped by the timeout.

        Returns None if the next state change is a release.
        """
        if not (await self.get_button_state()).pressed:
            return None
        start = time.monotonic()

        async def wait_release() -> float:
            while (await self.get_button_state()).pressed:
                await asyncio.sleep(_RELEASE_POLL_INTERVAL)
            return time.monotonic()

        try:
            end = await asyncio.wait_for(wait_release(), self.config.timeout)
        except asyncio.TimeoutError:
            end = time.monotonic()
        return end - start


def _millis(seconds: float) -> int:
    return int(seconds * 1000)


async def check_button_press(button: Button) -> Message | None:
    """Measure one press and classify it; None if the press was not observed."""
    timeout = button.config.timeout
    short_press_threshold = button.config.short_press_threshold
    duration = await button.get_press_duration()
    if duration is None:
        return None
    if _millis(duration) >= _millis(timeout):
        return Message.PRESS_AND_HOLD
    if _millis(duration) >= _millis(short_press_threshold):
        return Message.LONG_PRESS
    return Message.SHORT_PRESS