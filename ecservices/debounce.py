"""Integrating debouncer for a button input."""

from __future__ import annotations

import asyncio
import enum
from typing import Protocol


class ActiveState(enum.Enum):
    """Which pin level means the button is pressed."""

    ACTIVE_LOW = "active_low"
    ACTIVE_HIGH = "active_high"


class _InputPin(Protocol):
    def is_low(self) -> bool: ...

    def is_high(self) -> bool: ...


class Debouncer:
    """Debounces a pin by integrating samples up to a threshold."""

    def __init__(
        self,
        threshold: int = 3,
        sample_interval: float = 0.01,
        active_state: ActiveState = ActiveState.ACTIVE_LOW,
    ) -> None:
        self.threshold = threshold
        self.sample_interval = sample_interval
        self.active_state = active_state
        self._integrator = 0
        self._pressed = False

    @property
    def pressed(self) -> bool:
        """The last debounced state."""
        return self._pressed

    def _sample(self, gpio: _InputPin) -> bool:
        try:
            if self.active_state is ActiveState.ACTIVE_LOW:
                return bool(gpio.is_low())
            return bool(gpio.is_high())
        except Exception:
            return False

    async def debounce(self, gpio: _InputPin) -> bool:
        """Sample until the debounced state changes; return True for pressed."""
        while True:
            if self._sample(gpio):
                if self._integrator < self.threshold:
                    self._integrator += 1
            elif self._integrator > 0:
                self._integrator -= 1

            if self._integrator >= self.threshold and not self._pressed:
                self._pressed = True
                return True
            if self._integrator == 0 and self._pressed:
                self._pressed = False
                return False

            await asyncio.sleep(self.sample_interval)