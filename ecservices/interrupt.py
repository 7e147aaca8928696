"""Passthrough of a device interrupt line to a host interrupt line."""

from __future__ import annotations

import asyncio
import enum
from typing import Protocol


class _InputWait(Protocol):
    async def wait_for_low(self) -> None: ...


class _OutputPin(Protocol):
    def set_low(self) -> None: ...

    def set_high(self) -> None: ...


class InterruptState(enum.Enum):
    """State of the interrupt passthrough."""

    IDLE = "idle"
    ASSERTED = "asserted"
    WAITING = "waiting"
    RESET = "reset"


class InterruptSignal:
    """Forwards device interrupts to the host.

    A device interrupt asserts the host line. The line is deasserted when the
    host's request arrives, and further device interrupts are held off until
    the response has been sent.
    """

    def __init__(self, int_in: _InputWait, int_out: _OutputPin) -> None:
        self.int_in = int_in
        self.int_out = int_out
        self._state = InterruptState.IDLE
        self._signal = asyncio.Event()

    @property
    def state(self) -> InterruptState:
        return self._state

    def _notify(self) -> None:
        self._signal.set()

    async def _wait_signal(self) -> None:
        await self._signal.wait()
        self._signal.clear()

    def deassert(self) -> None:
        """Deassert the host interrupt line if it is asserted."""
        if self._state is InterruptState.ASSERTED:
            self._state = InterruptState.WAITING
            self._notify()

    def release(self) -> None:
        """Let device interrupts through again after a deassert."""
        if self._state is InterruptState.WAITING:
            self._state = InterruptState.IDLE
            self._notify()

    def reset(self) -> None:
        """Deassert and release in one step."""
        self._state = InterruptState.RESET
        self._notify()

    async def process(self) -> None:
        """Handle one device interrupt from assertion through release."""
        await self.int_in.wait_for_low()

        self.int_out.set_low()
        self._state = InterruptState.ASSERTED

        await self._wait_signal()
        self.int_out.set_high()

        if self._state is InterruptState.RESET:
            self._state = InterruptState.IDLE
            return

        await self._wait_signal()
        self._state = InterruptState.IDLE