"""Software-controlled system reset, delayed until registered blockers finish."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any


class ResetUnavailableError(RuntimeError):
    """No platform reset is available."""


class AlreadyRegisteredError(RuntimeError):
    """A blocker was registered more than once."""


class ResetController:
    """Coordinates blockers and performs the platform reset."""

    def __init__(self, reset_fn: Callable[[], Any] | None = None) -> None:
        self.reset_fn = reset_fn
        self.blockers: list[Blocker] = []

    async def system_reset(self) -> None:
        """Signal every blocker, wait for all of them, then reset the platform."""
        for blocker in self.blockers:
            blocker._reset_pending.set()
        for blocker in self.blockers:
            await blocker._unblocked.wait()
            blocker._unblocked.clear()
        if self.reset_fn is None:
            raise ResetUnavailableError("Cannot reset without NVIC")
        self.reset_fn()


class Blocker:
    """A participant that must finish its work before a reset happens."""

    def __init__(self) -> None:
        self._controller: ResetController | None = None
        self._reset_pending = asyncio.Event()
        self._unblocked = asyncio.Event()

    def register(self, controller: ResetController) -> None:
        """Register with ``controller``; a blocker can be registered only once."""
        if self._controller is not None:
            raise AlreadyRegisteredError("blocker is already registered")
        self._controller = controller
        controller.blockers.append(self)

    async def wait_for_reset(self, before_reset: Callable[[], Awaitable[None]]) -> None:
        """Wait for a pending reset, run ``before_reset``, then release the reset."""
        await self._reset_pending.wait()
        self._reset_pending.clear()
        await before_reset()
        self._unblocked.set()