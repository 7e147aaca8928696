"""Charger state machine bridging a charge controller and the power policy.

The wrapper works with two collaborators:

*policy_state* is the charger's power-policy device. It has the coroutines
``state()`` and ``set_state(new_state)`` for the :class:`InternalState`,
``wait_command()``, which returns the next :class:`PolicyEvent`, and
``send_response(error)``, which takes ``None`` for an acknowledgement or a
:class:`ChargerError`.

*controller* is the charge controller. It has the coroutines ``wait_event()``,
which returns the next :class:`ChargerEvent`, ``charging_current(current_ma)``
and ``init_charger()``. Any exception they raise counts as a bus failure.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any

from .power_config import PowerCapability

_log = logging.getLogger(__name__)


class ChargerState(enum.Enum):
    """State of the charger as seen by the power policy."""

    INIT = "init"
    IDLE = "idle"
    PSU_ATTACHED = "psu_attached"
    PSU_DETACHED = "psu_detached"


class ChargerEvent(enum.Enum):
    """Events reported by the charge controller."""

    INITIALIZED = "initialized"
    PSU_ATTACHED = "psu_attached"
    PSU_DETACHED = "psu_detached"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class PolicyEvent:
    """A command from the power policy.

    With a ``configuration`` it asks the charger to apply that power
    capability; without one it is a request to initialise the charger.
    """

    configuration: PowerCapability | None = None

    @classmethod
    def init_request(cls) -> PolicyEvent:
        return cls(None)

    @classmethod
    def policy_configuration(cls, capability: PowerCapability) -> PolicyEvent:
        return cls(capability)

    @property
    def is_init_request(self) -> bool:
        return self.configuration is None


@dataclass(frozen=True)
class InternalState:
    """Charger state and the capability it was last given."""

    state: ChargerState = ChargerState.INIT
    capability: PowerCapability | None = None


class ChargerError(Exception):
    """A charger command failed."""


class ChargerBusError(ChargerError):
    """The charge controller could not be reached."""


class InvalidChargerStateError(ChargerError):
    """The command is not valid in the charger's current state."""

    def __init__(self, state: ChargerState) -> None:
        super().__init__(f"invalid charger state: {state.value}")
        self.state = state


_TRANSITIONS: dict[tuple[ChargerState, ChargerEvent], ChargerState] = {
    (ChargerState.INIT, ChargerEvent.INITIALIZED): ChargerState.IDLE,
    (ChargerState.IDLE, ChargerEvent.PSU_ATTACHED): ChargerState.PSU_ATTACHED,
    (ChargerState.IDLE, ChargerEvent.PSU_DETACHED): ChargerState.PSU_DETACHED,
    (ChargerState.PSU_ATTACHED, ChargerEvent.PSU_DETACHED): ChargerState.PSU_DETACHED,
    (ChargerState.PSU_DETACHED, ChargerEvent.PSU_ATTACHED): ChargerState.PSU_ATTACHED,
}


async def _first_of(first: Awaitable[Any], second: Awaitable[Any]) -> tuple[int, Any]:
    tasks = (asyncio.ensure_future(first), asyncio.ensure_future(second))
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
    if tasks[0] in done:
        return 0, tasks[0].result()
    return 1, tasks[1].result()


class ChargerWrapper:
    """Drives a charge controller from controller events and policy commands."""

    def __init__(self, policy_state: Any, controller: Any) -> None:
        self.policy_state = policy_state
        self.controller = controller

    async def get_state(self) -> InternalState:
        return await self.policy_state.state()

    async def set_state(self, new_state: InternalState) -> None:
        await self.policy_state.set_state(new_state)

    async def process_controller_event(self, event: ChargerEvent) -> None:
        """Advance the state machine on a controller event."""
        current = await self.get_state()
        if event is ChargerEvent.TIMEOUT:
            if current.state is not ChargerState.INIT:
                await self.set_state(InternalState(ChargerState.IDLE, None))
            return
        target = _TRANSITIONS.get((current.state, event))
        if target is not None:
            await self.set_state(InternalState(target, current.capability))

    async def _controller_call(self, call: Awaitable[Any]) -> None:
        try:
            await call
        except Exception as exc:
            _log.error("Error writing to charger: %s", exc)
            raise ChargerBusError(str(exc)) from exc

    async def _handle_command(self, state: ChargerState, event: PolicyEvent) -> None:
        if event.is_init_request:
            if state is not ChargerState.INIT:
                _log.error("Charger received request to initialize but it's already initialized!")
                raise InvalidChargerStateError(state)
            _log.info("Charger received request to initialize.")
            await self._controller_call(self.controller.init_charger())
            return

        config = event.configuration
        assert config is not None
        if state in (ChargerState.INIT, ChargerState.IDLE):
            _log.warning(
                "Charger detected new power policy configuration but charger is still initializing."
            )
            raise InvalidChargerStateError(state)
        if state is ChargerState.PSU_DETACHED and config.current_ma != 0:
            _log.warning(
                "Charger detected new non-zero power policy configuration "
                "but charger is in a PSU detached state."
            )
            raise InvalidChargerStateError(state)
        _log.info(
            "Charger detected new power policy configuration. Writing charge current %dmA.",
            config.current_ma,
        )
        await self._controller_call(self.controller.charging_current(config.current_ma))

    async def process_policy_command(self, event: PolicyEvent) -> ChargerError | None:
        """Carry out a policy command and send the response; return the error, if any."""
        state = (await self.get_state()).state
        error: ChargerError | None = None
        try:
            await self._handle_command(state, event)
        except ChargerError as exc:
            error = exc
        await self.policy_state.send_response(error)
        return error

    async def process(self) -> None:
        """Handle controller events and policy commands forever."""
        while True:
            source, item = await _first_of(
                self.controller.wait_event(), self.policy_state.wait_command()
            )
            if source == 0:
                _log.debug("New charger device event.")
                await self.process_controller_event(item)
            else:
                _log.debug("New charger policy command.")
                await self.process_policy_command(item)