"""Bridge between a Type-C PD controller, the PD service and the power policy.

A :class:`ControllerWrapper` works with three collaborators.

*pd_controller* is the controller's registration with the PD service:
``lookup_global_port(local)`` and ``lookup_local_port(global_port)`` map port
ids and raise :class:`PdError` for unknown ports; the coroutines
``notify_ports(ports)``, ``wait_command()`` and ``send_response(kind, result)``
exchange events, commands and results with the service. A PD command is one of
``(PORT, global_port, PORT_STATUS | CLEAR_EVENTS)``, ``(CONTROLLER, STATUS)``
or ``(LPM, payload)``; a result is either the value asked for or a
:class:`PdError`.

*power* holds one power-policy device per local port. Each has the coroutines
``state()``, returning a :class:`StateKind`, ``attach()``, ``detach()``,
``disconnect()``, ``notify_consumer_power_capability(capability)``,
``request_provider_power_capability(capability)``, ``wait_request()``, which
returns a ``(kind, capability)`` pair with ``kind`` one of
:data:`CONNECT_CONSUMER`, :data:`CONNECT_PROVIDER` or :data:`DISCONNECT`, and
``send_response(error)``, which takes ``None`` for completion or a
:class:`PolicyError`. Failures raise :class:`PolicyError`.

*controller* is the PD controller driver with the coroutines
``wait_port_event()``, ``clear_port_events(port)``, ``get_port_status(port)``,
``enable_sink_path(port, enable)``, ``set_sourcing(port, enable)``,
``set_source_current(port, current, signal_event)``,
``request_pr_swap(port, role)`` and ``get_controller_status()``. Any exception
they raise counts as a failure of the controller.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Iterable
from typing import Any

from .power_config import PowerCapability
from .power_policy import PolicyError
from .typec_service import CONTROLLER, PORT, InvalidPortError, PdError, PortEventKind, PortStatus

_log = logging.getLogger(__name__)

LPM = "lpm"
STATUS = "status"
PORT_STATUS = "status"
CLEAR_EVENTS = "clear_events"

CONNECT_CONSUMER = "connect_consumer"
CONNECT_PROVIDER = "connect_provider"
DISCONNECT = "disconnect"

DUAL_ROLE_CONSUMER_THRESHOLD_MW = 15000
"""Sinking from a dual-role supply at or below this power is avoided (e.g. a phone)."""

POWER_CAPABILITY_USB_DEFAULT_USB2 = PowerCapability(voltage_mv=5000, current_ma=500)
POWER_CAPABILITY_USB_DEFAULT_USB3 = PowerCapability(voltage_mv=5000, current_ma=900)
POWER_CAPABILITY_5V_1A5 = PowerCapability(voltage_mv=5000, current_ma=1500)
POWER_CAPABILITY_5V_3A0 = PowerCapability(voltage_mv=5000, current_ma=3000)


class TypecCurrent(enum.Enum):
    """Type-C source current advertisement."""

    USB_DEFAULT = "usb_default"
    CURRENT_1A5 = "1a5"
    CURRENT_3A0 = "3a0"


DEFAULT_SOURCE_CURRENT = TypecCurrent.CURRENT_1A5

_PROVIDER_CURRENTS = {
    POWER_CAPABILITY_USB_DEFAULT_USB2: TypecCurrent.USB_DEFAULT,
    POWER_CAPABILITY_USB_DEFAULT_USB3: TypecCurrent.USB_DEFAULT,
    POWER_CAPABILITY_5V_1A5: TypecCurrent.CURRENT_1A5,
    POWER_CAPABILITY_5V_3A0: TypecCurrent.CURRENT_3A0,
}


class PowerRole(enum.Enum):
    """USB power role."""

    SINK = "sink"
    SOURCE = "source"


class StateKind(enum.Enum):
    """State of a power-policy device."""

    DETACHED = "detached"
    IDLE = "idle"
    CONNECTED_CONSUMER = "connected_consumer"
    CONNECTED_PROVIDER = "connected_provider"


def _failed() -> PdError:
    return PdError("failed")


def _invalid_mode() -> PdError:
    return PdError("invalid mode")


async def _first_of(*awaitables: Awaitable[Any]) -> tuple[int, Any]:
    """Wait for the first awaitable to finish; return its index and result."""
    tasks = [asyncio.ensure_future(aw) for aw in awaitables]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
    index = next(i for i, task in enumerate(tasks) if task in done)
    return index, tasks[index].result()


class ControllerWrapper:
    """Wraps a PD controller with message handling and power-policy integration."""

    def __init__(self, pd_controller: Any, power: Iterable[Any], controller: Any) -> None:
        self.pd_controller = pd_controller
        self.power = tuple(power)
        self.controller = controller
        self.active_events = [PortEventKind.NONE] * len(self.power)

    @property
    def num_ports(self) -> int:
        return len(self.power)

    def get_power_device(self, port: int) -> Any:
        """Return the power device of local ``port``."""
        if not 0 <= port < self.num_ports:
            raise InvalidPortError(port)
        return self.power[port]

    # Port events

    async def _attach(self, power: Any) -> None:
        try:
            await power.attach()
        except PolicyError as exc:
            _log.error("Error attaching power device: %s", exc)
            raise _failed() from exc

    async def _detach(self, power: Any) -> None:
        try:
            await power.detach()
        except PolicyError as exc:
            _log.error("Error detaching power device: %s", exc)
            raise _failed() from exc

    async def _controller_call(self, call: Awaitable[Any], message: str) -> Any:
        try:
            return await call
        except Exception as exc:
            _log.error("%s: %s", message, exc)
            raise _failed() from exc

    async def _process_plug_event(self, power: Any, port: int, status: PortStatus) -> None:
        if port > self.num_ports:
            raise InvalidPortError(port)
        if status.connected:
            _log.info("Plug inserted")
            if await power.state() is not StateKind.DETACHED:
                _log.warning("Power device not in detached state, recovering")
                await self._detach(power)
            if await power.state() is not StateKind.DETACHED:
                _log.error("Power device not in detached state")
                raise _invalid_mode()
            await self._attach(power)
        else:
            _log.info("Plug removed")
            await self._controller_call(
                self.controller.set_sourcing(port, True),
                "Error setting source enable to default",
            )
            await self._controller_call(
                self.controller.set_source_current(port, DEFAULT_SOURCE_CURRENT, False),
                "Error setting source current to default",
            )
            await self._detach(power)

    async def process_event(self) -> None:
        """Handle pending events on every port, then notify the PD service."""
        pending: set[Any] = set()
        for port in range(self.num_ports):
            try:
                global_port = self.pd_controller.lookup_global_port(port)
            except PdError:
                _log.error("Invalid local port %d", port)
                continue
            try:
                event = await self.controller.clear_port_events(port)
            except Exception as exc:
                _log.error("Error clearing port events: %s", exc)
                continue
            if event == PortEventKind.NONE:
                self.active_events[port] = PortEventKind.NONE
                continue

            pending.add(global_port)
            try:
                status = await self.controller.get_port_status(port)
            except Exception as exc:
                _log.error("Port%s: Error getting port status: %s", global_port, exc)
                continue
            power = self.get_power_device(port)

            try:
                if PortEventKind.PLUG_INSERTED_OR_REMOVED in event:
                    await self._process_plug_event(power, port, status)
                if PortEventKind.NEW_POWER_CONTRACT_AS_CONSUMER in event:
                    await self.process_new_consumer_contract(power, port, status)
                if PortEventKind.NEW_POWER_CONTRACT_AS_PROVIDER in event:
                    await self.process_new_provider_contract(global_port, power, status)
            except PdError as exc:
                _log.error("Port%s: Error processing event: %s", global_port, exc)
                continue

            self.active_events[port] = event

        await self.pd_controller.notify_ports(frozenset(pending))

    # Power contracts

    async def process_new_consumer_contract(
        self, power: Any, port: int, status: PortStatus
    ) -> None:
        """Offer a new sink contract to the power policy, or swap roles if too weak."""
        _log.info("New consumer contract")
        capability = status.available_sink_contract
        if (
            capability is not None
            and status.dual_power
            and capability.max_power_mw() <= DUAL_ROLE_CONSUMER_THRESHOLD_MW
        ):
            _log.info("Port%d: Dual-role supply with low power capability, requesting PR swap", port)
            await self._controller_call(
                self.controller.request_pr_swap(port, PowerRole.SOURCE),
                "Error requesting PR swap",
            )
            return

        if await power.state() is StateKind.CONNECTED_PROVIDER:
            return
        if await power.state() is StateKind.DETACHED:
            await self._attach(power)
        if await power.state() not in (StateKind.IDLE, StateKind.CONNECTED_CONSUMER):
            _log.error("Power device not in detached state")
            raise _invalid_mode()
        try:
            await power.notify_consumer_power_capability(capability)
        except PolicyError as exc:
            _log.error("Error setting power contract: %s", exc)
            raise _failed() from exc

    async def process_new_provider_contract(
        self, port: Any, power: Any, status: PortStatus
    ) -> None:
        """Ask the power policy for a provider capability, or disconnect if not needed."""
        if port > self.num_ports:
            raise InvalidPortError(port)
        if await power.state() is StateKind.CONNECTED_CONSUMER:
            return
        if await power.state() is StateKind.DETACHED:
            await self._attach(power)

        contract = status.available_source_contract
        state = await power.state()
        try:
            if state is StateKind.IDLE:
                if contract is not None:
                    await power.request_provider_power_capability(contract)
            elif state is StateKind.CONNECTED_PROVIDER:
                if contract is not None:
                    await power.request_provider_power_capability(contract)
                else:
                    await power.disconnect()
            else:
                _log.error("Power device not in detached state")
                raise _invalid_mode()
        except PolicyError as exc:
            _log.error("Error setting power contract: %s", exc)
            raise _failed() from exc

    # Power commands

    async def _process_disconnect(self, port: int, power: Any) -> None:
        state = await power.state()
        if state is StateKind.CONNECTED_CONSUMER:
            _log.info("Port%d: Disconnect consumer", port)
            try:
                await self.controller.enable_sink_path(port, False)
            except Exception as exc:
                _log.error("Error disabling sink path: %s", exc)
                await power.send_response(PolicyError("failed"))
                raise _failed() from exc
        elif state is StateKind.CONNECTED_PROVIDER:
            _log.info("Port%d: Disconnect provider", port)
            try:
                await self.controller.set_sourcing(port, False)
            except Exception as exc:
                _log.error("Error disabling source path: %s", exc)
                await power.send_response(PolicyError("failed"))
                raise _failed() from exc
            await self._controller_call(
                self.controller.set_source_current(port, DEFAULT_SOURCE_CURRENT, False),
                "Error setting source current to default",
            )

    async def _process_connect_provider(
        self, port: int, capability: PowerCapability, power: Any
    ) -> None:
        _log.info("Port%d: Connect provider: %r", port, capability)
        current = _PROVIDER_CURRENTS.get(capability)
        if current is None:
            _log.error("Invalid power capability")
            await power.send_response(PolicyError(f"cannot provide {capability}"))
            raise PdError("invalid params")
        try:
            await self.controller.set_source_current(port, current, True)
        except Exception as exc:
            _log.error("Error setting source capability: %s", exc)
            await power.send_response(PolicyError("failed"))
            raise _failed() from exc

    async def _wait_power_command(self) -> tuple[Any, int]:
        index, command = await _first_of(*(device.wait_request() for device in self.power))
        return command, index

    async def process_power_command(self, port: int, command: tuple[str, Any]) -> None:
        """Carry out a power-policy command on local ``port`` and respond to it."""
        try:
            power = self.get_power_device(port)
        except PdError:
            _log.error("Port%d: Error getting power device for port", port)
            return

        kind, capability = command
        if kind == CONNECT_CONSUMER:
            _log.info("Port%d: Connect consumer: %r", port, capability)
            try:
                await self.controller.enable_sink_path(port, True)
            except Exception as exc:
                _log.error("Error enabling sink path: %s", exc)
                await power.send_response(PolicyError("failed"))
                return
        elif kind == CONNECT_PROVIDER:
            try:
                await self._process_connect_provider(port, capability, power)
            except PdError:
                _log.error("Error processing connect provider")
                return
        elif kind == DISCONNECT:
            try:
                await self._process_disconnect(port, power)
            except PdError:
                _log.error("Error processing disconnect")
                return
        else:
            raise ValueError(f"unknown power command {kind!r}")

        await power.send_response(None)

    # PD commands

    async def _process_port_command(self, global_port: Any, data: str) -> None:
        try:
            local_port = self.pd_controller.lookup_local_port(global_port)
        except PdError:
            await self.pd_controller.send_response(PORT, InvalidPortError(global_port))
            return

        result: Any
        if data == PORT_STATUS:
            try:
                result = await self.controller.get_port_status(local_port)
            except PdError as exc:
                result = exc
            except Exception:
                result = _failed()
        elif data == CLEAR_EVENTS:
            result = self.active_events[0]
            self.active_events[0] = PortEventKind.NONE
        else:
            raise ValueError(f"unknown port command {data!r}")
        await self.pd_controller.send_response(PORT, result)

    async def _process_controller_command(self, data: Any) -> None:
        result: Any
        if data == STATUS:
            try:
                result = await self.controller.get_controller_status()
            except Exception:
                result = _failed()
        else:
            result = PdError("unrecognized command")
        await self.pd_controller.send_response(CONTROLLER, result)

    async def process_pd_command(self, command: tuple[Any, ...]) -> None:
        """Answer a command from the PD service."""
        kind = command[0]
        if kind == PORT:
            await self._process_port_command(command[1], command[2])
        elif kind == CONTROLLER:
            await self._process_controller_command(command[1])
        elif kind == LPM:
            await self.pd_controller.send_response(LPM, PdError("unrecognized command"))
        else:
            raise ValueError(f"unknown PD command kind {kind!r}")

    # Top level

    async def _wait_port_event(self) -> bool:
        try:
            await self.controller.wait_port_event()
        except Exception as exc:
            _log.error("Error waiting for port event: %s", exc)
            return False
        return True

    async def process(self) -> None:
        """Handle the next port event, power command or PD command."""
        source, item = await _first_of(
            self._wait_port_event(),
            self._wait_power_command(),
            self.pd_controller.wait_command(),
        )
        if source == 0:
            if item:
                await self.process_event()
        elif source == 1:
            command, port = item
            await self.process_power_command(port, command)
        else:
            await self.process_pd_command(item)

    async def register(self, registry: Any) -> None:
        """Register the power devices and the PD controller with ``registry``."""
        for device in self.power:
            await registry.register_power_device(device)
        await registry.register_controller(self.pd_controller)