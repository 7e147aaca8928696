"""Type-C service: caches port status and reports debug accessory changes.

The service works through a *context* with these coroutines:
``get_port_event(port)``, ``get_port_status(port)``,
``get_controller_status(controller)``, ``send_external_response(kind, result)``,
``get_unhandled_events()``, which returns a collection of global port ids with
pending events, and ``wait_external_command()``, which returns a command as a
``(kind, target)`` pair with ``kind`` :data:`CONTROLLER` or :data:`PORT`.
Failures in the context raise :class:`PdError`; an external response carries
either the requested status or the :class:`PdError` that occurred.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from .power_config import PowerCapability

_log = logging.getLogger(__name__)

MAX_SUPPORTED_PORTS = 4

CONTROLLER = "controller"
PORT = "port"


class PdError(Exception):
    """A USB-PD operation failed."""


class InvalidPortError(PdError):
    """The port id is out of range."""

    def __init__(self, port: int | None = None) -> None:
        super().__init__(f"invalid port {port}")
        self.port = port


@dataclass(frozen=True)
class PortStatus:
    """Status of a Type-C port."""

    connected: bool = False
    debug_accessory: bool = False
    available_source_contract: PowerCapability | None = None
    available_sink_contract: PowerCapability | None = None
    dual_power: bool = False


class PortEventKind(enum.Flag):
    """Events that occurred on a port."""

    NONE = 0
    PLUG_INSERTED_OR_REMOVED = 1
    NEW_POWER_CONTRACT_AS_CONSUMER = 2
    NEW_POWER_CONTRACT_AS_PROVIDER = 4


@dataclass(frozen=True)
class DebugAccessoryMessage:
    """A debug accessory was connected or disconnected on ``port``."""

    port: int
    connected: bool


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


class TypeCService:
    """Processes port events and external commands for the Type-C subsystem."""

    def __init__(
        self, context: Any, send: Callable[[DebugAccessoryMessage], Any] | None = None
    ) -> None:
        self.context = context
        self.send = send
        self._port_status = [PortStatus() for _ in range(MAX_SUPPORTED_PORTS)]

    @staticmethod
    def _check_port(port_id: int) -> None:
        if not 0 <= port_id < MAX_SUPPORTED_PORTS:
            raise InvalidPortError(port_id)

    def get_cached_port_status(self, port_id: int) -> PortStatus:
        self._check_port(port_id)
        return self._port_status[port_id]

    def set_cached_port_status(self, port_id: int, status: PortStatus) -> None:
        self._check_port(port_id)
        self._port_status[port_id] = status

    async def _send(self, message: DebugAccessoryMessage) -> None:
        if self.send is None:
            return
        try:
            result = self.send(message)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            _log.error("Failed to send debug accessory message: %s", exc)

    async def process_port_events(self, port_id: int) -> None:
        """Refresh the cached status of a port, reporting debug accessory changes."""
        event = await self.context.get_port_event(port_id)
        status = await self.context.get_port_status(port_id)
        old_status = self.get_cached_port_status(port_id)

        _log.debug("Port%d: Event: %r", port_id, event)
        _log.debug("Port%d Previous status: %r", port_id, old_status)
        _log.debug("Port%d Status: %r", port_id, status)

        connection_changed = status.connected != old_status.connected
        if connection_changed and (status.debug_accessory or old_status.debug_accessory):
            _log.debug(
                "Port%d: Debug accessory %s",
                port_id,
                "connected" if status.connected else "disconnected",
            )
            await self._send(DebugAccessoryMessage(port_id, status.connected))

        self.set_cached_port_status(port_id, status)

    async def process_unhandled_events(self, pending: Iterable[int]) -> None:
        """Process every pending port, logging failures and carrying on."""
        for port_id in sorted(set(pending)):
            _log.debug("Port%d: Event", port_id)
            try:
                await self.process_port_events(port_id)
            except PdError as exc:
                _log.error("Port%d: Error processing events: %s", port_id, exc)

    async def _status_response(self, kind: str, call: Awaitable[Any]) -> None:
        try:
            result = await call
        except PdError as exc:
            _log.error("Error getting %s status: %s", kind, exc)
            result = exc
        await self.context.send_external_response(kind, result)

    async def process_external_command(self, command: tuple[str, Any]) -> None:
        """Answer a ``(kind, target)`` status command."""
        kind, target = command
        _log.debug("Processing external %s command: %r", kind, target)
        if kind == CONTROLLER:
            await self._status_response(kind, self.context.get_controller_status(target))
        elif kind == PORT:
            await self._status_response(kind, self.context.get_port_status(target))
        else:
            raise ValueError(f"unknown external command kind {kind!r}")

    async def process(self) -> None:
        """Handle the next batch of port events or external command."""
        source, item = await _first_of(
            self.context.get_unhandled_events(), self.context.wait_external_command()
        )
        if source == 0:
            await self.process_unhandled_events(item)
        else:
            await self.process_external_command(item)