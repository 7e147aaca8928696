"""Power policy: selects the best consumer and sets the power given to providers.

While the total power handed to providers stays at or below the configured
threshold, every provider gets ``provider_unlimited``; above it, every provider
gets ``provider_limited``. If a connected provider cannot be moved to a new
power level the system enters recovery mode. In that mode every provider is
held at ``provider_recovery``, and recovery is attempted periodically.

The policy talks to the rest of the system through a *context* object with
these coroutines:

``devices()``
    All registered devices. Power devices have ``id`` and the coroutines
    ``consumer_capability()``, ``is_in_recovery()`` and ``is_provider()``.
``chargers()``
    All registered chargers, each with a ``configure(capability)`` coroutine.
``get_device(device_id)``
    The device with that id; raises :class:`PolicyError` if there is none.
``try_policy_action(kind, device_id)``
    The device's action handle if it is in state ``kind`` (``"idle"``,
    ``"connected_consumer"`` or ``"connected_provider"``), otherwise None.
    Handles have ``connect_consumer(capability)``, ``connect_provider(capability)``,
    ``disconnect()`` and ``power_capability()`` as fits the state; failures
    raise :class:`PolicyError`.
``send_response()``
    Acknowledge the current request as complete.
``wait_request()``
    Wait for the next :class:`Request`.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from .power_config import Config, PowerCapability

_log = logging.getLogger(__name__)

IDLE = "idle"
CONNECTED_CONSUMER = "connected_consumer"
CONNECTED_PROVIDER = "connected_provider"


class PolicyError(Exception):
    """A power policy operation failed."""


class InvalidDeviceError(PolicyError):
    """A device list held something that is not the expected kind of device."""


@runtime_checkable
class _PowerDevice(Protocol):
    async def consumer_capability(self) -> PowerCapability | None: ...

    async def is_in_recovery(self) -> bool: ...

    async def is_provider(self) -> bool: ...


@runtime_checkable
class _Charger(Protocol):
    async def configure(self, capability: PowerCapability) -> None: ...


class PowerState(enum.Enum):
    """System-wide provider power state."""

    RECOVERY = "recovery"
    UNLIMITED = "unlimited"
    LIMITED = "limited"


@dataclass(frozen=True)
class ConsumerState:
    """The connected consumer. Ordering compares power capability only."""

    device_id: Any
    power_capability: PowerCapability

    def __lt__(self, other: ConsumerState) -> bool:
        if not isinstance(other, ConsumerState):
            return NotImplemented
        return self.power_capability < other.power_capability

    def __le__(self, other: ConsumerState) -> bool:
        if not isinstance(other, ConsumerState):
            return NotImplemented
        return self.power_capability <= other.power_capability

    def __gt__(self, other: ConsumerState) -> bool:
        if not isinstance(other, ConsumerState):
            return NotImplemented
        return self.power_capability > other.power_capability

    def __ge__(self, other: ConsumerState) -> bool:
        if not isinstance(other, ConsumerState):
            return NotImplemented
        return self.power_capability >= other.power_capability


class RequestKind(enum.Enum):
    """Kinds of request a device can make of the policy."""

    NOTIFY_ATTACHED = "notify_attached"
    NOTIFY_DETACHED = "notify_detached"
    NOTIFY_CONSUMER_CAPABILITY = "notify_consumer_capability"
    REQUEST_PROVIDER_CAPABILITY = "request_provider_capability"
    NOTIFY_DISCONNECT = "notify_disconnect"


@dataclass(frozen=True)
class Request:
    """A request from a device; ``capability`` goes with the capability kinds."""

    device_id: Any
    kind: RequestKind
    capability: PowerCapability | None = None


@dataclass(frozen=True)
class CommsMessage:
    """Notification that a consumer was connected or disconnected."""

    connected: bool
    device_id: Any
    capability: PowerCapability | None = None


class PowerPolicy:
    """The power policy service."""

    consumer_settle_delay: float = 0.8
    """Seconds to wait after connecting a consumer before configuring chargers."""
    recovery_interval: float = 1.0
    """Seconds between provider recovery attempts."""

    def __init__(
        self,
        context: Any,
        config: Config | None = None,
        notify: Callable[[CommsMessage], Any] | None = None,
    ) -> None:
        self.context = context
        self.config = config if config is not None else Config()
        self.notify = notify
        self._lock = asyncio.Lock()
        self._current_consumer: ConsumerState | None = None
        self._provider_state = PowerState.UNLIMITED
        self._next_tick: float | None = None

    @property
    def current_consumer(self) -> ConsumerState | None:
        return self._current_consumer

    @property
    def provider_power_state(self) -> PowerState:
        return self._provider_state

    async def _notify(self, message: CommsMessage) -> None:
        if self.notify is None:
            return
        try:
            result = self.notify(message)
            if inspect.isawaitable(result):
                await result
        except Exception:  # delivery failures are not the policy's concern
            _log.debug("Failed to deliver %r", message)

    # Requests

    async def process_request(self, request: Request) -> None:
        """Handle one device request."""
        device = await self.context.get_device(request.device_id)
        kind = request.kind
        _log.info("Received %s from device %s", kind.value, device.id)
        await self.context.send_response()
        if kind is RequestKind.NOTIFY_ATTACHED:
            return
        if kind is RequestKind.NOTIFY_CONSUMER_CAPABILITY:
            await self.update_current_consumer()
        elif kind is RequestKind.REQUEST_PROVIDER_CAPABILITY:
            await self.update_providers(device.id)
        else:
            await self.update_current_consumer()
            await self.update_providers(None)

    async def process(self) -> None:
        """Handle the next request or, if due first, a provider recovery attempt."""
        request_task = asyncio.ensure_future(self.context.wait_request())
        recovery_task = asyncio.ensure_future(self.wait_attempt_provider_recovery())
        try:
            done, _ = await asyncio.wait(
                {request_task, recovery_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (request_task, recovery_task):
                if not task.done():
                    task.cancel()
        if request_task in done:
            await self.process_request(request_task.result())
        elif recovery_task.result():
            await self.attempt_provider_recovery()

    async def run(self) -> None:
        """Process forever, logging failures."""
        _log.info("Starting power policy task")
        while True:
            try:
                await self.process()
            except PolicyError as exc:
                _log.error("Error processing request: %s", exc)

    # Consumers

    async def _find_highest_power_consumer(self) -> ConsumerState | None:
        best: ConsumerState | None = None
        for device in await self.context.devices():
            if not isinstance(device, _PowerDevice):
                raise InvalidDeviceError("non-power device in devices list")
            available = await device.consumer_capability()
            if available is None:
                continue
            if best is None or available > best.power_capability:
                best = ConsumerState(device.id, available)
        return best

    async def _configure_chargers(self, capability: PowerCapability) -> None:
        for charger in await self.context.chargers():
            if not isinstance(charger, _Charger):
                raise InvalidDeviceError("non-charger device in chargers list")
            await charger.configure(capability)

    async def _connect_new_consumer(self, new_consumer: ConsumerState) -> None:
        current = self._current_consumer
        if current is not None:
            if current == new_consumer:
                _log.info("Best consumer is the same, not switching")
                return
            self._current_consumer = None
            consumer = await self.context.try_policy_action(CONNECTED_CONSUMER, current.device_id)
            if consumer is not None:
                _log.info("Device %s, disconnecting current consumer", current.device_id)
                await consumer.disconnect()
            await self._configure_chargers(PowerCapability(voltage_mv=0, current_ma=0))
            await self._notify(CommsMessage(False, current.device_id))

        _log.info("Device %s, connecting new consumer", new_consumer.device_id)
        idle = await self.context.try_policy_action(IDLE, new_consumer.device_id)
        if idle is None:
            _log.error("Error obtaining device in idle state")
            return
        await idle.connect_consumer(new_consumer.power_capability)
        self._current_consumer = new_consumer
        await asyncio.sleep(self.consumer_settle_delay)
        await self._configure_chargers(new_consumer.power_capability)
        await self._notify(
            CommsMessage(True, new_consumer.device_id, new_consumer.power_capability)
        )

    async def update_current_consumer(self) -> None:
        """Find the highest-powered consumer and connect it."""
        async with self._lock:
            _log.info("Selecting consumer, current consumer: %r", self._current_consumer)
            best = await self._find_highest_power_consumer()
            _log.info("Best consumer: %r", best)
            if best is None:
                self._current_consumer = None
                return
            await self._connect_new_consumer(best)

    # Providers

    async def _power_devices(self) -> list[Any]:
        devices = []
        for device in await self.context.devices():
            if isinstance(device, _PowerDevice):
                devices.append(device)
            else:
                _log.warning("Found non-power device in devices list")
        return devices

    async def _compute_total_provider_power(self, new_request: bool) -> PowerState:
        num_providers = 1 if new_request else 0
        for device in await self._power_devices():
            if await device.is_in_recovery():
                _log.info("Device %s: In recovery mode", device.id)
                return PowerState.RECOVERY
            if await device.is_provider():
                num_providers += 1
        total = num_providers * self.config.provider_unlimited.max_power_mw()
        if total > self.config.limited_power_threshold_mw:
            return PowerState.LIMITED
        return PowerState.UNLIMITED

    async def _update_provider_capability(
        self, target_power: PowerCapability, exit_on_recovery: bool
    ) -> bool:
        """Move connected providers to ``target_power``; True if recovery is needed."""
        recovery = False
        for device in await self._power_devices():
            action = await self.context.try_policy_action(CONNECTED_PROVIDER, device.id)
            if action is None or await action.power_capability() == target_power:
                continue
            try:
                await action.connect_provider(target_power)
                continue
            except PolicyError:
                _log.error("Device %s: Failed to connect provider, attempting to disconnect", device.id)
            try:
                await action.disconnect()
            except PolicyError:
                _log.error("Device %s: Failed to disconnect provider", device.id)
                if exit_on_recovery:
                    return True
                recovery = True
        return recovery

    def _target_power(self, state: PowerState) -> PowerCapability:
        if state is PowerState.RECOVERY:
            return self.config.provider_recovery
        if state is PowerState.LIMITED:
            return self.config.provider_limited
        return self.config.provider_unlimited

    async def update_providers(self, new_provider: Any = None) -> None:
        """Recompute the provider power state and apply it, connecting ``new_provider``."""
        async with self._lock:
            already_in_recovery = self._provider_state is PowerState.RECOVERY
            if not already_in_recovery:
                self._provider_state = await self._compute_total_provider_power(
                    new_provider is not None
                )
            _log.debug("New power state: %s", self._provider_state)

            target_power = self._target_power(self._provider_state)
            recovery = await self._update_provider_capability(target_power, True)

            if new_provider is not None:
                _log.info("Connecting new provider")
                connected = False
                action = await self.context.try_policy_action(IDLE, new_provider)
                if action is not None:
                    power = self.config.provider_recovery if recovery else target_power
                    try:
                        await action.connect_provider(power)
                        connected = True
                    except PolicyError:
                        connected = False
                # A new provider that failed to connect draws no power, so no recovery
                if not connected:
                    _log.error("Device %s: Failed to connect provider", new_provider)

            if recovery and not already_in_recovery:
                _log.info("Entering recovery mode")
                await self._update_provider_capability(self.config.provider_recovery, False)
                self._provider_state = PowerState.RECOVERY

    async def _tick(self) -> None:
        loop = asyncio.get_running_loop()
        if self._next_tick is None:
            self._next_tick = loop.time() + self.recovery_interval
        delay = self._next_tick - loop.time()
        if delay > 0:
            await asyncio.sleep(delay)
        self._next_tick += self.recovery_interval

    async def wait_attempt_provider_recovery(self) -> bool:
        """Wait for the next recovery tick; True if recovery should be attempted."""
        await self._tick()
        async with self._lock:
            return self._provider_state is PowerState.RECOVERY

    async def attempt_provider_recovery(self) -> None:
        """Disconnect providers in recovery and try to return to normal operation."""
        _log.info("Attempting provider recovery")
        recovered = True
        for device in await self._power_devices():
            if not await device.is_in_recovery():
                continue
            action = await self.context.try_policy_action(CONNECTED_PROVIDER, device.id)
            if action is None:
                continue
            try:
                await action.disconnect()
            except PolicyError:
                _log.error("Device %s: Failed to recover", device.id)
                recovered = False

        if not recovered:
            _log.info("Failed to recover all providers, staying in recovery mode")
            return

        async with self._lock:
            self._provider_state = PowerState.UNLIMITED
        await self.update_providers(None)
        async with self._lock:
            if self._provider_state is PowerState.RECOVERY:
                _log.info("Failed to update providers, staying in recovery mode")
                return
        _log.info("Successfully recovered from provider recovery mode")