import asyncio

import pytest

from ecservices.charger import (
    ChargerBusError,
    ChargerEvent,
    ChargerState,
    ChargerWrapper,
    InternalState,
    InvalidChargerStateError,
    PolicyEvent,
)
from ecservices.power_config import Config, PowerCapability

CAPABILITY = Config().provider_unlimited


class FakePolicyState:
    def __init__(self, state):
        self.current = state
        self.history = []
        self.responses = []
        self.commands = asyncio.Queue()

    async def state(self):
        return self.current

    async def set_state(self, new_state):
        self.history.append(new_state)
        self.current = new_state

    async def wait_command(self):
        return await self.commands.get()

    async def send_response(self, error):
        self.responses.append(error)


class FakeController:
    def __init__(self, fail=False):
        self.fail = fail
        self.currents = []
        self.init_calls = 0
        self.events = asyncio.Queue()

    async def wait_event(self):
        return await self.events.get()

    async def charging_current(self, current_ma):
        if self.fail:
            raise OSError("bus")
        self.currents.append(current_ma)

    async def init_charger(self):
        if self.fail:
            raise OSError("bus")
        self.init_calls += 1


def make(state, capability=CAPABILITY, fail=False):
    policy = FakePolicyState(InternalState(state, capability))
    controller = FakeController(fail)
    return ChargerWrapper(policy, controller), policy, controller


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "start,event,end",
    [
        (ChargerState.INIT, ChargerEvent.INITIALIZED, ChargerState.IDLE),
        (ChargerState.IDLE, ChargerEvent.PSU_ATTACHED, ChargerState.PSU_ATTACHED),
        (ChargerState.IDLE, ChargerEvent.PSU_DETACHED, ChargerState.PSU_DETACHED),
        (ChargerState.PSU_ATTACHED, ChargerEvent.PSU_DETACHED, ChargerState.PSU_DETACHED),
        (ChargerState.PSU_DETACHED, ChargerEvent.PSU_ATTACHED, ChargerState.PSU_ATTACHED),
    ],
)
async def test_transitions_keep_capability(start, event, end):
    wrapper, policy, _ = make(start)
    await wrapper.process_controller_event(event)
    assert await wrapper.get_state() == InternalState(end, CAPABILITY)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "start", [ChargerState.IDLE, ChargerState.PSU_ATTACHED, ChargerState.PSU_DETACHED]
)
async def test_timeout_returns_to_idle_without_capability(start):
    wrapper, _, _ = make(start)
    await wrapper.process_controller_event(ChargerEvent.TIMEOUT)
    assert await wrapper.get_state() == InternalState(ChargerState.IDLE, None)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "start,event",
    [
        (ChargerState.INIT, ChargerEvent.PSU_ATTACHED),
        (ChargerState.INIT, ChargerEvent.TIMEOUT),
        (ChargerState.PSU_ATTACHED, ChargerEvent.PSU_ATTACHED),
        (ChargerState.IDLE, ChargerEvent.INITIALIZED),
    ],
)
async def test_ignored_events(start, event):
    wrapper, policy, _ = make(start)
    await wrapper.process_controller_event(event)
    assert policy.history == []
    assert policy.current.state is start


@pytest.mark.asyncio
async def test_configuration_when_attached_writes_current():
    wrapper, policy, controller = make(ChargerState.PSU_ATTACHED)
    error = await wrapper.process_policy_command(PolicyEvent.policy_configuration(CAPABILITY))
    assert error is None
    assert controller.currents == [CAPABILITY.current_ma]
    assert policy.responses == [None]


@pytest.mark.asyncio
async def test_configuration_bus_failure():
    wrapper, policy, _ = make(ChargerState.PSU_ATTACHED, fail=True)
    error = await wrapper.process_policy_command(PolicyEvent.policy_configuration(CAPABILITY))
    assert isinstance(error, ChargerBusError)
    assert policy.responses == [error]


@pytest.mark.asyncio
async def test_nonzero_configuration_when_detached_is_rejected():
    wrapper, policy, controller = make(ChargerState.PSU_DETACHED)
    error = await wrapper.process_policy_command(PolicyEvent.policy_configuration(CAPABILITY))
    assert isinstance(error, InvalidChargerStateError)
    assert error.state is ChargerState.PSU_DETACHED
    assert controller.currents == []


@pytest.mark.asyncio
async def test_zero_configuration_when_detached_is_written():
    wrapper, policy, controller = make(ChargerState.PSU_DETACHED)
    zero = PowerCapability(voltage_mv=0, current_ma=0)
    error = await wrapper.process_policy_command(PolicyEvent.policy_configuration(zero))
    assert error is None
    assert controller.currents == [0]


@pytest.mark.asyncio
@pytest.mark.parametrize("start", [ChargerState.INIT, ChargerState.IDLE])
async def test_configuration_while_initializing_is_rejected(start):
    wrapper, policy, controller = make(start)
    error = await wrapper.process_policy_command(PolicyEvent.policy_configuration(CAPABILITY))
    assert isinstance(error, InvalidChargerStateError)
    assert error.state is start
    assert controller.currents == []


@pytest.mark.asyncio
async def test_init_request_in_init_state():
    wrapper, policy, controller = make(ChargerState.INIT)
    error = await wrapper.process_policy_command(PolicyEvent.init_request())
    assert error is None
    assert controller.init_calls == 1
    assert policy.responses == [None]


@pytest.mark.asyncio
async def test_init_request_bus_failure():
    wrapper, policy, controller = make(ChargerState.INIT, fail=True)
    error = await wrapper.process_policy_command(PolicyEvent.init_request())
    assert isinstance(error, ChargerBusError)
    assert policy.responses == [error]
    assert controller.init_calls == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "start", [ChargerState.IDLE, ChargerState.PSU_ATTACHED, ChargerState.PSU_DETACHED]
)
async def test_init_request_when_initialized_is_rejected(start):
    wrapper, policy, controller = make(start)
    error = await wrapper.process_policy_command(PolicyEvent.init_request())
    assert isinstance(error, InvalidChargerStateError)
    assert controller.init_calls == 0


@pytest.mark.asyncio
async def test_process_handles_event_then_command():
    wrapper, policy, controller = make(ChargerState.IDLE)
    controller.events.put_nowait(ChargerEvent.PSU_ATTACHED)
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(wrapper.process(), 0.05)
    assert policy.current.state is ChargerState.PSU_ATTACHED

    policy.commands.put_nowait(PolicyEvent.policy_configuration(CAPABILITY))
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(wrapper.process(), 0.05)
    assert controller.currents == [CAPABILITY.current_ma]
    assert policy.responses == [None]


def test_policy_event_kinds():
    assert PolicyEvent.init_request().is_init_request
    event = PolicyEvent.policy_configuration(CAPABILITY)
    assert not event.is_init_request
    assert event.configuration == CAPABILITY