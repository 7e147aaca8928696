import asyncio

import pytest

from ecservices.reset import (
    AlreadyRegisteredError,
    Blocker,
    ResetController,
    ResetUnavailableError,
)


@pytest.mark.asyncio
async def test_blockers_finish_before_reset():
    events = []
    controller = ResetController(lambda: events.append("reset"))
    first, second = Blocker(), Blocker()
    first.register(controller)
    second.register(controller)

    async def first_hook():
        await asyncio.sleep(0.01)
        events.append("first")

    async def second_hook():
        events.append("second")

    tasks = [
        asyncio.create_task(first.wait_for_reset(first_hook)),
        asyncio.create_task(second.wait_for_reset(second_hook)),
    ]
    await asyncio.wait_for(controller.system_reset(), 1.0)
    await asyncio.gather(*tasks)
    assert events[-1] == "reset"
    assert sorted(events[:-1]) == ["first", "second"]


@pytest.mark.asyncio
async def test_reset_without_platform_raises_after_blockers():
    ran = []
    controller = ResetController()
    blocker = Blocker()
    blocker.register(controller)

    async def hook():
        ran.append(True)

    task = asyncio.create_task(blocker.wait_for_reset(hook))
    with pytest.raises(ResetUnavailableError):
        await asyncio.wait_for(controller.system_reset(), 1.0)
    await task
    assert ran == [True]


@pytest.mark.asyncio
async def test_reset_with_no_blockers_calls_reset():
    calls = []
    controller = ResetController(lambda: calls.append(1))
    await controller.system_reset()
    assert calls == [1]


def test_double_registration_raises():
    controller = ResetController()
    blocker = Blocker()
    blocker.register(controller)
    with pytest.raises(AlreadyRegisteredError):
        blocker.register(controller)
    assert controller.blockers == [blocker]


@pytest.mark.asyncio
async def test_blocker_does_not_run_without_reset():
    blocker = Blocker()
    blocker.register(ResetController())
    ran = []

    async def hook():
        ran.append(True)

    task = asyncio.create_task(blocker.wait_for_reset(hook))
    await asyncio.sleep(0.01)
    assert not task.done()
    assert ran == []
    task.cancel()