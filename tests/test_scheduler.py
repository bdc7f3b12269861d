"""
Tests for viewer timers.
"""

import asyncio

from mission_relay.viewer.scheduler import PeriodicTask, TaskScope


def test_periodic_task_ticks_until_cancelled():
    async def scenario():
        calls = []
        task = PeriodicTask("tick", 0.01, lambda: calls.append(1)).start()
        await asyncio.sleep(0.1)
        task.cancel()
        count = len(calls)
        await asyncio.sleep(0.05)
        return count, len(calls), task.running

    count, later, running = asyncio.run(scenario())
    assert count >= 2
    assert later == count
    assert running is False


def test_immediate_periodic_task_fires_before_first_interval():
    async def scenario():
        calls = []
        task = PeriodicTask("probe", 10, lambda: calls.append(1), immediate=True).start()
        await asyncio.sleep(0.01)
        task.cancel()
        return calls

    assert asyncio.run(scenario()) == [1]


def test_periodic_task_survives_callback_errors():
    async def scenario():
        calls = []

        async def flaky():
            calls.append(1)
            raise RuntimeError("probe failed")

        task = PeriodicTask("flaky", 0.01, flaky).start()
        await asyncio.sleep(0.08)
        task.cancel()
        return len(calls), task.ticks

    calls, ticks = asyncio.run(scenario())
    assert calls >= 2
    assert ticks == calls


def test_periodic_task_can_cancel_itself():
    async def scenario():
        scope = TaskScope()
        calls = []

        def once():
            calls.append(1)
            scope.cancel("self-cancel")

        scope.periodic("self-cancel", 0.01, once)
        await asyncio.sleep(0.08)
        return calls, scope.active

    calls, active = asyncio.run(scenario())
    assert calls == [1]
    assert active == 0


def test_scope_periodic_is_idempotent_per_name():
    async def scenario():
        scope = TaskScope()
        first = scope.periodic("poll", 10, lambda: None)
        second = scope.periodic("poll", 10, lambda: None)
        same = first is second
        active = scope.active
        scope.cancel_all()
        return same, active

    assert asyncio.run(scenario()) == (True, 1)


def test_later_fires_once_and_can_be_cancelled():
    async def scenario():
        scope = TaskScope()
        fired = []
        scope.later("settle", 0.01, lambda: fired.append("settle"))
        scope.later("settle", 0.01, lambda: fired.append("duplicate"))
        scope.later("dropped", 0.01, lambda: fired.append("dropped"))
        scope.cancel("dropped")
        await asyncio.sleep(0.05)
        return fired, scope.is_active("settle")

    fired, active = asyncio.run(scenario())
    assert fired == ["settle"]
    assert active is False


def test_cancel_all_from_inside_a_delayed_callback():
    async def scenario():
        scope = TaskScope()
        fired = []

        async def settle():
            scope.cancel_all()
            # The calling task keeps running after cancel_all
            await asyncio.sleep(0)
            fired.append("settle finished")

        scope.periodic("poll", 0.005, lambda: fired.append("poll"))
        scope.later("settle", 0.02, settle)
        await asyncio.sleep(0.06)
        polls = fired.count("poll")
        await asyncio.sleep(0.03)
        return fired, polls, scope.active

    fired, polls, active = asyncio.run(scenario())
    assert fired[-1] == "settle finished"
    assert fired.count("poll") == polls
    assert active == 0


def test_scope_context_manager_cancels_everything():
    async def scenario():
        async with TaskScope() as scope:
            scope.periodic("a", 10, lambda: None)
            scope.later("b", 10, lambda: None)
            assert scope.active == 2
        return scope.active

    assert asyncio.run(scenario()) == 0
