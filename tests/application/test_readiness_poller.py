"""Tests for the readiness poller."""

import pytest

from fakes import FakeClock, FakeExecutor, FakeReachability, FakeStore, build_context
from vigil.application.polling.readiness_poller import ReadinessPoller
from vigil.domain.value_objects.command_result import CommandResult

TESTING = CommandResult(0, ("testing ssh on vm1",))


class FakePowerControl:
    def __init__(self, result=True):
        self.result = result
        self.resets = []

    async def power_reset(self, node):
        self.resets.append(node)
        return self.result


class FakeMetrics:
    def __init__(self):
        self.waits = []

    def record_wait_duration(self, node, phase, seconds):
        self.waits.append((node, phase, seconds))

    def record_command_attempts(self, node, attempts, success):
        pass


def make_poller(reachability=None, executor=None, **kwargs):
    clock = FakeClock()
    poller = ReadinessPoller(
        "vm1",
        executor or FakeExecutor({"echo": TESTING}),
        reachability or FakeReachability(),
        sleep=clock.sleep,
        clock=clock,
        **kwargs,
    )
    return poller, clock


class TestWaitUntil:
    @pytest.mark.asyncio
    async def test_immediate_success_does_not_sleep(self):
        poller, clock = make_poller()
        assert await poller.wait_until(lambda: True, description="ready")
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_gives_up_once_budget_elapsed(self):
        poller, clock = make_poller()
        result = await poller.wait_until(
            lambda: False, max_wait_seconds=60, attempt_delay_seconds=15
        )
        assert result is False
        assert clock.sleeps == [15, 15, 15, 15]

    @pytest.mark.asyncio
    async def test_async_condition_with_arguments(self):
        poller, _ = make_poller()
        seen = []

        async def condition(value):
            seen.append(value)
            return len(seen) == 3

        assert await poller.wait_until(condition, ("x",), attempt_delay_seconds=1)
        assert seen == ["x", "x", "x"]

    @pytest.mark.asyncio
    async def test_condition_runs_once_with_zero_budget(self):
        poller, clock = make_poller()
        calls = []
        assert not await poller.wait_until(lambda: calls.append(1), max_wait_seconds=0)
        assert calls == [1]
        assert clock.sleeps == []


class TestCommandResponsive:
    @pytest.mark.asyncio
    async def test_closed_ports_skip_command(self):
        executor = FakeExecutor({"echo": TESTING})
        poller, _ = make_poller(FakeReachability(ports=(False,)), executor)
        assert not await poller.is_command_responsive()
        assert executor.commands == []

    @pytest.mark.asyncio
    async def test_open_port_and_echo(self):
        executor = FakeExecutor({"echo": TESTING})
        poller, _ = make_poller(FakeReachability(ports=(True,)), executor)
        assert await poller.is_command_responsive()
        assert executor.commands == [("vm1", 'echo "testing ssh on vm1"')]

    @pytest.mark.asyncio
    async def test_failed_command_is_not_responsive(self):
        poller, _ = make_poller(executor=FakeExecutor({"echo": None}))
        assert not await poller.is_command_responsive()

    @pytest.mark.asyncio
    async def test_output_without_echo_is_not_responsive(self):
        poller, _ = make_poller(executor=FakeExecutor({"echo": CommandResult(0, ("login:",))}))
        assert not await poller.is_command_responsive()


class TestWaitForReboot:
    @pytest.mark.asyncio
    async def test_down_then_up_then_responsive(self):
        metrics = FakeMetrics()
        poller, _ = make_poller(FakeReachability(pings=(True, False, True)), metrics=metrics)
        assert await poller.wait_for_reboot()
        assert [phase for _, phase, _ in metrics.waits] == ["reboot"]

    @pytest.mark.asyncio
    async def test_power_reset_between_attempts(self):
        power = FakePowerControl()
        poller, clock = make_poller(FakeReachability(pings=(True,)), power_control=power)
        assert not await poller.wait_for_reboot(total_wait_seconds=300, attempt_limit=2)
        assert power.resets == ["vm1"]
        # first attempt waits 300s, the escalated one 300 + 240s
        assert sum(clock.sleeps) == pytest.approx(300 + 540)

    @pytest.mark.asyncio
    async def test_escalation_budget_is_not_cumulative(self):
        power = FakePowerControl()
        poller, clock = make_poller(FakeReachability(pings=(True,)), power_control=power)
        assert not await poller.wait_for_reboot(total_wait_seconds=300, attempt_limit=3)
        assert power.resets == ["vm1", "vm1"]
        # 300s, then 300 + 240s, then 300 + 360s
        assert sum(clock.sleeps) == pytest.approx(300 + 540 + 660)

    @pytest.mark.asyncio
    async def test_no_power_control_stops_after_first_attempt(self):
        poller, clock = make_poller(FakeReachability(pings=(True,)))
        assert not await poller.wait_for_reboot(total_wait_seconds=60, attempt_limit=3)
        assert sum(clock.sleeps) == pytest.approx(60)

    @pytest.mark.asyncio
    async def test_failed_power_reset_ends_wait(self):
        power = FakePowerControl(result=False)
        poller, clock = make_poller(FakeReachability(pings=(True,)), power_control=power)
        assert not await poller.wait_for_reboot(total_wait_seconds=60, attempt_limit=3)
        assert power.resets == ["vm1"]
        assert sum(clock.sleeps) == pytest.approx(60)

    @pytest.mark.asyncio
    async def test_zero_attempt_limit_means_one_attempt(self):
        power = FakePowerControl()
        poller, _ = make_poller(FakeReachability(pings=(True,)), power_control=power)
        assert not await poller.wait_for_reboot(total_wait_seconds=30, attempt_limit=0)
        assert power.resets == []


class TestWaitForResponse:
    @pytest.mark.asyncio
    async def test_already_responsive_skips_initial_delay(self):
        store = FakeStore()
        context = build_context()
        metrics = FakeMetrics()
        poller, clock = make_poller(
            store=store, reservation=context.reservation, metrics=metrics
        )
        assert await poller.wait_for_response()
        assert clock.sleeps == []
        assert store.load_log[0][2] == "machinebooted"
        assert metrics.waits[0][1] == "response"

    @pytest.mark.asyncio
    async def test_waits_initial_delay_then_polls(self):
        poller, clock = make_poller(FakeReachability(ports=(False, False, True)))
        assert await poller.wait_for_response(initial_delay_seconds=120)
        assert clock.sleeps == [120]

    @pytest.mark.asyncio
    async def test_never_responds(self):
        poller, clock = make_poller(FakeReachability(ports=(False,)))
        assert not await poller.wait_for_response(
            initial_delay_seconds=120, response_timeout_seconds=60, attempt_delay_seconds=15
        )
        assert clock.sleeps == [120, 15, 15, 15, 15]
