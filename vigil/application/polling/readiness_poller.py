"""
Readiness Poller

Architectural Intent:
- Generic "retry a check until true or out of time" primitive for one node
- Three checks: pingable, not pingable, command-responsive
- Composite waits for a reboot (with hard power-reset escalation) and for a
  freshly provisioned node to answer commands

Design Decisions:
- Checks may be plain callables or coroutines
- Clock and sleep are injected so budgets are testable without waiting
- Port checks on 22/24 are only a pre-filter; responsiveness is confirmed by
  running a trivial command and looking for its echo
- Each escalated reboot attempt gets the base budget plus 120s x attempt number
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from vigil.domain.entities.reservation import Reservation
from vigil.domain.ports.metrics_port import MetricsPort
from vigil.domain.ports.power_control_port import PowerControlPort
from vigil.domain.ports.reachability_port import ReachabilityPort
from vigil.domain.ports.remote_executor_port import RemoteExecutorPort
from vigil.domain.ports.reservation_store_port import ReservationStorePort

logger = logging.getLogger(__name__)

CONTROL_PORTS = (22, 24)
REBOOT_ESCALATION_SECONDS = 120
NO_PING_DELAY_SECONDS = 5
POST_SHUTDOWN_GRACE_SECONDS = 5


class ReadinessPoller:
    def __init__(
        self,
        node: str,
        executor: RemoteExecutorPort,
        reachability: ReachabilityPort,
        power_control: Optional[PowerControlPort] = None,
        store: Optional[ReservationStorePort] = None,
        reservation: Optional[Reservation] = None,
        metrics: Optional[MetricsPort] = None,
        log: Optional[logging.Logger | logging.LoggerAdapter] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.node = node
        self.executor = executor
        self.reachability = reachability
        self.power_control = power_control
        self.store = store
        self.reservation = reservation
        self.metrics = metrics
        self.log = log or logger
        self._sleep = sleep
        self._clock = clock

    async def wait_until(
        self,
        condition: Callable[..., Any],
        args: tuple = (),
        description: str = "condition",
        max_wait_seconds: float = 300,
        attempt_delay_seconds: float = 15,
    ) -> bool:
        """
        Polls condition(*args) until it returns true or max_wait_seconds elapse.
        The condition runs at least once even with an exhausted budget.
        """
        start = self._clock()
        attempt = 0
        while True:
            attempt += 1
            result = condition(*args)
            if inspect.isawaitable(result):
                result = await result
            elapsed = self._clock() - start
            if result:
                self.log.debug(
                    "%s: %s after %d attempt(s), %.0fs",
                    self.node, description, attempt, elapsed,
                )
                return True
            if elapsed >= max_wait_seconds:
                self.log.info(
                    "%s: gave up waiting for %s after %d attempt(s), %.0fs",
                    self.node, description, attempt, elapsed,
                )
                return False
            if attempt % 10 == 0:
                self.log.info(
                    "%s: still waiting for %s, %.0f of %.0fs elapsed",
                    self.node, description, elapsed, max_wait_seconds,
                )
            await self._sleep(attempt_delay_seconds)

    # -- Checks ---------------------------------------------------------------

    async def is_pingable(self) -> bool:
        return await self.reachability.is_pingable(self.node)

    async def is_not_pingable(self) -> bool:
        return not await self.reachability.is_pingable(self.node)

    async def is_command_responsive(self) -> bool:
        open_ports = [
            port
            for port in CONTROL_PORTS
            if await self.reachability.is_port_open(self.node, port)
        ]
        if not open_ports:
            self.log.debug("%s: control ports %s are closed", self.node, CONTROL_PORTS)
            return False

        result = await self.executor.execute(
            self.node,
            f'echo "testing ssh on {self.node}"',
            timeout_seconds=30,
            max_attempts=1,
        )
        if result is None:
            self.log.debug("%s: port(s) %s open but command failed", self.node, open_ports)
            return False
        return result.contains("testing")

    # -- Waits ----------------------------------------------------------------

    async def wait_for_ping(
        self, max_wait_seconds: float = 300, attempt_delay_seconds: float = 15
    ) -> bool:
        return await self.wait_until(
            self.is_pingable, (), "node to respond to ping",
            max_wait_seconds, attempt_delay_seconds,
        )

    async def wait_for_no_ping(
        self, max_wait_seconds: float = 300, attempt_delay_seconds: float = 15
    ) -> bool:
        return await self.wait_until(
            self.is_not_pingable, (), "node to stop responding to ping",
            max_wait_seconds, attempt_delay_seconds,
        )

    async def wait_for_command_response(
        self, max_wait_seconds: float = 300, attempt_delay_seconds: float = 15
    ) -> bool:
        return await self.wait_until(
            self.is_command_responsive, (), "node to respond to commands",
            max_wait_seconds, attempt_delay_seconds,
        )

    async def _reboot_sequence(
        self, total_wait_seconds: float, attempt_delay_seconds: float
    ) -> bool:
        start = self._clock()

        if not await self.wait_for_no_ping(total_wait_seconds, NO_PING_DELAY_SECONDS):
            self.log.warning(
                "%s: never became unreachable within %ss", self.node, total_wait_seconds
            )
            return False
        shutdown_seconds = self._clock() - start
        await self._sleep(POST_SHUTDOWN_GRACE_SECONDS)

        remaining = total_wait_seconds - (self._clock() - start)
        if not await self.wait_for_ping(remaining, attempt_delay_seconds):
            self.log.warning("%s: did not come back on the network", self.node)
            return False
        ping_seconds = self._clock() - start

        remaining = total_wait_seconds - (self._clock() - start)
        if not await self.wait_for_command_response(remaining, attempt_delay_seconds):
            self.log.warning("%s: pingable but not answering commands", self.node)
            return False
        total_seconds = self._clock() - start

        self.log.info(
            "%s: rebooted, unreachable after %.0fs, pingable after %.0fs, "
            "responsive after %.0fs",
            self.node, shutdown_seconds, ping_seconds, total_seconds,
        )
        self._record("reboot", total_seconds)
        return True

    async def wait_for_reboot(
        self,
        total_wait_seconds: float = 300,
        attempt_delay_seconds: float = 15,
        attempt_limit: int = 2,
    ) -> bool:
        """
        Waits for unreachable -> pingable -> command-responsive. A failed
        sequence is retried after a hard power reset with the base budget plus
        120s per attempt number. A power reset that fails ends the wait.
        """
        attempt_limit = attempt_limit or 1
        budget = total_wait_seconds

        for attempt in range(1, attempt_limit + 1):
            if attempt > 1:
                if self.power_control is None:
                    self.log.critical(
                        "%s: reboot wait failed and no power control is available",
                        self.node,
                    )
                    return False
                self.log.warning(
                    "%s: reboot attempt %d/%d, issuing power reset",
                    self.node, attempt, attempt_limit,
                )
                if not await self.power_control.power_reset(self.node):
                    self.log.critical("%s: power reset failed", self.node)
                    return False
                budget = total_wait_seconds + REBOOT_ESCALATION_SECONDS * attempt

            if await self._reboot_sequence(budget, attempt_delay_seconds):
                return True

        self.log.critical(
            "%s: failed to reboot after %d attempt(s)", self.node, attempt_limit
        )
        return False

    async def wait_for_response(
        self,
        initial_delay_seconds: float = 120,
        response_timeout_seconds: float = 600,
        attempt_delay_seconds: float = 15,
    ) -> bool:
        start = self._clock()

        if await self.is_command_responsive():
            self.log.info("%s: already responding, skipping initial delay", self.node)
        else:
            self.log.info(
                "%s: waiting %ss before polling for a response",
                self.node, initial_delay_seconds,
            )
            await self._sleep(initial_delay_seconds)
            if not await self.wait_for_command_response(
                response_timeout_seconds, attempt_delay_seconds
            ):
                self.log.critical(
                    "%s: not responding after %.0fs",
                    self.node, self._clock() - start,
                )
                return False

        elapsed = self._clock() - start
        self.log.info("%s: responding after %.0fs", self.node, elapsed)
        self._record("response", elapsed)
        if self.store is not None and self.reservation is not None:
            try:
                self.store.insert_load_log(
                    self.reservation.id,
                    self.reservation.computer_id,
                    "machinebooted",
                    f"{self.node} is responding after {elapsed:.0f} seconds",
                )
            except Exception as e:
                self.log.warning("%s: unable to record boot time: %s", self.node, e)
        return True

    def _record(self, phase: str, seconds: float) -> None:
        if self.metrics is not None:
            self.metrics.record_wait_duration(self.node, phase, seconds)
