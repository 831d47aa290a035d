"""
Check Connection Use Case

Architectural Intent:
- Decides whether the acknowledged user actually connected to the node
- Polls within a fixed budget and classifies the result as an Outcome
- Deletion and request end are observed between polls

Design Decisions:
- Prefers listing established connections; falls back to a per-port check
- A binding with neither capability cannot be checked: FAILED
- Budget exhausted with nobody connected: NOLOGIN
"""

import asyncio
import logging
import re
import time
from typing import Awaitable, Callable, Optional

from vigil.application.use_cases.apply_connect_methods import (
    ConnectMethodProvisioner,
    parse_ignored_remote_ips,
)
from vigil.domain.entities.reservation import ReservationContext
from vigil.domain.ports.os_capabilities import Capability, OSBinding, supports
from vigil.domain.ports.reservation_store_port import ReservationStorePort
from vigil.domain.value_objects.outcome import Outcome

logger = logging.getLogger(__name__)

IGNORED_REMOTE_IPS_VARIABLE = "ignored_remote_ip_addresses"


class ConnectionChecker:
    def __init__(
        self,
        store: ReservationStorePort,
        binding: OSBinding,
        provisioner: ConnectMethodProvisioner,
        attempt_delay_seconds: float = 20,
        log: Optional[logging.Logger | logging.LoggerAdapter] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.binding = binding
        self.provisioner = provisioner
        self.attempt_delay_seconds = attempt_delay_seconds
        self.log = log or logger
        self._sleep = sleep
        self._clock = clock

    async def check(
        self,
        context: ReservationContext,
        remote_ip: str,
        budget_seconds: float = 900,
    ) -> Outcome:
        if not (
            supports(self.binding, Capability.GET_PORT_CONNECTION_INFO)
            or supports(self.binding, Capability.CHECK_CONNECTION_ON_PORT)
        ):
            self.log.critical(
                "%s can neither list connections nor check ports; "
                "unable to verify that the user connected",
                self.binding.node_name,
            )
            return Outcome.FAILED

        start = self._clock()
        attempt = 0
        while True:
            attempt += 1
            if self._is_deleted(context.request.id):
                self.log.info("Request %s deleted while waiting for a connection", context.request.id)
                return Outcome.DELETED
            if context.request.has_ended():
                self.log.info("Request %s ended before the user connected", context.request.id)
                return Outcome.TIMEOUT

            verdict = await self._scan_connections(context, remote_ip)
            if verdict is not None:
                self.log.info(
                    "Connection check on %s after %d attempt(s): %s",
                    self.binding.node_name, attempt, verdict,
                )
                return verdict

            elapsed = self._clock() - start
            if elapsed >= budget_seconds:
                self.log.info(
                    "User did not connect to %s within %.0fs",
                    self.binding.node_name, elapsed,
                )
                return Outcome.NOLOGIN
            await self._sleep(self.attempt_delay_seconds)

    async def _scan_connections(self, context: ReservationContext, remote_ip: str) -> Optional[Outcome]:
        if supports(self.binding, Capability.GET_PORT_CONNECTION_INFO):
            remote_ips = await self.provisioner.connected_remote_ips(
                context.connect_methods,
                self._ignored_patterns(),
                context.management_node.ip_addresses,
            )
            if not remote_ips:
                return None
            if remote_ip in remote_ips:
                return Outcome.CONNECTED
            self.log.warning(
                "Connection to %s from %s, expected %s",
                self.binding.node_name, ", ".join(remote_ips), remote_ip,
            )
            return Outcome.CONN_WRONG_IP

        for method in context.connect_methods:
            if method.disabled:
                continue
            for port in method.ports:
                verdict = await self.binding.check_connection_on_port(port.port)
                if verdict in (Outcome.CONNECTED, Outcome.CONN_WRONG_IP):
                    return verdict
        return None

    def _is_deleted(self, request_id: int) -> bool:
        try:
            return self.store.is_request_deleted(request_id)
        except Exception as e:
            self.log.warning("Unable to check whether request %s was deleted: %s", request_id, e)
            return False

    def _ignored_patterns(self) -> list[re.Pattern]:
        try:
            value = self.store.get_variable(IGNORED_REMOTE_IPS_VARIABLE)
        except Exception as e:
            self.log.warning("Unable to read %s: %s", IGNORED_REMOTE_IPS_VARIABLE, e)
            return []
        return parse_ignored_remote_ips(value)
