"""
Process Reserved Use Case

Architectural Intent:
- Drives one reservation through its reserved phase and commits the outcome
- Explicit phase machine: each phase is a named decision coroutine that
  returns the next phase, a terminal Outcome, or None to abort
- Policy results (no acknowledgement, no login) are Outcomes, not errors

Design Decisions:
- Deletion during acknowledgement aborts without writing anything; deletion
  during the connection check resolves to DELETED, which also writes nothing
- Every commit write is best-effort: failures are logged as warnings and
  the remaining writes still run
- Timeout notifications go out once, by e-mail and/or instant message
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import secrets
import string
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Optional, Union

from vigil.application.use_cases.apply_connect_methods import ConnectMethodProvisioner
from vigil.application.use_cases.check_connection import ConnectionChecker
from vigil.application.use_cases.resolve_timings import TimingResolver
from vigil.application.use_cases.update_cluster import ClusterUpdater
from vigil.domain.entities.reservation import ReservationContext, is_acknowledged
from vigil.domain.events.reservation_events import (
    ReservationAcknowledgedEvent,
    ReservationResolvedEvent,
)
from vigil.domain.ports.event_bus_port import EventBusPort
from vigil.domain.ports.nat_host_port import NatHostPort
from vigil.domain.ports.notification_port import UserNotificationPort
from vigil.domain.ports.os_capabilities import Capability, OSBinding, supports
from vigil.domain.ports.reservation_store_port import ReservationStorePort
from vigil.domain.value_objects.outcome import Outcome, transition_for

logger = logging.getLogger(__name__)

_PASSWORD_ALPHABET = string.ascii_letters + string.digits


class Phase(Enum):
    AWAITING_ACKNOWLEDGEMENT = auto()
    GRANTING_ACCESS = auto()
    AWAITING_CONNECTION = auto()
    RESOLVED = auto()


PhaseResult = Union[Phase, Outcome, None]


def generate_password(length: int = 8) -> str:
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


def timeout_notice(context: ReservationContext) -> tuple[str, str]:
    affiliation = context.affiliation
    subject = f"{affiliation.site_name} -- Reservation Timeout"
    body = (
        f"Hello,\n\n"
        f"Your reservation of {context.image.display_name} has timed out because "
        f"no connection was made to {context.computer.public_ip or context.computer.node_name} "
        f"in time. The machine has been returned to the pool.\n\n"
        f"You can make another reservation at {affiliation.site_url or affiliation.site_name}.\n\n"
        f"Thank you,\n{affiliation.site_name}\n"
    )
    return subject, body


class ReservationController:
    def __init__(
        self,
        store: ReservationStorePort,
        binding: OSBinding,
        provisioner: ConnectMethodProvisioner,
        connection_checker: ConnectionChecker,
        notifier: Optional[UserNotificationPort] = None,
        cluster_updater: Optional[ClusterUpdater] = None,
        timings: Optional[TimingResolver] = None,
        event_bus: Optional[EventBusPort] = None,
        nat_host: Optional[NatHostPort] = None,
        acknowledge_attempts: int = 180,
        acknowledge_delay_seconds: float = 5,
        connection_budget_seconds: float = 900,
        log: Optional[logging.Logger | logging.LoggerAdapter] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.binding = binding
        self.provisioner = provisioner
        self.connection_checker = connection_checker
        self.notifier = notifier
        self.cluster_updater = cluster_updater
        self.timings = timings
        self.event_bus = event_bus
        self.nat_host = nat_host
        self.acknowledge_attempts = acknowledge_attempts
        self.acknowledge_delay_seconds = acknowledge_delay_seconds
        self.connection_budget_seconds = connection_budget_seconds
        self.log = log or logger
        self._sleep = sleep

    async def process(self, context: ReservationContext) -> Optional[Outcome]:
        """
        Runs the reserved phase once. Returns the committed Outcome, DELETED
        when the request was deleted during the connection check, or None when
        the pass was abandoned without an outcome.
        """
        self._apply_timings(context)
        if context.request.log_id is not None:
            self._best_effort(
                "record loaded time", self.store.update_log_loaded, context.request.log_id
            )

        handlers: dict[Phase, Callable[[ReservationContext], Awaitable[PhaseResult]]] = {
            Phase.AWAITING_ACKNOWLEDGEMENT: self.await_acknowledgement,
            Phase.GRANTING_ACCESS: self.grant_access,
            Phase.AWAITING_CONNECTION: self.await_connection,
        }

        phase = Phase.AWAITING_ACKNOWLEDGEMENT
        outcome: Optional[Outcome] = None
        while phase is not Phase.RESOLVED:
            self.log.debug("Reservation %s entering %s", context.reservation_id, phase.name)
            result = await handlers[phase](context)
            if result is None:
                return None
            if isinstance(result, Outcome):
                outcome = result
                phase = Phase.RESOLVED
            else:
                phase = result

        if outcome is Outcome.DELETED:
            self.log.info(
                "Request %s was deleted, leaving cleanup to the deletion path",
                context.request.id,
            )
        else:
            await self.commit(context, outcome)
        await self._publish(
            ReservationResolvedEvent(
                aggregate_id=str(context.reservation_id),
                reservation_id=context.reservation_id,
                request_id=context.request.id,
                outcome=outcome.value,
                node=context.computer.node_name,
            )
        )
        return outcome

    def _apply_timings(self, context: ReservationContext) -> None:
        if self.timings is None:
            return
        affiliation = context.affiliation.name
        acknowledge_seconds = self.timings.get("acknowledgetimeout", affiliation)
        if self.acknowledge_delay_seconds > 0:
            self.acknowledge_attempts = max(
                int(acknowledge_seconds // self.acknowledge_delay_seconds), 1
            )
        self.connection_budget_seconds = self.timings.get("connecttimeout", affiliation)

    # -- Phases ---------------------------------------------------------------

    async def await_acknowledgement(self, context: ReservationContext) -> PhaseResult:
        reservation = context.reservation
        request_id = context.request.id

        for attempt in range(1, self.acknowledge_attempts + 1):
            try:
                remote_ip = self.store.get_remote_ip(reservation.id)
            except Exception as e:
                self.log.warning("Unable to read remote IP of reservation %s: %s", reservation.id, e)
                remote_ip = None
            if remote_ip is None:
                self.log.warning(
                    "Remote IP of reservation %s could not be read, abandoning this pass",
                    reservation.id,
                )
                return None

            if is_acknowledged(remote_ip):
                reservation.remote_ip = remote_ip
                self.log.info(
                    "Reservation %s acknowledged from %s after %d attempt(s)",
                    reservation.id, remote_ip, attempt,
                )
                await self._publish(
                    ReservationAcknowledgedEvent(
                        aggregate_id=str(reservation.id),
                        reservation_id=reservation.id,
                        remote_ip=remote_ip,
                        attempts=attempt,
                    )
                )
                return Phase.GRANTING_ACCESS

            if attempt == self.acknowledge_attempts:
                break
            if attempt % 10 == 0:
                self.log.info(
                    "Reservation %s not acknowledged yet, attempt %d/%d",
                    reservation.id, attempt, self.acknowledge_attempts,
                )
            await self._sleep(self.acknowledge_delay_seconds)
            if self._is_deleted(request_id):
                self.log.info("Request %s deleted while awaiting acknowledgement", request_id)
                return None

        if self._is_deleted(request_id):
            self.log.info("Request %s deleted while awaiting acknowledgement", request_id)
            return None
        self.log.info(
            "Reservation %s was not acknowledged after %d attempts",
            reservation.id, self.acknowledge_attempts,
        )
        return Outcome.NOACK

    async def grant_access(self, context: ReservationContext) -> PhaseResult:
        reservation = context.reservation
        node = self.binding.node_name

        if not self._ensure_password(context):
            return Outcome.FAILED

        if context.request.is_cluster:
            await self._update_cluster(context)

        if not supports(self.binding, Capability.GRANT_ACCESS):
            self.log.critical("%s does not support granting access", node)
            self._load_log(context, "failed", f"{node} does not support granting access")
            return Outcome.FAILED
        try:
            granted = await self.binding.grant_access()
        except Exception as e:
            self.log.exception("Granting access on %s raised: %s", node, e)
            granted = False
        if not granted:
            self.log.critical("Failed to grant access on %s", node)
            self._load_log(context, "failed", f"failed to grant access on {node}")
            return Outcome.FAILED
        self._load_log(context, "info", f"access granted on {node}")

        try:
            applied = await self.provisioner.apply(
                reservation.id,
                context.connect_methods,
                reservation.remote_ip,
                nat_host=self.nat_host,
                request_state=context.request.state,
            )
        except Exception as e:
            self.log.exception("Applying connect methods on %s raised: %s", node, e)
            applied = False
        if not applied:
            self.log.critical("Failed to apply connect methods on %s", node)
            self._load_log(context, "failed", f"failed to apply connect methods on {node}")
            return Outcome.FAILED

        if supports(self.binding, Capability.POST_RESERVE):
            try:
                if not await self.binding.post_reserve():
                    self.log.warning("Post-reserve tasks failed on %s", node)
            except Exception as e:
                self.log.warning("Post-reserve tasks raised on %s: %s", node, e)

        return Phase.AWAITING_CONNECTION

    async def await_connection(self, context: ReservationContext) -> PhaseResult:
        skip_reason = self.connection_check_skip_reason(context)
        if skip_reason:
            self.log.info(
                "Not checking for a user connection to %s: %s",
                self.binding.node_name, skip_reason,
            )
            return Outcome.CONNECTED

        try:
            return await self.connection_checker.check(
                context, context.reservation.remote_ip, self.connection_budget_seconds
            )
        except Exception as e:
            self.log.exception(
                "Connection check on %s raised: %s", self.binding.node_name, e
            )
            return Outcome.FAILED

    @staticmethod
    def connection_check_skip_reason(context: ReservationContext) -> Optional[str]:
        if not context.image.check_user:
            return "image does not require a user check"
        if context.request.is_cluster:
            return "cluster request"
        if context.request.for_imaging:
            return "imaging request"
        return None

    # -- Commit ---------------------------------------------------------------

    async def commit(self, context: ReservationContext, outcome: Outcome) -> None:
        transition = transition_for(outcome)
        if transition is None:
            return
        request = context.request

        self.log.log(
            int(transition.severity),
            "Reservation %s resolved as %s: request -> %s, computer -> %s",
            context.reservation_id, outcome, transition.request_state, transition.computer_state,
        )
        self._best_effort(
            "update request state",
            self.store.update_request_state,
            request.id, transition.request_state, "reserved",
        )
        self._best_effort(
            "update computer state",
            self.store.update_computer_state,
            context.computer.id, transition.computer_state,
        )
        if transition.update_lastcheck:
            self._best_effort(
                "update last check time",
                self.store.update_reservation_lastcheck,
                context.reservation_id,
            )
        if transition.notify_user:
            await self.notify_user_timeout(context)
        if transition.log_ending and request.log_id is not None:
            self._best_effort(
                "record ending",
                self.store.update_log_ending,
                request.log_id, transition.log_ending,
            )
        self._load_log(context, "info", f"reserved phase resolved: {outcome}")

    async def notify_user_timeout(self, context: ReservationContext) -> None:
        if self.notifier is None:
            self.log.warning("No notifier configured, user not told about the timeout")
            return
        user = context.user
        subject, body = timeout_notice(context)

        if user.email_notices and user.email:
            await self._best_effort_async(
                "send timeout e-mail",
                self.notifier.send_email(
                    user.email, subject, body, context.affiliation.help_address
                ),
            )
        if user.wants_instant_messages:
            await self._best_effort_async(
                "send timeout instant message",
                self.notifier.send_instant_message(user.im_type, user.im_id, body),
            )

    # -- Helpers --------------------------------------------------------------

    def _ensure_password(self, context: ReservationContext) -> bool:
        reservation = context.reservation
        if reservation.password:
            return True
        password = generate_password()
        try:
            stored = self.store.set_reservation_password(reservation.id, password)
        except Exception as e:
            self.log.critical("Unable to store password for reservation %s: %s", reservation.id, e)
            return False
        if not stored:
            self.log.critical("Unable to store password for reservation %s", reservation.id)
            return False
        reservation.assign_password(password)
        return True

    async def _update_cluster(self, context: ReservationContext) -> None:
        node = self.binding.node_name
        if self.cluster_updater is None:
            self.log.warning(
                "Request %s is a cluster but cluster propagation is not configured",
                context.request.id,
            )
            return
        try:
            updated = await self.cluster_updater.update(context)
        except Exception as e:
            self.log.warning("Cluster propagation for %s raised: %s", node, e)
            updated = False
        if not updated:
            self.log.warning("Unable to propagate cluster addressing for %s", node)

    def _is_deleted(self, request_id: int) -> bool:
        try:
            return self.store.is_request_deleted(request_id)
        except Exception as e:
            self.log.warning("Unable to check whether request %s was deleted: %s", request_id, e)
            return False

    def _load_log(self, context: ReservationContext, loadstate: str, message: str) -> None:
        self._best_effort(
            f"record load log '{loadstate}'",
            self.store.insert_load_log,
            context.reservation_id, context.computer.id, loadstate, message,
        )

    def _best_effort(self, description: str, func: Callable[..., Any], *args: Any) -> bool:
        try:
            result = func(*args)
        except Exception as e:
            self.log.warning("Unable to %s: %s", description, e)
            return False
        if result is False:
            self.log.warning("Unable to %s", description)
            return False
        return True

    async def _best_effort_async(self, description: str, awaitable: Awaitable[Any]) -> bool:
        try:
            result = await awaitable
        except Exception as e:
            self.log.warning("Unable to %s: %s", description, e)
            return False
        if result is False:
            self.log.warning("Unable to %s", description)
            return False
        return True

    async def _publish(self, event: Any) -> None:
        if self.event_bus is None:
            return
        published = self.event_bus.publish([event])
        if inspect.isawaitable(published):
            await published
