"""
Composition Root

Architectural Intent:
- Dependency injection composition root for the vigil application
- Single place where all adapters and use cases are wired together
- No adapter instantiation should occur outside this module (except CLI)

Design Decisions:
- Uses simple dataclass containers instead of a DI framework
- Shared adapters (store, reachability, notifiers, telemetry) live in VigilContainer
- Each reservation worker gets its own executor and therefore its own session pool
- Lazy initialization for optional components (power control, OTEL)
"""

from dataclasses import dataclass
from typing import Optional

from vigil.application.polling.readiness_poller import ReadinessPoller
from vigil.application.use_cases.apply_connect_methods import ConnectMethodProvisioner
from vigil.application.use_cases.check_connection import ConnectionChecker
from vigil.application.use_cases.process_reserved import ReservationController
from vigil.application.use_cases.resolve_timings import TimingResolver
from vigil.application.use_cases.update_cluster import ClusterUpdater
from vigil.application.use_cases.update_public_address import PublicAddressUpdater
from vigil.domain.entities.reservation import Reservation, ReservationContext
from vigil.domain.events.reservation_events import ReservationResolvedEvent
from vigil.domain.value_objects.outcome import Outcome
from vigil.infrastructure.adapters.email_adapter import EmailAdapter
from vigil.infrastructure.adapters.fabric_executor import FabricRemoteExecutor
from vigil.infrastructure.adapters.im_adapter import InstantMessageAdapter
from vigil.infrastructure.adapters.iptables_firewall import (
    IptablesFirewall,
    IptablesNatHost,
    IptablesRunner,
)
from vigil.infrastructure.adapters.linux_os import LinuxOSBinding
from vigil.infrastructure.adapters.network_reachability_adapter import NetworkReachabilityAdapter
from vigil.infrastructure.adapters.power_control import CommandPowerControl
from vigil.infrastructure.adapters.user_notifier import UserNotifier
from vigil.infrastructure.config import VigilConfig, load_config
from vigil.infrastructure.event_bus import EventBus
from vigil.infrastructure.logging import ReservationLoggerAdapter, reservation_logger
from vigil.infrastructure.repositories.sqlite_store import SQLiteStore
from vigil.infrastructure.telemetry.otel_exporter import OTELConfig, OTELExporter

SUPPORTED_OS_TYPES = ("linux",)


@dataclass
class VigilContainer:
    """DI container holding the adapters shared by every worker."""

    config: VigilConfig
    store: SQLiteStore
    reachability: NetworkReachabilityAdapter
    power_control: Optional[CommandPowerControl]
    notifier: UserNotifier
    event_bus: EventBus
    timings: TimingResolver
    metrics: Optional[OTELExporter] = None

    async def start(self) -> None:
        if self.metrics is not None:
            await self.metrics.initialize()

    async def close(self) -> None:
        if self.metrics is not None:
            await self.metrics.export()
        self.store.close()

    def create_executor(self) -> FabricRemoteExecutor:
        ssh = self.config.ssh
        return FabricRemoteExecutor(
            user=ssh.user,
            port=ssh.port,
            identity_files=ssh.identity_files,
            password=ssh.password,
            connect_timeout=ssh.connect_timeout,
            attempt_delay_seconds=self.config.executor.attempt_delay_seconds,
            metrics=self.metrics,
        )

    def create_poller(
        self,
        node: str,
        executor: FabricRemoteExecutor,
        reservation: Optional[Reservation] = None,
        log: Optional[ReservationLoggerAdapter] = None,
    ) -> ReadinessPoller:
        return ReadinessPoller(
            node,
            executor,
            self.reachability,
            power_control=self.power_control,
            store=self.store,
            reservation=reservation,
            metrics=self.metrics,
            log=log,
        )


@dataclass
class ReservationWorker:
    """One reservation's wired object graph."""

    context: ReservationContext
    executor: FabricRemoteExecutor
    binding: LinuxOSBinding
    nat_host: Optional[IptablesNatHost]
    poller: ReadinessPoller
    provisioner: ConnectMethodProvisioner
    connection_checker: ConnectionChecker
    cluster_updater: ClusterUpdater
    public_address: PublicAddressUpdater
    controller: ReservationController

    async def process(self) -> Optional[Outcome]:
        return await self.controller.process(self.context)

    async def close(self) -> None:
        await self.executor.close()


def create_container(config: Optional[VigilConfig] = None) -> VigilContainer:
    """Create and wire the shared dependencies."""
    config = config or load_config()

    store = SQLiteStore(config.store.db_path)
    store.connect()

    power_control = None
    if config.power.reset_command:
        power_control = CommandPowerControl(config.power.reset_command)

    notifications = config.notifications
    notifier = UserNotifier(
        EmailAdapter(
            smtp_host=notifications.email_smtp_host,
            smtp_port=notifications.email_smtp_port,
            sender=notifications.email_from,
        ),
        InstantMessageAdapter(webhook_url=notifications.im_webhook_url),
    )

    reservation = config.reservation
    timings = TimingResolver(
        store,
        defaults={
            "acknowledgetimeout": int(
                reservation.acknowledge_attempts * reservation.acknowledge_delay_seconds
            ),
            "connecttimeout": int(reservation.connection_budget_seconds),
        },
    )

    event_bus = EventBus()
    metrics = None
    if config.telemetry.endpoint:
        metrics = OTELExporter(
            OTELConfig(
                endpoint=config.telemetry.endpoint,
                insecure=config.telemetry.insecure,
            )
        )
        event_bus.subscribe(ReservationResolvedEvent, metrics.on_reservation_resolved)

    return VigilContainer(
        config=config,
        store=store,
        reachability=NetworkReachabilityAdapter(),
        power_control=power_control,
        notifier=notifier,
        event_bus=event_bus,
        timings=timings,
        metrics=metrics,
    )


def create_worker(container: VigilContainer, context: ReservationContext) -> ReservationWorker:
    """Wire one reservation worker."""
    if context.image.os_type not in SUPPORTED_OS_TYPES:
        raise ValueError(
            f"Unsupported OS type {context.image.os_type!r} for image {context.image.name}"
        )

    config = container.config
    computer = context.computer
    log = reservation_logger("vigil.worker", context.reservation_id, computer.node_name)

    executor = container.create_executor()
    binding = LinuxOSBinding(
        executor,
        context,
        IptablesFirewall(IptablesRunner(executor, computer.node_name)),
        source_configuration_directories=config.reservation.source_configuration_directories,
        log=log,
    )
    nat_host = None
    if computer.behind_nat:
        nat_host = IptablesNatHost(IptablesRunner(executor, computer.nat_host, table="nat"))

    provisioner = ConnectMethodProvisioner(binding, computer.private_ip, log=log)
    connection_checker = ConnectionChecker(
        container.store,
        binding,
        provisioner,
        attempt_delay_seconds=config.reservation.connection_check_delay_seconds,
        log=log,
    )
    cluster_updater = ClusterUpdater(executor, binding, log=log)
    controller = ReservationController(
        container.store,
        binding,
        provisioner,
        connection_checker,
        notifier=container.notifier,
        cluster_updater=cluster_updater,
        timings=container.timings,
        event_bus=container.event_bus,
        nat_host=nat_host,
        acknowledge_attempts=config.reservation.acknowledge_attempts,
        acknowledge_delay_seconds=config.reservation.acknowledge_delay_seconds,
        connection_budget_seconds=config.reservation.connection_budget_seconds,
        log=log,
    )

    return ReservationWorker(
        context=context,
        executor=executor,
        binding=binding,
        nat_host=nat_host,
        poller=container.create_poller(
            computer.node_name, executor, context.reservation, log
        ),
        provisioner=provisioner,
        connection_checker=connection_checker,
        cluster_updater=cluster_updater,
        public_address=PublicAddressUpdater(
            container.store, binding, container.reachability, log=log
        ),
        controller=controller,
    )
