"""
Domain Ports Package

Architectural Intent:
- Contains port interfaces (abstract contracts) for external dependencies
- Ports define what the domain needs, adapters implement how
- Follows Hexagonal Architecture principles
"""

from vigil.domain.ports.remote_executor_port import RemoteExecutorPort
from vigil.domain.ports.reservation_store_port import ReservationStorePort
from vigil.domain.ports.notification_port import UserNotificationPort
from vigil.domain.ports.reachability_port import ReachabilityPort
from vigil.domain.ports.power_control_port import PowerControlPort
from vigil.domain.ports.nat_host_port import NatHostPort
from vigil.domain.ports.event_bus_port import EventBusPort
from vigil.domain.ports.metrics_port import MetricsPort
from vigil.domain.ports.os_capabilities import (
    Capability,
    OSBinding,
    PortConnection,
    supports,
)

__all__ = [
    "RemoteExecutorPort",
    "ReservationStorePort",
    "UserNotificationPort",
    "ReachabilityPort",
    "PowerControlPort",
    "NatHostPort",
    "EventBusPort",
    "MetricsPort",
    "Capability",
    "OSBinding",
    "PortConnection",
    "supports",
]
