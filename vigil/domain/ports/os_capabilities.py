"""
OS Capability Ports

Architectural Intent:
- OSBinding is the contract every concrete node-control implementation satisfies
- Optional operations are separate capability protocols a binding may or may not satisfy
- Callers check capability membership with supports() before invoking

Design Decisions:
- One runtime_checkable Protocol per optional operation, named by a Capability enum
- Membership is structural (isinstance against the protocol), no per-call reflection
- A missing required capability is a configuration fault, not a retryable error
- Configuration-source directories are an explicit ordered tuple on the binding
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, Union, runtime_checkable

from vigil.domain.value_objects.command_result import CommandResult
from vigil.domain.value_objects.network_configuration import NetworkConfiguration
from vigil.domain.value_objects.outcome import Outcome


@dataclass(frozen=True)
class PortConnection:
    """An established connection to a local port on the node."""
    protocol: str
    port: int
    remote_ip: str


@runtime_checkable
class OSBinding(Protocol):
    @property
    def node_name(self) -> str: ...

    @property
    def source_configuration_directories(self) -> tuple[str, ...]: ...

    async def execute(
        self, command: str, timeout_seconds: int = 60, max_attempts: int = 3
    ) -> Optional[CommandResult]: ...

    async def service_exists(self, service_name: str) -> bool: ...

    async def start_service(self, service_name: str) -> bool: ...

    async def stop_service(self, service_name: str) -> bool: ...

    async def file_exists(self, path: str) -> bool: ...

    async def get_network_configuration(
        self, refresh: bool = False
    ) -> NetworkConfiguration: ...


@runtime_checkable
class GrantsAccess(Protocol):
    async def grant_access(self) -> bool: ...


@runtime_checkable
class RunsPostReserve(Protocol):
    async def post_reserve(self) -> bool: ...


@runtime_checkable
class ReportsPublicAddress(Protocol):
    async def get_public_ip_address(self) -> Optional[str]: ...


@runtime_checkable
class SetsStaticPublicAddress(Protocol):
    async def set_static_public_address(self) -> bool: ...


@runtime_checkable
class UpdatesPublicHostname(Protocol):
    async def update_public_hostname(self) -> bool: ...


@runtime_checkable
class ChecksConnectionOnPort(Protocol):
    async def check_connection_on_port(self, port: int) -> Optional[Outcome]:
        """CONNECTED, CONN_WRONG_IP, or None when nobody is connected."""
        ...


@runtime_checkable
class ReportsPortConnections(Protocol):
    async def get_port_connection_info(self) -> Optional[list[PortConnection]]:
        """Established connections, or None if they could not be listed."""
        ...


@runtime_checkable
class EnablesFirewallPort(Protocol):
    async def enable_firewall_port(
        self,
        protocol: str,
        port: Union[int, str],
        scope: str = "0.0.0.0/0",
        overwrite: bool = False,
    ) -> bool: ...


@runtime_checkable
class DisablesFirewallPort(Protocol):
    async def disable_firewall_port(
        self, protocol: str, port: Union[int, str], scope: Optional[str] = None
    ) -> bool: ...


@runtime_checkable
class ReportsFirewallConfiguration(Protocol):
    async def get_firewall_configuration(self) -> Optional[list[str]]: ...


class Capability(Enum):
    GRANT_ACCESS = "grant_access"
    POST_RESERVE = "post_reserve"
    GET_PUBLIC_IP_ADDRESS = "get_public_ip_address"
    SET_STATIC_PUBLIC_ADDRESS = "set_static_public_address"
    UPDATE_PUBLIC_HOSTNAME = "update_public_hostname"
    CHECK_CONNECTION_ON_PORT = "check_connection_on_port"
    GET_PORT_CONNECTION_INFO = "get_port_connection_info"
    ENABLE_FIREWALL_PORT = "enable_firewall_port"
    DISABLE_FIREWALL_PORT = "disable_firewall_port"
    GET_FIREWALL_CONFIGURATION = "get_firewall_configuration"


_PROTOCOLS: dict[Capability, type] = {
    Capability.GRANT_ACCESS: GrantsAccess,
    Capability.POST_RESERVE: RunsPostReserve,
    Capability.GET_PUBLIC_IP_ADDRESS: ReportsPublicAddress,
    Capability.SET_STATIC_PUBLIC_ADDRESS: SetsStaticPublicAddress,
    Capability.UPDATE_PUBLIC_HOSTNAME: UpdatesPublicHostname,
    Capability.CHECK_CONNECTION_ON_PORT: ChecksConnectionOnPort,
    Capability.GET_PORT_CONNECTION_INFO: ReportsPortConnections,
    Capability.ENABLE_FIREWALL_PORT: EnablesFirewallPort,
    Capability.DISABLE_FIREWALL_PORT: DisablesFirewallPort,
    Capability.GET_FIREWALL_CONFIGURATION: ReportsFirewallConfiguration,
}


def supports(binding: object, capability: Capability) -> bool:
    """True when the binding implements the capability's operation."""
    return isinstance(binding, _PROTOCOLS[capability])


def capabilities_of(binding: object) -> frozenset[Capability]:
    return frozenset(c for c in Capability if supports(binding, c))
