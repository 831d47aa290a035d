"""
Reservation Module

Architectural Intent:
- Reservation is one user's claim on one computer within a request
- Request is the unit of work; several reservations make a cluster request
- ReservationContext is the read model a worker loads once per pass

Design Decisions:
- Entities are mutable dataclasses; the store is the source of truth
- The reservation password is set once and never replaced
- Remote IP "0" or empty means the user has not acknowledged yet
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Optional

from vigil.domain.entities.computer import ComputerNode
from vigil.domain.entities.connect_method import ConnectMethod

TERMINAL_REQUEST_STATES = ("deleted", "timeout")


@dataclass
class Reservation:
    id: int
    request_id: int
    computer_id: int
    remote_ip: str = ""
    password: Optional[str] = None
    lastcheck: Optional[datetime] = None

    @property
    def acknowledged(self) -> bool:
        return is_acknowledged(self.remote_ip)

    def assign_password(self, password: str) -> None:
        if self.password:
            raise ValueError(f"Reservation {self.id} already has a password")
        if not password:
            raise ValueError("Password cannot be empty")
        self.password = password


def is_acknowledged(remote_ip: Optional[str]) -> bool:
    return bool(remote_ip) and remote_ip != "0"


@dataclass(frozen=True)
class ClusterMember:
    reservation_id: int
    computer_id: int
    hostname: str
    public_ip: Optional[str] = None


@dataclass(frozen=True)
class ServerRequest:
    id: int
    fixed_ip: Optional[str] = None


@dataclass
class Request:
    id: int
    state: str
    laststate: str = "reserved"
    log_id: Optional[int] = None
    for_imaging: bool = False
    end: Optional[datetime] = None
    members: tuple[ClusterMember, ...] = ()
    server_request: Optional[ServerRequest] = None

    @property
    def reservation_count(self) -> int:
        return max(len(self.members), 1)

    @property
    def is_cluster(self) -> bool:
        return self.reservation_count > 1

    @property
    def in_terminal_state(self) -> bool:
        return self.state in TERMINAL_REQUEST_STATES

    def has_ended(self, now: Optional[datetime] = None) -> bool:
        if self.end is None:
            return False
        return (now or datetime.now(UTC)) >= self.end


@dataclass(frozen=True)
class Image:
    name: str
    pretty_name: str = ""
    os_type: str = "linux"
    check_user: bool = True

    @property
    def display_name(self) -> str:
        return self.pretty_name or self.name


@dataclass(frozen=True)
class Affiliation:
    name: str = "Local"
    site_name: str = "vigil"
    site_url: str = ""
    help_address: str = ""


@dataclass(frozen=True)
class User:
    login: str
    email: str = ""
    email_notices: bool = True
    im_type: str = "none"
    im_id: str = ""
    affiliation: Affiliation = field(default_factory=Affiliation)

    @property
    def wants_instant_messages(self) -> bool:
        return bool(self.im_type) and self.im_type.lower() != "none"


@dataclass(frozen=True)
class ManagementNode:
    hostname: str
    ip_addresses: tuple[str, ...] = ()
    public_ip_configuration: str = "dhcp"
    public_netmask: str = ""
    public_gateway: str = ""
    public_dns_servers: tuple[str, ...] = ()


@dataclass
class ReservationContext:
    """Everything one reservation worker needs, loaded once per pass."""
    reservation: Reservation
    request: Request
    computer: ComputerNode
    image: Image
    user: User
    management_node: ManagementNode
    connect_methods: tuple[ConnectMethod, ...] = ()

    @property
    def reservation_id(self) -> int:
        return self.reservation.id

    @property
    def affiliation(self) -> Affiliation:
        return self.user.affiliation

    @property
    def cluster_peers(self) -> tuple[ClusterMember, ...]:
        return tuple(
            m for m in self.request.members if m.reservation_id != self.reservation.id
        )
