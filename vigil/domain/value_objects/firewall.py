"""
Firewall Value Objects

Architectural Intent:
- FirewallRule and NatForward are the keys of idempotent side effects
- Adapters translate them into concrete rule syntax and check-before-add
- NatForward carries the reservation id so forwards can be torn down per reservation
"""

from dataclasses import dataclass
from typing import Union

ANY_PORT = "any"
_WILDCARD_PROTOCOLS = ("*", "any", "all")


def normalize_protocol(protocol: str) -> str:
    protocol = (protocol or "").strip().lower()
    return "all" if protocol in _WILDCARD_PROTOCOLS or not protocol else protocol


def protocol_matches(declared: str, observed: str) -> bool:
    """A wildcard declared protocol matches anything."""
    declared = normalize_protocol(declared)
    return declared == "all" or declared == normalize_protocol(observed)


@dataclass(frozen=True)
class FirewallRule:
    """
    Value Object: allow (protocol, port) from a remote address range.
    """
    protocol: str
    port: Union[int, str]
    scope: str = "0.0.0.0/0"

    def __post_init__(self) -> None:
        object.__setattr__(self, "protocol", normalize_protocol(self.protocol))
        if self.port != ANY_PORT and not (1 <= int(self.port) <= 65535):
            raise ValueError(f"Port must be 1-65535 or 'any', got {self.port}")

    @property
    def unrestricted(self) -> bool:
        return self.scope == "0.0.0.0/0"

    def __str__(self) -> str:
        return f"{self.protocol}/{self.port} from {self.scope}"


@dataclass(frozen=True)
class NatForward:
    """
    Value Object: forward a public port on the NAT host to a private node.
    """
    protocol: str
    public_port: int
    private_ip: str
    private_port: int
    reservation_id: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "protocol", normalize_protocol(self.protocol))
        for value in (self.public_port, self.private_port):
            if not (1 <= int(value) <= 65535):
                raise ValueError(f"Port must be 1-65535, got {value}")
        if not self.private_ip:
            raise ValueError("NAT forward requires a private IP")

    def __str__(self) -> str:
        return (
            f"{self.protocol}/{self.public_port} -> "
            f"{self.private_ip}:{self.private_port} (reservation {self.reservation_id})"
        )
