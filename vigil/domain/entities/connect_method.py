"""
Connect Method Entity

Architectural Intent:
- Declarative, read-only description of how a user reaches a provisioned node
- Ordered (protocol, port) pairs with optional NAT public ports
- Optional backing service and startup/install scripts
"""

from dataclasses import dataclass
from typing import Any, Optional

from vigil.domain.value_objects.firewall import normalize_protocol


@dataclass(frozen=True)
class ConnectMethodPort:
    protocol: str
    port: int
    nat_public_port: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "protocol", normalize_protocol(self.protocol))
        if not (1 <= int(self.port) <= 65535):
            raise ValueError(f"Port must be 1-65535, got {self.port}")


@dataclass(frozen=True)
class ConnectMethod:
    id: int
    name: str
    ports: tuple[ConnectMethodPort, ...] = ()
    service_name: Optional[str] = None
    startup_script: Optional[str] = None
    install_script: Optional[str] = None
    disabled: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConnectMethod":
        ports = tuple(
            ConnectMethodPort(
                protocol=p.get("protocol", "tcp"),
                port=int(p["port"]),
                nat_public_port=(
                    int(p["nat_public_port"])
                    if p.get("nat_public_port") is not None
                    else None
                ),
            )
            for p in data.get("ports", [])
        )
        return cls(
            id=int(data["id"]),
            name=data.get("name", f"connect-method-{data['id']}"),
            ports=ports,
            service_name=data.get("service_name") or None,
            startup_script=data.get("startup_script") or None,
            install_script=data.get("install_script") or None,
            disabled=bool(data.get("disabled", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "ports": [
                {
                    "protocol": p.protocol,
                    "port": p.port,
                    "nat_public_port": p.nat_public_port,
                }
                for p in self.ports
            ],
            "service_name": self.service_name,
            "startup_script": self.startup_script,
            "install_script": self.install_script,
            "disabled": self.disabled,
        }
