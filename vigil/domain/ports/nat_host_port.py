"""
NAT Host Port

Architectural Intent:
- Control of a shared NAT host that fronts private nodes
- Forwards are namespaced by reservation id so reservations never interfere
- Every mutation is idempotent and safe under concurrent workers
"""

from typing import Protocol, runtime_checkable

from vigil.domain.value_objects.firewall import NatForward


@runtime_checkable
class NatHostPort(Protocol):
    @property
    def hostname(self) -> str: ...

    async def configure_nat(self, reservation_id: int) -> bool:
        """Prepare the reservation's forwarding namespace; no-op if present."""
        ...

    async def add_nat_port_forward(self, forward: NatForward) -> bool:
        """Add a forward; adding an existing forward succeeds without change."""
        ...

    async def remove_nat_port_forwards(self, reservation_id: int) -> bool:
        """Remove every forward that belongs to the reservation."""
        ...
