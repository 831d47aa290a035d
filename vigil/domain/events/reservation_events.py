"""
Reservation Events

- ReservationAcknowledgedEvent: the user acknowledged and a remote IP is known
- ReservationResolvedEvent: the reserved phase reached a terminal outcome
"""

from dataclasses import dataclass
from typing import Any

from vigil.domain.events.event_base import DomainEvent


@dataclass(frozen=True)
class ReservationAcknowledgedEvent(DomainEvent):
    reservation_id: int = 0
    remote_ip: str = ""
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            reservation_id=self.reservation_id,
            remote_ip=self.remote_ip,
            attempts=self.attempts,
        )
        return data


@dataclass(frozen=True)
class ReservationResolvedEvent(DomainEvent):
    reservation_id: int = 0
    request_id: int = 0
    outcome: str = ""
    node: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            reservation_id=self.reservation_id,
            request_id=self.request_id,
            outcome=self.outcome,
            node=self.node,
        )
        return data
