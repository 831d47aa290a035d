"""
Domain Events Package

Architectural Intent:
- Contains domain events published by the reservation controller
- Events are the primary mechanism for cross-boundary communication
"""

from vigil.domain.events.event_base import DomainEvent
from vigil.domain.events.reservation_events import (
    ReservationAcknowledgedEvent,
    ReservationResolvedEvent,
)

__all__ = [
    "DomainEvent",
    "ReservationAcknowledgedEvent",
    "ReservationResolvedEvent",
]
