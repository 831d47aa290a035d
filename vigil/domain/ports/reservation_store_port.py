"""
Reservation Store Port

Architectural Intent:
- Narrow interface onto the persistent store of requests, reservations and computers
- The controller only reads context, polls acknowledgement/deletion and writes states
- Key-value variables carry cross-reservation signals (timings, fixed IPs)

Design Decisions:
- Synchronous, like the SQLite repository that implements it
- Writes return bool so callers can treat them as best-effort
- get_remote_ip returns None only when the value could not be read
"""

from typing import Optional, Protocol, runtime_checkable

from vigil.domain.entities.reservation import ReservationContext


@runtime_checkable
class ReservationStorePort(Protocol):
    def get_reservation_context(self, reservation_id: int) -> ReservationContext: ...

    def get_remote_ip(self, reservation_id: int) -> Optional[str]: ...

    def is_request_deleted(self, request_id: int) -> bool: ...

    def update_request_state(
        self, request_id: int, state: str, laststate: str
    ) -> bool: ...

    def update_computer_state(self, computer_id: int, state: str) -> bool: ...

    def update_reservation_lastcheck(self, reservation_id: int) -> bool: ...

    def set_reservation_password(self, reservation_id: int, password: str) -> bool: ...

    def update_log_loaded(self, log_id: int) -> bool: ...

    def update_log_ending(self, log_id: int, ending: str) -> bool: ...

    def insert_load_log(
        self, reservation_id: int, computer_id: int, loadstate: str, message: str
    ) -> bool: ...

    def get_variable(self, name: str) -> Optional[str]: ...

    def set_variable(self, name: str, value: str) -> bool: ...

    def update_computer_public_ip(self, computer_id: int, public_ip: str) -> bool: ...

    def is_public_ip_assigned(self, public_ip: str, exclude_computer_id: int) -> bool: ...
