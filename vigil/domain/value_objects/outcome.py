"""
Outcome Value Object

Architectural Intent:
- Closed set of terminal labels for the reserved phase of a reservation
- Each outcome carries the request/computer state transition it commits
- Policy outcomes are values, never exceptions

Design Decisions:
- Transition table is data, looked up by the controller at commit time
- DELETED has no transition: the deletion path owns cleanup
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from vigil.domain.value_objects.severity import Severity


class Outcome(Enum):
    CONNECTED = "connected"
    CONN_WRONG_IP = "conn_wrong_ip"
    NOLOGIN = "nologin"
    NOACK = "noack"
    FAILED = "failed"
    TIMEOUT = "timeout"
    DELETED = "deleted"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class StateTransition:
    """State writes committed for one terminal outcome."""
    request_state: str
    computer_state: str
    update_lastcheck: bool = False
    notify_user: bool = False
    log_ending: Optional[str] = None
    severity: Severity = Severity.OK


# TODO: conn_wrong_ip commits like connected until a policy for connections
# from an unexpected address is agreed; revisit once that decision lands.
_TRANSITIONS: dict[Outcome, StateTransition] = {
    Outcome.CONNECTED: StateTransition("inuse", "inuse", update_lastcheck=True),
    Outcome.CONN_WRONG_IP: StateTransition("inuse", "inuse", update_lastcheck=True),
    Outcome.NOLOGIN: StateTransition(
        "timeout", "timeout", notify_user=True, log_ending="nologin",
        severity=Severity.WARNING,
    ),
    Outcome.NOACK: StateTransition(
        "timeout", "timeout", notify_user=True, log_ending="noack",
        severity=Severity.WARNING,
    ),
    Outcome.FAILED: StateTransition(
        "failed", "failed", log_ending="failed", severity=Severity.CRITICAL
    ),
    Outcome.TIMEOUT: StateTransition(
        "timeout", "timeout", log_ending="timeout", severity=Severity.WARNING
    ),
}


def transition_for(outcome: Outcome) -> Optional[StateTransition]:
    """Returns the committed transition, or None when nothing may be written."""
    return _TRANSITIONS.get(outcome)
