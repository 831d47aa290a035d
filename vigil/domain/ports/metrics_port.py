"""
Metrics Port

Architectural Intent:
- Narrow interface for recording wait durations and command retry counts
- Implemented by the OpenTelemetry exporter; optional for every component
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class MetricsPort(Protocol):
    def record_wait_duration(self, node: str, phase: str, seconds: float) -> None: ...

    def record_command_attempts(self, node: str, attempts: int, success: bool) -> None: ...
