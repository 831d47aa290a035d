"""
vigil Telemetry Infrastructure

Architectural Intent:
- OpenTelemetry integration for reservation outcome and wait-time metrics
"""

from vigil.infrastructure.telemetry.otel_exporter import (
    OTELExporter,
    OTELConfig,
)

__all__ = [
    "OTELExporter",
    "OTELConfig",
]
