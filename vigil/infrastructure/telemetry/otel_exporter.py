"""
OpenTelemetry Exporter for vigil

Architectural Intent:
- Exports reservation outcomes, readiness wait durations and command retry
  counts to OTLP-compatible backends
- Subscribes to ReservationResolvedEvent on the event bus
- Buffers recorded metrics locally so they are observable without a backend

Security:
- Endpoint defaults to empty string (must be explicitly configured)
- Non-localhost http:// endpoints rejected unless insecure=True
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Any
from urllib.parse import urlparse
import logging
from datetime import datetime, UTC

from vigil.domain.events.reservation_events import ReservationResolvedEvent

logger = logging.getLogger(__name__)


@dataclass
class OTELConfig:
    endpoint: str = ""
    service_name: str = "vigil"
    environment: str = "development"
    enable_metrics: bool = True
    insecure: bool = False

    def __post_init__(self) -> None:
        if self.endpoint:
            parsed = urlparse(self.endpoint)
            is_localhost = parsed.hostname in ("localhost", "127.0.0.1", "::1")
            if parsed.scheme == "http" and not is_localhost and not self.insecure:
                raise ValueError(
                    f"Non-localhost HTTP endpoint '{self.endpoint}' requires "
                    "insecure=True or use https://."
                )


class OTELExporter:
    """
    OpenTelemetry exporter for reservation workers.
    """

    def __init__(self, config: OTELConfig):
        self.config = config
        self._initialized = False
        self._metrics_buffer: list[dict[str, Any]] = []
        self._meter: Any = None
        self._instruments: dict[str, Any] = {}

    @property
    def metrics_buffer(self) -> list[dict[str, Any]]:
        return list(self._metrics_buffer)

    async def initialize(self) -> None:
        """Initialize OpenTelemetry SDK and exporters."""
        if not self.config.endpoint:
            logger.info("OTEL endpoint not configured, telemetry disabled")
            return

        try:
            from opentelemetry.sdk.resources import Resource, SERVICE_NAME
            from opentelemetry import metrics
            from opentelemetry.sdk.metrics import MeterProvider
            from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
            from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
                OTLPMetricExporter,
            )

            resource = Resource(
                attributes={
                    SERVICE_NAME: self.config.service_name,
                    "environment": self.config.environment,
                }
            )

            if self.config.enable_metrics:
                metric_reader = PeriodicExportingMetricReader(
                    OTLPMetricExporter(
                        endpoint=self.config.endpoint,
                        insecure=self.config.insecure,
                    )
                )
                metrics.set_meter_provider(
                    MeterProvider(resource=resource, metric_readers=[metric_reader])
                )
                self._meter = metrics.get_meter(__name__)

            self._initialized = True

        except ImportError:
            logger.warning("OpenTelemetry SDK not installed, telemetry disabled")
            self._initialized = False
        except Exception as e:
            logger.error("Failed to initialize OTEL: %s", e)
            self._initialized = False

    def _instrument(self, name: str, kind: str, unit: str = "") -> Any:
        if name not in self._instruments and self._meter:
            if kind == "counter":
                self._instruments[name] = self._meter.create_counter(name, unit=unit)
            else:
                self._instruments[name] = self._meter.create_histogram(name, unit=unit)
        return self._instruments.get(name)

    def record_metric(
        self,
        name: str,
        value: float,
        unit: str = "",
        attributes: Optional[dict[str, str]] = None,
        kind: str = "histogram",
    ) -> None:
        """Record a metric value."""
        self._metrics_buffer.append(
            {
                "name": name,
                "value": value,
                "unit": unit,
                "attributes": attributes or {},
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

        if self._initialized:
            instrument = self._instrument(name, kind, unit)
            if instrument is None:
                return
            if kind == "counter":
                instrument.add(value, attributes=attributes or {})
            else:
                instrument.record(value, attributes=attributes or {})

    def record_outcome(self, reservation_id: int, outcome: str, node: str = "") -> None:
        self.record_metric(
            "vigil.reservation.outcome",
            1.0,
            attributes={
                "reservation_id": str(reservation_id),
                "outcome": outcome,
                "node": node,
            },
            kind="counter",
        )

    def record_wait_duration(self, node: str, phase: str, seconds: float) -> None:
        self.record_metric(
            "vigil.node.wait_seconds",
            seconds,
            unit="s",
            attributes={"node": node, "phase": phase},
        )

    def record_command_attempts(self, node: str, attempts: int, success: bool) -> None:
        self.record_metric(
            "vigil.command.attempts",
            float(attempts),
            attributes={"node": node, "success": str(success)},
        )

    async def on_reservation_resolved(self, event: ReservationResolvedEvent) -> None:
        self.record_outcome(event.reservation_id, event.outcome, event.node)

    async def export(self) -> None:
        """Flush the local buffer; the SDK reader exports on its own schedule."""
        exported_count = len(self._metrics_buffer)
        self._metrics_buffer.clear()
        if exported_count:
            logger.debug("Flushed %d buffered metrics", exported_count)

