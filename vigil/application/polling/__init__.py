"""
Polling Package

Architectural Intent:
- Readiness polling primitives shared by provisioning and reservation workers
"""

from vigil.application.polling.readiness_poller import ReadinessPoller

__all__ = ["ReadinessPoller"]
