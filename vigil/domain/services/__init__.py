"""
Domain Services Package

Architectural Intent:
- Contains pure domain services with no I/O
"""

from vigil.domain.services.interface_classifier import (
    InterfaceClassification,
    InterfaceRole,
    NetworkConfigurationError,
    NetworkInterfaceClassifier,
    classify_interfaces,
)

__all__ = [
    "InterfaceClassification",
    "InterfaceRole",
    "NetworkConfigurationError",
    "NetworkInterfaceClassifier",
    "classify_interfaces",
]
