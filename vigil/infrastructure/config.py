"""
Configuration Module

Architectural Intent:
- Centralized configuration loading from a JSON file
- Provides typed access to all vigil settings
- Falls back to sensible defaults when config file is absent
- Environment variables override file-based config

Design Decisions:
- Config is a frozen dataclass for immutability after load
- Nested config sections map to sub-dataclasses
- Defaults match the timings the reservation workers were tuned for
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import dataclasses
import json
import logging
import os

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SSHConfig:
    """Remote session settings."""
    user: str = "root"
    port: int = 22
    identity_files: tuple[str, ...] = ()
    password: str = ""
    connect_timeout: int = 30


@dataclass(frozen=True)
class ExecutorConfig:
    """Remote command retry settings."""
    attempt_delay_seconds: float = 5.0


@dataclass(frozen=True)
class PollingConfig:
    """Readiness polling settings."""
    max_wait_seconds: int = 300
    attempt_delay_seconds: float = 15.0
    reboot_attempt_limit: int = 2
    initial_delay_seconds: int = 120
    response_timeout_seconds: int = 600


@dataclass(frozen=True)
class ReservationConfig:
    """Reserved-phase settings."""
    acknowledge_attempts: int = 180
    acknowledge_delay_seconds: float = 5.0
    connection_budget_seconds: int = 900
    connection_check_delay_seconds: float = 20.0
    source_configuration_directories: tuple[str, ...] = ("/usr/local/vigil/linux",)


@dataclass(frozen=True)
class NotificationsConfig:
    """User notification configuration."""
    email_smtp_host: str = ""
    email_smtp_port: int = 587
    email_from: str = ""
    im_webhook_url: str = ""


@dataclass(frozen=True)
class StoreConfig:
    """Persistent store configuration."""
    db_path: str = "vigil.db"


@dataclass(frozen=True)
class PowerConfig:
    """Power control configuration; {node} is replaced by the node name."""
    reset_command: str = ""


@dataclass(frozen=True)
class TelemetryConfig:
    """OpenTelemetry configuration."""
    endpoint: str = ""
    insecure: bool = False


@dataclass(frozen=True)
class VigilConfig:
    """Root configuration for the vigil application."""
    ssh: SSHConfig = field(default_factory=SSHConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    reservation: ReservationConfig = field(default_factory=ReservationConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    power: PowerConfig = field(default_factory=PowerConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    log_level: str = "WARNING"


def _env_override(data: dict, prefix: str = "VIGIL") -> dict:
    """Override config values with environment variables.

    Environment variables follow the pattern VIGIL_SECTION_KEY.
    For example: VIGIL_SSH_PORT=2222, VIGIL_EXECUTOR_ATTEMPT_DELAY_SECONDS=10
    """
    for key, value in os.environ.items():
        if not key.startswith(f"{prefix}_"):
            continue
        parts = key[len(prefix) + 1:].lower().split("_", 1)
        if len(parts) == 2 and parts[0] in _SECTIONS:
            section, field_name = parts
            if not isinstance(data.get(section), dict):
                data[section] = {}
            data[section][field_name] = value
        else:
            data[key[len(prefix) + 1:].lower()] = value
    return data


def _parse_config_file(path: Path) -> dict:
    """Parse a JSON config file. Returns empty dict on failure."""
    try:
        with open(path) as f:
            return json.load(f)
    except FileNotFoundError:
        logger.debug("Config file not found: %s", path)
        return {}
    except json.JSONDecodeError as e:
        logger.warning("Invalid config file %s: %s", path, e)
        return {}


def _build_sub_config(cls, data: dict):
    """Build a sub-config dataclass from a dict, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}

    for f in dataclasses.fields(cls):
        if f.name not in filtered:
            continue
        val = filtered[f.name]
        if f.type == "tuple[str, ...]":
            if isinstance(val, str):
                filtered[f.name] = tuple(v.strip() for v in val.split(",") if v.strip())
            elif isinstance(val, list):
                filtered[f.name] = tuple(val)
        elif isinstance(val, str):
            if f.type == "int":
                filtered[f.name] = int(val)
            elif f.type == "float":
                filtered[f.name] = float(val)
            elif f.type == "bool":
                filtered[f.name] = val.lower() in ("true", "1", "yes")

    return cls(**filtered)


_SECTIONS = {
    "ssh": SSHConfig,
    "executor": ExecutorConfig,
    "polling": PollingConfig,
    "reservation": ReservationConfig,
    "notifications": NotificationsConfig,
    "store": StoreConfig,
    "power": PowerConfig,
    "telemetry": TelemetryConfig,
}


def load_config(
    path: Optional[str] = None,
    env_prefix: str = "VIGIL",
) -> VigilConfig:
    """Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (VIGIL_SECTION_KEY)
    2. Config file values
    3. Defaults

    Args:
        path: Path to config file (JSON). Defaults to vigil.json in CWD.
        env_prefix: Environment variable prefix. Defaults to VIGIL.
    """
    config_path = Path(path) if path else Path("vigil.json")
    data = _parse_config_file(config_path)
    data = _env_override(data, env_prefix)

    sections = {
        name: _build_sub_config(cls, data.get(name) or {})
        for name, cls in _SECTIONS.items()
    }
    return VigilConfig(**sections, log_level=data.get("log_level", "WARNING"))
