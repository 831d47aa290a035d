"""
Resolve Timings Use Case

Architectural Intent:
- Looks up reservation timing values that sites may override per affiliation
- Lookup order: variable "<name>|<affiliation>", then "<name>", then default
- Defaults may be overridden per deployment; only known names are accepted
"""

import logging
from typing import Optional

from vigil.domain.ports.reservation_store_port import ReservationStorePort

logger = logging.getLogger(__name__)

DEFAULT_TIMINGS: dict[str, int] = {
    "acknowledgetimeout": 900,
    "connecttimeout": 900,
    "wait_for_connect": 900,
    "wait_for_reconnect": 900,
    "general_inuse_check": 300,
    "server_inuse_check": 900,
    "cluster_inuse_check": 900,
    "general_end_notice_first": 600,
    "general_end_notice_second": 300,
    "ignore_connections_gte": 1440,
}
FALLBACK_SECONDS = 900


class TimingResolver:
    def __init__(
        self,
        store: ReservationStorePort,
        defaults: Optional[dict[str, int]] = None,
    ):
        self.store = store
        unknown = set(defaults or {}) - set(DEFAULT_TIMINGS)
        if unknown:
            raise ValueError(f"Unknown timings: {', '.join(sorted(unknown))}")
        self.defaults = {**DEFAULT_TIMINGS, **(defaults or {})}

    def get(self, name: str, affiliation: Optional[str] = None) -> int:
        if name not in self.defaults:
            logger.warning("Unknown timing %r, using %ds", name, FALLBACK_SECONDS)
            return FALLBACK_SECONDS

        keys = [f"{name}|{affiliation}", name] if affiliation else [name]
        for key in keys:
            value = self._read(key)
            if value is not None:
                logger.debug("Timing %s = %ds (from variable %s)", name, value, key)
                return value
        return self.defaults[name]

    def _read(self, key: str) -> Optional[int]:
        try:
            raw = self.store.get_variable(key)
        except Exception as e:
            logger.warning("Unable to read timing variable %s: %s", key, e)
            return None
        if raw is None or raw == "":
            return None
        try:
            value = int(raw)
        except (TypeError, ValueError):
            logger.warning("Timing variable %s is not an integer: %r", key, raw)
            return None
        return value if value > 0 else None
