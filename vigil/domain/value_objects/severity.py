import logging
from enum import IntEnum


class Severity(IntEnum):
    """Severity levels for reservation progress; values are logging levels."""
    DEBUG = logging.DEBUG
    OK = logging.INFO
    WARNING = logging.WARNING
    CRITICAL = logging.CRITICAL
