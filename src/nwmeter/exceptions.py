"""
Error types raised by the meter.

Unrecognized log lines are not errors: they parse to the Unrecognized event.
Out-of-range caster attributes are clamped, never raised.
"""

from pathlib import Path
from typing import Optional, Union


class MeterError(Exception):
    """Base class for meter errors."""


class SourceUnavailableError(MeterError):
    """The watched log file is missing or cannot be read right now."""

    def __init__(self, path: Union[str, Path], cause: Optional[OSError] = None):
        self.path = Path(path)
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Log source unavailable: {self.path}{detail}")


class WatcherConfigError(MeterError):
    """Fatal watcher problem, surfaced once instead of retried forever."""


class LineDecodeError(MeterError):
    """A log line contained bytes that could not be decoded."""

    def __init__(self, raw: bytes, encoding: str):
        self.raw = raw
        self.encoding = encoding
        super().__init__(f"Could not decode {len(raw)} bytes as {encoding}")


class ConfigurationError(MeterError):
    """Configuration file could not be read or holds invalid values."""
