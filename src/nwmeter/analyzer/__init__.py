"""Derived metrics and rich displays."""

from .displays import DisplayBuilder, format_number
from .metrics import MetricsCalculator

__all__ = ["DisplayBuilder", "format_number", "MetricsCalculator"]
