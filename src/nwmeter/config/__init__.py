"""Configuration for the combat meter."""

from .settings import (
    BuffSettings,
    MeterSettings,
    WatcherSettings,
    get_settings,
    reload_settings,
)
from .loader import ConfigLoader, load_and_apply_config

__all__ = [
    "BuffSettings",
    "MeterSettings",
    "WatcherSettings",
    "get_settings",
    "reload_settings",
    "ConfigLoader",
    "load_and_apply_config",
]
