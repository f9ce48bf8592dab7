"""
Configuration loader for YAML settings files.

Example ``nwmeter.yaml``::

    buffs:
      caster_level: 30
      charisma_modifier: 12
      extended_divine_might: true
    watcher:
      poll_interval: 0.1
    meter:
      main_player_timeout_seconds: 600
    spells:
      Bull's Strength: {type: caster_level, seconds_per_level: 60}
"""

import logging
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..exceptions import ConfigurationError
from .settings import BuffSettings, MeterSettings, WatcherSettings

logger = logging.getLogger(__name__)


def _coerce(value: Any, current: Any, name: str) -> Any:
    """Convert a YAML value to the type of the field it replaces."""
    if isinstance(current, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false", "yes", "no"):
            return value.lower() in ("true", "yes")
        raise ValueError(f"{name} must be true or false, got {value!r}")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return value if value is None else str(value)


def _apply_section(target: Any, section: Dict[str, Any], section_name: str) -> Any:
    known = {f.name: f for f in fields(target)}
    changes = {}
    for key, value in section.items():
        if key not in known or key in ("buffs", "watcher"):
            logger.warning(f"Unknown setting {section_name}.{key}, ignoring")
            continue
        try:
            changes[key] = _coerce(value, getattr(target, key), f"{section_name}.{key}")
        except (ValueError, TypeError) as e:
            logger.warning(f"Invalid value for {section_name}.{key}: {e}")
    return replace(target, **changes)


class ConfigLoader:
    """Loads settings overrides from YAML files."""

    @staticmethod
    def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to a config file. If None, looks for:
                        1. nwmeter.yaml in the current directory
                        2. config/nwmeter.yaml
                        3. ~/.nwmeter/config.yaml

        Returns:
            Configuration dictionary, empty when no file was found

        Raises:
            ConfigurationError: If an explicitly given file is missing or invalid
        """
        if config_path:
            path = Path(config_path)
            if not path.exists():
                raise ConfigurationError(f"Config file not found: {path}")
            return ConfigLoader._read(path)

        search_paths = [
            Path("nwmeter.yaml"),
            Path("config/nwmeter.yaml"),
            Path.home() / ".nwmeter" / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                return ConfigLoader._read(path)

        logger.debug("No configuration file found, using defaults")
        return {}

    @staticmethod
    def _read(path: Path) -> Dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load config from {path}: {e}") from e
        if not isinstance(config, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        logger.info(f"Loaded configuration from {path}")
        return config

    @staticmethod
    def apply_config(config: Dict[str, Any], settings: Optional[MeterSettings] = None) -> MeterSettings:
        """
        Apply a configuration dictionary on top of settings.

        Args:
            config: Configuration dictionary from YAML
            settings: Base settings; defaults to environment settings

        Returns:
            New settings with the overrides applied and caster values clamped
        """
        settings = settings or MeterSettings.from_env()

        buffs: BuffSettings = settings.buffs
        if isinstance(config.get("buffs"), dict):
            buffs = _apply_section(buffs, config["buffs"], "buffs")

        watcher: WatcherSettings = settings.watcher
        if isinstance(config.get("watcher"), dict):
            watcher = _apply_section(watcher, config["watcher"], "watcher")

        settings = replace(settings, buffs=buffs.clamped(), watcher=watcher)
        if isinstance(config.get("meter"), dict):
            settings = _apply_section(settings, config["meter"], "meter")

        for section in config:
            if section not in ("buffs", "watcher", "meter", "spells"):
                logger.warning(f"Unknown config section {section}, ignoring")
        return settings

    @staticmethod
    def spell_rules(config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Extra tracked spells from the ``spells`` section.

        Returns:
            Mapping of spell name to duration rule; invalid entries are skipped
        """
        from ..models.buffs import rule_from_config

        rules = {}
        for spell_name, spec in (config.get("spells") or {}).items():
            try:
                rules[str(spell_name)] = rule_from_config(spec)
                logger.debug(f"Added tracked spell: {spell_name}")
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.warning(f"Invalid duration rule for {spell_name}: {e}")
        return rules


def load_and_apply_config(
    config_path: Optional[str] = None, settings: Optional[MeterSettings] = None
) -> MeterSettings:
    """
    Load and apply configuration in one step.

    Args:
        config_path: Optional path to a config file
        settings: Base settings
    """
    loader = ConfigLoader()
    config = loader.load_config(config_path)
    settings = loader.apply_config(config, settings)
    settings.validate()
    return settings
