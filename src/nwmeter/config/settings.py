"""
Configuration settings for the combat meter.

Settings come from environment variables (``NWMETER_*``) and can be
overridden from a YAML file through ``nwmeter.config.loader``. Caster
attributes outside their valid range are clamped, never rejected.
"""

import os
import logging
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

# Valid ranges for the bounded caster settings
CASTER_LEVEL_RANGE: Tuple[int, int] = (1, 40)
CHARISMA_MODIFIER_RANGE: Tuple[int, int] = (-10, 50)
BUFF_WARNING_RANGE: Tuple[int, int] = (1, 30)

# Encounters close after this many seconds without combat
ENCOUNTER_GAP_SECONDS = 6.0


def _env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


def clamp(value: int, bounds: Tuple[int, int], name: str) -> int:
    """
    Clamp ``value`` into ``bounds``, logging when it had to move.

    >>> clamp(55, (1, 40), "caster_level")
    40
    >>> clamp(7, (1, 40), "caster_level")
    7
    """
    low, high = bounds
    clamped = min(max(value, low), high)
    if clamped != value:
        logger.warning(f"{name}={value} out of range {low}..{high}, using {clamped}")
    return clamped


@dataclass
class BuffSettings:
    """Caster attributes used to compute buff durations."""

    caster_level: int = 1
    charisma_modifier: int = 0
    extended_divine_might: bool = False
    extended_divine_shield: bool = False
    buff_warning_seconds: int = 10

    # Track self-buffs of every known player, not only the main player
    track_all_players: bool = False

    @classmethod
    def from_env(cls) -> "BuffSettings":
        """Load buff settings from environment variables."""
        return cls(
            caster_level=int(os.getenv("NWMETER_CASTER_LEVEL", "1")),
            charisma_modifier=int(os.getenv("NWMETER_CHARISMA_MODIFIER", "0")),
            extended_divine_might=_env_bool("NWMETER_EXTENDED_DIVINE_MIGHT"),
            extended_divine_shield=_env_bool("NWMETER_EXTENDED_DIVINE_SHIELD"),
            buff_warning_seconds=int(os.getenv("NWMETER_BUFF_WARNING_SECONDS", "10")),
            track_all_players=_env_bool("NWMETER_TRACK_ALL_PLAYERS"),
        ).clamped()

    def clamped(self) -> "BuffSettings":
        """Return a copy with every bounded value moved into range."""
        return replace(
            self,
            caster_level=clamp(self.caster_level, CASTER_LEVEL_RANGE, "caster_level"),
            charisma_modifier=clamp(
                self.charisma_modifier, CHARISMA_MODIFIER_RANGE, "charisma_modifier"
            ),
            buff_warning_seconds=clamp(
                self.buff_warning_seconds, BUFF_WARNING_RANGE, "buff_warning_seconds"
            ),
        )

    def is_extended(self, flag: Optional[str]) -> bool:
        """Whether the named extension feat flag is enabled."""
        if not flag:
            return False
        return bool(getattr(self, flag, False))


@dataclass
class WatcherSettings:
    """Log file polling settings."""

    poll_interval: float = 0.25
    max_lines_per_batch: int = 500
    encoding: str = "utf-8"
    max_backoff: float = 5.0
    max_consecutive_failures: int = 40

    @classmethod
    def from_env(cls) -> "WatcherSettings":
        """Load watcher settings from environment variables."""
        return cls(
            poll_interval=float(os.getenv("NWMETER_POLL_INTERVAL", "0.25")),
            max_lines_per_batch=int(os.getenv("NWMETER_MAX_LINES_PER_BATCH", "500")),
            encoding=os.getenv("NWMETER_LOG_ENCODING", "utf-8"),
            max_backoff=float(os.getenv("NWMETER_MAX_BACKOFF", "5.0")),
            max_consecutive_failures=int(os.getenv("NWMETER_MAX_FAILURES", "40")),
        )


@dataclass
class MeterSettings:
    """Main settings container."""

    buffs: BuffSettings = field(default_factory=BuffSettings)
    watcher: WatcherSettings = field(default_factory=WatcherSettings)

    main_player_timeout_seconds: float = 300.0
    log_level: str = "info"
    players_file: Optional[str] = None

    @property
    def encounter_gap_seconds(self) -> float:
        """Inactivity gap that closes an encounter. Not configurable."""
        return ENCOUNTER_GAP_SECONDS

    @classmethod
    def from_env(cls) -> "MeterSettings":
        """Load all settings from environment variables."""
        return cls(
            buffs=BuffSettings.from_env(),
            watcher=WatcherSettings.from_env(),
            main_player_timeout_seconds=float(
                os.getenv("NWMETER_MAIN_PLAYER_TIMEOUT", "300")
            ),
            log_level=os.getenv("NWMETER_LOG_LEVEL", "info").lower(),
            players_file=os.getenv("NWMETER_PLAYERS_FILE") or None,
        )

    def setup_logging(self):
        """Configure logging based on settings."""
        level = getattr(logging, self.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def validate(self):
        """Validate settings that cannot be clamped."""
        errors = []

        if self.watcher.poll_interval <= 0:
            errors.append(f"Invalid poll interval: {self.watcher.poll_interval}")
        if self.watcher.max_lines_per_batch < 1:
            errors.append(f"Invalid batch size: {self.watcher.max_lines_per_batch}")
        if self.watcher.max_backoff < self.watcher.poll_interval:
            errors.append("max_backoff must not be shorter than poll_interval")
        if self.watcher.max_consecutive_failures < 1:
            errors.append(
                f"Invalid failure limit: {self.watcher.max_consecutive_failures}"
            )
        if self.main_player_timeout_seconds < 0:
            errors.append(
                f"Invalid main player timeout: {self.main_player_timeout_seconds}"
            )
        try:
            "".encode(self.watcher.encoding)
        except LookupError:
            errors.append(f"Unknown log encoding: {self.watcher.encoding}")

        if errors:
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

    def log_configuration(self):
        """Log the current configuration."""
        logger.info("=== Meter Configuration ===")
        logger.info(f"Caster level: {self.buffs.caster_level}")
        logger.info(f"Charisma modifier: {self.buffs.charisma_modifier}")
        logger.info(f"Extended Divine Might: {self.buffs.extended_divine_might}")
        logger.info(f"Extended Divine Shield: {self.buffs.extended_divine_shield}")
        logger.info(f"Buff warning: {self.buffs.buff_warning_seconds}s")
        logger.info(f"Encounter gap: {self.encounter_gap_seconds}s")
        logger.info(f"Poll interval: {self.watcher.poll_interval}s")
        logger.info(f"Log encoding: {self.watcher.encoding}")
        logger.info("=== End Configuration ===")


_settings: Optional[MeterSettings] = None


def get_settings() -> MeterSettings:
    """Get the global settings instance, loading it on first use."""
    global _settings
    if _settings is None:
        _settings = MeterSettings.from_env()
    return _settings


def reload_settings() -> MeterSettings:
    """Reload settings from environment variables."""
    global _settings
    _settings = MeterSettings.from_env()
    return _settings
