"""
Buff tracking: duration rules and the per-player buff state machine.

A buff becomes active when a tracked player casts a tracked spell, is
refreshed by a re-cast, is cleared by resting, and expires lazily: instances
past ``expires_at`` are simply not reported as active.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from ..config.settings import CASTER_LEVEL_RANGE, CHARISMA_MODIFIER_RANGE, BuffSettings
from ..parser.events import BuffExpired, CombatEvent, RestEvent, SpellCast
from .players import PlayerIdentity

logger = logging.getLogger(__name__)

ROUND_SECONDS = 6


def _bounded(value: int, bounds: Tuple[int, int]) -> int:
    return min(max(value, bounds[0]), bounds[1])


class DurationRule:
    """Computes a buff duration in seconds from caster attributes."""

    def duration(self, settings: BuffSettings) -> int:
        raise NotImplementedError


@dataclass(frozen=True)
class FixedDuration(DurationRule):
    seconds: int

    def duration(self, settings: BuffSettings) -> int:
        return self.seconds


@dataclass(frozen=True)
class CasterLevelDuration(DurationRule):
    """``base_seconds + seconds_per_step * (caster_level // levels_per_step)``."""

    seconds_per_step: int
    levels_per_step: int = 1
    base_seconds: int = 0

    def duration(self, settings: BuffSettings) -> int:
        level = _bounded(settings.caster_level, CASTER_LEVEL_RANGE)
        return self.base_seconds + self.seconds_per_step * (level // self.levels_per_step)


@dataclass(frozen=True)
class CharismaDuration(DurationRule):
    """
    One round per charisma point, doubled to seconds, with a floor.

    The extension feat named by ``extension_flag`` adds ``extension_seconds``.
    """

    seconds_per_point: int = 2 * ROUND_SECONDS
    minimum: int = 10
    extension_flag: Optional[str] = None
    extension_seconds: int = 10 * ROUND_SECONDS

    def duration(self, settings: BuffSettings) -> int:
        charisma = _bounded(settings.charisma_modifier, CHARISMA_MODIFIER_RANGE)
        seconds = max(charisma * self.seconds_per_point, self.minimum)
        if settings.is_extended(self.extension_flag):
            seconds += self.extension_seconds
        return seconds


_CASTER_LEVEL_TURNS = CasterLevelDuration(seconds_per_step=2 * ROUND_SECONDS)

DEFAULT_TRACKED_SPELLS: Dict[str, DurationRule] = {
    "Divine Favor": FixedDuration(120),
    "Divine Might": CharismaDuration(extension_flag="extended_divine_might"),
    "Divine Shield": CharismaDuration(extension_flag="extended_divine_shield"),
    "Divine Power": _CASTER_LEVEL_TURNS,
    "Tenser's Transformation": _CASTER_LEVEL_TURNS,
    "Mestil's Acid Sheath": _CASTER_LEVEL_TURNS,
    "Elemental Shield": _CASTER_LEVEL_TURNS,
    "Death Armor": _CASTER_LEVEL_TURNS,
    "Blade Thirst": _CASTER_LEVEL_TURNS,
    "Greater Sanctuary": FixedDuration(40),
    "Bigby's Interposing Hand": CasterLevelDuration(
        seconds_per_step=2 * ROUND_SECONDS, levels_per_step=2, base_seconds=4
    ),
    "Acid Fog": CasterLevelDuration(seconds_per_step=ROUND_SECONDS // 2),
    "Cloudkill": CasterLevelDuration(seconds_per_step=ROUND_SECONDS // 2),
}


def rule_from_config(spec: Mapping[str, Any]) -> DurationRule:
    """
    Build a duration rule from a configuration mapping.

    >>> rule_from_config({"type": "fixed", "seconds": 30})
    FixedDuration(seconds=30)
    """
    kind = spec.get("type", "fixed")
    if kind == "fixed":
        return FixedDuration(int(spec["seconds"]))
    if kind == "caster_level":
        return CasterLevelDuration(
            seconds_per_step=int(spec["seconds_per_level"]),
            levels_per_step=int(spec.get("levels_per_step", 1)),
            base_seconds=int(spec.get("base_seconds", 0)),
        )
    if kind == "charisma":
        return CharismaDuration(
            seconds_per_point=int(spec.get("seconds_per_point", 2 * ROUND_SECONDS)),
            minimum=int(spec.get("minimum", 10)),
            extension_flag=spec.get("extension_flag"),
            extension_seconds=int(spec.get("extension_seconds", 10 * ROUND_SECONDS)),
        )
    raise ValueError(f"Unknown duration rule type: {kind}")


class BuffState(Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    EXPIRED = "expired"
    CLEARED = "cleared"


@dataclass
class BuffInstance:
    """One timed spell effect on one player."""

    player: str
    spell_name: str
    applied_at: float
    expires_at: float
    base_duration_rule: DurationRule
    caster: Optional[str] = None

    @property
    def duration(self) -> float:
        return self.expires_at - self.applied_at

    def is_active(self, now: float) -> bool:
        return now < self.expires_at

    def remaining(self, now: float) -> float:
        return max(0.0, self.expires_at - now)

    def is_expiring(self, now: float, warning_seconds: float) -> bool:
        """Active and within the warning window before expiry."""
        return self.is_active(now) and self.remaining(now) <= warning_seconds

    def to_dict(self, now: Optional[float] = None) -> dict:
        data = {
            "player": self.player,
            "spell": self.spell_name,
            "applied_at": self.applied_at,
            "expires_at": self.expires_at,
        }
        if now is not None:
            data["remaining"] = self.remaining(now)
        return data


PlayerRef = Union[str, PlayerIdentity]


def _player_key(player: PlayerRef) -> str:
    if isinstance(player, PlayerIdentity):
        return player.character_name or ""
    return player


class BuffEngine:
    """
    Owns the set of active buff instances, keyed by (player, spell).

    Time only moves with the timestamps passed in, so replaying a log gives
    the same buffs as watching it live.
    """

    def __init__(
        self,
        settings: Optional[BuffSettings] = None,
        spells: Optional[Mapping[str, DurationRule]] = None,
    ):
        self.settings = (settings or BuffSettings()).clamped()
        self.spells: Dict[str, DurationRule] = dict(
            DEFAULT_TRACKED_SPELLS if spells is None else spells
        )
        self._lookup = {name.lower(): name for name in self.spells}
        self._instances: Dict[Tuple[str, str], BuffInstance] = {}
        self._terminal: Dict[Tuple[str, str], BuffState] = {}
        self.last_tick: float = 0.0

    def register_spell(self, spell_name: str, rule: DurationRule):
        """Track an additional spell, or replace the rule of a tracked one."""
        self.spells[spell_name] = rule
        self._lookup[spell_name.lower()] = spell_name

    def canonical_spell(self, spell_name: str) -> Optional[str]:
        return self._lookup.get(spell_name.strip().lower())

    def duration_for(self, spell_name: str) -> Optional[int]:
        """Duration in seconds for a tracked spell, None when untracked."""
        name = self.canonical_spell(spell_name)
        if name is None:
            return None
        return self.spells[name].duration(self.settings)

    def observe(
        self,
        event: CombatEvent,
        timestamp: float,
        is_tracked_caster: Callable[[str], bool] = lambda name: False,
    ) -> Optional[BuffInstance]:
        """
        Apply one event to the buff state.

        Args:
            event: Parsed event
            timestamp: Time of the event
            is_tracked_caster: Decides whether a caster's buffs are tracked

        Returns:
            The applied instance for a tracked cast, else None
        """
        self.advance(timestamp)
        if isinstance(event, SpellCast):
            if is_tracked_caster(event.caster):
                return self.apply(event.caster, event.spell_name, timestamp)
        elif isinstance(event, RestEvent):
            self.clear_all("rest")
        elif isinstance(event, BuffExpired):
            self.expire_spell(event.spell_name)
        return None

    def advance(self, timestamp: float):
        """Move the engine clock forward; never backwards."""
        if timestamp > self.last_tick:
            self.last_tick = timestamp

    def apply(self, player: PlayerRef, spell_name: str, timestamp: float) -> Optional[BuffInstance]:
        """Start or refresh a buff. Untracked spells are ignored."""
        name = self.canonical_spell(spell_name)
        if name is None:
            return None
        key = (_player_key(player), name)
        rule = self.spells[name]
        instance = BuffInstance(
            player=key[0],
            spell_name=name,
            applied_at=timestamp,
            expires_at=timestamp + rule.duration(self.settings),
            base_duration_rule=rule,
            caster=key[0],
        )
        self._instances[key] = instance
        self._terminal.pop(key, None)
        logger.debug(f"{name} on {key[0]} until {instance.expires_at:.0f}")
        return instance

    def clear_all(self, reason: str = "rest"):
        """Remove every instance for every player."""
        if self._instances:
            logger.info(f"Clearing {len(self._instances)} buffs ({reason})")
        for key in self._instances:
            self._terminal[key] = BuffState.CLEARED
        self._instances.clear()

    def clear_player(self, player: PlayerRef):
        """Remove every instance on one player."""
        name = _player_key(player)
        for key in [k for k in self._instances if k[0] == name]:
            del self._instances[key]
            self._terminal[key] = BuffState.CLEARED

    def expire_spell(self, spell_name: str):
        """The game reported the spell wore off; drop it for every player."""
        name = self.canonical_spell(spell_name)
        if name is None:
            return
        for key in [k for k in self._instances if k[1] == name]:
            del self._instances[key]
            self._terminal[key] = BuffState.EXPIRED

    def _now(self, now: Optional[float]) -> float:
        return self.last_tick if now is None else now

    def active_buffs(self, player: Optional[PlayerRef] = None, now: Optional[float] = None) -> List[BuffInstance]:
        """
        Buffs active at ``now`` (default: the last event time), soonest expiry first.

        Args:
            player: Restrict to one player; all players when None
            now: Time to evaluate expiry against
        """
        now = self._now(now)
        name = _player_key(player) if player is not None else None
        active = [
            instance
            for key, instance in self._instances.items()
            if instance.is_active(now) and (name is None or key[0] == name)
        ]
        return sorted(active, key=lambda b: (b.expires_at, b.player, b.spell_name))

    def expiring_buffs(self, now: Optional[float] = None) -> List[BuffInstance]:
        """Active buffs inside the configured warning window."""
        now = self._now(now)
        warning = self.settings.buff_warning_seconds
        return [b for b in self.active_buffs(now=now) if b.is_expiring(now, warning)]

    def state(self, player: PlayerRef, spell_name: str, now: Optional[float] = None) -> BuffState:
        name = self.canonical_spell(spell_name) or spell_name
        key = (_player_key(player), name)
        instance = self._instances.get(key)
        if instance is not None:
            return BuffState.ACTIVE if instance.is_active(self._now(now)) else BuffState.EXPIRED
        return self._terminal.get(key, BuffState.INACTIVE)

    def prune(self, now: Optional[float] = None) -> int:
        """Drop instances that have expired; returns how many were removed."""
        now = self._now(now)
        expired = [k for k, b in self._instances.items() if not b.is_active(now)]
        for key in expired:
            del self._instances[key]
            self._terminal[key] = BuffState.EXPIRED
        return len(expired)

    def update_settings(self, settings: BuffSettings):
        """Use new caster attributes for buffs applied from now on."""
        self.settings = settings.clamped()
