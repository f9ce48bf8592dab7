"""
Per-combatant statistics.

All tallies are additive so encounter tables can be merged into a session
total without double counting.
"""

from dataclasses import dataclass, field, fields
from typing import Dict, Optional

# Shortest window DPS is averaged over; a fight within one timestamp counts as one second
MIN_DPS_WINDOW = 1.0


def _add(counts: Dict[str, int], key: str, amount: int):
    counts[key] = counts.get(key, 0) + amount


def _merge_counts(into: Dict[str, int], other: Dict[str, int]):
    for key, amount in other.items():
        _add(into, key, amount)


@dataclass
class Combatant:
    """Statistics for one named player or creature."""

    name: str
    is_player: bool = False

    # Attacks made
    hits: int = 0
    critical_hits: int = 0
    misses: int = 0
    auto_misses: int = 0
    concealment_misses: int = 0

    # Attacks received
    times_attacked: int = 0
    times_hit: int = 0

    # Damage dealt
    damage_done: Dict[str, int] = field(default_factory=dict)
    damage_done_by_target: Dict[str, int] = field(default_factory=dict)
    damage_done_by_source: Dict[str, int] = field(default_factory=dict)
    hit_damage: int = 0
    critical_damage: int = 0

    # Damage received
    damage_taken: Dict[str, int] = field(default_factory=dict)
    damage_taken_by_attacker: Dict[str, int] = field(default_factory=dict)
    damage_absorbed: Dict[str, int] = field(default_factory=dict)

    # Spells
    spells_cast: Dict[str, int] = field(default_factory=dict)
    spells_resisted: int = 0
    spells_not_resisted: int = 0
    enemy_resists: int = 0
    saves_made: int = 0
    saves_failed: int = 0

    first_action: Optional[float] = None
    last_action: Optional[float] = None

    @property
    def total_damage_done(self) -> int:
        return sum(self.damage_done.values())

    @property
    def total_damage_taken(self) -> int:
        return sum(self.damage_taken.values())

    @property
    def total_absorbed(self) -> int:
        return sum(self.damage_absorbed.values())

    @property
    def attacks_made(self) -> int:
        return self.hits + self.critical_hits + self.misses + self.auto_misses

    @property
    def hit_rate(self) -> float:
        """Share of attacks that landed, critical hits included."""
        attempts = self.attacks_made
        return (self.hits + self.critical_hits) / attempts if attempts else 0.0

    @property
    def critical_rate(self) -> float:
        """Share of landed attacks that were critical."""
        landed = self.hits + self.critical_hits
        return self.critical_hits / landed if landed else 0.0

    @property
    def total_spells_cast(self) -> int:
        return sum(self.spells_cast.values())

    @property
    def active_time(self) -> float:
        """Seconds between the first and last action, at least one."""
        if self.first_action is None or self.last_action is None:
            return MIN_DPS_WINDOW
        return max(self.last_action - self.first_action, MIN_DPS_WINDOW)

    def dps(self, elapsed: Optional[float] = None, min_window: float = MIN_DPS_WINDOW) -> float:
        """
        Damage per second over ``elapsed`` seconds.

        Defaults to the combatant's own active time.
        """
        window = self.active_time if elapsed is None else elapsed
        return self.total_damage_done / max(window, min_window)

    def mark_action(self, timestamp: float):
        if self.first_action is None or timestamp < self.first_action:
            self.first_action = timestamp
        if self.last_action is None or timestamp > self.last_action:
            self.last_action = timestamp

    def record_damage_done(self, target: str, source_label: str, breakdown: Dict[str, int], amount: int):
        for damage_type, value in breakdown.items():
            _add(self.damage_done, damage_type, value)
        _add(self.damage_done_by_target, target, amount)
        _add(self.damage_done_by_source, source_label, amount)

    def record_damage_taken(self, attacker: str, breakdown: Dict[str, int], amount: int):
        for damage_type, value in breakdown.items():
            _add(self.damage_taken, damage_type, value)
        _add(self.damage_taken_by_attacker, attacker, amount)

    def record_absorbed(self, kind: str, amount: int):
        _add(self.damage_absorbed, kind, amount)

    def record_spell(self, spell_name: str):
        _add(self.spells_cast, spell_name, 1)

    def merge(self, other: "Combatant"):
        """Add another combatant's tallies into this one."""
        if other.name != self.name:
            raise ValueError(f"Cannot merge {other.name} into {self.name}")
        self.is_player = self.is_player or other.is_player
        for f in fields(self):
            if f.name in ("name", "is_player", "first_action", "last_action"):
                continue
            mine = getattr(self, f.name)
            theirs = getattr(other, f.name)
            if isinstance(mine, dict):
                _merge_counts(mine, theirs)
            else:
                setattr(self, f.name, mine + theirs)
        if other.first_action is not None:
            self.mark_action(other.first_action)
        if other.last_action is not None:
            self.mark_action(other.last_action)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "is_player": self.is_player,
            "damage_done": dict(sorted(self.damage_done.items())),
            "damage_taken": dict(sorted(self.damage_taken.items())),
            "damage_done_by_target": dict(sorted(self.damage_done_by_target.items())),
            "damage_done_by_source": dict(sorted(self.damage_done_by_source.items())),
            "damage_taken_by_attacker": dict(sorted(self.damage_taken_by_attacker.items())),
            "damage_absorbed": dict(sorted(self.damage_absorbed.items())),
            "total_damage_done": self.total_damage_done,
            "total_damage_taken": self.total_damage_taken,
            "hits": self.hits,
            "critical_hits": self.critical_hits,
            "misses": self.misses,
            "auto_misses": self.auto_misses,
            "concealment_misses": self.concealment_misses,
            "times_attacked": self.times_attacked,
            "times_hit": self.times_hit,
            "hit_damage": self.hit_damage,
            "critical_damage": self.critical_damage,
            "spells_cast": dict(sorted(self.spells_cast.items())),
            "spells_resisted": self.spells_resisted,
            "spells_not_resisted": self.spells_not_resisted,
            "enemy_resists": self.enemy_resists,
            "saves_made": self.saves_made,
            "saves_failed": self.saves_failed,
            "first_action": self.first_action,
            "last_action": self.last_action,
        }
