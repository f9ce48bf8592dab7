"""
Encounter model: one span of combat bounded by inactivity gaps.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .combatant import MIN_DPS_WINDOW, Combatant



def format_duration(seconds: float) -> str:
    """
    Format a duration for display.

    >>> format_duration(42)
    '[42s]'
    >>> format_duration(125)
    '[2m:05s]'
    """
    seconds = int(seconds)
    if seconds < 60:
        return f"[{seconds}s]"
    return f"[{seconds // 60}m:{seconds % 60:02d}s]"


@dataclass
class Encounter:
    """
    A contiguous span of combat.

    ``end_time`` stays None while the encounter is open and is set to the
    time of the last combat event when it closes. Closed encounters are
    never modified.
    """

    encounter_id: int
    start_time: float
    end_time: Optional[float] = None
    last_combat_time: Optional[float] = None
    combatants: Dict[str, Combatant] = field(default_factory=dict)
    event_count: int = 0

    def __post_init__(self):
        if self.last_combat_time is None:
            self.last_combat_time = self.start_time

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    def is_active_at(self, now: float, gap_seconds: float) -> bool:
        """Open, and the last combat event is within the gap of ``now``."""
        return self.is_active and now - self.last_combat_time <= gap_seconds

    @property
    def elapsed(self) -> float:
        """Seconds from the first to the last combat event."""
        end = self.end_time if self.end_time is not None else self.last_combat_time
        return end - self.start_time

    def combatant(self, name: str, is_player: bool = False) -> Combatant:
        """Get or create the combatant called ``name``."""
        combatant = self.combatants.get(name)
        if combatant is None:
            combatant = Combatant(name=name, is_player=is_player)
            self.combatants[name] = combatant
        elif is_player and not combatant.is_player:
            combatant.is_player = True
        return combatant

    @property
    def total_damage(self) -> int:
        return sum(c.total_damage_done for c in self.combatants.values())

    @property
    def player_damage(self) -> int:
        return sum(c.total_damage_done for c in self.combatants.values() if c.is_player)

    def dps(self, min_window: float = MIN_DPS_WINDOW) -> float:
        """Encounter-wide damage per second, computed on demand."""
        return self.total_damage / max(self.elapsed, min_window)

    def combatant_dps(self, name: str, min_window: float = MIN_DPS_WINDOW) -> float:
        combatant = self.combatants.get(name)
        if combatant is None:
            return 0.0
        return combatant.dps(self.elapsed, min_window)

    def close(self):
        self.end_time = self.last_combat_time

    def contains_time(self, timestamp: float) -> bool:
        end = self.end_time if self.end_time is not None else self.last_combat_time
        return self.start_time <= timestamp <= end

    @property
    def most_damaged_participant(self) -> Optional[str]:
        """Combatant that took the most damage, then the one attacked most."""
        if not self.combatants:
            return None
        best = max(
            self.combatants.values(),
            key=lambda c: (c.total_damage_taken, c.times_attacked, c.name),
        )
        if best.total_damage_taken == 0 and best.times_attacked == 0:
            return None
        return best.name

    @property
    def display_name(self) -> str:
        target = self.most_damaged_participant or "Unknown"
        return f"#{self.encounter_id} {format_duration(self.elapsed)} {target}"

    def ranked_combatants(self) -> List[Combatant]:
        """Combatants by damage done, highest first."""
        return sorted(
            self.combatants.values(), key=lambda c: (-c.total_damage_done, c.name)
        )

    def to_dict(self) -> dict:
        return {
            "id": self.encounter_id,
            "name": self.display_name,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "last_combat_time": self.last_combat_time,
            "elapsed": self.elapsed,
            "total_damage": self.total_damage,
            "dps": self.dps(),
            "event_count": self.event_count,
            "combatants": {
                name: combatant.to_dict()
                for name, combatant in sorted(self.combatants.items())
            },
        }
