"""
Metric calculation helpers for encounters and session totals.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..models.combatant import Combatant
from ..models.encounter import Encounter


class MetricsCalculator:
    """Derives rankings and summaries from encounter tallies."""

    @staticmethod
    def calculate_encounter_metrics(encounter: Encounter) -> Dict[str, Any]:
        """Summary numbers for one encounter."""
        combatants = list(encounter.combatants.values())
        players = [c for c in combatants if c.is_player]
        attacks = sum(c.attacks_made for c in combatants)
        landed = sum(c.hits + c.critical_hits for c in combatants)
        return {
            "name": encounter.display_name,
            "elapsed": encounter.elapsed,
            "total_damage": encounter.total_damage,
            "player_damage": encounter.player_damage,
            "dps": encounter.dps(),
            "combatant_count": len(combatants),
            "player_count": len(players),
            "attacks": attacks,
            "hit_rate": landed / attacks if attacks else 0.0,
            "target": encounter.most_damaged_participant,
        }

    @staticmethod
    def get_dps_rankings(
        combatants: Iterable[Combatant], elapsed: Optional[float] = None
    ) -> List[Tuple[str, float, Combatant]]:
        """
        Rank combatants by damage per second.

        Args:
            combatants: Combatants to rank
            elapsed: Shared window; each combatant's own active time when None
        """
        rankings = [
            (c.name, c.dps(elapsed), c) for c in combatants if c.total_damage_done > 0
        ]
        return sorted(rankings, key=lambda x: (-x[1], x[0]))

    @staticmethod
    def damage_breakdown(combatant: Combatant, received: bool = False) -> List[Tuple[str, int, float]]:
        """Damage by type with each type's share, largest first."""
        by_type = combatant.damage_taken if received else combatant.damage_done
        total = sum(by_type.values())
        rows = [(t, amount, amount / total if total else 0.0) for t, amount in by_type.items()]
        return sorted(rows, key=lambda r: (-r[1], r[0]))

    @staticmethod
    def summarize_session(encounters: Iterable[Encounter], totals: Dict[str, Combatant]) -> Dict[str, Any]:
        """Totals across the whole session."""
        encounters = list(encounters)
        combat_time = sum(e.elapsed for e in encounters)
        total_damage = sum(c.total_damage_done for c in totals.values())
        top = MetricsCalculator.get_dps_rankings(totals.values())
        return {
            "encounters": len(encounters),
            "combat_time": combat_time,
            "total_damage": total_damage,
            "top_damage_dealer": top[0][0] if top else None,
        }
