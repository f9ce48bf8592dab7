"""
Encounter segmentation and combatant aggregation.
"""

import copy
import logging
from typing import Callable, Dict, List, Optional, Tuple

from ..config.settings import ENCOUNTER_GAP_SECONDS
from ..models.encounter import Encounter
from ..models.combatant import Combatant
from ..parser.events import (
    Attack,
    AttackOutcome,
    CombatEvent,
    Damage,
    DamageAbsorbed,
    SavingThrow,
    SpellCast,
    SpellResist,
)
from .attribution import ATTACK_LABEL, DamageAttributor

logger = logging.getLogger(__name__)


class EncounterAggregator:
    """
    Groups the ordered event stream into encounters and tallies combatants.

    An encounter opens on the first combat event and closes when the next
    combat event arrives more than ``gap_seconds`` after the previous one.
    Chat, party and rest events never open, close, or extend an encounter.
    """

    def __init__(
        self,
        gap_seconds: float = ENCOUNTER_GAP_SECONDS,
        is_player: Optional[Callable[[str], bool]] = None,
    ):
        """
        Initialize the aggregator.

        Args:
            gap_seconds: Inactivity gap that ends an encounter
            is_player: Tells player characters apart from creatures
        """
        self.gap_seconds = gap_seconds
        self.is_player = is_player or (lambda name: False)
        self.attributor = DamageAttributor()

        self._current: Optional[Encounter] = None
        self._history: List[Encounter] = []
        self._session: Dict[str, Combatant] = {}
        self._next_id = 1
        self.events_ingested = 0

    def ingest(self, event: CombatEvent, timestamp: float) -> Optional[Encounter]:
        """
        Process one event.

        Args:
            event: Parsed event, in log order
            timestamp: Time of the event's line

        Returns:
            The encounter closed by this event, if any
        """
        if not event.is_combat:
            return None

        closed = None
        if self._current is not None and timestamp - self._current.last_combat_time > self.gap_seconds:
            closed = self._close_current()

        if self._current is None:
            self._current = Encounter(encounter_id=self._next_id, start_time=timestamp)
            self._next_id += 1
            logger.debug(f"Encounter #{self._current.encounter_id} started at {timestamp:.0f}")

        encounter = self._current
        if isinstance(event, Attack):
            self._process_attack(encounter, event, timestamp)
        elif isinstance(event, Damage):
            self._process_damage(encounter, event, timestamp)
        elif isinstance(event, DamageAbsorbed):
            self._combatant(encounter, event.target).record_absorbed(
                event.absorb_kind.value, event.amount
            )
        elif isinstance(event, SpellCast):
            self._process_spell_cast(encounter, event, timestamp)
        elif isinstance(event, SpellResist):
            self._process_spell_resist(encounter, event, timestamp)
        elif isinstance(event, SavingThrow):
            self._process_save(encounter, event, timestamp)

        if timestamp > encounter.last_combat_time:
            encounter.last_combat_time = timestamp
        encounter.event_count += 1
        self.events_ingested += 1
        return closed

    def _combatant(self, encounter: Encounter, name: str) -> Combatant:
        return encounter.combatant(name, is_player=self.is_player(name))

    def _process_attack(self, encounter: Encounter, event: Attack, timestamp: float):
        self.attributor.observe(event, timestamp)
        attacker = self._combatant(encounter, event.attacker)
        defender = self._combatant(encounter, event.defender)
        attacker.mark_action(timestamp)
        defender.times_attacked += 1

        if event.outcome == AttackOutcome.CRITICAL_HIT:
            attacker.critical_hits += 1
        elif event.outcome == AttackOutcome.HIT:
            attacker.hits += 1
        elif event.outcome == AttackOutcome.AUTO_MISS:
            attacker.auto_misses += 1
        else:
            attacker.misses += 1

        if event.outcome.landed:
            defender.times_hit += 1
        elif event.concealed:
            attacker.concealment_misses += 1

    def _process_damage(self, encounter: Encounter, event: Damage, timestamp: float):
        attribution = self.attributor.attribute(event, timestamp)
        breakdown = event.breakdown or {event.damage_type: event.amount}

        attacker = self._combatant(encounter, attribution.attacker)
        target = self._combatant(encounter, event.target)
        attacker.mark_action(timestamp)

        attacker.record_damage_done(event.target, attribution.label, breakdown, event.amount)
        target.record_damage_taken(attribution.attacker, breakdown, event.amount)

        if attribution.label == ATTACK_LABEL:
            if attribution.is_critical:
                attacker.critical_damage += event.amount
            else:
                attacker.hit_damage += event.amount

    def _process_spell_cast(self, encounter: Encounter, event: SpellCast, timestamp: float):
        self.attributor.observe(event, timestamp)
        caster = self._combatant(encounter, event.caster)
        caster.mark_action(timestamp)
        caster.record_spell(event.spell_name)

    def _process_spell_resist(self, encounter: Encounter, event: SpellResist, timestamp: float):
        self.attributor.observe(event, timestamp)
        target = self._combatant(encounter, event.target)
        if event.resisted:
            target.spells_resisted += 1
        else:
            target.spells_not_resisted += 1

        caster_name = event.caster or self.attributor.resolve_caster(event.spell_name, timestamp)
        if caster_name and event.resisted:
            self._combatant(encounter, caster_name).enemy_resists += 1

    def _process_save(self, encounter: Encounter, event: SavingThrow, timestamp: float):
        self.attributor.observe(event, timestamp)
        target = self._combatant(encounter, event.target)
        if event.success:
            target.saves_made += 1
        else:
            target.saves_failed += 1

    def _close_current(self) -> Optional[Encounter]:
        encounter = self._current
        if encounter is None:
            return None
        encounter.close()
        self._history.append(encounter)
        self._current = None
        for name, combatant in encounter.combatants.items():
            total = self._session.get(name)
            if total is None:
                self._session[name] = copy.deepcopy(combatant)
            else:
                total.merge(combatant)
        logger.info(
            f"Encounter {encounter.display_name} closed: "
            f"{encounter.total_damage} damage, {encounter.dps():.1f} DPS"
        )
        return encounter

    def close_if_idle(self, now: float) -> Optional[Encounter]:
        """Close the open encounter if nothing happened for longer than the gap."""
        if self._current is not None and now - self._current.last_combat_time > self.gap_seconds:
            return self._close_current()
        return None

    def finalize(self) -> List[Encounter]:
        """Close the open encounter, if any, and return the full history."""
        self._close_current()
        return list(self._history)

    @property
    def current_encounter(self) -> Optional[Encounter]:
        return self._current

    def historical_encounters(self) -> Tuple[Encounter, ...]:
        """Closed encounters, oldest first."""
        return tuple(self._history)

    def encounter(self, index: int) -> Encounter:
        """Closed encounter by position in the history."""
        return self._history[index]

    def session_totals(self, include_current: bool = False) -> Dict[str, Combatant]:
        """
        Combatant tallies merged across closed encounters.

        Args:
            include_current: Also add the open encounter's tallies
        """
        totals = copy.deepcopy(self._session)
        if include_current and self._current is not None:
            for name, combatant in self._current.combatants.items():
                if name in totals:
                    totals[name].merge(combatant)
                else:
                    totals[name] = copy.deepcopy(combatant)
        return totals

    def reset(self):
        self._current = None
        self._history.clear()
        self._session.clear()
        self._next_id = 1
        self.events_ingested = 0
        self.attributor.reset()

    def get_stats(self) -> dict:
        return {
            "encounters_closed": len(self._history),
            "encounter_active": self._current is not None,
            "events_ingested": self.events_ingested,
            "combatants_seen": len(self._session),
        }
