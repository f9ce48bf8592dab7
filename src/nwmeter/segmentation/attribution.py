"""
Damage source attribution.

A damage line does not say what caused it. Landed attacks and spell
resist/save lines that precede it leave short-lived pending records; the
damage line consumes the matching one to learn its source and whether it
was a critical hit. Multi-missile spells are the exception: their context
is not consumed and keeps labelling missiles of its damage type for six seconds.
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional, Tuple

from ..parser.events import Attack, AttackOutcome, CombatEvent, Damage, SavingThrow, SpellCast, SpellResist

ATTACK_LABEL = "Attack"
UNKNOWN_LABEL = "Unknown"

# Seconds a landed attack or spell check waits for its damage line
PENDING_WINDOW = 3.0

# Seconds a multi-missile spell keeps attributing damage after its resist check
MULTI_HIT_WINDOW = 6.0

# Spells that land several damage lines per resist check, with the only damage
# type their missiles deal (None when any type matches)
MULTI_HIT_SPELLS: Dict[str, Optional[str]] = {
    "isaac's greater missile storm": "Magical",
    "isaac's lesser missile storm": "Magical",
    "magic missile": "Magical",
    "flame arrow": "Fire",
    "ball lightning": "Electrical",
}

# Seconds a cast is remembered when looking up who cast a resisted spell
CAST_MEMORY = 12.0


def split_summon(name: str) -> Tuple[str, Optional[str]]:
    """
    Split ``"Owner | Summon"`` into owner and summon.

    >>> split_summon("Thorin | Badger")
    ('Thorin', 'Badger')
    >>> split_summon("Goblin")
    ('Goblin', None)
    """
    if "|" not in name:
        return name, None
    owner, _, summon = name.partition("|")
    return owner.strip(), summon.strip() or None


@dataclass
class PendingAttack:
    attacker: str
    target: str
    timestamp: float
    is_critical: bool


@dataclass
class PendingSpell:
    caster: Optional[str]
    target: str
    spell_name: str
    timestamp: float
    repeating: bool = False

    @property
    def expected_type(self) -> Optional[str]:
        return MULTI_HIT_SPELLS.get(self.spell_name.lower())

    def matches_breakdown(self, damage: Damage) -> bool:
        """A missile deals exactly one damage type, the spell's own."""
        expected = self.expected_type
        if expected is None:
            return True
        return list(damage.breakdown) == [expected]


@dataclass(frozen=True)
class Attribution:
    """Resolved origin of one damage event."""

    attacker: str
    label: str
    is_critical: bool = False
    summon: Optional[str] = None


class DamageAttributor:
    """Matches damage lines to the attacks and spells that caused them."""

    def __init__(self, window: float = PENDING_WINDOW):
        self.window = window
        self._attacks: Deque[PendingAttack] = deque()
        self._spells: Deque[PendingSpell] = deque()
        self._last_cast: Dict[str, Tuple[str, float]] = {}

    def observe(self, event: CombatEvent, timestamp: float):
        """Record context from non-damage combat events."""
        self._expire(timestamp)
        if isinstance(event, Attack):
            if event.outcome.landed:
                self._attacks.append(
                    PendingAttack(
                        attacker=event.attacker,
                        target=event.defender,
                        timestamp=timestamp,
                        is_critical=event.outcome == AttackOutcome.CRITICAL_HIT,
                    )
                )
        elif isinstance(event, SpellCast):
            self._last_cast[event.spell_name.lower()] = (event.caster, timestamp)
        elif isinstance(event, SpellResist):
            if not event.resisted:
                self._spells.append(
                    PendingSpell(
                        caster=event.caster or self.resolve_caster(event.spell_name, timestamp),
                        target=event.target,
                        spell_name=event.spell_name,
                        timestamp=timestamp,
                        repeating=event.spell_name.lower() in MULTI_HIT_SPELLS,
                    )
                )
        elif isinstance(event, SavingThrow):
            for pending in self._spells:
                if pending.target == event.target:
                    pending.timestamp = timestamp

    def resolve_caster(self, spell_name: str, timestamp: float) -> Optional[str]:
        """Most recent caster of ``spell_name`` within the cast memory."""
        cast = self._last_cast.get(spell_name.lower())
        if cast is None or timestamp - cast[1] > CAST_MEMORY:
            return None
        return cast[0]

    def _expire(self, timestamp: float):
        while self._attacks and timestamp - self._attacks[0].timestamp > self.window:
            self._attacks.popleft()
        self._spells = deque(
            s
            for s in self._spells
            if timestamp - s.timestamp <= (MULTI_HIT_WINDOW if s.repeating else self.window)
        )

    def attribute(self, damage: Damage, timestamp: float) -> Attribution:
        """
        Resolve and consume the context of one damage event.

        Args:
            damage: The damage event
            timestamp: Time of the damage line

        Returns:
            Attribution naming the attacker to credit and the damage source label
        """
        self._expire(timestamp)
        owner, summon = split_summon(damage.source)

        # Each missile of a multi-hit spell is its own damage line
        missile = next(
            (
                s
                for s in self._spells
                if s.repeating
                and s.target == damage.target
                and s.caster in (None, damage.source, owner)
                and s.matches_breakdown(damage)
            ),
            None,
        )
        if missile is not None:
            if missile.caster is None:
                missile.caster = damage.source
            return Attribution(owner, f"Spell: {missile.spell_name}", damage.is_critical, summon)

        attack = next(
            (a for a in self._attacks if a.attacker == damage.source and a.target == damage.target),
            None,
        )
        spell = next(
            (
                s
                for s in self._spells
                if not s.repeating
                and s.target == damage.target
                and s.caster in (None, damage.source, owner)
            ),
            None,
        )

        if attack is not None and (damage.has_physical or spell is None):
            self._attacks.remove(attack)
            return Attribution(owner, ATTACK_LABEL, attack.is_critical or damage.is_critical, summon)
        if spell is not None:
            self._spells.remove(spell)
            return Attribution(owner, f"Spell: {spell.spell_name}", damage.is_critical, summon)
        return Attribution(owner, UNKNOWN_LABEL, damage.is_critical, summon)

    def reset(self):
        self._attacks.clear()
        self._spells.clear()
        self._last_cast.clear()
