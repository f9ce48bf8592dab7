"""
Event types produced by the event parser.

Each variant carries only what aggregation needs; the raw line is dropped
after parsing.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Dict, Optional


class EventType(Enum):
    """Kinds of parsed log events."""

    ATTACK = "attack"
    DAMAGE = "damage"
    DAMAGE_ABSORBED = "damage_absorbed"
    SPELL_CAST = "spell_cast"
    SPELL_RESIST = "spell_resist"
    SAVING_THROW = "saving_throw"
    CHAT_MESSAGE = "chat_message"
    PARTY_EVENT = "party_event"
    REST = "rest"
    BUFF_EXPIRED = "buff_expired"
    UNRECOGNIZED = "unrecognized"


class AttackOutcome(Enum):
    """Result of an attack roll."""

    HIT = "hit"
    MISS = "miss"
    CRITICAL_HIT = "critical hit"
    AUTO_MISS = "automatic miss"

    @property
    def landed(self) -> bool:
        return self in (AttackOutcome.HIT, AttackOutcome.CRITICAL_HIT)


class PartyEventKind(Enum):
    """What a party/session line announced."""

    JOINED_AS_PLAYER = "joined_as_player"
    JOINED_PARTY = "joined_party"


class AbsorbKind(Enum):
    DAMAGE_IMMUNITY = "Damage Immunity"
    DAMAGE_RESISTANCE = "Damage Resistance"
    DAMAGE_REDUCTION = "Damage Reduction"


@dataclass(frozen=True)
class CombatEvent:
    """Base class for parsed events."""

    event_type: ClassVar[EventType] = EventType.UNRECOGNIZED

    # Events that open, extend, or close an encounter
    is_combat: ClassVar[bool] = False


@dataclass(frozen=True)
class Attack(CombatEvent):
    attacker: str
    defender: str
    outcome: AttackOutcome
    roll: Optional[int] = None
    concealment: Optional[int] = None

    event_type: ClassVar[EventType] = EventType.ATTACK
    is_combat: ClassVar[bool] = True

    @property
    def concealed(self) -> bool:
        return self.concealment is not None and not self.outcome.landed


@dataclass(frozen=True)
class Damage(CombatEvent):
    """
    Damage dealt by one source to one target.

    ``breakdown`` maps damage type to amount; ``amount`` is the logged total.
    Damage lines never say whether they were critical, so the parser leaves
    ``is_critical`` False; critical credit comes from the preceding attack
    through ``DamageAttributor``. Callers building events may set it directly.
    """

    source: str
    target: str
    amount: int
    breakdown: Dict[str, int] = field(default_factory=dict, hash=False, compare=True)
    is_critical: bool = False

    event_type: ClassVar[EventType] = EventType.DAMAGE
    is_combat: ClassVar[bool] = True

    @property
    def damage_type(self) -> str:
        """Dominant damage type, first listed on ties."""
        if not self.breakdown:
            return "Untyped"
        return max(self.breakdown.items(), key=lambda item: item[1])[0]

    @property
    def has_physical(self) -> bool:
        return "Physical" in self.breakdown


@dataclass(frozen=True)
class DamageAbsorbed(CombatEvent):
    target: str
    amount: int
    absorb_kind: AbsorbKind
    damage_type: Optional[str] = None

    event_type: ClassVar[EventType] = EventType.DAMAGE_ABSORBED
    is_combat: ClassVar[bool] = True


@dataclass(frozen=True)
class SpellCast(CombatEvent):
    caster: str
    spell_name: str
    target: Optional[str] = None

    event_type: ClassVar[EventType] = EventType.SPELL_CAST
    is_combat: ClassVar[bool] = True


@dataclass(frozen=True)
class SpellResist(CombatEvent):
    """Spell resistance check; ``caster`` is unknown until attribution."""

    target: str
    spell_name: str
    resisted: bool
    caster: Optional[str] = None

    event_type: ClassVar[EventType] = EventType.SPELL_RESIST
    is_combat: ClassVar[bool] = True


@dataclass(frozen=True)
class SavingThrow(CombatEvent):
    target: str
    save_type: str
    success: bool
    versus: Optional[str] = None

    event_type: ClassVar[EventType] = EventType.SAVING_THROW
    is_combat: ClassVar[bool] = True


@dataclass(frozen=True)
class ChatMessage(CombatEvent):
    speaker_account: Optional[str]
    speaker_character: Optional[str]
    text: str
    channel: Optional[str] = None

    event_type: ClassVar[EventType] = EventType.CHAT_MESSAGE


@dataclass(frozen=True)
class PartyEvent(CombatEvent):
    kind: PartyEventKind
    account: Optional[str] = None
    character: Optional[str] = None

    event_type: ClassVar[EventType] = EventType.PARTY_EVENT


@dataclass(frozen=True)
class RestEvent(CombatEvent):
    event_type: ClassVar[EventType] = EventType.REST


@dataclass(frozen=True)
class BuffExpired(CombatEvent):
    spell_name: str

    event_type: ClassVar[EventType] = EventType.BUFF_EXPIRED


@dataclass(frozen=True)
class Unrecognized(CombatEvent):
    event_type: ClassVar[EventType] = EventType.UNRECOGNIZED


UNRECOGNIZED = Unrecognized()
