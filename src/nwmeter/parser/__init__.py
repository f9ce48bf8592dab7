"""Chat log parsing: timestamps, event variants, and pattern rules."""

from .events import (
    AbsorbKind,
    Attack,
    AttackOutcome,
    BuffExpired,
    ChatMessage,
    CombatEvent,
    Damage,
    DamageAbsorbed,
    EventType,
    PartyEvent,
    PartyEventKind,
    RestEvent,
    SavingThrow,
    SpellCast,
    SpellResist,
    Unrecognized,
    UNRECOGNIZED,
)
from .parser import EventParser, LogParser, TimedEvent
from .rules import DEFAULT_RULES, PatternRule
from .tokenizer import LineTokenizer, LogLine

__all__ = [
    "AbsorbKind",
    "Attack",
    "AttackOutcome",
    "BuffExpired",
    "ChatMessage",
    "CombatEvent",
    "Damage",
    "DamageAbsorbed",
    "EventType",
    "PartyEvent",
    "PartyEventKind",
    "RestEvent",
    "SavingThrow",
    "SpellCast",
    "SpellResist",
    "Unrecognized",
    "UNRECOGNIZED",
    "EventParser",
    "LogParser",
    "TimedEvent",
    "DEFAULT_RULES",
    "PatternRule",
    "LineTokenizer",
    "LogLine",
]
