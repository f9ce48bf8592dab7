"""
Ordered pattern rules mapping chat log payloads to events.

Rules are tried in list order and the first match wins, so the more
specific shapes (chat with an account tag, spell resist, saves) sit ahead of
the looser combat shapes. Adding an event type means adding a rule here.
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, List

from .events import (
    AbsorbKind,
    Attack,
    AttackOutcome,
    BuffExpired,
    ChatMessage,
    CombatEvent,
    Damage,
    DamageAbsorbed,
    PartyEvent,
    PartyEventKind,
    RestEvent,
    SavingThrow,
    SpellCast,
    SpellResist,
)

# Integer with optional thousands separators: 1234, 1,234, 1.234, 1'234
NUMBER = r"\d{1,3}(?:[,.'\u00a0]\d{3})+|\d+"

_BREAKDOWN_PART = re.compile(rf"(?P<amount>{NUMBER})\s+(?P<type>[A-Za-z]+)")


def to_int(text: str) -> int:
    """
    Parse a logged integer, ignoring thousands separators.

    >>> to_int("1,234")
    1234
    >>> to_int(" 56 ")
    56
    """
    digits = re.sub(r"\D", "", text)
    if not digits:
        raise ValueError(f"No digits in {text!r}")
    return int(digits)


def clean_name(text: str) -> str:
    """Collapse runs of whitespace inside a captured name."""
    return " ".join(text.split())


def parse_breakdown(text: str) -> Dict[str, int]:
    """
    Parse a damage breakdown such as ``20 Physical 7 Fire``.

    >>> parse_breakdown("20 Physical  7 Fire")
    {'Physical': 20, 'Fire': 7}
    """
    breakdown: Dict[str, int] = {}
    for match in _BREAKDOWN_PART.finditer(text):
        damage_type = match.group("type")
        breakdown[damage_type] = breakdown.get(damage_type, 0) + to_int(match.group("amount"))
    return breakdown


@dataclass(frozen=True)
class PatternRule:
    """A matcher and the constructor that turns its match into an event."""

    name: str
    pattern: re.Pattern
    build: Callable[["re.Match"], CombatEvent]


def _attack(match) -> Attack:
    result = match.group("result")
    roll = match.group("roll")
    roll = int(roll) if roll else None
    concealment = match.group("concealment")

    if result == "critical hit":
        outcome = AttackOutcome.CRITICAL_HIT
    elif result == "hit":
        outcome = AttackOutcome.HIT
    elif roll == 1:
        outcome = AttackOutcome.AUTO_MISS
    else:
        outcome = AttackOutcome.MISS

    return Attack(
        attacker=clean_name(match.group("attacker")),
        defender=clean_name(match.group("defender")),
        outcome=outcome,
        roll=roll,
        concealment=int(concealment) if concealment else None,
    )


def _concealed_attack(match) -> Attack:
    roll = match.group("roll")
    return Attack(
        attacker=clean_name(match.group("attacker")),
        defender=clean_name(match.group("defender")),
        outcome=AttackOutcome.MISS,
        roll=int(roll) if roll else None,
        concealment=int(match.group("concealment")),
    )


def _damage(match) -> Damage:
    return Damage(
        source=clean_name(match.group("source")),
        target=clean_name(match.group("target")),
        amount=to_int(match.group("total")),
        breakdown=parse_breakdown(match.group("breakdown")),
    )


def _absorb(match) -> DamageAbsorbed:
    damage_type = match.group("type")
    return DamageAbsorbed(
        target=clean_name(match.group("target")),
        amount=to_int(match.group("amount")),
        absorb_kind=AbsorbKind(f"Damage {match.group('kind')}"),
        damage_type=damage_type,
    )


def _spell_cast(match) -> SpellCast:
    target = match.group("target")
    return SpellCast(
        caster=clean_name(match.group("caster")),
        spell_name=clean_name(match.group("spell")),
        target=clean_name(target) if target else None,
    )


def _spell_resist(match) -> SpellResist:
    return SpellResist(
        target=clean_name(match.group("target")),
        spell_name=clean_name(match.group("spell")),
        resisted=match.group("result").upper() == "SUCCESS",
    )


def _saving_throw(match) -> SavingThrow:
    versus = match.group("versus")
    return SavingThrow(
        target=clean_name(match.group("target")),
        save_type=match.group("save"),
        success=match.group("result") != "failed",
        versus=clean_name(versus) if versus else None,
    )


def _player_chat(match) -> ChatMessage:
    return ChatMessage(
        speaker_account=match.group("account").strip(),
        speaker_character=clean_name(match.group("character")),
        text=match.group("text").strip(),
        channel=match.group("channel").strip(),
    )


def _party_chat(match) -> ChatMessage:
    return ChatMessage(
        speaker_account=None,
        speaker_character=clean_name(match.group("character")),
        text=match.group("text").strip(),
        channel=match.group("channel"),
    )


ATTACK_PATTERN = re.compile(
    r"^(?:[^:]+:\s+)*(?P<attacker>.+?)\s+attacks\s+(?P<defender>.+?)\s*:\s*"
    r"(?:\*target concealed:\s*(?P<concealment>\d+)%\*\s*:\s*)?"
    r"\*(?P<result>critical hit|hit|miss|parried)\*"
    r"(?:\s*:\s*\(\s*(?P<roll>\d+)\s*\+)?"
)

CONCEALED_ATTACK_PATTERN = re.compile(
    r"^(?:[^:]+:\s+)*(?P<attacker>.+?)\s+attacks\s+(?P<defender>.+?)\s*:\s*"
    r"\*target concealed:\s*(?P<concealment>\d+)%\*"
    r"(?:\s*:\s*\(\s*(?P<roll>\d+)\s*\+)?"
)

DAMAGE_PATTERN = re.compile(
    rf"^(?P<source>.+?)\s+damages\s+(?P<target>.+?)\s*:\s*(?P<total>{NUMBER})"
    r"\s*\((?P<breakdown>[^)]*)\)"
)

ABSORB_PATTERN = re.compile(
    rf"^(?P<target>.+?)\s*:\s*Damage (?P<kind>Immunity|Resistance|Reduction)\s+absorbs\s+"
    rf"(?P<amount>{NUMBER})\s+(?:point\(s\)\s+of\s+(?P<type>[A-Za-z]+)|damage)"
)

SPELL_RESIST_PATTERN = re.compile(
    r"^SPELL RESIST:\s*(?P<target>.+?)\s+attempts to resist:\s*(?P<spell>.+?)"
    r"\s*-\s*Result:\s*(?P<result>FAILED|SUCCESS)"
)

SAVE_PATTERN = re.compile(
    r"^(?:SAVE:\s*)?(?P<target>.+?)\s*:\s*(?P<save>Fortitude|Reflex|Will)(?:\s+Save)?"
    r"(?:\s+vs\.\s*(?P<versus>[^:]+?))?\s*:\s*\*(?P<result>failed|succeeded|success)\*"
)

CASTS_PATTERN = re.compile(
    r"^(?P<caster>.+?)\s+casts\s+(?P<spell>.+?)(?:\s+on\s+(?P<target>.+?))?\s*\.?$"
)

PLAYER_CHAT_PATTERN = re.compile(
    r"^\[(?P<account>[^\]]+)\]\s*(?P<character>[^:\[\]]+?)\s*:\s*"
    r"\[(?P<channel>[^\]]+)\]\s?(?P<text>.*)$"
)

PARTY_CHAT_PATTERN = re.compile(
    r"^(?P<character>[^:\[\]]+?)\s*:\s*\[(?P<channel>Party|Talk|Shout|Whisper)\]\s?(?P<text>.*)$"
)


DEFAULT_RULES: List[PatternRule] = [
    PatternRule("player_chat", PLAYER_CHAT_PATTERN, _player_chat),
    PatternRule("party_chat", PARTY_CHAT_PATTERN, _party_chat),
    PatternRule("rest", re.compile(r"^Resting\.?$"), lambda m: RestEvent()),
    PatternRule(
        "player_join",
        re.compile(r"^(?P<account>.+?)\s+has joined as a player\.*\s*$"),
        lambda m: PartyEvent(
            kind=PartyEventKind.JOINED_AS_PLAYER, account=m.group("account").strip()
        ),
    ),
    PatternRule(
        "party_join",
        re.compile(r"^(?P<character>.+?)\s+has joined the party\.?\s*$"),
        lambda m: PartyEvent(
            kind=PartyEventKind.JOINED_PARTY, character=clean_name(m.group("character"))
        ),
    ),
    PatternRule(
        "buff_expired",
        re.compile(r"^(?P<spell>[^:]+?)\s+(?:has worn off|wore off)\.?\s*$"),
        lambda m: BuffExpired(spell_name=clean_name(m.group("spell"))),
    ),
    PatternRule("spell_resist", SPELL_RESIST_PATTERN, _spell_resist),
    PatternRule("saving_throw", SAVE_PATTERN, _saving_throw),
    PatternRule("damage_absorbed", ABSORB_PATTERN, _absorb),
    PatternRule("attack", ATTACK_PATTERN, _attack),
    PatternRule("concealed_attack", CONCEALED_ATTACK_PATTERN, _concealed_attack),
    PatternRule("damage", DAMAGE_PATTERN, _damage),
    PatternRule("spell_cast", CASTS_PATTERN, _spell_cast),
]
