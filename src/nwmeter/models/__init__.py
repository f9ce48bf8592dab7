"""Domain models: players, buffs, combatants, and encounters."""

from .buffs import BuffEngine, BuffInstance, BuffState, DurationRule
from .combatant import Combatant
from .encounter import Encounter, format_duration
from .players import CharacterSwitch, PlayerIdentity, PlayerRegistry

__all__ = [
    "BuffEngine",
    "BuffInstance",
    "BuffState",
    "DurationRule",
    "Combatant",
    "Encounter",
    "format_duration",
    "CharacterSwitch",
    "PlayerIdentity",
    "PlayerRegistry",
]
