"""
Player registry: maps account names to the characters they play.

Identities are learned from chat lines ("[Account] Character: [Talk] ...")
and session lines ("Account has joined as a player.."). The main player is
the identity buffs are tracked for.
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Mapping, Optional, Set

from ..parser.events import (
    Attack,
    ChatMessage,
    CombatEvent,
    Damage,
    PartyEvent,
    PartyEventKind,
    SpellCast,
)

logger = logging.getLogger(__name__)

# Only party chat without an account tag is known to come from a player
PARTY_CHANNEL = "Party"


@dataclass
class PlayerIdentity:
    """An account and the character it is currently playing."""

    account_name: str
    character_name: Optional[str] = None
    last_seen: Optional[float] = None

    @property
    def display_name(self) -> str:
        """
        Name shown to users.

        >>> PlayerIdentity("Alice", "Thorin").display_name
        '[Alice] Thorin'
        """
        if self.character_name:
            return f"[{self.account_name}] {self.character_name}"
        return f"[{self.account_name}]"

    def to_dict(self) -> dict:
        return {
            "account": self.account_name,
            "character": self.character_name,
            "last_seen": self.last_seen,
        }


@dataclass(frozen=True)
class CharacterSwitch:
    """The main account logged in with a different character."""

    account_name: str
    old_character: str
    new_character: str


class PlayerRegistry:
    """
    Owns account to character mappings and the main player choice.

    The main player is fixed by the first "joined as a player" or account
    chat line. Chat from another account only takes over once the main
    player has been silent for longer than ``main_player_timeout`` seconds.
    """

    def __init__(self, main_player_timeout: float = 300.0):
        self.main_player_timeout = main_player_timeout
        self._identities: Dict[str, PlayerIdentity] = {}
        self._character_to_account: Dict[str, str] = {}
        self._party_members: Set[str] = set()
        self._main_account: Optional[str] = None
        self.character_switches = 0

    @property
    def main_account(self) -> Optional[str]:
        return self._main_account

    def observe(
        self, event: CombatEvent, timestamp: Optional[float] = None
    ) -> Optional[CharacterSwitch]:
        """
        Update identities from one event.

        Args:
            event: Any parsed event; only chat, party and combat actions matter
            timestamp: Time of the event, used for activity tracking

        Returns:
            CharacterSwitch when the main account changed character
        """
        if isinstance(event, ChatMessage):
            if event.speaker_account and event.speaker_character:
                return self._link(event.speaker_account, event.speaker_character, timestamp)
            # NPCs speak on Talk and Shout without an account tag
            if event.speaker_character and event.channel == PARTY_CHANNEL:
                self._observe_unaccounted(event.speaker_character, timestamp)
        elif isinstance(event, PartyEvent):
            if event.kind == PartyEventKind.JOINED_AS_PLAYER and event.account:
                self._observe_join(event.account, timestamp)
            elif event.account and event.character:
                return self._link(event.account, event.character, timestamp)
            elif event.character:
                self._observe_unaccounted(event.character, timestamp)
        elif isinstance(event, Attack):
            self.touch(event.attacker, timestamp)
        elif isinstance(event, Damage):
            self.touch(event.source, timestamp)
        elif isinstance(event, SpellCast):
            self.touch(event.caster, timestamp)
        return None

    def _observe_join(self, account: str, timestamp: Optional[float]):
        identity = self._identities.get(account)
        if identity is None:
            identity = PlayerIdentity(account_name=account)
            self._identities[account] = identity
        identity.last_seen = timestamp if timestamp is not None else identity.last_seen
        if self._main_account is None:
            self._set_main(account)

    def _observe_unaccounted(self, character: str, timestamp: Optional[float]):
        account = self._character_to_account.get(character)
        if account is not None:
            self.touch(character, timestamp)
            return
        main = self._identities.get(self._main_account) if self._main_account else None
        if main is not None and main.character_name is None:
            self._link(main.account_name, character, timestamp)
            return
        if character not in self._party_members:
            logger.debug(f"Party member seen: {character}")
        self._party_members.add(character)

    def _link(
        self, account: str, character: str, timestamp: Optional[float]
    ) -> Optional[CharacterSwitch]:
        identity = self._identities.get(account)
        if identity is None:
            identity = PlayerIdentity(account_name=account)
            self._identities[account] = identity
            logger.info(f"Discovered player {account} as {character}")

        old_character = identity.character_name
        if old_character and old_character != character:
            if self._character_to_account.get(old_character) == account:
                del self._character_to_account[old_character]

        previous_owner = self._character_to_account.get(character)
        if previous_owner and previous_owner != account:
            self._identities[previous_owner].character_name = None

        identity.character_name = character
        if timestamp is not None:
            identity.last_seen = timestamp
        self._character_to_account[character] = account
        self._party_members.discard(character)

        if self._main_account is None:
            self._set_main(account)
        elif account != self._main_account and self._main_is_stale(timestamp):
            self._set_main(account)

        if account == self._main_account and old_character and old_character != character:
            self.character_switches += 1
            logger.info(f"Main player {account} switched from {old_character} to {character}")
            return CharacterSwitch(account, old_character, character)
        return None

    def _main_is_stale(self, timestamp: Optional[float]) -> bool:
        main = self._identities.get(self._main_account)
        if main is None or main.last_seen is None or timestamp is None:
            return False
        return timestamp - main.last_seen > self.main_player_timeout

    def _set_main(self, account: str):
        previous = self._main_account
        self._main_account = account
        if previous:
            logger.info(f"Main player reassigned from {previous} to {account}")
        else:
            logger.info(f"Main player is {account}")

    def touch(self, character: str, timestamp: Optional[float]):
        """Record activity by a character, if it belongs to a known account."""
        account = self._character_to_account.get(character)
        if account is None or timestamp is None:
            return
        self._identities[account].last_seen = timestamp

    def resolve_main_player(self) -> Optional[PlayerIdentity]:
        """Return a copy of the main player's identity, if one is known."""
        if self._main_account is None:
            return None
        return replace(self._identities[self._main_account])

    @property
    def main_character(self) -> Optional[str]:
        if self._main_account is None:
            return None
        return self._identities[self._main_account].character_name

    def identity_for_character(self, character: str) -> Optional[PlayerIdentity]:
        account = self._character_to_account.get(character)
        if account is None:
            return None
        return replace(self._identities[account])

    def is_player(self, name: str) -> bool:
        """Whether ``name`` is a known player character."""
        return name in self._character_to_account or name in self._party_members

    def is_tracked_caster(self, name: str, track_all_players: bool = False) -> bool:
        """Whether buffs cast by ``name`` should be tracked."""
        if name and name == self.main_character:
            return True
        return track_all_players and name in self._character_to_account

    def identities(self) -> List[PlayerIdentity]:
        """Copies of every known identity, sorted by account."""
        return [replace(self._identities[a]) for a in sorted(self._identities)]

    @property
    def party_members(self) -> Set[str]:
        return set(self._party_members)

    def to_mapping(self) -> Dict[str, str]:
        """Serialize as account -> character for external storage."""
        return {
            account: identity.character_name
            for account, identity in sorted(self._identities.items())
            if identity.character_name
        }

    def load_mapping(self, mapping: Mapping[str, str]):
        """Merge a stored account -> character mapping into the registry."""
        for account, character in mapping.items():
            if not account or not character:
                continue
            identity = self._identities.setdefault(account, PlayerIdentity(account_name=account))
            identity.character_name = character
            self._character_to_account[character] = account

    @classmethod
    def from_mapping(
        cls, mapping: Mapping[str, str], main_player_timeout: float = 300.0
    ) -> "PlayerRegistry":
        """Build a registry from a stored account -> character mapping."""
        registry = cls(main_player_timeout=main_player_timeout)
        registry.load_mapping(mapping)
        return registry

    def known_characters(self) -> Iterable[str]:
        return sorted(self._character_to_account)
