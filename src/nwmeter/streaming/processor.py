"""
Meter processor: the single owner of all aggregate state.

Lines from the watcher (live) or from a full-file backfill go through the
same path: parse, then update the player registry, the encounter
aggregator, and the buff engine under one lock. Readers take snapshots.
"""

import copy
import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from ..config.settings import MeterSettings
from ..models.buffs import BuffEngine, BuffInstance, DurationRule, PlayerRef
from ..models.combatant import Combatant
from ..models.encounter import Encounter
from ..models.players import PlayerIdentity, PlayerRegistry
from ..parser.parser import LogParser, TimedEvent
from ..segmentation.encounters import EncounterAggregator
from .buffer import batched
from .watcher import LogWatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeterSnapshot:
    """
    A consistent copy of the meter state at one moment.

    Nothing in a snapshot is shared with the live state; readers may keep
    and inspect it without locking.
    """

    taken_at: float
    gap_seconds: float
    warning_seconds: float
    current_encounter: Optional[Encounter]
    encounters: Tuple[Encounter, ...]
    buffs: Tuple[BuffInstance, ...]
    main_player: Optional[PlayerIdentity]
    players: Tuple[PlayerIdentity, ...]
    stats: Dict[str, object] = field(default_factory=dict)

    @property
    def encounter_active(self) -> bool:
        """Whether the open encounter is still within the inactivity gap."""
        return self.current_encounter is not None and self.current_encounter.is_active_at(
            self.taken_at, self.gap_seconds
        )

    def historical_encounters(self) -> Tuple[Encounter, ...]:
        return self.encounters

    def active_buffs(self, player: Optional[PlayerRef] = None) -> List[BuffInstance]:
        name = getattr(player, "character_name", player)
        return [
            b for b in self.buffs
            if b.is_active(self.taken_at) and (name is None or b.player == name)
        ]

    def expiring_buffs(self) -> List[BuffInstance]:
        return [b for b in self.active_buffs() if b.is_expiring(self.taken_at, self.warning_seconds)]

    def to_dict(self) -> dict:
        return {
            "taken_at": self.taken_at,
            "current_encounter": self.current_encounter.to_dict() if self.current_encounter else None,
            "encounters": [e.to_dict() for e in self.encounters],
            "buffs": [b.to_dict(self.taken_at) for b in self.active_buffs()],
            "main_player": self.main_player.to_dict() if self.main_player else None,
        }


class MeterProcessor:
    """
    Feeds log lines through parsing and aggregation.

    All mutation happens in ``process_lines`` under a single lock, one
    bounded batch at a time, so a large backfill never holds readers off
    for long.
    """

    def __init__(
        self,
        settings: Optional[MeterSettings] = None,
        registry: Optional[PlayerRegistry] = None,
        spells: Optional[Mapping[str, DurationRule]] = None,
    ):
        self.settings = settings or MeterSettings()
        self.registry = registry or PlayerRegistry(
            main_player_timeout=self.settings.main_player_timeout_seconds
        )
        self.parser = LogParser()
        self.aggregator = EncounterAggregator(
            gap_seconds=self.settings.encounter_gap_seconds,
            is_player=self.registry.is_player,
        )
        self.buffs = BuffEngine(self.settings.buffs)
        for spell_name, rule in (spells or {}).items():
            self.buffs.register_spell(spell_name, rule)

        self._lock = threading.RLock()
        self._last_timestamp: Optional[float] = None
        self._last_ingest_clock: Optional[float] = None
        self._watcher: Optional[LogWatcher] = None

        self.lines_processed = 0
        self.events_by_type: Counter = Counter()

    @property
    def watcher(self) -> Optional[LogWatcher]:
        return self._watcher

    @property
    def live(self) -> bool:
        return self._watcher is not None and self._watcher.is_running

    def _is_tracked_caster(self, name: str) -> bool:
        return self.registry.is_tracked_caster(name, self.settings.buffs.track_all_players)

    def _apply(self, timed: TimedEvent):
        event, timestamp = timed.event, timed.timestamp
        self.events_by_type[event.event_type.value] += 1

        switch = self.registry.observe(event, timestamp)
        if switch is not None:
            self.buffs.clear_player(switch.old_character)

        self.aggregator.ingest(event, timestamp)
        self.buffs.observe(event, timestamp, self._is_tracked_caster)
        self._last_timestamp = timestamp

    def process_line(self, line: str):
        """Process one raw log line."""
        self.process_lines([line])

    def process_lines(self, lines: Iterable[str]) -> int:
        """
        Process raw log lines in order.

        Args:
            lines: Raw lines as read from the log

        Returns:
            Number of lines processed
        """
        count = 0
        for batch in batched(lines, self.settings.watcher.max_lines_per_batch):
            with self._lock:
                for line in batch:
                    self._apply(self.parser.parse_line(line))
                self.lines_processed += len(batch)
                self._last_ingest_clock = time.monotonic()
            count += len(batch)
            # Let readers in between batches
            time.sleep(0)
        return count

    def _make_watcher(self, path: Union[str, Path]) -> LogWatcher:
        watcher_settings = self.settings.watcher
        return LogWatcher(
            path,
            on_lines=self.process_lines,
            encoding=watcher_settings.encoding,
            poll_interval=watcher_settings.poll_interval,
            max_backoff=watcher_settings.max_backoff,
            max_consecutive_failures=watcher_settings.max_consecutive_failures,
        )

    def backfill(self, path: Union[str, Path]) -> LogWatcher:
        """
        Ingest an entire log file from its start.

        Returns:
            A watcher positioned after the last complete line read, ready to tail
        """
        watcher = self._make_watcher(path)
        watcher.check_path()
        if not watcher.path.exists():
            raise FileNotFoundError(f"Log file not found: {watcher.path}")

        started = time.monotonic()
        watcher.attach(from_start=True)
        total = 0
        while True:
            total += self.process_lines(watcher.poll())
            if watcher.caught_up or watcher.missing:
                break
        logger.info(
            f"Backfilled {total} lines from {watcher.path.name} "
            f"in {time.monotonic() - started:.2f}s"
        )
        self._watcher = watcher
        return watcher

    def watch(self, path: Union[str, Path], backfill: bool = False) -> LogWatcher:
        """
        Start tailing a log file in the background.

        Args:
            path: Log file to follow
            backfill: Ingest the existing contents first instead of starting at the end
        """
        self.stop()
        if backfill:
            watcher = self.backfill(path)
        else:
            watcher = self._make_watcher(path)
            watcher.check_path()
            watcher.attach()
            self._watcher = watcher
        watcher.start()
        return watcher

    def stop(self):
        """Stop the background watcher; ingested state is kept."""
        if self._watcher is not None:
            self._watcher.stop()

    def finalize(self):
        """Close the open encounter; used once a log has been read to its end."""
        with self._lock:
            self.aggregator.finalize()

    def now(self) -> float:
        """
        Current time on the log's clock.

        While tailing live, log time keeps advancing with the wall clock since
        the last line; otherwise it is the timestamp of the last event.
        """
        with self._lock:
            if self._last_timestamp is None:
                return 0.0
            if self.live and self._last_ingest_clock is not None:
                return self._last_timestamp + (time.monotonic() - self._last_ingest_clock)
            return self._last_timestamp

    def snapshot(self, now: Optional[float] = None) -> MeterSnapshot:
        """Take a consistent copy of the whole meter state."""
        with self._lock:
            taken_at = self.now() if now is None else now
            return MeterSnapshot(
                taken_at=taken_at,
                gap_seconds=self.aggregator.gap_seconds,
                warning_seconds=self.buffs.settings.buff_warning_seconds,
                current_encounter=copy.deepcopy(self.aggregator.current_encounter),
                encounters=copy.deepcopy(self.aggregator.historical_encounters()),
                buffs=tuple(copy.copy(b) for b in self.buffs.active_buffs(now=taken_at)),
                main_player=self.registry.resolve_main_player(),
                players=tuple(self.registry.identities()),
                stats=self.get_stats(),
            )

    def current_encounter(self) -> Optional[Encounter]:
        with self._lock:
            return copy.deepcopy(self.aggregator.current_encounter)

    def historical_encounters(self) -> Tuple[Encounter, ...]:
        with self._lock:
            return copy.deepcopy(self.aggregator.historical_encounters())

    def active_buffs(self, player: Optional[PlayerRef] = None, now: Optional[float] = None) -> List[BuffInstance]:
        with self._lock:
            when = self.now() if now is None else now
            return [copy.copy(b) for b in self.buffs.active_buffs(player, now=when)]

    def main_player(self) -> Optional[PlayerIdentity]:
        with self._lock:
            return self.registry.resolve_main_player()

    def session_totals(self, include_current: bool = False) -> Dict[str, Combatant]:
        with self._lock:
            return self.aggregator.session_totals(include_current=include_current)

    def get_stats(self) -> dict:
        with self._lock:
            stats = {
                "lines_processed": self.lines_processed,
                "events_by_type": dict(self.events_by_type),
                "unrecognized": self.events_by_type.get("unrecognized", 0),
                **self.aggregator.get_stats(),
            }
            if self._watcher is not None:
                stats["decode_errors"] = self._watcher.decode_errors
                stats["rotations"] = self._watcher.rotations
            return stats
