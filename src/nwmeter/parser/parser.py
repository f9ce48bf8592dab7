"""
Event parser: classifies chat log payloads into typed events.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Union

from .events import UNRECOGNIZED, CombatEvent, EventType
from .rules import DEFAULT_RULES, PatternRule
from .tokenizer import LineTokenizer, LogLine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimedEvent:
    """A parsed event paired with the timestamp of its line."""

    timestamp: float
    event: CombatEvent


class EventParser:
    """
    Maps one payload to one event using ordered pattern rules.

    The first rule whose pattern matches and whose constructor succeeds wins.
    Parsing keeps no state, so identical text always yields an equal event.
    """

    def __init__(self, rules: Optional[Iterable[PatternRule]] = None):
        self.rules: List[PatternRule] = list(DEFAULT_RULES if rules is None else rules)

    def register_rule(self, rule: PatternRule, before: Optional[str] = None):
        """
        Add a rule, optionally ahead of the rule named ``before``.

        Args:
            rule: Rule to add
            before: Name of an existing rule the new one should take priority over
        """
        if before is None:
            self.rules.append(rule)
            return
        for index, existing in enumerate(self.rules):
            if existing.name == before:
                self.rules.insert(index, rule)
                return
        raise KeyError(f"No rule named {before!r}")

    def match_rule(self, text: str) -> Optional[PatternRule]:
        """Return the rule that classifies ``text``, if any."""
        for rule in self.rules:
            if rule.pattern.match(text):
                return rule
        return None

    def parse(self, text: Union[str, LogLine]) -> CombatEvent:
        """
        Classify one payload.

        Args:
            text: Payload with the timestamp prefix removed, or a LogLine

        Returns:
            The typed event, or UNRECOGNIZED when no rule applies
        """
        if isinstance(text, LogLine):
            text = text.raw_text
        text = text.strip()
        if not text:
            return UNRECOGNIZED

        for rule in self.rules:
            match = rule.pattern.match(text)
            if not match:
                continue
            try:
                return rule.build(match)
            except (ValueError, KeyError) as e:
                logger.debug(f"Rule {rule.name} matched but could not build event: {e}")
        return UNRECOGNIZED


class LogParser:
    """
    Parses raw log lines: timestamp resolution followed by event classification.

    One instance per log file. Backfill and live tailing both go through
    ``parse_line`` so they produce the same event stream.
    """

    def __init__(self, event_parser: Optional[EventParser] = None):
        self.tokenizer = LineTokenizer()
        self.event_parser = event_parser or EventParser()
        self.event_counts: Counter = Counter()

    def parse_line(self, line: str) -> TimedEvent:
        """Parse one raw line into a timed event."""
        log_line = self.tokenizer.tokenize(line)
        event = self.event_parser.parse(log_line.raw_text)
        self.event_counts[event.event_type] += 1
        if event.event_type == EventType.UNRECOGNIZED and log_line.raw_text:
            logger.debug(f"Unrecognized line {self.tokenizer.line_count}: {log_line.raw_text[:100]}")
        return TimedEvent(timestamp=log_line.timestamp, event=event)

    def parse_lines(self, lines: Iterable[str]) -> Iterator[TimedEvent]:
        """
        Parse raw lines in order.

        Yields:
            TimedEvent for every line, including unrecognized ones
        """
        for line in lines:
            yield self.parse_line(line)

    def parse_file(self, file_path: Union[str, Path], encoding: str = "utf-8") -> Iterator[TimedEvent]:
        """
        Parse a whole log file from the start.

        Args:
            file_path: Path to the chat log
            encoding: Text encoding of the log

        Yields:
            TimedEvent for each complete line
        """
        from ..streaming.buffer import iter_file_lines

        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"Log file not found: {file_path}")

        logger.info(f"Starting parse of {file_path.name} ({file_path.stat().st_size / 1024:.1f} KB)")
        for line in iter_file_lines(file_path, encoding=encoding):
            yield self.parse_line(line)
        logger.info(
            f"Completed parsing {file_path.name}: {self.tokenizer.line_count} lines, "
            f"{self.event_counts[EventType.UNRECOGNIZED]} unrecognized"
        )

    def reset(self):
        """Reset state for a new file."""
        self.tokenizer.reset()
        self.event_counts.clear()

    def get_stats(self) -> dict:
        """Get parsing statistics."""
        total = sum(self.event_counts.values())
        unrecognized = self.event_counts[EventType.UNRECOGNIZED]
        return {
            "lines_processed": total,
            "unrecognized": unrecognized,
            "recognition_rate": (total - unrecognized) / total if total else 0.0,
            "events_by_type": {t.value: n for t, n in self.event_counts.items()},
        }
