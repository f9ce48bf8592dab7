"""
Line tokenizer for Neverwinter Nights chat logs.

Splits the ``[CHAT WINDOW TEXT] [Tue Jul 29 14:10:26]`` prefix from the
payload and turns the time of day into seconds.
"""

import re
from dataclasses import dataclass
from typing import Optional, Tuple

SECONDS_PER_DAY = 86400

# A backwards jump larger than this is a midnight rollover, not noise
ROLLOVER_THRESHOLD = SECONDS_PER_DAY // 2


@dataclass(frozen=True)
class LogLine:
    """One log line with its resolved timestamp (seconds, monotonic across midnight)."""

    timestamp: float
    raw_text: str


def parse_time_of_day(text: str) -> Optional[int]:
    """
    Convert ``HH:MM:SS`` to seconds since midnight.

    >>> parse_time_of_day("14:10:26")
    51026
    >>> parse_time_of_day("25:00:00") is None
    True
    """
    parts = text.strip().split(":")
    if len(parts) != 3:
        return None
    try:
        hours, minutes, seconds = (int(p) for p in parts)
    except ValueError:
        return None
    if not (0 <= hours < 24 and 0 <= minutes < 60 and 0 <= seconds < 60):
        return None
    return hours * 3600 + minutes * 60 + seconds


class LineTokenizer:
    """
    Resolves the timestamp for each line of a chat log.

    Lines without a parseable prefix inherit the last seen timestamp. The
    tokenizer is the only stateful piece of parsing; a fresh instance must be
    used per log file so backfill and live tailing see the same carry-over.
    """

    # "[CHAT WINDOW TEXT] [Tue Jul 29 14:10:26] payload" or "[14:10:26] payload"
    LINE_PATTERN = re.compile(
        r"^(?:\[CHAT WINDOW TEXT\]\s*)?"
        r"\[(?:[^\]]*?\s)?(?P<clock>\d{1,2}:\d{2}:\d{2})\]\s?(?P<payload>.*)$"
    )
    CHANNEL_PREFIX = re.compile(r"^\[CHAT WINDOW TEXT\]\s*")

    def __init__(self):
        self.line_count = 0
        self.untimed_count = 0
        self.last_timestamp: Optional[float] = None
        self._day_offset = 0
        self._last_clock: Optional[int] = None

    def split_line(self, line: str) -> Tuple[Optional[int], str]:
        """
        Split a raw line into (time of day in seconds, payload).

        The time is None when the line carries no parseable prefix.
        """
        line = line.rstrip("\r\n")
        match = self.LINE_PATTERN.match(line)
        if match:
            clock = parse_time_of_day(match.group("clock"))
            if clock is not None:
                return clock, match.group("payload").strip()
        return None, self.CHANNEL_PREFIX.sub("", line).strip()

    def tokenize(self, line: str) -> LogLine:
        """
        Resolve one raw line into a LogLine.

        Args:
            line: Raw text as read from the log file

        Returns:
            LogLine carrying the payload and its timestamp
        """
        self.line_count += 1
        clock, payload = self.split_line(line)

        if clock is None:
            self.untimed_count += 1
            timestamp = self.last_timestamp if self.last_timestamp is not None else 0.0
            return LogLine(timestamp=timestamp, raw_text=payload)

        if self._last_clock is not None and self._last_clock - clock > ROLLOVER_THRESHOLD:
            self._day_offset += SECONDS_PER_DAY
        self._last_clock = clock

        timestamp = float(clock + self._day_offset)
        self.last_timestamp = timestamp
        return LogLine(timestamp=timestamp, raw_text=payload)

    def reset(self):
        """Forget carry-over state."""
        self.line_count = 0
        self.untimed_count = 0
        self.last_timestamp = None
        self._day_offset = 0
        self._last_clock = None

    def get_stats(self) -> dict:
        """Get tokenizer statistics."""
        return {
            "lines_processed": self.line_count,
            "untimed_lines": self.untimed_count,
            "last_timestamp": self.last_timestamp,
        }
