"""
Log file watcher.

Tails a chat log that another process appends to, re-synchronizing when the
file is rotated, truncated, or replaced. Produces complete lines in file
order with no gaps and no duplicates.
"""

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Union

from ..exceptions import SourceUnavailableError, WatcherConfigError
from .buffer import LineAssembler

logger = logging.getLogger(__name__)

# Leading bytes remembered to detect a file rewritten in place
HEAD_SIZE = 256


@dataclass(frozen=True)
class FileFingerprint:
    """Identity and shape of the watched file at one stat() call."""

    device: int
    inode: int
    size: int
    mtime_ns: int

    @classmethod
    def from_stat(cls, st: os.stat_result) -> "FileFingerprint":
        return cls(
            device=st.st_dev,
            inode=st.st_ino,
            size=st.st_size,
            mtime_ns=st.st_mtime_ns,
        )

    def same_file(self, other: "FileFingerprint") -> bool:
        """
        Whether ``other`` is the same underlying file.

        Without inode numbers identity cannot be told apart; shrinking and
        head checks then catch rotation instead.
        """
        if self.inode and other.inode:
            return (self.device, self.inode) == (other.device, other.inode)
        return True


class LogWatcher:
    """
    Polls one log file and emits newly appended complete lines.

    Used two ways: call ``poll()`` directly from a caller's own loop, or
    ``start()`` a background thread that hands lines to ``on_lines``.
    """

    def __init__(
        self,
        path: Union[str, Path],
        on_lines: Optional[Callable[[List[str]], None]] = None,
        encoding: str = "utf-8",
        poll_interval: float = 0.25,
        max_read_bytes: int = 1 << 20,
        max_backoff: float = 5.0,
        max_consecutive_failures: int = 40,
    ):
        """
        Initialize the watcher.

        Args:
            path: Log file to watch
            on_lines: Receives each non-empty batch of lines in the background loop
            encoding: Text encoding of the log
            poll_interval: Seconds between polls while healthy
            max_read_bytes: Upper bound of bytes read per poll
            max_backoff: Longest delay between polls while the file is unavailable
            max_consecutive_failures: Read failures tolerated before giving up
        """
        self.path = Path(path)
        self.on_lines = on_lines
        self.poll_interval = poll_interval
        self.max_read_bytes = max_read_bytes
        self.max_backoff = max_backoff
        self.max_consecutive_failures = max_consecutive_failures

        self._assembler = LineAssembler(encoding)
        self._offset = 0
        self._fingerprint: Optional[FileFingerprint] = None
        self._head = b""
        self._attached = False
        self._missing = False

        self.rotations = 0
        self.consecutive_failures = 0
        self.handler_errors = 0
        self.fatal_error: Optional[WatcherConfigError] = None

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def offset(self) -> int:
        """Byte offset of the next unread byte."""
        return self._offset

    @property
    def missing(self) -> bool:
        return self._missing

    @property
    def caught_up(self) -> bool:
        """Whether every byte seen at the last poll has been read."""
        if self._fingerprint is None:
            return True
        return self._offset >= self._fingerprint.size

    @property
    def decode_errors(self) -> int:
        return self._assembler.decode_errors

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def check_path(self):
        """
        Reject paths that can never become a readable log file.

        Raises:
            WatcherConfigError: If the path is a directory or its directory is missing
        """
        if self.path.is_dir():
            raise WatcherConfigError(f"Log path is a directory: {self.path}")
        if not self.path.parent.is_dir():
            raise WatcherConfigError(f"Log directory does not exist: {self.path.parent}")

    def attach(self, from_start: bool = False, offset: Optional[int] = None):
        """
        Start following the file.

        By default the cursor is placed at end-of-file so only new lines are
        reported. A missing file is fine: it is read from its start once it appears.

        Args:
            from_start: Read the whole existing file (backfill)
            offset: Explicit byte offset to resume from
        """
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            self._assembler.reset()
            logger.info(f"Waiting for log file {self.path}")
            self._attached = False
            self._missing = True
            self._fingerprint = None
            self._offset = 0
            return
        except OSError as e:
            raise SourceUnavailableError(self.path, e) from e

        if from_start:
            start = 0
        elif offset is not None:
            start = max(0, min(offset, st.st_size))
        else:
            start = st.st_size

        self._fingerprint = FileFingerprint.from_stat(st)
        self._offset = start
        self._head = self._read_head()
        self._attached = True
        self._missing = False
        # Resuming mid-file puts any BOM behind the cursor
        self._assembler.reset(at_file_start=start == 0)
        logger.info(f"Watching {self.path} from offset {start} of {st.st_size}")

    def _read_head(self) -> bytes:
        try:
            with open(self.path, "rb") as f:
                return f.read(HEAD_SIZE)
        except OSError:
            return b""

    def _restart(self, fingerprint: FileFingerprint, reason: str):
        if self._attached:
            self.rotations += 1
            logger.info(f"Log file {self.path} {reason}, reading from the start")
        else:
            logger.info(f"Log file {self.path} {reason}")
        self._assembler.reset()
        self._offset = 0
        self._head = b""
        self._fingerprint = fingerprint
        self._attached = True
        self._missing = False

    def poll(self) -> List[str]:
        """
        Read whatever was appended since the last poll.

        Returns:
            Complete lines in file order; empty when nothing new arrived

        Raises:
            SourceUnavailableError: If the file exists but cannot be read
        """
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            if not self._missing:
                logger.info(f"Log file {self.path} disappeared, waiting for it")
                self._assembler.reset()
            self._missing = True
            self._attached = False
            return []
        except OSError as e:
            raise SourceUnavailableError(self.path, e) from e

        fingerprint = FileFingerprint.from_stat(st)
        if not self._attached:
            self._restart(fingerprint, "appeared")
        elif not self._fingerprint.same_file(fingerprint):
            self._restart(fingerprint, "was replaced")
        elif st.st_size < self._offset:
            self._restart(fingerprint, "was truncated")
        elif fingerprint == self._fingerprint and self._offset >= st.st_size:
            return []

        try:
            with open(self.path, "rb") as f:
                head = f.read(HEAD_SIZE)
                if self._head and head[: len(self._head)] != self._head:
                    self._restart(fingerprint, "was rewritten")
                self._head = head
                f.seek(self._offset)
                data = f.read(self.max_read_bytes)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise SourceUnavailableError(self.path, e) from e

        self._fingerprint = fingerprint
        self._offset += len(data)
        return self._assembler.feed(data)

    def read_all(self) -> List[str]:
        """Poll until every byte present now has been read."""
        lines = self.poll()
        while not self.caught_up:
            chunk = self.poll()
            if not chunk and not self.caught_up and self._missing:
                break
            lines.extend(chunk)
        return lines

    def start(self):
        """
        Start polling in a background thread.

        Raises:
            WatcherConfigError: If the path can never be watched
        """
        if self.is_running:
            return
        self.check_path()
        if not self._attached and not self._missing:
            self.attach()
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run, name=f"log-watcher-{self.path.name}", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0):
        """Stop the background thread; a buffered partial line is dropped."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self._assembler.reset()
        logger.info(f"Stopped watching {self.path}")

    def _backoff(self, attempts: int) -> float:
        return min(self.poll_interval * (2 ** attempts), self.max_backoff)

    def run(self):
        """Polling loop; returns when stopped or when the source is given up on."""
        missing_polls = 0
        while not self._stop_event.is_set():
            delay = self.poll_interval
            try:
                lines = self.poll()
            except SourceUnavailableError as e:
                self.consecutive_failures += 1
                if self.consecutive_failures >= self.max_consecutive_failures:
                    self.fatal_error = WatcherConfigError(
                        f"Giving up on {self.path} after "
                        f"{self.consecutive_failures} failed reads: {e}"
                    )
                    logger.error(str(self.fatal_error))
                    break
                delay = self._backoff(self.consecutive_failures)
                logger.warning(f"{e}; retrying in {delay:.2f}s")
            else:
                self.consecutive_failures = 0
                if self._missing:
                    missing_polls += 1
                    delay = self._backoff(missing_polls)
                else:
                    missing_polls = 0
                if lines and self.on_lines is not None:
                    try:
                        self.on_lines(lines)
                    except Exception:
                        self.handler_errors += 1
                        logger.exception(f"Line handler failed on {len(lines)} lines from {self.path}")
                if not self.caught_up:
                    delay = 0
            self._stop_event.wait(delay)

    def get_stats(self) -> dict:
        return {
            "path": str(self.path),
            "offset": self._offset,
            "rotations": self.rotations,
            "missing": self._missing,
            "consecutive_failures": self.consecutive_failures,
            "handler_errors": self.handler_errors,
            **self._assembler.get_stats(),
        }
