"""Log tailing and the live processing pipeline."""

from .buffer import LineAssembler, batched, iter_file_lines
from .processor import MeterProcessor, MeterSnapshot
from .watcher import FileFingerprint, LogWatcher

__all__ = [
    "LineAssembler",
    "batched",
    "iter_file_lines",
    "MeterProcessor",
    "MeterSnapshot",
    "FileFingerprint",
    "LogWatcher",
]
