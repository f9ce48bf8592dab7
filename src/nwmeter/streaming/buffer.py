"""
Line assembly for streamed log bytes.

Turns arbitrary byte chunks into complete decoded lines, holding back a
partial trailing line until its newline arrives.
"""

import codecs
import logging
from itertools import islice
from pathlib import Path
from typing import Iterable, Iterator, List, TypeVar, Union

from ..exceptions import LineDecodeError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_BOMS = {
    "utf-8": codecs.BOM_UTF8,
    "utf-8-sig": codecs.BOM_UTF8,
}


class LineAssembler:
    """
    Splits byte chunks into decoded lines.

    A partial trailing line is buffered and prefixed to the next chunk.
    Lines that fail to decode are skipped and counted in ``decode_errors``.
    """

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding
        self._partial = b""
        self._at_file_start = True

        self.lines_emitted = 0
        self.decode_errors = 0

    @property
    def pending_bytes(self) -> int:
        """Size of the buffered partial line."""
        return len(self._partial)

    def decode_line(self, raw: bytes) -> str:
        """
        Decode one line of bytes.

        Raises:
            LineDecodeError: If the bytes are not valid in the configured encoding
        """
        try:
            return raw.decode(self.encoding).rstrip("\r")
        except UnicodeDecodeError as e:
            raise LineDecodeError(raw, self.encoding) from e

    def feed(self, data: bytes) -> List[str]:
        """
        Add bytes and return every line completed by them.

        Args:
            data: Bytes read from the log, in file order

        Returns:
            Complete lines, without line terminators
        """
        if not data:
            return []

        if self._at_file_start:
            bom = _BOMS.get(self.encoding.lower().replace("_", "-"))
            buffered = self._partial + data
            if bom and len(buffered) < len(bom) and bom.startswith(buffered):
                self._partial = buffered
                return []
            if bom and buffered.startswith(bom):
                buffered = buffered[len(bom):]
            self._partial = b""
            data = buffered
            self._at_file_start = False

        pieces = (self._partial + data).split(b"\n")
        self._partial = pieces.pop()

        lines = []
        for raw in pieces:
            try:
                lines.append(self.decode_line(raw))
            except LineDecodeError as e:
                self.decode_errors += 1
                logger.debug(f"Skipping undecodable line: {e}")
        self.lines_emitted += len(lines)
        return lines

    def flush(self) -> List[str]:
        """Return the buffered partial line as a final line, if any."""
        if not self._partial:
            return []
        raw, self._partial = self._partial, b""
        try:
            line = self.decode_line(raw)
        except LineDecodeError as e:
            self.decode_errors += 1
            logger.debug(f"Skipping undecodable line: {e}")
            return []
        self.lines_emitted += 1
        return [line]

    def reset(self, at_file_start: bool = True):
        """Discard the partial line; the next bytes start a new file unless told otherwise."""
        if self._partial:
            logger.debug(f"Discarding {len(self._partial)} bytes of partial line")
        self._partial = b""
        self._at_file_start = at_file_start

    def get_stats(self) -> dict:
        return {
            "lines_emitted": self.lines_emitted,
            "decode_errors": self.decode_errors,
            "pending_bytes": self.pending_bytes,
        }


def iter_file_lines(
    file_path: Union[str, Path], encoding: str = "utf-8", chunk_size: int = 65536
) -> Iterator[str]:
    """
    Read every line of a file, including an unterminated last line.

    Args:
        file_path: File to read
        encoding: Text encoding
        chunk_size: Bytes per read

    Yields:
        Decoded lines in file order
    """
    assembler = LineAssembler(encoding)
    with open(file_path, "rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            yield from assembler.feed(chunk)
    yield from assembler.flush()


def batched(items: Iterable[T], size: int) -> Iterator[List[T]]:
    """
    Split an iterable into lists of at most ``size`` items.

    >>> list(batched(range(5), 2))
    [[0, 1], [2, 3], [4]]
    """
    if size < 1:
        raise ValueError(f"Batch size must be positive: {size}")
    iterator = iter(items)
    while True:
        batch = list(islice(iterator, size))
        if not batch:
            return
        yield batch
