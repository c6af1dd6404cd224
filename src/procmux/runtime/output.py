"""Output multiplexing for supervised processes.

Every child process gets two independent readers, one per pipe. A reader
turns raw bytes into labeled lines and either writes them immediately
(streaming mode) or appends them to the command's shared LineBuffer
(aggregate mode) so the tracker can print them as one block once the
process has exited.

Ordering:
- Lines from a single pipe keep their order.
- stdout and stderr of the same command are not ordered against each other.
- A block written by write_block() is never interleaved with other output.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TextIO

from ..errors import StreamDecodeError, StreamError

__all__ = [
    "LineBuffer",
    "OutputWriter",
    "read_lines",
]

logger = logging.getLogger(__name__)

# Pipe read size; lines are reassembled across chunks
_READ_CHUNK = 64 * 1024


class OutputWriter:
    """Writes labeled lines to the parent's stdout.

    Child stdout and child stderr both end up on the parent's stdout.
    Diagnostics (failed commands, summaries) go to the parent's stderr.

    Each public method issues a single write() call followed by a flush, so
    a line (or a whole aggregate block) is never torn by other writers on
    the event loop.

    Writes are blocking and run on the event loop thread. A slow consumer
    (`procmux ... | less`) therefore applies backpressure to every reader
    and delays signal handling until its pipe drains. Moving writes to an
    executor would give up the single-write ordering above.
    """

    def __init__(
        self,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        self._stdout = stdout
        self._stderr = stderr

    @property
    def stdout(self) -> TextIO:
        # Resolved at write time
        return self._stdout if self._stdout is not None else sys.stdout

    @property
    def stderr(self) -> TextIO:
        return self._stderr if self._stderr is not None else sys.stderr

    def write_line(self, label: str, line: str) -> None:
        """Write one labeled line."""
        self.stdout.write(f"{label}{line}\n")
        self.stdout.flush()

    def write_block(self, label: str, lines: list[str]) -> None:
        """Write every line of a command as one contiguous block."""
        if not lines:
            return
        self.stdout.write("".join(f"{label}{line}\n" for line in lines))
        self.stdout.flush()

    def diagnostic(self, text: str) -> None:
        """Write one diagnostic line to stderr."""
        self.stderr.write(f"{text}\n")
        self.stderr.flush()

    def flush(self) -> None:
        for stream in (self.stdout, self.stderr):
            try:
                stream.flush()
            except (OSError, ValueError):
                pass


class LineBuffer:
    """Ordered line buffer shared by the two readers of one command.

    Appends are serialized through an asyncio.Lock. The buffer is drained
    exactly once, by the tracker, after both readers have finished.
    """

    def __init__(self) -> None:
        self._lines: list[str] = []
        self._lock = asyncio.Lock()

    async def append(self, line: str) -> None:
        async with self._lock:
            self._lines.append(line)

    async def drain(self) -> list[str]:
        """Return all captured lines and empty the buffer."""
        async with self._lock:
            lines, self._lines = self._lines, []
        return lines

    def __len__(self) -> int:
        return len(self._lines)


def _strip_newline(raw: bytes) -> bytes:
    if raw.endswith(b"\n"):
        raw = raw[:-1]
        if raw.endswith(b"\r"):
            raw = raw[:-1]
    return raw


async def _discard(stream: asyncio.StreamReader) -> None:
    """Consume the rest of a pipe so the child never blocks on a full pipe."""
    while await stream.read(_READ_CHUNK):
        pass


async def read_lines(
    stream: asyncio.StreamReader,
    *,
    label: str,
    stream_name: str,
    writer: OutputWriter,
    buffer: LineBuffer,
    aggregate: bool,
) -> int:
    """Read a pipe line by line until end of stream.

    The pipe is read in chunks and split on newlines, so a line of any
    length is emitted whole.

    Args:
        stream: The child's stdout or stderr reader
        label: Label prefixed to every line
        stream_name: "stdout" or "stderr", used in error messages
        writer: Destination for streaming mode
        buffer: Destination for aggregate mode
        aggregate: Buffer lines instead of writing them immediately

    Returns:
        Number of lines read

    Raises:
        StreamDecodeError: A line is not valid UTF-8
        StreamError: The pipe failed
    """
    count = 0
    pending = bytearray()

    async def emit(raw: bytes) -> None:
        try:
            line = _strip_newline(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            logger.debug(f"Invalid UTF-8 on {stream_name} label={label!r}: {e}")
            await _discard(stream)
            raise StreamDecodeError(label, stream_name, f"invalid UTF-8: {e}") from e

        if aggregate:
            await buffer.append(line)
        else:
            writer.write_line(label, line)

    while True:
        try:
            chunk = await stream.read(_READ_CHUNK)
        except OSError as e:
            raise StreamError(label, stream_name, str(e)) from e

        if not chunk:
            break

        # Only the new bytes can hold the next separator
        search_from = len(pending)
        pending += chunk
        start = 0
        while True:
            end = pending.find(b"\n", search_from)
            if end < 0:
                break
            await emit(bytes(pending[start:end + 1]))
            count += 1
            start = search_from = end + 1
        del pending[:start]

    if pending:
        await emit(bytes(pending))
        count += 1

    return count
