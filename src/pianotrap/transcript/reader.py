"""Read the client's pseudo-terminal and yield cleaned transcript chunks."""

from __future__ import annotations

import asyncio
import codecs
import errno
import os
import re
from collections.abc import AsyncIterator, Callable
from typing import Optional

from pianotrap.cli.logging_utils import CLIENT_LOG_LABEL, LOGGER, strip_ansi_sequences
from pianotrap.config import READER_POLL_INTERVAL, READER_READ_SIZE

LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")

# The slave side closing surfaces as EIO on Linux PTY masters.
_CLOSED_ERRNOS = frozenset({errno.EIO, errno.EBADF})


class TranscriptReader:
    """Poll a non-blocking PTY master fd and yield ANSI-stripped lines.

    Complete lines are yielded as soon as their terminator arrives. A partial
    tail is held until the next read, or yielded on its own once a poll comes
    back empty, so prompts and countdown redraws without a trailing newline
    are still seen. Iteration ends when the terminal closes, a hard read error
    occurs, or ``stop_event`` is set.
    """

    def __init__(
        self,
        fd: int,
        *,
        poll_interval: float = READER_POLL_INTERVAL,
        read_size: int = READER_READ_SIZE,
        echo: Optional[Callable[[bytes], None]] = None,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self._fd = fd
        self._poll_interval = max(poll_interval, 0.0)
        self._read_size = max(read_size, 1)
        self._echo = echo
        self._stop_event = stop_event
        self.closed = False
        self.hard_error: Optional[OSError] = None

    def __aiter__(self) -> AsyncIterator[str]:
        return self._chunks()

    def _stopped(self) -> bool:
        return self._stop_event is not None and self._stop_event.is_set()

    async def _chunks(self) -> AsyncIterator[str]:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        try:
            while not self._stopped():
                try:
                    data = os.read(self._fd, self._read_size)
                except BlockingIOError:
                    if pending:
                        chunk = strip_ansi_sequences(pending)
                        pending = ""
                        if chunk.strip():
                            yield chunk
                    await asyncio.sleep(self._poll_interval)
                    continue
                except OSError as exc:
                    if exc.errno not in _CLOSED_ERRNOS:
                        self.hard_error = exc
                        LOGGER.log(CLIENT_LOG_LABEL, f"Terminal read failed: {exc}", error=True)
                    break

                if not data:
                    break
                if self._echo is not None:
                    self._echo(data)

                lines = LINE_BREAK_RE.split(pending + decoder.decode(data))
                pending = lines.pop()
                for line in lines:
                    chunk = strip_ansi_sequences(line)
                    if chunk.strip():
                        yield chunk

            pending += decoder.decode(b"", final=True)
            if pending and not self._stopped():
                chunk = strip_ansi_sequences(pending)
                if chunk.strip():
                    yield chunk
        finally:
            self.closed = True


__all__ = ["LINE_BREAK_RE", "TranscriptReader"]
