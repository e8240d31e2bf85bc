"""Pass the user's keystrokes through to the client."""

from __future__ import annotations

import asyncio
import os
import sys
from collections.abc import Callable, Iterable
from typing import Optional

from pianotrap.cli.logging_utils import CLIENT_LOG_LABEL, LOGGER
from pianotrap.config import CLIENT_PAUSE_KEYS, CLIENT_QUIT_KEY
from pianotrap.core.services import BaseService

CTRL_C = b"\x03"
INPUT_READ_SIZE = 1024


class InputForwarder(BaseService):
    """Watch stdin on the event loop and forward bytes to the client.

    A quit key (or Ctrl-C while the terminal is raw) is never forwarded.
    Bytes typed before it still are, then ``on_quit`` is called once.
    Pause keys are forwarded as usual and also reported to ``on_pause``,
    since the client prints nothing when playback pauses.
    """

    def __init__(
        self,
        write: Callable[[bytes], None],
        on_quit: Callable[[str], None],
        *,
        on_pause: Optional[Callable[[str], None]] = None,
        fd: Optional[int] = None,
        quit_keys: Iterable[bytes] = (),
        pause_keys: Optional[Iterable[bytes]] = None,
    ):
        super().__init__("input forwarder")
        self._write = write
        self._on_quit = on_quit
        self._on_pause = on_pause
        self._fd = fd
        keys = set(quit_keys) or {CLIENT_QUIT_KEY.encode()}
        keys.add(CTRL_C)
        self._quit_keys = frozenset(key for key in keys if key)
        if pause_keys is None:
            pause_keys = [bytes([code]) for code in CLIENT_PAUSE_KEYS.encode()]
        self._pause_keys = frozenset(pause_keys) - self._quit_keys
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._quit_requested = False

    @property
    def quit_requested(self) -> bool:
        return self._quit_requested

    async def _start(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            if self._fd is None:
                self._fd = sys.stdin.fileno()
            loop.add_reader(self._fd, self._on_readable)
        except (AttributeError, OSError, ValueError) as exc:
            LOGGER.verbose(CLIENT_LOG_LABEL, f"stdin cannot be watched ({exc}); input disabled")
            return
        self._loop = loop

    async def _stop(self) -> None:
        self._detach()

    def _detach(self) -> None:
        loop, self._loop = self._loop, None
        if loop is not None and not loop.is_closed():
            loop.remove_reader(self._fd)

    def _on_readable(self) -> None:
        try:
            data = os.read(self._fd, INPUT_READ_SIZE)
        except BlockingIOError:
            return
        except OSError as exc:
            LOGGER.verbose(CLIENT_LOG_LABEL, f"stdin read failed: {exc}")
            self._detach()
            return

        if not data:
            LOGGER.verbose(CLIENT_LOG_LABEL, "stdin closed; no longer forwarding input")
            self._detach()
            return
        self.feed(data)

    def feed(self, data: bytes) -> None:
        """Forward ``data`` up to the first quit key, if any."""

        if self._quit_requested:
            return
        quit_at = next(
            (index for index in range(len(data)) if data[index : index + 1] in self._quit_keys),
            None,
        )
        forwarded = data if quit_at is None else data[:quit_at]
        if forwarded:
            self._write(forwarded)
            self._report_pause(forwarded)
        if quit_at is None:
            return

        key = data[quit_at : quit_at + 1]
        self._quit_requested = True
        self._detach()
        reason = "Ctrl-C" if key == CTRL_C else f"quit key {key.decode(errors='replace')!r}"
        self._on_quit(reason)

    def _report_pause(self, data: bytes) -> None:
        if self._on_pause is None:
            return
        for index in range(len(data)):
            key = data[index : index + 1]
            if key in self._pause_keys:
                self._on_pause(key.decode(errors="replace"))
                return


__all__ = ["InputForwarder"]
