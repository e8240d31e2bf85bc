"""Raw-mode handling for the controlling terminal."""

from __future__ import annotations

import sys
import termios
import tty
from typing import Any, Optional, TextIO

from pianotrap.cli.logging_utils import CLIENT_LOG_LABEL, LOGGER, set_raw_terminal
from pianotrap.core.services import BaseService


class TerminalMode(BaseService):
    """Put stdin into raw mode for keystroke passthrough and restore it afterwards."""

    def __init__(self, stream: Optional[TextIO] = None):
        super().__init__("terminal mode")
        self._stream = stream if stream is not None else sys.stdin
        self._saved_attrs: Optional[list[Any]] = None

    @property
    def is_raw(self) -> bool:
        return self._saved_attrs is not None

    async def _start(self) -> None:
        if not self._stream.isatty():
            LOGGER.verbose(CLIENT_LOG_LABEL, "stdin is not a terminal; raw mode skipped")
            return
        fd = self._stream.fileno()
        try:
            self._saved_attrs = termios.tcgetattr(fd)
            tty.setraw(fd)
        except termios.error as exc:
            self._saved_attrs = None
            LOGGER.log(CLIENT_LOG_LABEL, f"Could not save terminal state: {exc}", error=True)
            return
        set_raw_terminal(True)

    async def _stop(self) -> None:
        self.restore()

    def restore(self) -> None:
        """Restore the saved terminal attributes; safe to call repeatedly."""

        attrs = self._saved_attrs
        if attrs is None:
            return
        self._saved_attrs = None
        set_raw_terminal(False)
        try:
            termios.tcsetattr(self._stream.fileno(), termios.TCSADRAIN, attrs)
        except (termios.error, OSError, ValueError) as exc:
            LOGGER.log(CLIENT_LOG_LABEL, f"Could not restore terminal state: {exc}", error=True)


__all__ = ["TerminalMode"]
