"""Run the streaming client attached to a pseudo-terminal."""

from __future__ import annotations

import asyncio
import contextlib
import fcntl
import os
import pty
import shlex
import sys
import termios
from collections.abc import Callable, Sequence
from typing import Any, Optional

from pianotrap.cli.logging_utils import CLIENT_LOG_LABEL, LOGGER
from pianotrap.config import CLIENT_COMMAND, CLIENT_TERMINATE_GRACE_SECONDS
from pianotrap.core.exceptions import ClientStartError
from pianotrap.core.services import BaseService

WINSIZE_BYTES = 8


def _terminal_winsize() -> Optional[bytes]:
    """Return the controlling terminal's packed window size, if any."""

    for stream in (sys.stdout, sys.stdin):
        try:
            if stream.isatty():
                return fcntl.ioctl(stream.fileno(), termios.TIOCGWINSZ, b"\0" * WINSIZE_BYTES)
        except (OSError, ValueError):
            continue
    return None


def _set_nonblocking(fd: int) -> None:
    flags = fcntl.fcntl(fd, fcntl.F_GETFL)
    fcntl.fcntl(fd, fcntl.F_SETFL, flags | os.O_NONBLOCK)


class StreamingClient(BaseService):
    """Spawn the client with a PTY as stdin/stdout/stderr and own its master fd."""

    def __init__(
        self,
        command: str | Sequence[str] = CLIENT_COMMAND,
        *,
        env_provider: Optional[Callable[[], dict[str, str]]] = None,
        terminate_grace: float = CLIENT_TERMINATE_GRACE_SECONDS,
    ):
        super().__init__("streaming client")
        self._argv = shlex.split(command) if isinstance(command, str) else list(command)
        self._env_provider = env_provider
        self._terminate_grace = terminate_grace
        self._process: Optional[asyncio.subprocess.Process] = None
        self._master_fd: Optional[int] = None

    @property
    def argv(self) -> list[str]:
        return list(self._argv)

    @property
    def master_fd(self) -> int:
        if self._master_fd is None:
            raise ClientStartError("Streaming client is not running")
        return self._master_fd

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process else None

    def build_env(self) -> dict[str, str]:
        env = os.environ.copy()
        env.setdefault("TERM", "xterm-256color")
        if self._env_provider is not None:
            env.update(self._env_provider())
        return env

    async def _start(self) -> None:
        if not self._argv:
            raise ClientStartError("No streaming client command configured")

        master_fd, slave_fd = pty.openpty()
        winsize = _terminal_winsize()
        if winsize:
            with contextlib.suppress(OSError):
                fcntl.ioctl(master_fd, termios.TIOCSWINSZ, winsize)

        try:
            self._process = await asyncio.create_subprocess_exec(
                *self._argv,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                env=self.build_env(),
                start_new_session=True,
            )
        except OSError as exc:
            os.close(master_fd)
            raise ClientStartError(f"Error starting {self._argv[0]}: {exc}") from exc
        finally:
            os.close(slave_fd)

        _set_nonblocking(master_fd)
        self._master_fd = master_fd
        LOGGER.verbose(
            CLIENT_LOG_LABEL, f"Started {' '.join(self._argv)} (pid={self._process.pid})"
        )

    async def _stop(self) -> None:
        await self.terminate()
        fd, self._master_fd = self._master_fd, None
        if fd is not None:
            with contextlib.suppress(OSError):
                os.close(fd)

    def write(self, data: bytes) -> None:
        """Forward keystrokes to the client."""

        fd = self._master_fd
        if fd is None or not data:
            return
        try:
            os.write(fd, data)
        except BlockingIOError:
            LOGGER.verbose(CLIENT_LOG_LABEL, "Client input buffer full; dropping keystrokes")
        except OSError as exc:
            LOGGER.verbose(CLIENT_LOG_LABEL, f"Unable to forward input: {exc}")

    async def wait(self) -> int:
        if self._process is None:
            raise ClientStartError("Streaming client is not running")
        return await self._process.wait()

    async def terminate(self) -> Optional[int]:
        """SIGTERM the client, then SIGKILL it once the grace period runs out."""

        process = self._process
        if process is None or process.returncode is not None:
            return process.returncode if process else None

        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            return await asyncio.wait_for(process.wait(), timeout=self._terminate_grace)
        except asyncio.TimeoutError:
            LOGGER.verbose(CLIENT_LOG_LABEL, "Client ignored SIGTERM; killing")

        with contextlib.suppress(ProcessLookupError):
            process.kill()
        try:
            return await asyncio.wait_for(process.wait(), timeout=self._terminate_grace)
        except asyncio.TimeoutError:
            LOGGER.log(CLIENT_LOG_LABEL, f"Client pid={process.pid} did not exit", error=True)
            return None


def describe_exit(returncode: Any) -> str:
    if returncode is None:
        return "unknown status"
    if isinstance(returncode, int) and returncode < 0:
        return f"signal {-returncode}"
    return f"status {returncode}"


__all__ = ["StreamingClient", "describe_exit"]
