"""Start, watch, and stop the encoder process for each recorded track."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Optional, Protocol

from pianotrap.cli.logging_utils import (
    CAPTURE_LOG_LABEL,
    ERROR_LOG_LABEL,
    LOGGER,
    RECORD_LOG_LABEL,
)
from pianotrap.config import (
    EXIT_WAIT_TIMEOUT_SECONDS,
    HARD_TIMEOUT_SECONDS,
    MIN_FILE_BYTES,
    STALL_GRACE_SECONDS,
    STALL_MIN_BYTES,
    STALL_SAMPLE_INTERVAL_SECONDS,
    TERMINATE_GRACE_SECONDS,
)
from pianotrap.core.exceptions import CaptureStartError
from pianotrap.session.state import CaptureOutcome, RecordingSession, TrackIdentity

from .encoder import EncoderCommand
from .stall_tracker import StallTracker

OutcomeHandler = Callable[[RecordingSession, CaptureOutcome], Awaitable[None]]
ProcessFactory = Callable[..., Awaitable[Any]]


class _VolumeControl(Protocol):
    async def raise_volume(self) -> None: ...


def _file_size(path: Path) -> Optional[int]:
    try:
        return path.stat().st_size
    except OSError:
        return None


class CaptureSupervisor:
    """Own the encoder process lifecycle for one track at a time.

    The session controller decides when to start and stop; the supervisor
    launches the encoder, drains its stderr, enforces the hard timeout, runs
    the stall watchdog, and reports unsolicited endings through the
    ``on_outcome`` callback supplied at start.
    """

    def __init__(
        self,
        source: str,
        *,
        routing: Optional[_VolumeControl] = None,
        encoder: Optional[EncoderCommand] = None,
        process_factory: ProcessFactory = asyncio.create_subprocess_exec,
        terminate_grace: float = TERMINATE_GRACE_SECONDS,
        exit_timeout: float = EXIT_WAIT_TIMEOUT_SECONDS,
        hard_timeout: float = HARD_TIMEOUT_SECONDS,
        min_file_bytes: int = MIN_FILE_BYTES,
        stall_grace: float = STALL_GRACE_SECONDS,
        stall_interval: float = STALL_SAMPLE_INTERVAL_SECONDS,
        stall_min_bytes: int = STALL_MIN_BYTES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._source = source
        self._routing = routing
        self._encoder = encoder or EncoderCommand()
        self._process_factory = process_factory
        self._terminate_grace = terminate_grace
        self._exit_timeout = exit_timeout
        self._hard_timeout = hard_timeout
        self._min_file_bytes = min_file_bytes
        self._stall_grace = stall_grace
        self._stall_interval = stall_interval
        self._stall_min_bytes = stall_min_bytes
        self._clock = clock

    @property
    def source(self) -> str:
        return self._source

    @property
    def extension(self) -> str:
        return self._encoder.extension

    # ------------------------------------------------------------------
    # Start
    async def start_session(
        self,
        path: Path,
        track: TrackIdentity,
        on_outcome: OutcomeHandler,
    ) -> Optional[RecordingSession]:
        """Launch the encoder for ``track``; return None when it cannot start."""

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if self._routing is not None:
                await self._routing.raise_volume()
            process = await self._launch(path)
        except (OSError, CaptureStartError) as exc:
            LOGGER.log(ERROR_LOG_LABEL, f"Unable to record {path.name}: {exc}", error=True)
            self._remove(path)
            return None

        session = RecordingSession(
            path=path,
            track=track,
            process=process,
            started_at=self._clock(),
        )
        session.waiter = asyncio.create_task(
            self._wait_for_exit(session, on_outcome), name=f"capture-waiter-{session.pid}"
        )
        if self._stall_interval > 0:
            session.watchdog = asyncio.create_task(
                self._watch_for_stall(session, on_outcome), name=f"capture-stall-{session.pid}"
            )
        LOGGER.log(RECORD_LOG_LABEL, f"Recording {track.label} -> {path}")
        LOGGER.verbose(CAPTURE_LOG_LABEL, f"Encoder pid={session.pid} source={self._source}")
        return session

    async def _launch(self, path: Path) -> Any:
        argv = self._encoder.build(self._source, path)
        try:
            return await self._process_factory(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise CaptureStartError(f"{argv[0]} failed to launch: {exc}") from exc

    # ------------------------------------------------------------------
    # Stop
    async def stop_session(self, session: RecordingSession, *, delete: bool) -> None:
        """Terminate the encoder, then discard or accept the output file.

        Waiting is bounded: an encoder that ignores SIGTERM is killed, and one
        that still does not exit is abandoned with a warning.
        """

        session.stopping = True
        reaped = await self._terminate(session)
        await self._cancel_background(session)
        if not reaped:
            LOGGER.log(
                ERROR_LOG_LABEL,
                f"Encoder pid={session.pid} did not exit; abandoning it",
                error=True,
            )

        if delete:
            if self._remove(session.path):
                LOGGER.log(RECORD_LOG_LABEL, f"Removed incomplete file: {session.path}")
        else:
            self._accept(session.path)

    async def _terminate(self, session: RecordingSession) -> bool:
        process = session.process
        if process.returncode is not None:
            return True

        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self._terminate_grace)
            return True
        except asyncio.TimeoutError:
            pass

        LOGGER.verbose(CAPTURE_LOG_LABEL, f"Encoder pid={session.pid} ignored SIGTERM; killing")
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        try:
            await asyncio.wait_for(process.wait(), timeout=self._exit_timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def _cancel_background(self, session: RecordingSession) -> None:
        current = asyncio.current_task()
        pending = [
            task
            for task in (session.waiter, session.watchdog)
            if task is not None and task is not current and not task.done()
        ]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _accept(self, path: Path) -> None:
        size = _file_size(path)
        if size is None:
            LOGGER.log(ERROR_LOG_LABEL, f"File not found after capture: {path}", error=True)
            return
        if size < self._min_file_bytes:
            LOGGER.log(RECORD_LOG_LABEL, f"Skipping incomplete track: {path} ({size} bytes)")
            self._remove(path)
            return
        LOGGER.log(RECORD_LOG_LABEL, f"Saved: {path} ({size} bytes)")

    @staticmethod
    def _remove(path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            LOGGER.log(ERROR_LOG_LABEL, f"Unable to remove {path}: {exc}", error=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Background tasks
    async def _wait_for_exit(self, session: RecordingSession, on_outcome: OutcomeHandler) -> None:
        drain = asyncio.create_task(self._drain_stderr(session))
        try:
            await asyncio.wait_for(session.process.wait(), timeout=self._hard_timeout)
        except asyncio.TimeoutError:
            drain.cancel()
            if session.stopping:
                return
            LOGGER.log(
                ERROR_LOG_LABEL,
                f"Capture of {session.path.name} exceeded {self._hard_timeout:.0f}s; stopping",
                error=True,
            )
            await on_outcome(session, CaptureOutcome.TIMED_OUT)
            return
        except asyncio.CancelledError:
            drain.cancel()
            raise

        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(drain, timeout=self._exit_timeout)
        if session.stopping:
            return

        returncode = session.process.returncode
        if returncode == 0:
            LOGGER.verbose(CAPTURE_LOG_LABEL, f"Encoder for {session.path.name} exited on its own")
            await on_outcome(session, CaptureOutcome.EXITED)
            return

        details = "\n".join(session.stderr_tail)
        message = f"Encoder for {session.path.name} failed (exit {returncode})"
        if details:
            message = f"{message}:\n{details}"
        LOGGER.log(ERROR_LOG_LABEL, message, error=True)
        await on_outcome(session, CaptureOutcome.FAILED)

    async def _drain_stderr(self, session: RecordingSession) -> None:
        stream = session.process.stderr
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                session.stderr_tail.append(text)
                LOGGER.verbose(CAPTURE_LOG_LABEL, text)

    async def _watch_for_stall(
        self, session: RecordingSession, on_outcome: OutcomeHandler
    ) -> None:
        tracker = StallTracker(min_bytes=self._stall_min_bytes)
        while not session.stopping and session.process.returncode is None:
            await asyncio.sleep(self._stall_interval)
            if session.stopping or session.process.returncode is not None:
                return
            if self._clock() - session.started_at < self._stall_grace:
                continue
            size = _file_size(session.path) or 0
            if tracker.observe(size):
                LOGGER.log(
                    CAPTURE_LOG_LABEL,
                    f"Output stopped growing at {size} bytes; discarding {session.path.name}",
                )
                await on_outcome(session, CaptureOutcome.STALLED)
                return


__all__ = ["CaptureSupervisor", "OutcomeHandler", "ProcessFactory"]
