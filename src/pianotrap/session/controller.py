"""Recording lifecycle state machine driven by transcript events."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional, Protocol

from pianotrap.cli.logging_utils import (
    ERROR_LOG_LABEL,
    LOGGER,
    RECORD_LOG_LABEL,
    STATION_LOG_LABEL,
    TRACK_LOG_LABEL,
    log_state_transition,
)
from pianotrap.config import COMPLETION_THRESHOLD_SECONDS, FALLBACK_STATION_NAME
from pianotrap.transcript.events import (
    PlaybackInterrupted,
    ProgressTick,
    StationChanged,
    TrackAnnounced,
    TrackFinished,
    TranscriptEvent,
)

from .paths import sanitize_component, station_directory, track_path
from .state import (
    CaptureOutcome,
    ControllerSnapshot,
    ProgressSnapshot,
    RecordingSession,
    SessionState,
    TrackIdentity,
)


class _CaptureSupervisor(Protocol):
    @property
    def extension(self) -> str: ...

    async def start_session(self, path: Path, track: TrackIdentity, on_outcome) -> Optional[
        RecordingSession
    ]: ...

    async def stop_session(self, session: RecordingSession, *, delete: bool) -> None: ...


class SessionController:
    """Decide when recordings start, stop, and whether their files survive.

    Station, last track, progress, state and the active session form one
    bundle guarded by a single ``asyncio.Lock``. Every stop completes before
    the next start is issued, so at most one encoder runs at a time.
    """

    def __init__(
        self,
        supervisor: _CaptureSupervisor,
        save_dir: Path,
        *,
        completion_threshold: float = COMPLETION_THRESHOLD_SECONDS,
        fallback_station: str = FALLBACK_STATION_NAME,
    ):
        self._supervisor = supervisor
        self._save_dir = save_dir
        self._completion_threshold = completion_threshold
        self._fallback_station = sanitize_component(fallback_station)
        self._lock = asyncio.Lock()
        self._state = SessionState.IDLE
        self._station: Optional[str] = None
        self._last_track: Optional[TrackIdentity] = None
        self._progress = ProgressSnapshot()
        self._session: Optional[RecordingSession] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Introspection
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def station(self) -> Optional[str]:
        return self._station

    @property
    def active_session(self) -> Optional[RecordingSession]:
        return self._session

    def snapshot(self) -> ControllerSnapshot:
        session = self._session
        return ControllerSnapshot(
            state=self._state,
            station=self._station,
            track=self._last_track,
            progress=self._progress,
            session_path=session.path if session else None,
        )

    # ------------------------------------------------------------------
    # Event handling
    async def handle_event(self, event: TranscriptEvent) -> None:
        async with self._lock:
            if self._closed:
                LOGGER.verbose(RECORD_LOG_LABEL, f"Ignoring {type(event).__name__} after close")
                return
            if isinstance(event, StationChanged):
                await self._on_station_changed(event)
            elif isinstance(event, TrackAnnounced):
                await self._on_track_announced(event)
            elif isinstance(event, ProgressTick):
                await self._on_progress(event)
            elif isinstance(event, TrackFinished):
                await self._on_finished(event)
            elif isinstance(event, PlaybackInterrupted):
                await self._on_interrupted(event)

    async def _on_station_changed(self, event: StationChanged) -> None:
        name = sanitize_component(event.name)
        if name == self._station:
            return
        await self._stop_locked(delete=True, reason=f"station changed to {name}")
        self._station = name
        directory = station_directory(self._save_dir, name)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.log(
                ERROR_LOG_LABEL, f"Failed to create station dir {directory}: {exc}", error=True
            )
        LOGGER.log(STATION_LOG_LABEL, f"Switched to station: {name}")

    async def _on_track_announced(self, event: TrackAnnounced) -> None:
        identity = event.identity
        if identity == self._last_track:
            LOGGER.verbose(TRACK_LOG_LABEL, f"Ignoring repeated announcement of {identity.label}")
            return
        self._last_track = identity

        if self._session is not None:
            finished = self._progress.is_effectively_finished(self._completion_threshold)
            reason = "next track announced" if finished else "track skipped"
            await self._stop_locked(delete=not finished, reason=reason)

        station = self._station or self._fallback_station
        path = track_path(
            self._save_dir, station, identity.title, identity.artist, self._supervisor.extension
        )
        LOGGER.log(TRACK_LOG_LABEL, f"Song detected: {identity.label} on {station}")
        session = await self._supervisor.start_session(path, identity, self.handle_capture_outcome)
        if session is None:
            return
        if self._closed:
            LOGGER.verbose(RECORD_LOG_LABEL, f"Closed during start; discarding {path.name}")
            await self._supervisor.stop_session(session, delete=True)
            return
        self._session = session
        self._progress = ProgressSnapshot()
        self._set_state(SessionState.RECORDING, f"recording {path.name}")

    async def _on_progress(self, event: ProgressTick) -> None:
        self._progress = event.snapshot
        if self._session is None:
            return
        if event.total > 0 and event.remaining <= 0:
            await self._stop_locked(delete=False, reason="countdown reached zero")

    async def _on_finished(self, event: TrackFinished) -> None:
        # The client also reports skipped songs as finished.
        progress = event.snapshot if event.snapshot.known else self._progress
        if progress.is_effectively_finished(self._completion_threshold):
            await self._stop_locked(delete=False, reason=f"finish marker ({event.source})")
        else:
            await self._stop_locked(
                delete=True,
                reason=f"finish marker with {progress.remaining:.0f}s left ({event.source})",
            )

    async def _on_interrupted(self, event: PlaybackInterrupted) -> None:
        if self._session is not None:
            LOGGER.log(RECORD_LOG_LABEL, f"Playback interrupted ({event.reason})")
        await self._stop_locked(delete=True, reason=f"playback interrupted ({event.reason})")
        self._last_track = None

    # ------------------------------------------------------------------
    # Session control
    async def stop_session(self, *, delete: bool, reason: str = "stop requested") -> None:
        """Stop the active recording, if any; calling it while idle does nothing."""

        async with self._lock:
            await self._stop_locked(delete=delete, reason=reason)

    async def close(self, *, reason: str = "shutdown") -> None:
        """Discard the active recording and refuse to start any new one.

        The flag is raised before waiting for the lock, so a start already in
        flight stops its own encoder as soon as it returns.
        """

        self._closed = True
        async with self._lock:
            await self._stop_locked(delete=True, reason=reason)

    async def handle_capture_outcome(
        self, session: RecordingSession, outcome: CaptureOutcome
    ) -> None:
        """React to an encoder that ended, stalled, or timed out on its own."""

        async with self._lock:
            if self._session is not session:
                return
            await self._stop_locked(
                delete=not outcome.keeps_file, reason=f"capture {outcome.value}"
            )

    async def _stop_locked(self, *, delete: bool, reason: str) -> None:
        session = self._session
        if session is None:
            return
        action = "discarding" if delete else "keeping"
        LOGGER.verbose(RECORD_LOG_LABEL, f"Stopping {session.path.name} ({reason}; {action})")
        try:
            await self._supervisor.stop_session(session, delete=delete)
        finally:
            self._session = None
            self._progress = ProgressSnapshot()
            self._set_state(SessionState.IDLE, reason)

    def _set_state(self, new_state: SessionState, reason: str) -> None:
        previous = self._state
        self._state = new_state
        log_state_transition(previous, new_state, reason)


__all__ = ["SessionController"]
