"""Value types shared by the session controller and the capture supervisor."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

STDERR_TAIL_LINES = 20


class SessionState(str, Enum):
    """Controller recording states."""

    IDLE = "idle"
    RECORDING = "recording"


class CaptureOutcome(str, Enum):
    """Why a capture ended without the controller asking it to."""

    EXITED = "exited"
    FAILED = "failed"
    STALLED = "stalled"
    TIMED_OUT = "timed_out"

    @property
    def keeps_file(self) -> bool:
        return self is CaptureOutcome.EXITED


@dataclass(frozen=True, slots=True)
class TrackIdentity:
    title: str
    artist: str
    album: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.title} - {self.artist}"


@dataclass(frozen=True, slots=True)
class ProgressSnapshot:
    """Remaining and total playback seconds; zeros mean no progress data."""

    remaining: float = 0.0
    total: float = 0.0

    @property
    def known(self) -> bool:
        return self.total > 0

    def is_effectively_finished(self, threshold_seconds: float) -> bool:
        """Return True when the track was close enough to its end to keep."""

        if not self.known:
            return True
        return self.remaining <= threshold_seconds


@dataclass(eq=False, slots=True)
class RecordingSession:
    """One encoder process capturing one track into ``path``."""

    path: Path
    track: TrackIdentity
    process: asyncio.subprocess.Process
    started_at: float
    stopping: bool = False
    waiter: Optional[asyncio.Task[None]] = None
    watchdog: Optional[asyncio.Task[None]] = None
    stderr_tail: deque[str] = field(default_factory=lambda: deque(maxlen=STDERR_TAIL_LINES))

    @property
    def pid(self) -> Optional[int]:
        return getattr(self.process, "pid", None)


@dataclass(frozen=True, slots=True)
class ControllerSnapshot:
    state: SessionState
    station: Optional[str]
    track: Optional[TrackIdentity]
    progress: ProgressSnapshot
    session_path: Optional[Path]


__all__ = [
    "CaptureOutcome",
    "ControllerSnapshot",
    "ProgressSnapshot",
    "RecordingSession",
    "SessionState",
    "TrackIdentity",
]
