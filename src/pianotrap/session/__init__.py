"""Recording session state and lifecycle control."""

from .paths import sanitize_component, track_path
from .state import (
    CaptureOutcome,
    ControllerSnapshot,
    ProgressSnapshot,
    RecordingSession,
    SessionState,
    TrackIdentity,
)

__all__ = [
    "CaptureOutcome",
    "ControllerSnapshot",
    "ProgressSnapshot",
    "RecordingSession",
    "SessionState",
    "TrackIdentity",
    "sanitize_component",
    "track_path",
]
