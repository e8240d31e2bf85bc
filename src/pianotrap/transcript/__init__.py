"""Transcript reading and classification."""

from .classifier import EventClassifier, parse_clock
from .events import (
    PlaybackInterrupted,
    ProgressTick,
    StationChanged,
    TrackAnnounced,
    TrackFinished,
    TranscriptEvent,
)
from .reader import TranscriptReader

__all__ = [
    "EventClassifier",
    "PlaybackInterrupted",
    "ProgressTick",
    "StationChanged",
    "TrackAnnounced",
    "TrackFinished",
    "TranscriptEvent",
    "TranscriptReader",
    "parse_clock",
]
