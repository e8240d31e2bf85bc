"""Structured playback events recognized in the client transcript."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pianotrap.session.state import ProgressSnapshot, TrackIdentity


@dataclass(frozen=True, slots=True)
class TranscriptEvent:
    """Base class for classifier output."""


@dataclass(frozen=True, slots=True)
class StationChanged(TranscriptEvent):
    name: str


@dataclass(frozen=True, slots=True)
class TrackAnnounced(TranscriptEvent):
    title: str
    artist: str
    album: Optional[str] = None

    @property
    def identity(self) -> TrackIdentity:
        return TrackIdentity(self.title, self.artist, self.album)


@dataclass(frozen=True, slots=True)
class ProgressTick(TranscriptEvent):
    remaining: float
    total: float

    @property
    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(remaining=self.remaining, total=self.total)


@dataclass(frozen=True, slots=True)
class PlaybackInterrupted(TranscriptEvent):
    reason: str


@dataclass(frozen=True, slots=True)
class TrackFinished(TranscriptEvent):
    """The client says the song ended; it says the same when a song is skipped."""

    played: Optional[float] = None
    duration: Optional[float] = None
    source: str = "event hook"

    @property
    def snapshot(self) -> ProgressSnapshot:
        if not self.duration or self.played is None:
            return ProgressSnapshot()
        remaining = min(max(self.duration - self.played, 0.0), self.duration)
        return ProgressSnapshot(remaining=remaining, total=self.duration)


__all__ = [
    "PlaybackInterrupted",
    "ProgressTick",
    "StationChanged",
    "TrackAnnounced",
    "TrackFinished",
    "TranscriptEvent",
]
