"""Turn stripped transcript text into playback events."""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Optional

from .events import (
    PlaybackInterrupted,
    ProgressTick,
    StationChanged,
    TrackAnnounced,
    TrackFinished,
    TranscriptEvent,
)

STATION_RE = re.compile(r'\|>\s+Station\s+"(?P<name>.*)"')
STATION_ID_SUFFIX_RE = re.compile(r"\s+\([^()]*\)\s*$")
TRACK_RE = re.compile(
    r'\|>\s+"(?P<title>[^"]*)"\s+by\s+"(?P<artist>[^"]*)"'
    r'(?:\s+on\s+"(?P<album>[^"]*)")?'
)
_CLOCK = r"\d+(?::\d{1,2}){1,2}"
PROGRESS_RE = re.compile(
    rf"^\s*#?\s*(?P<sign>[-+]?)(?P<left>{_CLOCK})\s*/\s*(?P<total>{_CLOCK})\s*$"
)
NETWORK_ERROR_RE = re.compile(r"network\s+error", re.IGNORECASE)
CONNECTION_LOST_RE = re.compile(
    r"connection\s+(?:lost|reset|refused|timed\s+out)", re.IGNORECASE
)
PAUSE_RE = re.compile(r"^\s*(?:\(i\)\s*|\|\|\s*)?paused\b", re.IGNORECASE)
FINISH_RE = re.compile(
    r"^\s*SONGFINISH\b(?:\s+(?P<played>\d+)\s*/\s*(?P<duration>\d+))?"
)


def parse_clock(value: str) -> int:
    """Return the number of seconds in ``M:SS`` or ``H:MM:SS``."""

    seconds = 0
    for part in value.split(":"):
        seconds = seconds * 60 + int(part)
    return seconds


def _station(line: str) -> Optional[TranscriptEvent]:
    match = STATION_RE.search(line)
    if not match:
        return None
    name = STATION_ID_SUFFIX_RE.sub("", match.group("name")).strip()
    if not name:
        return None
    return StationChanged(name=name)


def _track(line: str) -> Optional[TranscriptEvent]:
    match = TRACK_RE.search(line)
    if not match:
        return None
    title = match.group("title").strip()
    artist = match.group("artist").strip()
    if not title or not artist:
        return None
    album = (match.group("album") or "").strip() or None
    return TrackAnnounced(title=title, artist=artist, album=album)


def _progress(line: str) -> Optional[TranscriptEvent]:
    match = PROGRESS_RE.match(line)
    if not match:
        return None
    left = parse_clock(match.group("left"))
    total = parse_clock(match.group("total"))
    if match.group("sign") == "-":
        remaining = left
    else:
        remaining = max(total - left, 0)
    if total > 0:
        remaining = min(remaining, total)
    return ProgressTick(remaining=float(remaining), total=float(total))


def _interruption(line: str) -> Optional[TranscriptEvent]:
    if NETWORK_ERROR_RE.search(line):
        return PlaybackInterrupted(reason="network")
    if CONNECTION_LOST_RE.search(line):
        return PlaybackInterrupted(reason="connection")
    if PAUSE_RE.search(line):
        return PlaybackInterrupted(reason="pause")
    return None


def _finish(line: str) -> Optional[TranscriptEvent]:
    match = FINISH_RE.search(line)
    if not match:
        return None
    if match.group("duration") is None:
        return TrackFinished()
    return TrackFinished(
        played=float(match.group("played")), duration=float(match.group("duration"))
    )


LineMatcher = Callable[[str], Optional[TranscriptEvent]]

# Station lines also start with "|>", so they must be tried before tracks.
DEFAULT_MATCHERS: tuple[LineMatcher, ...] = (
    _station,
    _track,
    _progress,
    _interruption,
    _finish,
)


class EventClassifier:
    """Apply an ordered set of matchers to each transcript line.

    The first matcher that recognizes a line wins; lines nobody recognizes
    produce nothing. Classification never touches session state.
    """

    def __init__(self, matchers: tuple[LineMatcher, ...] = DEFAULT_MATCHERS):
        self._matchers = matchers

    def classify(self, chunk: str) -> list[TranscriptEvent]:
        events: list[TranscriptEvent] = []
        for line in chunk.splitlines():
            if not line.strip():
                continue
            event = self._classify_line(line)
            if event is not None:
                events.append(event)
        return events

    def _classify_line(self, line: str) -> Optional[TranscriptEvent]:
        for matcher in self._matchers:
            event = matcher(line)
            if event is not None:
                return event
        return None


__all__ = ["DEFAULT_MATCHERS", "EventClassifier", "LineMatcher", "parse_clock"]
