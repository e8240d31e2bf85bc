"""Filesystem naming helpers for recorded tracks."""

from __future__ import annotations

import re
from pathlib import Path

from pianotrap.cli.logging_utils import strip_ansi_sequences

_MARKER_RE = re.compile(r'\|>|"')
_DASH_CHARS_RE = re.compile(r"[/\\:]")
_DROP_CHARS_RE = re.compile(r"[*?<>|\x00-\x1f\x7f]")
_WHITESPACE_RE = re.compile(r"\s+")
EMPTY_COMPONENT = "_"


def sanitize_component(name: str) -> str:
    """Return ``name`` made safe to use as a single path component."""

    clean = strip_ansi_sequences(name)
    clean = _MARKER_RE.sub("", clean)
    clean = _DASH_CHARS_RE.sub("-", clean)
    clean = _DROP_CHARS_RE.sub("", clean)
    clean = _WHITESPACE_RE.sub(" ", clean).strip().strip(".")
    return clean or EMPTY_COMPONENT


def track_file_name(title: str, artist: str, extension: str) -> str:
    stem = sanitize_component(f"{title} - {artist}")
    return f"{stem}.{extension.lstrip('.')}"


def station_directory(save_dir: Path, station: str) -> Path:
    return save_dir / sanitize_component(station)


def track_path(save_dir: Path, station: str, title: str, artist: str, extension: str) -> Path:
    """Return ``<save_dir>/<station>/<title - artist>.<extension>``."""

    return station_directory(save_dir, station) / track_file_name(title, artist, extension)


__all__ = [
    "EMPTY_COMPONENT",
    "sanitize_component",
    "station_directory",
    "track_file_name",
    "track_path",
]
