"""Build the encoder command line for one capture."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pianotrap.config import (
    ENCODER_AUDIO_FILTER,
    ENCODER_BINARY,
    ENCODER_CODEC,
    ENCODER_INPUT_FORMAT,
    OUTPUT_EXTENSION,
)


@dataclass(frozen=True, slots=True)
class EncoderCommand:
    """ffmpeg invocation reading a named capture source into a lossy file."""

    binary: str = ENCODER_BINARY
    input_format: str = ENCODER_INPUT_FORMAT
    codec: str = ENCODER_CODEC
    audio_filter: str = ENCODER_AUDIO_FILTER
    extension: str = OUTPUT_EXTENSION

    def build(self, source: str, output: Path) -> list[str]:
        argv = [
            self.binary,
            "-hide_banner",
            "-nostdin",
            "-loglevel",
            "error",
            "-f",
            self.input_format,
            "-i",
            source,
        ]
        if self.audio_filter:
            argv += ["-af", self.audio_filter]
        argv += ["-acodec", self.codec, "-y", str(output)]
        return argv


__all__ = ["EncoderCommand"]
