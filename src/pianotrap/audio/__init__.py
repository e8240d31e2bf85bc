"""Audio routing collaborators."""

from .routing import CommandResult, PulseAudioRouting, run_command

__all__ = ["CommandResult", "PulseAudioRouting", "run_command"]
