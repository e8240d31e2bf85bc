"""Encoder process supervision."""

from .encoder import EncoderCommand
from .stall_tracker import StallTracker
from .supervisor import CaptureSupervisor

__all__ = ["CaptureSupervisor", "EncoderCommand", "StallTracker"]
