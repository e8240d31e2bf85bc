"""Streaming client process, its terminal, and keystroke passthrough."""

from .event_hook import install_event_hook
from .input_forwarder import InputForwarder
from .pty_client import StreamingClient, describe_exit
from .terminal import TerminalMode

__all__ = [
    "InputForwarder",
    "StreamingClient",
    "TerminalMode",
    "describe_exit",
    "install_event_hook",
]
