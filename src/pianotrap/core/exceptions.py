"""Custom exception types shared across the pianotrap package."""


class PianotrapError(RuntimeError):
    """Base class for pianotrap failures."""


class BootstrapError(PianotrapError):
    """Raised when startup cannot continue (no audio source, unusable save directory)."""


class ClientStartError(PianotrapError):
    """Raised when the streaming client cannot be launched."""


class CaptureStartError(PianotrapError):
    """Raised when the encoder process cannot be launched for a track."""
