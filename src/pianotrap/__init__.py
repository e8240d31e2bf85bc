"""Record a terminal streaming-radio client into per-song audio files."""

__version__ = "0.1.0"

__all__ = ["__version__"]
