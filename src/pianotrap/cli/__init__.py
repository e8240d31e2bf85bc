"""Command-line entry points, logging, and the run loop."""
