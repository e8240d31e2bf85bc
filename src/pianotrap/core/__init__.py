"""Core primitives shared across pianotrap."""
