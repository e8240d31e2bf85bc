"""Output-file growth tracking for the capture stall watchdog."""

from __future__ import annotations

from typing import Optional


class StallTracker:
    """Track output size samples and surface stalled captures."""

    def __init__(self, *, min_bytes: int, required_unchanged: int = 1):
        self._min_bytes = min_bytes
        self._required_unchanged = max(required_unchanged, 1)
        self._last_size: Optional[int] = None
        self._unchanged = 0

    def reset(self) -> None:
        self._last_size = None
        self._unchanged = 0

    @property
    def last_size(self) -> Optional[int]:
        return self._last_size

    def observe(self, size: int) -> bool:
        """Return True when ``size`` matched the previous sample of a non-trivial file.

        Files that never grew past ``min_bytes`` are not reported; a capture
        still warming up is not a stall.
        """

        previous = self._last_size
        self._last_size = size
        if previous is None or size != previous:
            self._unchanged = 0
            return False

        if size < self._min_bytes:
            return False

        self._unchanged += 1
        return self._unchanged >= self._required_unchanged


__all__ = ["StallTracker"]
