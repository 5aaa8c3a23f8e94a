"""Half-open character interval helpers shared by highlighting and selection."""
from __future__ import annotations

from typing import Iterator, List, Tuple


def ranges_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Return True when ``[start_a, end_a)`` and ``[start_b, end_b)`` intersect."""
    return start_a < end_b and end_a > start_b


class ConsumedRanges:
    """Set of character ranges already claimed by accepted matches."""

    def __init__(self):
        self._ranges: List[Tuple[int, int]] = []

    def overlaps(self, start: int, end: int) -> bool:
        return any(ranges_overlap(start, end, s, e) for s, e in self._ranges)

    def add(self, start: int, end: int) -> None:
        self._ranges.append((start, end))

    def claim(self, start: int, end: int) -> bool:
        """Record the range unless it overlaps an existing one."""
        if self.overlaps(start, end):
            return False
        self.add(start, end)
        return True

    def __iter__(self) -> Iterator[Tuple[int, int]]:
        return iter(self._ranges)

    def __len__(self) -> int:
        return len(self._ranges)
