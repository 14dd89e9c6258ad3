"""Fixed-capacity window of recent (time, wz) pairs for retrospective lookback."""

from collections import deque
from typing import Deque, Iterator, List, NamedTuple, Optional


class FrameSample(NamedTuple):
    """One ring entry: detector time and spin-axis rate."""
    time: float
    wz: float


class WzRingBuffer:
    """
    FIFO window of the most recent spin-rate samples.

    Appending beyond capacity evicts the oldest entry, so the buffer always
    holds the latest `capacity` insertions in chronological order.
    """

    DEFAULT_CAPACITY = 30

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: Deque[FrameSample] = deque(maxlen=capacity)

    def append(self, time: float, wz: float) -> None:
        self._entries.append(FrameSample(time, wz))

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[FrameSample]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> FrameSample:
        return self._entries[index]

    @property
    def newest(self) -> Optional[FrameSample]:
        return self._entries[-1] if self._entries else None

    def latest(self, n: int) -> List[FrameSample]:
        """The n most recent entries, oldest first."""
        if n <= 0:
            return []
        return list(self._entries)[-n:]

    def trailing_run(self, threshold: float) -> int:
        """
        Count consecutive entries with |wz| >= threshold, scanning back from the newest.

        Returns:
            Length of the run ending at the newest entry (0 if the newest is below)
        """
        count = 0
        for entry in reversed(self._entries):
            if abs(entry.wz) < threshold:
                break
            count += 1
        return count

    def mean_wz(self, n: int) -> Optional[float]:
        """Mean wz over the last min(n, len) entries, or None if empty."""
        window = self.latest(min(n, len(self._entries)))
        if not window:
            return None
        return sum(entry.wz for entry in window) / len(window)

    def last_delta(self) -> Optional[float]:
        """wz change between the two newest entries."""
        if len(self._entries) < 2:
            return None
        return self._entries[-1].wz - self._entries[-2].wz
