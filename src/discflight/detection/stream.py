"""
Latest-value cell bridging the acquisition thread and the detection tick.

Only the newest sample is visible. There is no queue: if acquisition runs
faster than the detector ticks, intermediate samples are overwritten.
"""

import threading
from typing import Optional

from ..bwt901 import InertialSample


class LatestSampleCell:
    """Single-producer/single-consumer swap cell for InertialSample."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sample: Optional[InertialSample] = None
        self._unread = False
        self.published = 0
        self.overwritten = 0

    def publish(self, sample: InertialSample) -> None:
        """Replace the current sample (called from the acquisition path)."""
        with self._lock:
            if self._unread:
                self.overwritten += 1
            self._sample = sample
            self._unread = True
            self.published += 1

    def latest(self) -> Optional[InertialSample]:
        """Return the most recent sample, or None if nothing has arrived yet."""
        with self._lock:
            self._unread = False
            return self._sample

    def clear(self) -> None:
        with self._lock:
            self._sample = None
            self._unread = False
