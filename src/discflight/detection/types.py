"""
Data types for throw detection.

These types describe the detector's configuration, its phase, and the
release record handed to the flight simulator once a throw completes.
"""

import math
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..bwt901 import InertialSample


class ThrowState(Enum):
    """Phase of a throw within one detection session."""
    IDLE = "idle"
    THROWN = "thrown"
    IN_FLIGHT = "in_flight"
    DONE = "done"


@dataclass
class DetectorConfig:
    """
    Thresholds and counts for the throw state machine.

    Attributes:
        throw_threshold: |wz| (deg/s) that counts toward a throw start
        threshold_samples: Consecutive buffered samples above throw_threshold (N)
        change_threshold: Max tick-to-tick |delta wz| (deg/s) for stable spin
        stable_samples: Consecutive stable deltas before IN_FLIGHT (M)
        near_zero_threshold: |wz| (deg/s) below which the disc has stopped spinning
        near_zero_samples: Consecutive near-zero ticks before DONE (P)
        settle_delay: Seconds after the throw start before the final center is computed
        center_window: Samples averaged into the final spin center (k)
        ring_capacity: Samples kept for retrospective lookback
        tick_hz: Detection tick rate
        gravity: Gravitational acceleration removed during integration (m/s^2)
    """
    throw_threshold: float = 600.0
    threshold_samples: int = 3
    change_threshold: float = 100.0
    stable_samples: int = 3
    near_zero_threshold: float = 150.0
    near_zero_samples: int = 2
    settle_delay: float = 0.2
    center_window: int = 5
    ring_capacity: int = 30
    tick_hz: float = 30.0
    gravity: float = 9.81

    def __post_init__(self):
        if self.threshold_samples < 1 or self.stable_samples < 1 or self.near_zero_samples < 1:
            raise ValueError("Sample counts must be at least 1")
        if self.ring_capacity < self.threshold_samples:
            raise ValueError(
                f"ring_capacity ({self.ring_capacity}) must hold threshold_samples "
                f"({self.threshold_samples})"
            )
        if self.center_window < 1:
            raise ValueError("center_window must be at least 1")
        if self.tick_hz <= 0:
            raise ValueError("tick_hz must be positive")

    @property
    def tick_interval(self) -> float:
        """Seconds between detection ticks."""
        return 1.0 / self.tick_hz

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetectorConfig":
        """Build a config from a dict, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown detector settings: {sorted(unknown)}")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class ReleaseEvent:
    """
    Release conditions captured when a throw completes.

    Attributes:
        timestamp: Detector time when the throw was confirmed done (seconds)
        duration_since_threshold: Seconds from the THROWN transition to DONE,
            covering both THROWN and IN_FLIGHT (not only the time spent in THROWN)
        release_sample: Sensor sample active at that moment
        release_velocity: Integrated world-frame velocity (m/s), y up
        throw_start_time: Earliest timestamp of the threshold run
        flight_end_time: Detector time of the DONE transition
        spin_center_dps: Final spin center (mean wz after the settle delay)
    """
    timestamp: float
    duration_since_threshold: float
    release_sample: InertialSample
    release_velocity: Tuple[float, float, float]
    throw_start_time: Optional[float] = None
    flight_end_time: Optional[float] = None
    spin_center_dps: Optional[float] = None

    @property
    def release_speed(self) -> float:
        """Magnitude of the release velocity (m/s)."""
        return math.sqrt(sum(v * v for v in self.release_velocity))

    @property
    def attitude_deg(self) -> Tuple[float, float, float]:
        """(roll, pitch, yaw) of the release sample in degrees."""
        return self.release_sample.orientation

    @property
    def spin_rate_rad_s(self) -> Optional[float]:
        """Spin center converted to rad/s, if one was computed."""
        if self.spin_center_dps is None:
            return None
        return math.radians(self.spin_center_dps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "duration_since_threshold": self.duration_since_threshold,
            "release_velocity": list(self.release_velocity),
            "release_speed": self.release_speed,
            "throw_start_time": self.throw_start_time,
            "flight_end_time": self.flight_end_time,
            "spin_center_dps": self.spin_center_dps,
            "release_sample": self.release_sample.to_dict(),
        }
