"""
Throw detection for discflight.

Turns the latest-sample stream from the IMU into a single release event per
session:

- LatestSampleCell: lock-guarded swap cell between acquisition and detection
- WzRingBuffer: 30-sample lookback of (time, wz)
- ThrowDetector: IDLE -> THROWN -> IN_FLIGHT -> DONE state machine
- VelocityIntegrator: world-frame velocity while a throw is in progress

Usage:
    from discflight.detection import LatestSampleCell, ThrowDetector

    cell = LatestSampleCell()
    detector = ThrowDetector(cell)
    sensor.start_streaming(callback=cell.publish)

    event = detector.tick()   # call at ~30 Hz
"""

from .types import (
    DetectorConfig,
    ReleaseEvent,
    ThrowState,
)

from .ring_buffer import FrameSample, WzRingBuffer
from .stream import LatestSampleCell
from .integrator import VelocityIntegrator
from .detector import ThrowDetector

__all__ = [
    # Types
    "DetectorConfig",
    "ReleaseEvent",
    "ThrowState",
    # Buffers
    "FrameSample",
    "WzRingBuffer",
    "LatestSampleCell",
    # Detection
    "VelocityIntegrator",
    "ThrowDetector",
]
