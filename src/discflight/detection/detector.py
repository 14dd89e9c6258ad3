"""
Throw detection state machine.

Runs once per fixed tick, independent of the sensor rate. Each tick reads
the latest sample, appends (time, wz) to the ring buffer, and advances:

    IDLE ──N samples |wz| >= threshold──> THROWN
    THROWN ──settle delay, then M stable wz deltas──> IN_FLIGHT
    IN_FLIGHT ──P ticks |wz| < near-zero──> DONE (emit ReleaseEvent)

DONE is terminal until reset(). The velocity integrator is armed exactly
while the state is THROWN or IN_FLIGHT.
"""

import logging
import threading
import time
from typing import Callable, Optional

from ..bwt901 import InertialSample
from .integrator import VelocityIntegrator
from .ring_buffer import WzRingBuffer
from .stream import LatestSampleCell
from .types import DetectorConfig, ReleaseEvent, ThrowState

logger = logging.getLogger("discflight.detection.detector")


class ThrowDetector:
    """
    Detects throw start, stable flight and end from the spin-axis rate.

    Example:
        cell = LatestSampleCell()
        detector = ThrowDetector(cell)

        # acquisition thread: cell.publish(sample)
        # tick loop, ~30 Hz:
        event = detector.tick()
        if event:
            simulate(event)
    """

    def __init__(
        self,
        stream: LatestSampleCell,
        config: Optional[DetectorConfig] = None,
        state_callback: Optional[Callable[[ThrowState], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize detector.

        Args:
            stream: Cell holding the latest sensor sample
            config: Thresholds and counts (defaults if None)
            state_callback: Called with the new state after each transition
            clock: Time source used when tick() is called without a time
        """
        self.stream = stream
        self.config = config or DetectorConfig()
        self.state_callback = state_callback
        self._clock = clock
        self._lock = threading.RLock()
        self.ring = WzRingBuffer(self.config.ring_capacity)
        self.integrator = VelocityIntegrator(gravity=self.config.gravity)
        self._reset_state()

    def _reset_state(self):
        self._state = ThrowState.IDLE
        self.ring.clear()
        self.integrator.reset()
        self._last_tick: Optional[float] = None
        self._estimated_time = 0.0
        self._thrown_at = 0.0
        self._time_since_thrown = 0.0
        self._dynamic_center = 0.0
        self._final_center_set = False
        self._throw_start_time: Optional[float] = None
        self._flight_end_time: Optional[float] = None
        self._stable_delta_counter = 0
        self._near_zero_counter = 0

    def reset(self):
        """Start a new detection session; safe to call at any time."""
        with self._lock:
            previous = self._state
            self._reset_state()
        logger.info(f"Throw detection reset (was {previous.value})")
        if previous is not ThrowState.IDLE:
            self._notify(ThrowState.IDLE)

    @property
    def state(self) -> ThrowState:
        return self._state

    @property
    def estimated_time(self) -> float:
        """Detector time: seconds of ticks with data since the last reset."""
        return self._estimated_time

    @property
    def throw_start_time(self) -> Optional[float]:
        return self._throw_start_time

    @property
    def flight_end_time(self) -> Optional[float]:
        return self._flight_end_time

    @property
    def dynamic_center(self) -> float:
        """Provisional (then final) spin center in deg/s."""
        return self._dynamic_center

    @property
    def final_center_set(self) -> bool:
        return self._final_center_set

    def tick(self, now: Optional[float] = None) -> Optional[ReleaseEvent]:
        """
        Advance the state machine by one tick.

        Args:
            now: Wall-clock time of this tick (defaults to the detector clock)

        Returns:
            ReleaseEvent on the tick the throw completes, otherwise None
        """
        with self._lock:
            if self._state is ThrowState.DONE:
                return None

            sample = self.stream.latest()
            if sample is None:
                return None

            now = self._clock() if now is None else now
            dt = 0.0 if self._last_tick is None else max(0.0, now - self._last_tick)
            self._last_tick = now
            self._estimated_time += dt

            if self.integrator.armed:
                self.integrator.update(sample, dt)

            self.ring.append(self._estimated_time, sample.wz)

            if self._state is ThrowState.IDLE:
                self._tick_idle()
            elif self._state is ThrowState.THROWN:
                self._tick_thrown(dt)
            elif self._state is ThrowState.IN_FLIGHT:
                return self._tick_in_flight(sample)

        return None

    def _tick_idle(self):
        cfg = self.config
        run = self.ring.trailing_run(cfg.throw_threshold)
        if run < cfg.threshold_samples:
            return

        earliest = self.ring[len(self.ring) - run]
        self._throw_start_time = earliest.time
        self._dynamic_center = self.ring.newest.wz
        self._thrown_at = self._estimated_time
        self._time_since_thrown = 0.0
        self._final_center_set = False
        self._stable_delta_counter = 0
        self.integrator.arm()

        logger.info(
            f"Throw detected: start={self._throw_start_time:.3f}s "
            f"({run} samples >= {cfg.throw_threshold:.0f} deg/s), "
            f"center={self._dynamic_center:.1f} deg/s"
        )
        self._transition(ThrowState.THROWN)

    def _tick_thrown(self, dt: float):
        cfg = self.config
        self._time_since_thrown += dt

        if not self._final_center_set and self._time_since_thrown >= cfg.settle_delay:
            self._dynamic_center = self.ring.mean_wz(cfg.center_window)
            self._final_center_set = True
            logger.debug(f"Final spin center {self._dynamic_center:.1f} deg/s "
                         f"after {self._time_since_thrown:.3f}s")

        if not self._final_center_set or len(self.ring) < 2:
            return

        delta = self.ring.last_delta()
        if abs(delta) < cfg.change_threshold:
            self._stable_delta_counter += 1
        else:
            self._stable_delta_counter = 0

        if self._stable_delta_counter >= cfg.stable_samples:
            logger.info(f"Stable flight at {self._estimated_time:.3f}s "
                        f"(center={self._dynamic_center:.1f} deg/s)")
            self._transition(ThrowState.IN_FLIGHT)

    def _tick_in_flight(self, sample: InertialSample) -> Optional[ReleaseEvent]:
        cfg = self.config
        if abs(sample.wz) >= cfg.near_zero_threshold:
            self._near_zero_counter = 0
            return None

        self._near_zero_counter += 1
        if self._near_zero_counter < cfg.near_zero_samples:
            return None

        self._flight_end_time = self._estimated_time
        self.integrator.disarm()

        event = ReleaseEvent(
            timestamp=self._estimated_time,
            duration_since_threshold=self._estimated_time - self._thrown_at,
            release_sample=sample,
            release_velocity=self.integrator.velocity_tuple,
            throw_start_time=self._throw_start_time,
            flight_end_time=self._flight_end_time,
            spin_center_dps=self._dynamic_center if self._final_center_set else None,
        )

        logger.info(
            f"Flight ended at {self._flight_end_time:.3f}s: "
            f"v=({event.release_velocity[0]:+.2f}, {event.release_velocity[1]:+.2f}, "
            f"{event.release_velocity[2]:+.2f}) m/s"
        )
        self._transition(ThrowState.DONE)
        return event

    def _transition(self, new_state: ThrowState):
        self._state = new_state
        self._notify(new_state)

    def _notify(self, state: ThrowState):
        if self.state_callback:
            try:
                self.state_callback(state)
            except Exception as e:
                logger.warning(f"State callback failed: {e}")
