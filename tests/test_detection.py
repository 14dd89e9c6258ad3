"""Tests for the throw detection state machine and its helpers."""

import math
import threading

import numpy as np
import pytest

from discflight.bwt901 import InertialSample
from discflight.detection import (
    DetectorConfig,
    LatestSampleCell,
    ReleaseEvent,
    ThrowDetector,
    ThrowState,
    VelocityIntegrator,
    WzRingBuffer,
)

# Exactly representable tick spacing keeps detector time exact
TICK = 0.0625

# wz profile: 9 ticks spinning at 1000 deg/s, then the disc stops
THROW = [1000.0] * 9 + [0.0, 0.0]


def make_sample(wz=0.0, ax=0.0, ay=9.81, az=0.0, roll=0.0, pitch=0.0, yaw=0.0, timestamp=0.0):
    return InertialSample(
        timestamp=timestamp,
        ax=ax, ay=ay, az=az,
        wx=0.0, wy=0.0, wz=wz,
        roll=roll, pitch=pitch, yaw=yaw,
    )


def run_ticks(detector, cell, wz_values, start=0, **sample_kwargs):
    """Publish one sample per tick and collect release events."""
    events = []
    for i, wz in enumerate(wz_values, start):
        cell.publish(make_sample(wz, **sample_kwargs))
        event = detector.tick(now=i * TICK)
        if event is not None:
            events.append(event)
    return events


class TestDetectorConfig:
    """Tests for detector configuration."""

    def test_defaults(self):
        config = DetectorConfig()
        assert config.throw_threshold == 600.0
        assert config.threshold_samples == 3
        assert config.change_threshold == 100.0
        assert config.stable_samples == 3
        assert config.near_zero_threshold == 150.0
        assert config.near_zero_samples == 2
        assert config.settle_delay == 0.2
        assert config.center_window == 5
        assert config.ring_capacity == 30
        assert config.tick_interval == pytest.approx(1 / 30)

    def test_from_dict_round_trip(self):
        config = DetectorConfig(throw_threshold=500.0, near_zero_samples=4)
        assert DetectorConfig.from_dict(config.to_dict()) == config

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ValueError, match="Unknown"):
            DetectorConfig.from_dict({"throw_treshold": 500.0})

    def test_ring_must_hold_threshold_run(self):
        with pytest.raises(ValueError):
            DetectorConfig(threshold_samples=10, ring_capacity=5)

    def test_counts_must_be_positive(self):
        with pytest.raises(ValueError):
            DetectorConfig(near_zero_samples=0)


class TestWzRingBuffer:
    """Tests for the lookback ring buffer."""

    def test_capacity_keeps_most_recent_in_order(self):
        ring = WzRingBuffer(capacity=30)
        for i in range(45):
            ring.append(i * 0.1, float(i))

        assert len(ring) == 30
        assert [entry.wz for entry in ring] == [float(i) for i in range(15, 45)]
        assert ring[0].time == pytest.approx(1.5)
        assert ring.newest.wz == 44.0

    def test_trailing_run(self):
        ring = WzRingBuffer(10)
        for wz in [700, 100, 650, -800, 900]:
            ring.append(0.0, wz)
        assert ring.trailing_run(600) == 3

    def test_trailing_run_zero_when_newest_below(self):
        ring = WzRingBuffer(10)
        for wz in [700, 700, 10]:
            ring.append(0.0, wz)
        assert ring.trailing_run(600) == 0

    def test_mean_uses_available_entries(self):
        ring = WzRingBuffer(10)
        ring.append(0.0, 10.0)
        ring.append(0.0, 20.0)
        assert ring.mean_wz(5) == pytest.approx(15.0)

    def test_mean_of_latest_window(self):
        ring = WzRingBuffer(10)
        for wz in [0, 0, 100, 200, 300]:
            ring.append(0.0, float(wz))
        assert ring.mean_wz(3) == pytest.approx(200.0)

    def test_empty_ring(self):
        ring = WzRingBuffer(5)
        assert ring.newest is None
        assert ring.mean_wz(5) is None
        assert ring.last_delta() is None
        assert ring.latest(3) == []

    def test_last_delta(self):
        ring = WzRingBuffer(5)
        ring.append(0.0, 1000.0)
        ring.append(0.1, 1040.0)
        assert ring.last_delta() == pytest.approx(40.0)


class TestLatestSampleCell:
    """Tests for the acquisition/detection swap cell."""

    def test_empty(self):
        assert LatestSampleCell().latest() is None

    def test_latest_wins(self):
        cell = LatestSampleCell()
        cell.publish(make_sample(1.0))
        cell.publish(make_sample(2.0))

        assert cell.latest().wz == 2.0
        assert cell.published == 2
        assert cell.overwritten == 1

    def test_read_is_not_consuming(self):
        cell = LatestSampleCell()
        cell.publish(make_sample(5.0))
        assert cell.latest().wz == 5.0
        assert cell.latest().wz == 5.0

    def test_read_sample_not_counted_as_overwritten(self):
        cell = LatestSampleCell()
        cell.publish(make_sample(1.0))
        cell.latest()
        cell.publish(make_sample(2.0))
        assert cell.overwritten == 0


class TestVelocityIntegrator:
    """Tests for world-frame velocity integration."""

    def test_disarmed_does_nothing(self):
        integrator = VelocityIntegrator()
        integrator.update(make_sample(ax=5.0), 0.1)
        assert np.array_equal(integrator.velocity, np.zeros(3))

    def test_level_sensor_removes_gravity(self):
        integrator = VelocityIntegrator(gravity=9.81)
        integrator.arm()
        integrator.update(make_sample(ax=2.0, ay=9.81), 0.5)

        assert list(integrator.velocity) == pytest.approx([1.0, 0.0, 0.0])
        assert integrator.elapsed == pytest.approx(0.5)

    def test_yaw_rotates_about_vertical(self):
        """A 90 degree yaw turns body +x into world -z."""
        integrator = VelocityIntegrator(gravity=9.81)
        accel = integrator.world_acceleration(make_sample(ax=1.0, ay=0.0, yaw=90.0))
        assert list(accel) == pytest.approx([0.0, -9.81, -1.0], abs=1e-9)

    def test_roll_about_z_applied_first(self):
        """A 90 degree roll about z turns body +x into world +y."""
        integrator = VelocityIntegrator(gravity=0.0)
        accel = integrator.world_acceleration(make_sample(ax=1.0, ay=0.0, roll=90.0))
        assert list(accel) == pytest.approx([0.0, 1.0, 0.0], abs=1e-9)

    def test_arm_zeroes_velocity(self):
        integrator = VelocityIntegrator()
        integrator.arm()
        integrator.update(make_sample(ax=3.0), 1.0)
        integrator.arm()
        assert np.array_equal(integrator.velocity, np.zeros(3))

    def test_non_positive_dt_ignored(self):
        integrator = VelocityIntegrator()
        integrator.arm()
        integrator.update(make_sample(ax=3.0), 0.0)
        assert np.array_equal(integrator.velocity, np.zeros(3))


class TestThrowDetector:
    """Tests for the IDLE -> THROWN -> IN_FLIGHT -> DONE state machine."""

    def setup_method(self):
        self.cell = LatestSampleCell()
        self.states = []
        self.detector = ThrowDetector(self.cell, state_callback=self.states.append)

    def test_no_sample_is_noop(self):
        assert self.detector.tick(now=0.0) is None
        assert self.detector.state == ThrowState.IDLE
        assert self.detector.estimated_time == 0.0
        assert len(self.detector.ring) == 0

    def test_threshold_boundary_n_minus_one(self):
        """THROWN is entered on the Nth qualifying sample, not before."""
        n = self.detector.config.threshold_samples
        threshold = self.detector.config.throw_threshold

        run_ticks(self.detector, self.cell, [threshold] * (n - 1))
        assert self.detector.state == ThrowState.IDLE

        run_ticks(self.detector, self.cell, [threshold], start=n - 1)
        assert self.detector.state == ThrowState.THROWN

    def test_negative_spin_counts(self):
        run_ticks(self.detector, self.cell, [-900.0] * 3)
        assert self.detector.state == ThrowState.THROWN

    def test_interrupted_run_does_not_trigger(self):
        run_ticks(self.detector, self.cell, [1000.0, 1000.0, 0.0, 1000.0, 1000.0])
        assert self.detector.state == ThrowState.IDLE

    def test_throw_start_is_earliest_of_run(self):
        run_ticks(self.detector, self.cell, [0.0, 0.0, 800.0, 800.0, 800.0])
        assert self.detector.state == ThrowState.THROWN
        assert self.detector.throw_start_time == pytest.approx(2 * TICK)
        assert self.detector.dynamic_center == 800.0

    def test_final_center_waits_for_settle_delay(self):
        """Stable spin before the settle delay does not reach IN_FLIGHT."""
        run_ticks(self.detector, self.cell, [1000.0] * 6)
        assert self.detector.state == ThrowState.THROWN
        assert not self.detector.final_center_set

        run_ticks(self.detector, self.cell, [1000.0], start=6)
        assert self.detector.final_center_set
        assert self.detector.dynamic_center == pytest.approx(1000.0)

    def test_stable_spin_enters_flight(self):
        run_ticks(self.detector, self.cell, [1000.0] * 9)
        assert self.detector.state == ThrowState.IN_FLIGHT

    def test_unstable_spin_stays_thrown(self):
        wobble = [1000.0, 1300.0] * 8
        run_ticks(self.detector, self.cell, [1000.0] * 3 + wobble)
        assert self.detector.state == ThrowState.THROWN

    def test_full_throw_emits_release(self):
        events = run_ticks(self.detector, self.cell, THROW, ax=2.0, ay=9.81, roll=15.0, pitch=20.0, yaw=-30.0)

        assert len(events) == 1
        event = events[0]
        assert isinstance(event, ReleaseEvent)
        assert self.detector.state == ThrowState.DONE
        assert self.states == [ThrowState.THROWN, ThrowState.IN_FLIGHT, ThrowState.DONE]

        assert event.timestamp == pytest.approx(10 * TICK)
        # THROWN at tick 2, IN_FLIGHT at tick 8, DONE at tick 10
        assert event.duration_since_threshold == pytest.approx(8 * TICK)
        assert event.throw_start_time == pytest.approx(0.0)
        assert event.flight_end_time == pytest.approx(10 * TICK)
        assert event.spin_center_dps == pytest.approx(1000.0)
        assert event.release_sample.wz == 0.0
        assert event.attitude_deg == (15.0, 20.0, -30.0)

    def test_release_velocity_integrated_while_armed(self):
        """Level sensor, 2 m/s^2 forward for 8 armed ticks (0.5 s)."""
        events = run_ticks(self.detector, self.cell, THROW, ax=2.0, ay=9.81)

        assert events[0].release_velocity == pytest.approx((1.0, 0.0, 0.0))
        assert events[0].release_speed == pytest.approx(1.0)
        assert not self.detector.integrator.armed

    def test_spin_must_stay_low_for_p_ticks(self):
        run_ticks(self.detector, self.cell, [1000.0] * 9 + [0.0, 1000.0, 0.0])
        assert self.detector.state == ThrowState.IN_FLIGHT

    def test_done_is_idempotent(self):
        """Once DONE, further ticks never emit another release."""
        events = run_ticks(self.detector, self.cell, THROW)
        later = run_ticks(self.detector, self.cell, THROW * 3, start=len(THROW))

        assert len(events) == 1
        assert later == []
        assert self.detector.state == ThrowState.DONE

    def test_reset_rearms(self):
        run_ticks(self.detector, self.cell, THROW)
        self.detector.reset()

        assert self.detector.state == ThrowState.IDLE
        assert len(self.detector.ring) == 0
        assert self.detector.estimated_time == 0.0
        assert self.states[-1] == ThrowState.IDLE

        events = run_ticks(self.detector, self.cell, THROW, start=100)
        assert len(events) == 1

    def test_reset_from_idle_does_not_notify(self):
        self.detector.reset()
        assert self.states == []

    @pytest.mark.parametrize("ticks, interrupted", [
        (4, ThrowState.THROWN),
        (9, ThrowState.IN_FLIGHT),
    ])
    def test_reset_mid_throw(self, ticks, interrupted):
        run_ticks(self.detector, self.cell, [1000.0] * ticks, ax=2.0)
        assert self.detector.state == interrupted
        assert self.detector.integrator.armed

        self.detector.reset()

        assert self.detector.state == ThrowState.IDLE
        assert len(self.detector.ring) == 0
        assert not self.detector.integrator.armed
        assert self.detector.throw_start_time is None
        assert self.states[-1] == ThrowState.IDLE

        events = run_ticks(self.detector, self.cell, THROW, start=50, ax=2.0, ay=9.81)
        assert len(events) == 1
        assert events[0].release_velocity == pytest.approx((1.0, 0.0, 0.0))

    def test_reset_while_ticking(self):
        """reset() from another thread never corrupts a running tick."""
        errors = []
        stop = threading.Event()

        def tick_loop():
            i = 0
            while not stop.is_set():
                try:
                    self.cell.publish(make_sample(1000.0 if i % 12 < 9 else 0.0))
                    self.detector.tick(now=i * TICK)
                except Exception as e:  # pylint: disable=broad-except
                    errors.append(e)
                i += 1

        thread = threading.Thread(target=tick_loop, daemon=True)
        thread.start()
        for _ in range(2000):
            self.detector.reset()
        stop.set()
        thread.join(timeout=5.0)

        assert not thread.is_alive()
        assert errors == []

        self.detector.reset()
        assert self.detector.state == ThrowState.IDLE
        assert len(self.detector.ring) == 0
        events = run_ticks(self.detector, self.cell, THROW, start=0)
        assert len(events) == 1

    def test_callback_error_does_not_stop_detection(self):
        def bad_callback(state):
            raise RuntimeError("listener failed")

        detector = ThrowDetector(self.cell, state_callback=bad_callback)
        events = run_ticks(detector, self.cell, THROW)
        assert len(events) == 1

    def test_stale_sample_reused(self):
        """Without new data the last sample is appended again."""
        self.cell.publish(make_sample(1000.0))
        for i in range(3):
            self.detector.tick(now=i * TICK)
        assert self.detector.state == ThrowState.THROWN
        assert len(self.detector.ring) == 3

    def test_custom_thresholds(self):
        config = DetectorConfig(throw_threshold=300.0, threshold_samples=2)
        detector = ThrowDetector(self.cell, config)
        run_ticks(detector, self.cell, [350.0, 350.0])
        assert detector.state == ThrowState.THROWN

    def test_spin_rate_conversion(self):
        events = run_ticks(self.detector, self.cell, THROW)
        assert events[0].spin_rate_rad_s == pytest.approx(math.radians(1000.0))

    def test_event_to_dict(self):
        events = run_ticks(self.detector, self.cell, THROW)
        data = events[0].to_dict()
        assert data["release_velocity"] == pytest.approx([0.0, 0.0, 0.0])
        assert data["release_sample"]["wz"] == 0.0
        assert data["spin_center_dps"] == pytest.approx(1000.0)
