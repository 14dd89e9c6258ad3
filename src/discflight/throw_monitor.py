"""
Disc throw monitor using a BWT901 IMU.

Composes acquisition, detection and simulation: sensor samples go into a
latest-sample cell, a fixed-rate tick thread runs the throw detector, and
each release is simulated and handed to the registered callbacks.
"""

import logging
import statistics
import threading
import time
from typing import Callable, List, Optional, Tuple

from .bwt901 import BWT901Sensor, ConnectionStatus, InertialSample, set_show_raw_readings
from .detection import DetectorConfig, LatestSampleCell, ReleaseEvent, ThrowDetector, ThrowState
from .flight import (
    DEMO_ATTITUDE_DEG,
    DEMO_POSITION,
    DEMO_VELOCITY,
    DiscAerodynamicParameters,
    FlightSimulator,
    SimulationConfig,
    Trajectory,
    initial_state,
    simulate_release,
)
from .session_logger import get_session_logger, init_session_logger

logger = logging.getLogger("discflight.monitor")


class ThrowMonitor:
    """
    Disc throw monitor using a WitMotion BWT901 inertial sensor.

    Detects one throw per session and simulates its flight.

    Example:
        monitor = ThrowMonitor()
        monitor.connect()
        monitor.start(trajectory_callback=on_trajectory)

        event = monitor.wait_for_release(timeout=30)
        if event:
            print(f"Release speed: {event.release_speed:.1f} m/s")

        monitor.disconnect()
    """

    def __init__(
        self,
        port: Optional[str] = None,
        baud: int = BWT901Sensor.DEFAULT_BAUD,
        detector_config: Optional[DetectorConfig] = None,
        disc_params: Optional[DiscAerodynamicParameters] = None,
        sim_config: Optional[SimulationConfig] = None,
        sensor: Optional[BWT901Sensor] = None,
        rearm: bool = False,
    ):
        """
        Initialize throw monitor.

        Args:
            port: Serial port for the sensor. Auto-detect if None.
            baud: Serial baud rate
            detector_config: Detection thresholds (defaults if None)
            disc_params: Disc constants for the flight model (defaults if None)
            sim_config: Simulation settings (defaults if None)
            sensor: Pre-built sensor driver (overrides port/baud)
            rearm: Reset detection automatically after each release

        Raises:
            DegenerateDiscError: If disc_params cannot be simulated
        """
        self.sensor = sensor or BWT901Sensor(port=port, baud=baud)
        self.detector_config = detector_config or DetectorConfig()
        self.disc_params = disc_params or DiscAerodynamicParameters()
        self.sim_config = sim_config or SimulationConfig()
        self.rearm = rearm

        # Validate the disc before any data arrives
        self.simulator = FlightSimulator(self.disc_params)

        self.stream = LatestSampleCell()
        self.detector = ThrowDetector(
            self.stream, self.detector_config, state_callback=self._on_state
        )

        self._running = False
        self._tick_thread: Optional[threading.Thread] = None
        self._sim_lock = threading.Lock()
        self._releases: List[Tuple[ReleaseEvent, Trajectory]] = []
        self._last_trajectory: Optional[Trajectory] = None

        self._release_callback: Optional[Callable[[ReleaseEvent], None]] = None
        self._trajectory_callback: Optional[Callable[[ReleaseEvent, Trajectory], None]] = None
        self._state_callback: Optional[Callable[[ThrowState], None]] = None
        self._live_callback: Optional[Callable[[InertialSample], None]] = None
        self._connection_callback: Optional[Callable[[ConnectionStatus, str], None]] = None

    def connect(self) -> bool:
        """
        Open the sensor's serial link.

        Returns:
            True if successful
        """
        self.sensor.connect()
        return True

    def disconnect(self):
        """
        Stop monitoring, close the sensor and end the session log.

        Each step runs even if the one before it failed.
        """
        try:
            self.stop()
        except Exception as e:
            logger.error(f"Error stopping monitor: {e}")

        try:
            self.sensor.disconnect()
        except Exception as e:
            logger.error(f"Error disconnecting sensor: {e}")

        try:
            session_logger = get_session_logger()
            if session_logger:
                session_logger.end_session()
        except Exception as e:
            logger.error(f"Error ending session log: {e}")

    def start(
        self,
        release_callback: Optional[Callable[[ReleaseEvent], None]] = None,
        trajectory_callback: Optional[Callable[[ReleaseEvent, Trajectory], None]] = None,
        state_callback: Optional[Callable[[ThrowState], None]] = None,
        live_callback: Optional[Callable[[InertialSample], None]] = None,
        connection_callback: Optional[Callable[[ConnectionStatus, str], None]] = None,
    ):
        """
        Start acquisition and the detection tick loop.

        If the sensor has an open serial port its read thread is started;
        otherwise samples are expected through feed().

        Args:
            release_callback: Called with each ReleaseEvent
            trajectory_callback: Called with the release and its simulated trajectory
            state_callback: Called on every detector state change
            live_callback: Called for each decoded sensor sample
            connection_callback: Called on sensor link status changes
        """
        if self._running:
            return

        self._release_callback = release_callback
        self._trajectory_callback = trajectory_callback
        self._state_callback = state_callback
        self._live_callback = live_callback
        self._connection_callback = connection_callback

        if self.sensor.serial is not None:
            self.sensor.start_streaming(self._on_sample, status_callback=self._on_status)
        else:
            self.sensor.set_callbacks(self._on_sample, status_callback=self._on_status)

        self._running = True
        self._tick_thread = threading.Thread(target=self._tick_loop, daemon=True)
        self._tick_thread.start()

        logger.info(f"Throw monitor started ({self.detector_config.tick_hz:.0f} Hz detection)")

    def stop(self):
        """Stop the tick loop and the sensor read thread."""
        self._running = False
        thread = self._tick_thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        self._tick_thread = None
        self.sensor.stop_streaming()
        logger.info("Throw monitor stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def state(self) -> ThrowState:
        return self.detector.state

    @property
    def last_trajectory(self) -> Optional[Trajectory]:
        return self._last_trajectory

    def feed(self, payload: bytes) -> List[InertialSample]:
        """Pass a BLE notification payload to the sensor decoder."""
        return self.sensor.feed(payload)

    def reset(self):
        """Start a new detection session."""
        self.stream.clear()
        self.detector.reset()

    def tick(self, now: Optional[float] = None) -> Optional[ReleaseEvent]:
        """
        Run one detection tick and handle a release if one completes.

        Args:
            now: Tick time in seconds (detector clock if None)

        Returns:
            ReleaseEvent if the throw completed on this tick
        """
        event = self.detector.tick(now)
        if event is not None:
            self._handle_release(event)
        return event

    def simulate(self, event: ReleaseEvent) -> Trajectory:
        """
        Simulate the flight for a release.

        Calls are serialized; a second caller waits for the first to finish.
        """
        with self._sim_lock:
            trajectory = simulate_release(event, self.disc_params, self.sim_config)
            self._last_trajectory = trajectory

        session_logger = get_session_logger()
        if session_logger:
            session_logger.log_trajectory(trajectory, self.sim_config.output_points)
        return trajectory

    def _handle_release(self, event: ReleaseEvent):
        logger.info(
            f"Release: {event.release_speed:.1f} m/s, "
            f"attitude=({event.attitude_deg[0]:.1f}, {event.attitude_deg[1]:.1f}, "
            f"{event.attitude_deg[2]:.1f}) deg"
        )

        session_logger = get_session_logger()
        if session_logger:
            session_logger.log_release(event)

        self._emit(self._release_callback, event)

        try:
            trajectory = self.simulate(event)
        except ValueError as e:
            logger.error(f"Flight simulation failed: {e}")
            if session_logger:
                session_logger.log_error(str(e), {"stage": "simulate"})
            return

        self._releases.append((event, trajectory))
        self._emit(self._trajectory_callback, event, trajectory)

        if self.rearm:
            self.reset()

    def _on_sample(self, sample: InertialSample):
        self.stream.publish(sample)
        self._emit(self._live_callback, sample)

    def _on_status(self, status: ConnectionStatus, message: str):
        if status is ConnectionStatus.LOST:
            session_logger = get_session_logger()
            if session_logger:
                session_logger.log_error(message, {"stage": "acquisition"})
        self._emit(self._connection_callback, status, message)

    def _on_state(self, state: ThrowState):
        session_logger = get_session_logger()
        if session_logger:
            session_logger.log_state(state, self.detector.estimated_time)
        self._emit(self._state_callback, state)

    @staticmethod
    def _emit(callback, *args):
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.warning(f"Callback {getattr(callback, '__name__', callback)} failed: {e}")

    def _tick_loop(self):
        """Fixed-rate detection loop."""
        interval = self.detector_config.tick_interval
        while self._running:
            started = time.monotonic()
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Tick loop error: {e}")
            elapsed = time.monotonic() - started
            time.sleep(max(0.0, interval - elapsed))

    def wait_for_release(self, timeout: float = 60) -> Optional[ReleaseEvent]:
        """
        Wait for the next release.

        Args:
            timeout: Maximum seconds to wait

        Returns:
            ReleaseEvent or None if timeout
        """
        seen = len(self._releases)
        start = time.time()
        while len(self._releases) == seen and (time.time() - start) < timeout:
            time.sleep(0.05)

        if len(self._releases) > seen:
            return self._releases[seen][0]
        return None

    def get_releases(self) -> List[Tuple[ReleaseEvent, Trajectory]]:
        """Get all releases with their trajectories."""
        return self._releases.copy()

    def get_session_stats(self) -> dict:
        """
        Get statistics for the current session.

        Returns:
            Dict with throw count, speed and distance averages, stream counters
        """
        stats = {
            "state": self.detector.state.value,
            "samples_published": self.stream.published,
            "samples_overwritten": self.stream.overwritten,
            "frames_decoded": self.sensor.decoder.frames_decoded,
            "bytes_dropped": self.sensor.decoder.bytes_dropped,
        }

        if not self._releases:
            stats.update({
                "throw_count": 0,
                "avg_release_speed": 0,
                "max_release_speed": 0,
                "avg_range": 0,
                "max_range": 0,
                "avg_flight_time": 0,
            })
            return stats

        speeds = [event.release_speed for event, _ in self._releases]
        ranges = [traj.max_range for _, traj in self._releases]
        stats.update({
            "throw_count": len(self._releases),
            "avg_release_speed": statistics.mean(speeds),
            "max_release_speed": max(speeds),
            "avg_range": statistics.mean(ranges),
            "max_range": max(ranges),
            "avg_flight_time": statistics.mean([traj.flight_time for _, traj in self._releases]),
        })
        return stats

    def clear_session(self):
        """Clear recorded releases and re-arm detection."""
        self._releases = []
        self._last_trajectory = None
        self.reset()

    def config_dict(self) -> dict:
        return {
            "detector": self.detector_config.to_dict(),
            "disc": self.disc_params.to_dict(),
            "simulation": self.sim_config.to_dict(),
        }

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
        return False


def add_config_arguments(parser):
    """Add detector, disc and simulation flags to an argparse parser."""
    det = DetectorConfig()
    disc = DiscAerodynamicParameters()
    sim = SimulationConfig()

    group = parser.add_argument_group("detection")
    group.add_argument("--throw-threshold", type=float, default=det.throw_threshold,
                       help=f"|wz| deg/s that starts a throw (default: {det.throw_threshold:.0f})")
    group.add_argument("--threshold-samples", type=int, default=det.threshold_samples,
                       help=f"Consecutive samples above threshold (default: {det.threshold_samples})")
    group.add_argument("--change-threshold", type=float, default=det.change_threshold,
                       help=f"Max wz change for stable spin (default: {det.change_threshold:.0f})")
    group.add_argument("--stable-samples", type=int, default=det.stable_samples,
                       help=f"Stable deltas before in-flight (default: {det.stable_samples})")
    group.add_argument("--near-zero-threshold", type=float, default=det.near_zero_threshold,
                       help=f"|wz| deg/s that counts as stopped (default: {det.near_zero_threshold:.0f})")
    group.add_argument("--near-zero-samples", type=int, default=det.near_zero_samples,
                       help=f"Stopped ticks before done (default: {det.near_zero_samples})")
    group.add_argument("--settle-delay", type=float, default=det.settle_delay,
                       help=f"Seconds before the final spin center (default: {det.settle_delay})")
    group.add_argument("--center-window", type=int, default=det.center_window,
                       help=f"Samples averaged for the spin center (default: {det.center_window})")
    group.add_argument("--ring-capacity", type=int, default=det.ring_capacity,
                       help=f"Lookback samples (default: {det.ring_capacity})")
    group.add_argument("--tick-hz", type=float, default=det.tick_hz,
                       help=f"Detection rate (default: {det.tick_hz:.0f})")

    group = parser.add_argument_group("disc")
    group.add_argument("--mass", type=float, default=disc.mass, help=f"kg (default: {disc.mass})")
    group.add_argument("--diameter", type=float, default=disc.diameter, help=f"m (default: {disc.diameter})")
    group.add_argument("--i-xy", type=float, default=disc.i_xy, help=f"kg m^2 (default: {disc.i_xy})")
    group.add_argument("--i-z", type=float, default=disc.i_z, help=f"kg m^2 (default: {disc.i_z})")
    group.add_argument("--cd", type=float, default=disc.cd, help=f"Drag coefficient (default: {disc.cd})")
    group.add_argument("--cl", type=float, default=disc.cl, help=f"Lift coefficient (default: {disc.cl})")
    group.add_argument("--cm", type=float, default=disc.cm, help=f"Moment coefficient (default: {disc.cm})")
    group.add_argument("--spin", type=float, default=disc.spin, help=f"rad/s (default: {disc.spin})")
    group.add_argument("--air-density", type=float, default=disc.air_density,
                       help=f"kg/m^3 (default: {disc.air_density})")
    group.add_argument("--gravity", type=float, default=disc.gravity,
                       help=f"m/s^2 removed by the integrator and applied in flight (default: {disc.gravity})")

    group = parser.add_argument_group("simulation")
    group.add_argument("--dt", type=float, default=sim.dt, help=f"Step in seconds (default: {sim.dt})")
    group.add_argument("--total-time", type=float, default=sim.total_time,
                       help=f"Time budget in seconds (default: {sim.total_time})")
    group.add_argument("--release-x", type=float, default=sim.release_position[0],
                       help=f"Release x (downrange) in meters (default: {sim.release_position[0]})")
    group.add_argument("--release-height", type=float, default=sim.release_position[1],
                       help=f"Release height in meters (default: {sim.release_position[1]})")
    group.add_argument("--release-z", type=float, default=sim.release_position[2],
                       help=f"Release z (lateral) in meters (default: {sim.release_position[2]})")
    group.add_argument("--points", type=int, default=sim.output_points,
                       help=f"Resampled output points (default: {sim.output_points})")
    group.add_argument("--spin-from-sensor", action="store_true",
                       help="Use the measured spin center instead of --spin")


def configs_from_args(args) -> Tuple[DetectorConfig, DiscAerodynamicParameters, SimulationConfig]:
    """Build the three config objects from parsed add_config_arguments() flags."""
    detector_config = DetectorConfig(
        throw_threshold=args.throw_threshold,
        threshold_samples=args.threshold_samples,
        change_threshold=args.change_threshold,
        stable_samples=args.stable_samples,
        near_zero_threshold=args.near_zero_threshold,
        near_zero_samples=args.near_zero_samples,
        settle_delay=args.settle_delay,
        center_window=args.center_window,
        ring_capacity=args.ring_capacity,
        tick_hz=args.tick_hz,
        gravity=args.gravity,
    )
    disc_params = DiscAerodynamicParameters(
        mass=args.mass,
        diameter=args.diameter,
        i_xy=args.i_xy,
        i_z=args.i_z,
        cd=args.cd,
        cl=args.cl,
        cm=args.cm,
        spin=args.spin,
        air_density=args.air_density,
        gravity=args.gravity,
    )
    sim_config = SimulationConfig(
        dt=args.dt,
        total_time=args.total_time,
        release_position=(args.release_x, args.release_height, args.release_z),
        output_points=args.points,
        spin_from_sensor=args.spin_from_sensor,
    )
    return detector_config, disc_params, sim_config


def print_trajectory(trajectory: Trajectory):
    print("-" * 40)
    print(f"  Flight time: {trajectory.flight_time:.2f} s")
    print(f"  Range:       {trajectory.max_range:.1f} m")
    print(f"  Apex:        {trajectory.apex:.2f} m")
    print(f"  Lateral:     {trajectory.lateral_offset:+.1f} m")
    if not trajectory.landed:
        print("  (time budget reached before landing)")
    print("-" * 40)
    print()


def main():
    """CLI entry point for the throw monitor."""
    import argparse  # pylint: disable=import-outside-toplevel
    from pathlib import Path  # pylint: disable=import-outside-toplevel

    parser = argparse.ArgumentParser(description="Disc Golf Throw Monitor")
    parser.add_argument("--port", "-p", help="Serial port (auto-detect if not specified)")
    parser.add_argument("--baud", "-b", type=int, default=BWT901Sensor.DEFAULT_BAUD,
                        help=f"Baud rate (default: {BWT901Sensor.DEFAULT_BAUD})")
    parser.add_argument("--live", "-l", action="store_true", help="Show live spin rate")
    parser.add_argument("--show-raw", action="store_true", help="Print every decoded sensor frame")
    parser.add_argument("--debug", "-d", action="store_true", help="Enable debug logging")
    parser.add_argument("--rearm", action="store_true", help="Re-arm detection after each throw")
    parser.add_argument("--simulate-only", action="store_true",
                        help="Simulate the reference throw without a sensor and exit")
    parser.add_argument("--output", "-o", help="Write the trajectory table (x;y;z) to this file")
    parser.add_argument("--log-dir", help="Directory for session logs (default: ~/discflight_sessions)")
    parser.add_argument("--session-location", default="field", help="Location identifier for session logs")
    parser.add_argument("--no-logging", action="store_true", help="Disable session logging")
    add_config_arguments(parser)
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if args.show_raw:
        set_show_raw_readings(True)

    print("=" * 50)
    print("  DiscFlight - Disc Golf Throw Monitor")
    print("  Using WitMotion BWT901 IMU")
    print("=" * 50)
    print()

    try:
        detector_config, disc_params, sim_config = configs_from_args(args)
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    def write_output(trajectory: Trajectory):
        if args.output:
            Path(args.output).write_text(trajectory.to_table(count=sim_config.output_points))
            print(f"Trajectory written to: {args.output}")

    if args.simulate_only:
        sim_config.spin_from_sensor = False
        state = initial_state(DEMO_POSITION, DEMO_VELOCITY, DEMO_ATTITUDE_DEG)
        trajectory = FlightSimulator(disc_params).simulate(state, sim_config.dt, sim_config.total_time)
        print_trajectory(trajectory)
        write_output(trajectory)
        if not args.output:
            print(trajectory.to_table(count=sim_config.output_points))
        return 0

    if args.no_logging:
        init_session_logger(enabled=False)
    else:
        init_session_logger(
            log_dir=Path(args.log_dir) if args.log_dir else None,
            location=args.session_location,
        )

    try:
        with ThrowMonitor(
            port=args.port,
            baud=args.baud,
            detector_config=detector_config,
            disc_params=disc_params,
            sim_config=sim_config,
            rearm=args.rearm,
        ) as monitor:
            print(f"Connected to: {monitor.sensor.port}")
            session_logger = get_session_logger()
            if session_logger:
                session_logger.start_session(
                    sensor_port=monitor.sensor.port,
                    baud=args.baud,
                    config=monitor.config_dict(),
                )

            print("Ready! Throw when ready...")
            print("Press Ctrl+C to stop")
            print()

            def on_state(state):
                print(f"  [{state.value.upper()}]")

            def on_trajectory(event, trajectory):
                vx, vy, vz = event.release_velocity
                print(f"  Release speed: {event.release_speed:.1f} m/s ({vx:+.1f}, {vy:+.1f}, {vz:+.1f})")
                print_trajectory(trajectory)
                write_output(trajectory)

            def on_live(sample):
                if args.live:
                    print(f"  [wz {sample.wz:+8.1f} deg/s]", end="\r")

            def on_connection(status, message):
                if status is ConnectionStatus.LOST:
                    print(f"\nSensor link lost: {message}")

            monitor.start(
                trajectory_callback=on_trajectory,
                state_callback=on_state,
                live_callback=on_live,
                connection_callback=on_connection,
            )

            try:
                while True:
                    time.sleep(0.1)
            except KeyboardInterrupt:
                print("\n")
                stats = monitor.get_session_stats()
                if stats["throw_count"] > 0:
                    print("Session Summary:")
                    print(f"  Throws: {stats['throw_count']}")
                    print(f"  Avg Release Speed: {stats['avg_release_speed']:.1f} m/s")
                    print(f"  Max Range: {stats['max_range']:.1f} m")
                print(f"  Samples dropped by the tick loop: {stats['samples_overwritten']}")
                print("\nGoodbye!")

    except ConnectionError as e:
        print(f"Error: {e}")
        print("\nMake sure the BWT901 is connected via USB.")
        return 1
    except Exception as e:
        print(f"Error: {e}")
        return 1

    return 0


if __name__ == "__main__":
    exit(main())
