"""
WebSocket server for DiscFlight clients.

Broadcasts throw state, release data and simulated trajectories to web
clients via Flask-SocketIO. The browser UI is a separate client of this
API and is not served from here.
"""

import logging
import math
import random
import statistics
import time
from typing import List, Optional, Tuple

from flask import Flask, Response, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

from .bwt901 import ConnectionStatus, InertialSample, set_show_raw_readings
from .detection import ReleaseEvent, ThrowState
from .flight import (
    DEMO_ATTITUDE_DEG,
    DEMO_VELOCITY,
    DiscAerodynamicParameters,
    SimulationConfig,
    Trajectory,
    simulate_release,
)
from .session_logger import get_session_logger, init_session_logger
from .throw_monitor import ThrowMonitor, add_config_arguments, configs_from_args

logger = logging.getLogger(__name__)


app = Flask(__name__, static_folder=None)
CORS(app)
socketio = SocketIO(app, cors_allowed_origins="*", async_mode="threading")

# Global state
monitor: Optional["ThrowMonitor | MockThrowMonitor"] = None
mock_mode: bool = False
connection_status: str = ConnectionStatus.DISCONNECTED.value


def release_to_dict(event: ReleaseEvent) -> dict:
    data = event.to_dict()
    data["attitude_deg"] = list(event.attitude_deg)
    return data


def trajectory_payload(event: Optional[ReleaseEvent], trajectory: Trajectory, points: int) -> dict:
    return {
        "release": release_to_dict(event) if event else None,
        "trajectory": trajectory.to_dict(points),
    }


@app.route("/api/status")
def api_status():
    """Current monitor state as JSON."""
    if not monitor:
        return jsonify({"running": False, "mock_mode": mock_mode, "connection": connection_status})
    return jsonify({
        "running": True,
        "mock_mode": mock_mode,
        "connection": connection_status,
        "state": monitor.state.value,
        "stats": monitor.get_session_stats(),
    })


@app.route("/api/trajectory.txt")
def api_trajectory():
    """Latest trajectory as an x;y;z table."""
    if not monitor or monitor.last_trajectory is None:
        return Response("No trajectory yet\n", status=404, mimetype="text/plain")
    points = monitor.sim_config.output_points
    return Response(monitor.last_trajectory.to_table(count=points), mimetype="text/plain")


@socketio.on("connect")
def handle_connect():
    """Handle client connection."""
    print("Client connected")
    if monitor:
        socketio.emit("session_state", session_state())


@socketio.on("disconnect")
def handle_disconnect():
    """Handle client disconnection."""
    print("Client disconnected")


def session_state() -> dict:
    points = monitor.sim_config.output_points
    return {
        "stats": monitor.get_session_stats(),
        "throws": [trajectory_payload(e, t, points) for e, t in monitor.get_releases()],
        "state": monitor.state.value,
        "mock_mode": mock_mode,
        "connection": connection_status,
    }


@socketio.on("get_session")
def handle_get_session():
    """Get current session data."""
    if monitor:
        socketio.emit("session_state", session_state())


@socketio.on("clear_session")
def handle_clear_session():
    """Clear all recorded throws."""
    if monitor:
        monitor.clear_session()
        socketio.emit("session_cleared")


@socketio.on("reset_detection")
def handle_reset_detection():
    """Re-arm the detector for the next throw."""
    if monitor:
        monitor.reset()
        socketio.emit("throw_state", {"state": monitor.state.value})


@socketio.on("simulate_throw")
def handle_simulate_throw(data=None):
    """Simulate a throw (only works in mock mode)."""
    if not (monitor and isinstance(monitor, MockThrowMonitor)):
        return

    speed = None
    if data is not None:
        if not isinstance(data, dict):
            logger.warning(f"Ignoring simulate_throw with non-object payload: {data!r}")
            return
        speed = data.get("speed")

    if speed is not None:
        try:
            speed = float(speed)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring simulate_throw with non-numeric speed: {speed!r}")
            return
        if not math.isfinite(speed) or speed <= 0:
            logger.warning(f"Ignoring simulate_throw with out-of-range speed: {speed}")
            return

    monitor.simulate_throw(speed=speed)


def on_state_changed(state: ThrowState):
    """Callback for detector transitions."""
    socketio.emit("throw_state", {"state": state.value})


def on_release(event: ReleaseEvent):
    """Callback when a throw completes, before simulation."""
    print(f"[RELEASE] {event.release_speed:.1f} m/s")
    socketio.emit("release", {"release": release_to_dict(event)})


def on_trajectory(event: ReleaseEvent, trajectory: Trajectory):
    """Callback with the simulated flight - emit to all clients."""
    try:
        payload = trajectory_payload(event, trajectory, monitor.sim_config.output_points)
        payload["stats"] = monitor.get_session_stats() if monitor else {}
        socketio.emit("trajectory", payload)
        print(f"[FLIGHT] Range: {trajectory.max_range:.1f} m, Apex: {trajectory.apex:.2f} m, "
              f"Time: {trajectory.flight_time:.2f} s")
    except Exception as e:
        print(f"[ERROR] Failed to emit trajectory: {e}")


def on_connection_status(status: ConnectionStatus, message: str):
    """Callback for sensor link changes."""
    global connection_status  # pylint: disable=global-statement
    connection_status = status.value
    socketio.emit("connection_status", {"status": status.value, "message": message})


def on_live_sample(sample: InertialSample):
    """Throttled live spin-rate feed for the UI."""
    now = time.monotonic()
    if now - on_live_sample.last_emit < 0.1:
        return
    on_live_sample.last_emit = now
    socketio.emit("live_sample", {"wz": sample.wz, "roll": sample.roll, "pitch": sample.pitch, "yaw": sample.yaw})


on_live_sample.last_emit = 0.0


def start_monitor(
    port: Optional[str] = None,
    baud: int = 115200,
    mock: bool = False,
    detector_config=None,
    disc_params: Optional[DiscAerodynamicParameters] = None,
    sim_config: Optional[SimulationConfig] = None,
    rearm: bool = True,
):
    """
    Start the throw monitor.

    Args:
        port: Serial port for the sensor
        baud: Serial baud rate
        mock: Run in mock mode without a sensor
        detector_config: Detection thresholds
        disc_params: Disc constants
        sim_config: Simulation settings
        rearm: Re-arm detection after each throw
    """
    global monitor, mock_mode  # pylint: disable=global-statement

    if monitor is not None:
        print("[MONITOR] Stopping existing monitor before starting new one")
        stop_monitor()

    mock_mode = mock
    if mock:
        monitor = MockThrowMonitor(disc_params=disc_params, sim_config=sim_config)
    else:
        monitor = ThrowMonitor(
            port=port,
            baud=baud,
            detector_config=detector_config,
            disc_params=disc_params,
            sim_config=sim_config,
            rearm=rearm,
        )

    monitor.connect()

    session_logger = get_session_logger()
    if session_logger and not mock:
        session_logger.start_session(
            sensor_port=monitor.sensor.port,
            baud=baud,
            mock=mock,
            config=monitor.config_dict(),
        )

    monitor.start(
        release_callback=on_release,
        trajectory_callback=on_trajectory,
        state_callback=on_state_changed,
        live_callback=on_live_sample,
        connection_callback=on_connection_status,
    )


def stop_monitor():
    """Stop the throw monitor."""
    global monitor  # pylint: disable=global-statement

    if monitor:
        monitor.disconnect()
        monitor = None


class MockThrowMonitor:
    """Mock throw monitor for UI development without a sensor."""

    def __init__(
        self,
        disc_params: Optional[DiscAerodynamicParameters] = None,
        sim_config: Optional[SimulationConfig] = None,
    ):
        """Initialize mock monitor."""
        self.disc_params = disc_params or DiscAerodynamicParameters()
        self.sim_config = sim_config or SimulationConfig()
        self._releases: List[Tuple[ReleaseEvent, Trajectory]] = []
        self._state = ThrowState.IDLE
        self._running = False
        self._release_callback = None
        self._trajectory_callback = None
        self._state_callback = None
        self._last_trajectory: Optional[Trajectory] = None

    @property
    def state(self) -> ThrowState:
        return self._state

    @property
    def last_trajectory(self) -> Optional[Trajectory]:
        return self._last_trajectory

    def connect(self):
        """Connect to mock sensor (no-op)."""
        return True

    def disconnect(self):
        """Disconnect from mock sensor."""
        self.stop()

    def start(self, release_callback=None, trajectory_callback=None, state_callback=None,
              live_callback=None, connection_callback=None):  # pylint: disable=unused-argument
        """Start mock monitoring."""
        self._release_callback = release_callback
        self._trajectory_callback = trajectory_callback
        self._state_callback = state_callback
        self._running = True
        if connection_callback:
            connection_callback(ConnectionStatus.CONNECTED, "Mock sensor")
        print("Mock monitor started - simulate throws via WebSocket")

    def stop(self):
        """Stop mock monitoring."""
        self._running = False

    def reset(self):
        self._set_state(ThrowState.IDLE)

    def _set_state(self, state: ThrowState):
        self._state = state
        if self._state_callback:
            self._state_callback(state)

    def simulate_throw(self, speed: Optional[float] = None) -> Tuple[ReleaseEvent, Trajectory]:
        """Simulate a throw with jitter around the reference release."""
        ref_speed = math.hypot(*DEMO_VELOCITY)
        if speed is None:
            speed = random.gauss(ref_speed, 2.5)
            speed = max(8.0, min(35.0, speed))

        scale = speed / ref_speed
        velocity = (
            DEMO_VELOCITY[0] * scale,
            random.uniform(-1.0, 1.5),
            DEMO_VELOCITY[2] * scale + random.uniform(-1.5, 1.5),
        )
        roll, pitch, yaw = (a + random.uniform(-5.0, 5.0) for a in DEMO_ATTITUDE_DEG)
        spin_dps = random.gauss(1300.0, 150.0)

        sample = InertialSample(
            timestamp=time.monotonic(),
            ax=0.0, ay=0.0, az=9.82,
            wx=0.0, wy=0.0, wz=random.uniform(-100.0, 100.0),
            roll=roll, pitch=pitch, yaw=yaw,
        )
        duration = random.uniform(0.4, 0.9)
        event = ReleaseEvent(
            timestamp=sample.timestamp,
            duration_since_threshold=duration,
            release_sample=sample,
            release_velocity=velocity,
            throw_start_time=sample.timestamp - duration - 0.1,
            flight_end_time=sample.timestamp,
            spin_center_dps=spin_dps,
        )

        for state in (ThrowState.THROWN, ThrowState.IN_FLIGHT, ThrowState.DONE):
            self._set_state(state)
        if self._release_callback:
            self._release_callback(event)

        trajectory = simulate_release(event, self.disc_params, self.sim_config)
        self._last_trajectory = trajectory
        self._releases.append((event, trajectory))

        if self._trajectory_callback:
            self._trajectory_callback(event, trajectory)

        self.reset()
        return event, trajectory

    def get_releases(self) -> List[Tuple[ReleaseEvent, Trajectory]]:
        """Get all recorded throws."""
        return self._releases.copy()

    def get_session_stats(self) -> dict:
        """Get session statistics."""
        if not self._releases:
            return {
                "throw_count": 0,
                "avg_release_speed": 0,
                "max_release_speed": 0,
                "avg_range": 0,
                "max_range": 0,
                "avg_flight_time": 0,
            }

        speeds = [e.release_speed for e, _ in self._releases]
        ranges = [t.max_range for _, t in self._releases]
        return {
            "throw_count": len(self._releases),
            "avg_release_speed": statistics.mean(speeds),
            "max_release_speed": max(speeds),
            "avg_range": statistics.mean(ranges),
            "max_range": max(ranges),
            "avg_flight_time": statistics.mean([t.flight_time for _, t in self._releases]),
        }

    def clear_session(self):
        """Clear all recorded throws."""
        self._releases = []
        self._last_trajectory = None

    def config_dict(self) -> dict:
        return {"disc": self.disc_params.to_dict(), "mock": True}


def main():
    """Run the server."""
    import argparse  # pylint: disable=import-outside-toplevel
    from pathlib import Path  # pylint: disable=import-outside-toplevel

    parser = argparse.ArgumentParser(description="DiscFlight UI Server")
    parser.add_argument("--port", "-p", help="Serial port for the sensor")
    parser.add_argument("--baud", "-b", type=int, default=115200, help="Baud rate (default: 115200)")
    parser.add_argument(
        "--mock", "-m", action="store_true", help="Run in mock mode without a sensor"
    )
    parser.add_argument(
        "--host", default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)"
    )
    parser.add_argument(
        "--web-port", type=int, default=8080, help="Web server port (default: 8080)"
    )
    parser.add_argument("--debug", "-d", action="store_true", help="Enable debug logging")
    parser.add_argument("--sensor-log", action="store_true", help="Log raw sensor frames (Python logging)")
    parser.add_argument("--show-raw", action="store_true", help="Show decoded sensor frames in console")
    parser.add_argument("--no-rearm", action="store_true", help="Stop detecting after the first throw")
    parser.add_argument(
        "--session-location", "-l", default="field",
        help="Location identifier for session logs (e.g., 'field', 'course')"
    )
    parser.add_argument(
        "--log-dir",
        help="Directory for session logs (default: ~/discflight_sessions)"
    )
    parser.add_argument(
        "--no-logging", action="store_true",
        help="Disable session logging"
    )
    add_config_arguments(parser)
    args = parser.parse_args()

    print("=" * 50)
    print("  DiscFlight UI Server")
    print("=" * 50)
    print()

    if not args.no_logging and not args.mock:
        log_dir = Path(args.log_dir) if args.log_dir else None
        init_session_logger(
            log_dir=log_dir,
            location=args.session_location,
            enabled=True
        )
        print(f"Session logging enabled (location: {args.session_location})")
    else:
        init_session_logger(enabled=False)
        if args.no_logging:
            print("Session logging DISABLED")

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if args.sensor_log:
        logging.getLogger("bwt901").setLevel(logging.DEBUG)
        logging.getLogger("bwt901.raw").setLevel(logging.DEBUG)
        print("Sensor raw logging ENABLED - all frames will be logged")

    if args.show_raw:
        set_show_raw_readings(True)
        print("Raw sensor frame display ENABLED")

    detector_config, disc_params, sim_config = configs_from_args(args)

    start_monitor(
        port=args.port,
        baud=args.baud,
        mock=args.mock,
        detector_config=detector_config,
        disc_params=disc_params,
        sim_config=sim_config,
        rearm=not args.no_rearm,
    )

    if args.mock:
        print("Running in MOCK mode - no sensor required")
        print("Simulate throws via WebSocket")

    print(f"Server starting at http://{args.host}:{args.web_port}")
    print()

    try:
        # Flask reloader stays off so two processes never share the serial port
        socketio.run(app, host=args.host, port=args.web_port, debug=False, allow_unsafe_werkzeug=True)
    finally:
        stop_monitor()


if __name__ == "__main__":
    main()
