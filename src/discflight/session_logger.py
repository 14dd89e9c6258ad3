"""
Session logging for discflight field testing.

Provides structured logging of throw states, releases, and simulated
trajectories for analysis and debugging.
"""

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from .detection.types import ReleaseEvent, ThrowState
from .flight.trajectory import Trajectory


@dataclass
class SessionMetadata:
    """Metadata about a logging session."""
    session_id: str
    start_time: str
    sensor_port: Optional[str]
    baud: Optional[int]
    mock: bool
    config: Dict[str, Any]


class SessionLogger:
    """
    Session logger for throw capture.

    Creates structured log files with semantic naming:
    - session_YYYYMMDD_HHMMSS_<location>.jsonl - Main session log (JSON lines)
    - imu_raw_YYYYMMDD_HHMMSS.log - Raw sensor frames

    Log entry types:
    - session_start: Session metadata
    - session_end: Session summary
    - throw_state: Detector state transition
    - release: A throw completed
    - trajectory: Simulated flight for a release
    - config_change: Detector or disc configuration changed
    - error: Any errors during processing
    """

    DEFAULT_LOG_DIR = Path.home() / "discflight_sessions"

    def __init__(
        self,
        log_dir: Optional[Path] = None,
        location: str = "field",
        enabled: bool = True
    ):
        """
        Initialize session logger.

        Args:
            log_dir: Directory for log files (default: ~/discflight_sessions)
            location: Location identifier for file naming (e.g., "field", "course")
            enabled: Whether logging is enabled
        """
        self.log_dir = Path(log_dir) if log_dir else self.DEFAULT_LOG_DIR
        self.location = location
        self.enabled = enabled

        self._session_id: Optional[str] = None
        self._session_file: Optional[Any] = None
        self._session_path: Optional[Path] = None
        self._raw_path: Optional[Path] = None

        self._stats = {
            "state_changes": 0,
            "releases": 0,
            "trajectories": 0,
            "errors": 0,
        }

        self._raw_logger = logging.getLogger("bwt901.raw")

    def start_session(
        self,
        sensor_port: Optional[str] = None,
        baud: Optional[int] = None,
        mock: bool = False,
        config: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Start a new logging session.

        Args:
            sensor_port: Serial port for the IMU
            baud: Serial baud rate
            mock: Whether throws are simulated
            config: Current detector/disc/simulation configuration

        Returns:
            Session ID
        """
        if not self.enabled:
            return ""

        self.log_dir.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now()
        self._session_id = timestamp.strftime("%Y%m%d_%H%M%S")

        self._session_path = self.log_dir / f"session_{self._session_id}_{self.location}.jsonl"
        self._raw_path = self.log_dir / f"imu_raw_{self._session_id}.log"

        self._session_file = open(self._session_path, "w")
        self._setup_raw_logging()

        self._stats = {k: 0 for k in self._stats}

        metadata = SessionMetadata(
            session_id=self._session_id,
            start_time=timestamp.isoformat(),
            sensor_port=sensor_port,
            baud=baud,
            mock=mock,
            config=config or {}
        )
        self._write_entry("session_start", asdict(metadata))

        print(f"[SESSION] Started logging: {self._session_path}")
        print(f"[SESSION] Raw IMU log: {self._raw_path}")

        return self._session_id

    def _setup_raw_logging(self):
        """Route the raw frame logger to the session's raw file."""
        self._remove_raw_handlers()

        file_handler = logging.FileHandler(self._raw_path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s.%(msecs)03d - %(message)s', datefmt='%H:%M:%S')
        )
        self._raw_logger.addHandler(file_handler)
        self._raw_logger.setLevel(logging.DEBUG)

    def _remove_raw_handlers(self):
        for handler in self._raw_logger.handlers[:]:
            if isinstance(handler, logging.FileHandler):
                handler.close()
                self._raw_logger.removeHandler(handler)

    def end_session(self):
        """End the current logging session and write summary."""
        if not self.enabled or not self._session_file:
            return

        summary = {
            "end_time": datetime.now().isoformat(),
            "stats": self._stats.copy(),
        }
        self._write_entry("session_end", summary)

        self._session_file.close()
        self._session_file = None
        self._remove_raw_handlers()

        print(f"[SESSION] Ended. Total releases: {self._stats['releases']}")
        print(f"[SESSION] Logs saved to: {self._session_path}")

    def _write_entry(self, entry_type: str, data: Dict[str, Any]):
        """Write a log entry to the session file."""
        if not self._session_file:
            return

        entry = {
            "ts": datetime.now().isoformat(),
            "type": entry_type,
            **data
        }
        self._session_file.write(json.dumps(entry) + "\n")
        self._session_file.flush()

    def log_state(self, state: ThrowState, detector_time: Optional[float] = None):
        """Log a detector state transition."""
        if not self.enabled:
            return

        self._stats["state_changes"] += 1
        self._write_entry("throw_state", {
            "state": state.value,
            "detector_time": detector_time,
        })

    def log_release(self, event: ReleaseEvent):
        """Log a completed throw with its release conditions."""
        if not self.enabled:
            return

        self._stats["releases"] += 1
        self._write_entry("release", {
            "release_number": self._stats["releases"],
            **event.to_dict(),
        })

    def log_trajectory(self, trajectory: Trajectory, points: Optional[int] = None):
        """
        Log a simulated trajectory.

        Args:
            trajectory: Simulator output
            points: Resample to this many positions (full resolution if None)
        """
        if not self.enabled:
            return

        self._stats["trajectories"] += 1
        self._write_entry("trajectory", {
            "release_number": self._stats["releases"],
            **trajectory.to_dict(points),
        })

    def log_config_change(self, config: Dict[str, Any], source: str = "user"):
        """Log a configuration change."""
        if not self.enabled:
            return

        self._write_entry("config_change", {
            "config": config,
            "source": source,
        })

    def log_error(self, error: str, context: Optional[Dict] = None):
        """Log an error."""
        if not self.enabled:
            return

        self._stats["errors"] += 1
        self._write_entry("error", {
            "error": error,
            "context": context or {},
        })

    @property
    def session_path(self) -> Optional[Path]:
        return self._session_path

    @property
    def raw_path(self) -> Optional[Path]:
        return self._raw_path

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def stats(self) -> Dict[str, int]:
        """Get current session statistics."""
        return self._stats.copy()


# Global session logger instance
_session_logger: Optional[SessionLogger] = None


def get_session_logger() -> Optional[SessionLogger]:
    """Get the global session logger instance."""
    return _session_logger


def init_session_logger(
    log_dir: Optional[Path] = None,
    location: str = "field",
    enabled: bool = True
) -> SessionLogger:
    """
    Initialize and return the global session logger.

    Args:
        log_dir: Directory for log files
        location: Location identifier
        enabled: Whether logging is enabled

    Returns:
        SessionLogger instance
    """
    global _session_logger
    _session_logger = SessionLogger(log_dir=log_dir, location=location, enabled=enabled)
    return _session_logger
