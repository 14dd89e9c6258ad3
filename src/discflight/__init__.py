"""DiscFlight - disc golf throw capture and flight simulation using a BWT901 IMU."""

__version__ = "0.1.0"

from .bwt901 import BWT901Sensor, ConnectionStatus, FrameDecoder, InertialSample, decode_frame
from .detection import DetectorConfig, ReleaseEvent, ThrowDetector, ThrowState
from .flight import DegenerateDiscError, DiscAerodynamicParameters, FlightSimulator, SimulationConfig, Trajectory
from .throw_monitor import ThrowMonitor

__all__ = [
    "BWT901Sensor",
    "ConnectionStatus",
    "FrameDecoder",
    "InertialSample",
    "decode_frame",
    "DetectorConfig",
    "ReleaseEvent",
    "ThrowDetector",
    "ThrowState",
    "DegenerateDiscError",
    "DiscAerodynamicParameters",
    "FlightSimulator",
    "SimulationConfig",
    "Trajectory",
    "ThrowMonitor",
]
