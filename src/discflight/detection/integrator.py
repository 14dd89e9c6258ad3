"""
Release-velocity estimation by integrating world-frame acceleration.

The integrator is armed while the detector is in THROWN or IN_FLIGHT.
Each armed tick rotates the sample's body-frame acceleration into the world
frame using the sensor's reported orientation, removes gravity along the
world vertical (y), and accumulates v += a * dt.
"""

import logging
from typing import Tuple

import numpy as np

from ..bwt901 import InertialSample
from ..rotations import sensor_to_world

logger = logging.getLogger("discflight.detection.integrator")


class VelocityIntegrator:
    """Accumulates world-frame velocity from IMU samples."""

    def __init__(self, gravity: float = 9.81):
        self.gravity = gravity
        self._velocity = np.zeros(3)
        self._last_acceleration = np.zeros(3)
        self._armed = False
        self._elapsed = 0.0

    @property
    def armed(self) -> bool:
        return self._armed

    @property
    def velocity(self) -> np.ndarray:
        """Accumulated world-frame velocity (copy)."""
        return self._velocity.copy()

    @property
    def velocity_tuple(self) -> Tuple[float, float, float]:
        return (float(self._velocity[0]), float(self._velocity[1]), float(self._velocity[2]))

    @property
    def last_acceleration(self) -> np.ndarray:
        """Gravity-compensated world acceleration from the last update (copy)."""
        return self._last_acceleration.copy()

    @property
    def elapsed(self) -> float:
        """Seconds integrated since the integrator was armed."""
        return self._elapsed

    def arm(self):
        """Zero the velocity and start integrating."""
        self._velocity = np.zeros(3)
        self._last_acceleration = np.zeros(3)
        self._elapsed = 0.0
        self._armed = True

    def disarm(self):
        """Stop integrating, keeping the accumulated velocity."""
        self._armed = False

    def reset(self):
        self.disarm()
        self._velocity = np.zeros(3)
        self._last_acceleration = np.zeros(3)
        self._elapsed = 0.0

    def world_acceleration(self, sample: InertialSample) -> np.ndarray:
        """Body acceleration rotated to world frame with gravity removed."""
        rotation = sensor_to_world(sample.roll, sample.pitch, sample.yaw)
        accel_world = rotation @ np.array(sample.linear_acceleration, dtype=float)
        accel_world[1] -= self.gravity
        return accel_world

    def update(self, sample: InertialSample, dt: float) -> np.ndarray:
        """
        Integrate one tick.

        Args:
            sample: Sample active during this tick
            dt: Wall-clock seconds since the previous tick

        Returns:
            The updated velocity (copy); unchanged when disarmed or dt <= 0
        """
        if not self._armed or dt <= 0:
            return self.velocity

        accel_world = self.world_acceleration(sample)
        self._velocity += accel_world * dt
        self._last_acceleration = accel_world
        self._elapsed += dt

        logger.debug(
            f"a_world=({accel_world[0]:+.2f}, {accel_world[1]:+.2f}, {accel_world[2]:+.2f}) "
            f"v=({self._velocity[0]:+.2f}, {self._velocity[1]:+.2f}, {self._velocity[2]:+.2f}) "
            f"dt={dt * 1000:.1f}ms"
        )
        return self.velocity
