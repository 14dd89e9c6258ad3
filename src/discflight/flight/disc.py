"""
Rigid-body disc flight model.

Forward-Euler integration of a flying disc under gravity and constant-
coefficient aerodynamics. World frame: x downrange, y up, z lateral.

Per step:
1. R = Rz(yaw) * Ry(pitch) * Rx(roll) (body to world)
2. v_body = R^T v; angle of attack alpha = atan2(-v_body.z, v_body.x)
3. q = 0.5 * rho * |v|^2; F_drag = q*A*Cd, F_lift = q*A*Cl, M = q*A*d*Cm
4. a = (R (-F_drag, 0, F_lift) + (0, -m*g, 0)) / m
5. dRoll = -M / (spin * (I_xy - I_z))
6. position += v*dt, velocity += a*dt, roll += dRoll*dt

Pitch and yaw are held constant, and alpha is reported but does not feed
the force magnitudes.
"""

import logging
import math
from dataclasses import dataclass, fields
from typing import Any, Dict, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from ..detection.types import ReleaseEvent
from ..rotations import body_to_world
from .trajectory import Trajectory

logger = logging.getLogger("discflight.flight")


class DegenerateDiscError(ValueError):
    """Disc parameters that would make the flight equations singular."""


@dataclass(frozen=True)
class DiscAerodynamicParameters:
    """
    Physical and aerodynamic constants for one simulation run.

    Defaults describe a 175 g, 20.5 cm golf disc.

    Attributes:
        mass: Disc mass (kg)
        diameter: Disc diameter (m)
        i_xy: Moment of inertia about an in-plane axis (kg m^2)
        i_z: Moment of inertia about the spin axis (kg m^2)
        cd: Drag coefficient
        cl: Lift coefficient
        cm: Pitching/rolling moment coefficient
        spin: Spin rate (rad/s)
        air_density: kg/m^3
        gravity: m/s^2
    """
    mass: float = 0.175
    diameter: float = 0.205
    i_xy: float = 0.002
    i_z: float = 0.003
    cd: float = 0.08
    cl: float = 0.15
    cm: float = 0.01
    spin: float = 20.0
    air_density: float = 1.225
    gravity: float = 9.81

    @property
    def area(self) -> float:
        """Planform area pi*d^2/4 (m^2)."""
        return math.pi * self.diameter * self.diameter / 4.0

    def validate(self):
        """
        Reject parameter sets the model cannot integrate.

        Raises:
            DegenerateDiscError: zero spin, I_xy == I_z, or non-positive mass/diameter
        """
        if self.mass <= 0:
            raise DegenerateDiscError(f"mass must be positive, got {self.mass}")
        if self.diameter <= 0:
            raise DegenerateDiscError(f"diameter must be positive, got {self.diameter}")
        if self.spin == 0:
            raise DegenerateDiscError(
                "spin is zero: roll rate -M / (spin * (I_xy - I_z)) is undefined"
            )
        if self.i_xy == self.i_z:
            raise DegenerateDiscError(
                f"I_xy equals I_z ({self.i_xy}): roll rate -M / (spin * (I_xy - I_z)) is undefined"
            )

    def with_spin(self, spin: float) -> "DiscAerodynamicParameters":
        return DiscAerodynamicParameters(**{**self.to_dict(), "spin": spin})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DiscAerodynamicParameters":
        """Build parameters from a dict, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown disc parameters: {sorted(unknown)}")
        return cls(**{k: float(v) for k, v in data.items()})

    def to_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class SimulationConfig:
    """Integration and release settings."""

    dt: float = 0.01                 # Integration step (s)
    total_time: float = 5.0          # Time budget (s)
    release_position: Tuple[float, float, float] = (0.0, 1.5, 0.0)  # y is height (m)
    output_points: int = 100         # Points handed to the presentation layer
    spin_from_sensor: bool = False   # Use the measured spin center instead of DiscAerodynamicParameters.spin

    def __post_init__(self):
        if self.dt <= 0:
            raise DegenerateDiscError(f"dt must be positive, got {self.dt}")
        if self.total_time <= 0:
            raise DegenerateDiscError(f"total_time must be positive, got {self.total_time}")
        if self.output_points < 2:
            raise ValueError("output_points must be at least 2")
        if len(self.release_position) != 3:
            raise ValueError(f"release_position needs x, y, z, got {self.release_position}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimulationConfig":
        """Build settings from a dict, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown simulation settings: {sorted(unknown)}")
        data = dict(data)
        if "release_position" in data:
            data["release_position"] = tuple(float(v) for v in data["release_position"])
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["release_position"] = list(self.release_position)
        return data


@dataclass
class DiscState:
    """
    Disc state at one instant.

    Attributes:
        position: (x, y, z) in meters, y up
        velocity: (vx, vy, vz) in m/s
        attitude: (roll, pitch, yaw) in radians
        time: Seconds since release
    """
    position: np.ndarray
    velocity: np.ndarray
    attitude: np.ndarray
    time: float = 0.0

    def copy(self) -> "DiscState":
        return DiscState(
            position=self.position.copy(),
            velocity=self.velocity.copy(),
            attitude=self.attitude.copy(),
            time=self.time,
        )


class Derivatives(NamedTuple):
    """Result of one force evaluation."""
    acceleration: np.ndarray
    d_roll: float
    alpha: float


def initial_state(
    position: Sequence[float],
    velocity: Sequence[float],
    attitude_deg: Sequence[float],
) -> DiscState:
    """
    Build the release state; attitude is given in degrees and stored in radians.

    Args:
        position: Release position (m)
        velocity: Release velocity (m/s)
        attitude_deg: (roll, pitch, yaw) in degrees
    """
    return DiscState(
        position=np.array(position, dtype=float),
        velocity=np.array(velocity, dtype=float),
        attitude=np.radians(np.array(attitude_deg, dtype=float)),
    )


# Reference throw used by the CLI demo, the mock server and the tests
DEMO_POSITION = (0.0, 1.5, 0.0)
DEMO_VELOCITY = (23.2, 0.0, 6.2)
DEMO_ATTITUDE_DEG = (15.5, 21.8, -31.6)


def demo_initial_state() -> DiscState:
    return initial_state(DEMO_POSITION, DEMO_VELOCITY, DEMO_ATTITUDE_DEG)


class FlightSimulator:
    """
    Integrates disc flight from a release state.

    Example:
        sim = FlightSimulator(DiscAerodynamicParameters())
        trajectory = sim.simulate(demo_initial_state(), dt=0.01, total_time=5.0)
        print(trajectory.to_table())
    """

    def __init__(self, params: Optional[DiscAerodynamicParameters] = None):
        """
        Args:
            params: Disc constants (defaults if None)

        Raises:
            DegenerateDiscError: If the parameters make the roll equation singular
        """
        self.params = params or DiscAerodynamicParameters()
        self.params.validate()

    def derivatives(self, state: DiscState) -> Derivatives:
        """World acceleration, roll rate and angle of attack at `state`."""
        p = self.params
        roll, pitch, yaw = state.attitude
        rotation = body_to_world(roll, pitch, yaw)

        v_body = rotation.T @ state.velocity
        alpha = math.atan2(-v_body[2], v_body[0])

        speed_sq = float(state.velocity @ state.velocity)
        q = 0.5 * p.air_density * speed_sq

        f_drag = q * p.area * p.cd
        f_lift = q * p.area * p.cl
        moment = q * p.area * p.diameter * p.cm

        # Drag along -x, lift along +z in the disc frame
        f_aero_world = rotation @ np.array([-f_drag, 0.0, f_lift])
        f_gravity = np.array([0.0, -p.mass * p.gravity, 0.0])

        acceleration = (f_aero_world + f_gravity) / p.mass
        d_roll = -moment / (p.spin * (p.i_xy - p.i_z))

        return Derivatives(acceleration, d_roll, alpha)

    def step(self, state: DiscState, dt: float) -> Tuple[DiscState, Derivatives]:
        """One forward-Euler step; returns the new state and the derivatives used."""
        derivs = self.derivatives(state)
        next_state = DiscState(
            position=state.position + state.velocity * dt,
            velocity=state.velocity + derivs.acceleration * dt,
            attitude=np.array([
                state.attitude[0] + derivs.d_roll * dt,
                state.attitude[1],
                state.attitude[2],
            ]),
            time=state.time + dt,
        )
        return next_state, derivs

    def simulate(self, initial: DiscState, dt: float = 0.01, total_time: float = 5.0) -> Trajectory:
        """
        Integrate until ground contact or the time budget runs out.

        Args:
            initial: Release state (copied, not mutated)
            dt: Step size (s)
            total_time: Time budget (s)

        Returns:
            Trajectory with at most ceil(total_time / dt) states, the first being `initial`
        """
        if dt <= 0 or total_time <= 0:
            raise DegenerateDiscError(f"dt and total_time must be positive (dt={dt}, total_time={total_time})")

        steps = math.ceil(total_time / dt)
        current = initial.copy()
        states = [current]
        alphas = []

        for _ in range(1, steps):
            current, derivs = self.step(current, dt)
            states.append(current)
            alphas.append(derivs.alpha)
            if current.position[1] <= 0:
                break

        trajectory = Trajectory(states=states, dt=dt, alphas=alphas)
        logger.info(
            f"Simulated {len(states)} states: flight {trajectory.flight_time:.2f}s, "
            f"range {trajectory.max_range:.1f} m, apex {trajectory.apex:.2f} m"
            + ("" if trajectory.landed else " (time budget reached before landing)")
        )
        return trajectory


def simulate_release(
    event: ReleaseEvent,
    params: Optional[DiscAerodynamicParameters] = None,
    config: Optional[SimulationConfig] = None,
) -> Trajectory:
    """
    Run the flight model from a detected release.

    The release position comes from the config, the velocity from the
    integrator, and the attitude from the release sample's roll/pitch/yaw.

    Args:
        event: Release event from the detector
        params: Disc constants (defaults if None)
        config: Simulation settings (defaults if None)

    Returns:
        Full-resolution trajectory
    """
    params = params or DiscAerodynamicParameters()
    config = config or SimulationConfig()

    if config.spin_from_sensor and event.spin_rate_rad_s:
        params = params.with_spin(event.spin_rate_rad_s)

    state = initial_state(config.release_position, event.release_velocity, event.attitude_deg)
    return FlightSimulator(params).simulate(state, config.dt, config.total_time)
