"""
Disc flight simulation.

Usage:
    from discflight.flight import FlightSimulator, DiscAerodynamicParameters, demo_initial_state

    sim = FlightSimulator(DiscAerodynamicParameters())
    trajectory = sim.simulate(demo_initial_state(), dt=0.01, total_time=5.0)
    print(trajectory.to_table(count=100))
"""

from .trajectory import Trajectory
from .disc import (
    DEMO_ATTITUDE_DEG,
    DEMO_POSITION,
    DEMO_VELOCITY,
    DegenerateDiscError,
    Derivatives,
    DiscAerodynamicParameters,
    DiscState,
    FlightSimulator,
    SimulationConfig,
    demo_initial_state,
    initial_state,
    simulate_release,
)

__all__ = [
    # Parameters
    "DiscAerodynamicParameters",
    "SimulationConfig",
    "DegenerateDiscError",
    # State
    "DiscState",
    "Derivatives",
    "Trajectory",
    # Simulation
    "FlightSimulator",
    "initial_state",
    "simulate_release",
    "demo_initial_state",
    "DEMO_POSITION",
    "DEMO_VELOCITY",
    "DEMO_ATTITUDE_DEG",
]
