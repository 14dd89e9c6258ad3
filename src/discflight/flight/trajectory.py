"""
Simulated trajectory container.

Holds the full-resolution state sequence from FlightSimulator and derives
the summary numbers and presentation forms (resampled points and the
semicolon-delimited x;y;z table).
"""

import math
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

import numpy as np

if TYPE_CHECKING:
    from .disc import DiscState


class Trajectory:
    """
    Ordered disc states from release to ground contact (or time budget).

    Example:
        trajectory = simulator.simulate(state)
        print(f"{trajectory.max_range:.1f} m in {trajectory.flight_time:.2f}s")
        points = trajectory.resample(100)
    """

    def __init__(self, states: Sequence["DiscState"], dt: float, alphas: Optional[Sequence[float]] = None):
        if not states:
            raise ValueError("Trajectory needs at least one state")
        self.states: List["DiscState"] = list(states)
        self.dt = dt
        self.alphas: List[float] = list(alphas or [])

    def __len__(self) -> int:
        return len(self.states)

    def __iter__(self):
        return iter(self.states)

    def __getitem__(self, index):
        return self.states[index]

    @property
    def positions(self) -> np.ndarray:
        """(n, 3) array of positions, y up."""
        return np.array([s.position for s in self.states], dtype=float)

    @property
    def release_position(self) -> np.ndarray:
        return self.states[0].position.copy()

    @property
    def landing_position(self) -> np.ndarray:
        return self.states[-1].position.copy()

    @property
    def landed(self) -> bool:
        """True if the sequence ended on ground contact."""
        return len(self.states) > 1 and bool(self.states[-1].position[1] <= 0)

    @property
    def flight_time(self) -> float:
        return self.states[-1].time - self.states[0].time

    @property
    def max_range(self) -> float:
        """Largest horizontal (x, z) distance from the release point (m)."""
        pos = self.positions
        dx = pos[:, 0] - pos[0, 0]
        dz = pos[:, 2] - pos[0, 2]
        return float(np.max(np.hypot(dx, dz)))

    @property
    def apex(self) -> float:
        """Maximum height reached (m)."""
        return float(np.max(self.positions[:, 1]))

    @property
    def lateral_offset(self) -> float:
        """Final z offset from the release point (m)."""
        return float(self.states[-1].position[2] - self.states[0].position[2])

    def resample(self, count: int) -> List["DiscState"]:
        """
        Pick `count` states at evenly spaced indices.

        Index i maps to round(i / (count - 1) * (len - 1)); Python's round()
        rounds half to even.
        """
        if count < 1:
            raise ValueError("count must be at least 1")
        total = len(self.states)
        if count == 1:
            return [self.states[0]]
        picked = []
        for i in range(count):
            t_norm = i / (count - 1)
            picked.append(self.states[round(t_norm * (total - 1))])
        return picked

    def to_table(self, count: Optional[int] = None, precision: int = 4) -> str:
        """
        Render positions as text: header `x;y;z`, one `x;y;z` row per point.

        Args:
            count: Resample to this many points first (all states if None)
            precision: Decimal places per value
        """
        states = self.states if count is None else self.resample(count)
        lines = ["x;y;z"]
        for s in states:
            x, y, z = s.position
            lines.append(f"{x:.{precision}f};{y:.{precision}f};{z:.{precision}f}")
        return "\n".join(lines) + "\n"

    def summary(self) -> Dict[str, Any]:
        return {
            "points": len(self.states),
            "dt": self.dt,
            "flight_time": self.flight_time,
            "max_range": self.max_range,
            "apex": self.apex,
            "lateral_offset": self.lateral_offset,
            "landed": self.landed,
        }

    def to_dict(self, count: Optional[int] = None) -> Dict[str, Any]:
        """JSON-ready form; positions optionally resampled to `count` points."""
        states = self.states if count is None else self.resample(count)
        data = self.summary()
        data["positions"] = [[float(v) for v in s.position] for s in states]
        data["times"] = [float(s.time) for s in states]
        if self.alphas:
            data["max_alpha_deg"] = math.degrees(max(self.alphas, key=abs))
        return data
