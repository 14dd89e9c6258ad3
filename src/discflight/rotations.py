"""
Rotation matrices shared by the velocity integrator and the flight model.

All matrices are right-handed, active rotations; angles in radians unless
a function name says otherwise.
"""

import math

import numpy as np


def rot_x(angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    return np.array([
        [1.0, 0.0, 0.0],
        [0.0, c, -s],
        [0.0, s, c],
    ])


def rot_y(angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    return np.array([
        [c, 0.0, s],
        [0.0, 1.0, 0.0],
        [-s, 0.0, c],
    ])


def rot_z(angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    return np.array([
        [c, -s, 0.0],
        [s, c, 0.0],
        [0.0, 0.0, 1.0],
    ])


def body_to_world(roll: float, pitch: float, yaw: float) -> np.ndarray:
    """
    Disc body-to-world rotation, ZYX convention: R = Rz(yaw) * Ry(pitch) * Rx(roll).

    Roll is applied first, then pitch, then yaw.
    """
    return rot_z(yaw) @ rot_y(pitch) @ rot_x(roll)


def sensor_to_world(roll_deg: float, pitch_deg: float, yaw_deg: float) -> np.ndarray:
    """
    Sensor-to-world rotation from the IMU's reported orientation (degrees).

    The angles are composed as Euler(pitch, yaw, roll) about (x, y, z):
    R = Ry(yaw) * Rx(pitch) * Rz(roll), so roll about z is applied first,
    then pitch about x, then yaw about the vertical y axis.
    """
    return (
        rot_y(math.radians(yaw_deg))
        @ rot_x(math.radians(pitch_deg))
        @ rot_z(math.radians(roll_deg))
    )
