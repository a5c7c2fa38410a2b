"""Angle-axis and quaternion rotation helpers for 3-vectors."""

from __future__ import annotations

import math
import sys
from typing import Sequence

import numpy as np

_EPSILON = sys.float_info.epsilon


def _as_vector(values: Sequence[float], size: int, name: str) -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.shape != (size,):
        raise ValueError(f"{name} must have {size} elements, got shape {array.shape}")
    return array


def dot_product(x: Sequence[float], y: Sequence[float]) -> float:
    """Dot product of two 3-vectors."""
    a = _as_vector(x, 3, "x")
    b = _as_vector(y, 3, "y")
    return float(a[0] * b[0] + a[1] * b[1] + a[2] * b[2])


def cross_product(x: Sequence[float], y: Sequence[float]) -> np.ndarray:
    """Cross product of two 3-vectors."""
    a = _as_vector(x, 3, "x")
    b = _as_vector(y, 3, "y")
    return np.array(
        [
            a[1] * b[2] - a[2] * b[1],
            a[2] * b[0] - a[0] * b[2],
            a[0] * b[1] - a[1] * b[0],
        ]
    )


def angle_axis_to_quaternion(angle_axis: Sequence[float]) -> np.ndarray:
    """Convert an angle-axis vector to a quaternion ``[w, x, y, z]``."""
    a = _as_vector(angle_axis, 3, "angle_axis")
    theta_squared = float(a @ a)
    if theta_squared > _EPSILON:
        theta = math.sqrt(theta_squared)
        half_theta = theta * 0.5
        k = math.sin(half_theta) / theta
        return np.array([math.cos(half_theta), a[0] * k, a[1] * k, a[2] * k])
    k = 0.5
    return np.array([1.0, a[0] * k, a[1] * k, a[2] * k])


def quaternion_to_angle_axis(quaternion: Sequence[float]) -> np.ndarray:
    """Convert a quaternion ``[w, x, y, z]`` to an angle-axis vector."""
    q = _as_vector(quaternion, 4, "quaternion")
    q1, q2, q3 = q[1], q[2], q[3]
    sin_squared_theta = float(q1 * q1 + q2 * q2 + q3 * q3)
    if sin_squared_theta > _EPSILON:
        sin_theta = math.sqrt(sin_squared_theta)
        cos_theta = float(q[0])
        if cos_theta < 0.0:
            two_theta = 2.0 * math.atan2(-sin_theta, -cos_theta)
        else:
            two_theta = 2.0 * math.atan2(sin_theta, cos_theta)
        k = two_theta / sin_theta
    else:
        k = 2.0
    return np.array([q1 * k, q2 * k, q3 * k])


def angle_axis_rotate_point(
    angle_axis: Sequence[float], point: Sequence[float]
) -> np.ndarray:
    """Rotate a point by an angle-axis rotation using Rodrigues' formula."""
    a = _as_vector(angle_axis, 3, "angle_axis")
    pt = _as_vector(point, 3, "point")
    theta2 = dot_product(a, a)
    if theta2 > _EPSILON:
        theta = math.sqrt(theta2)
        cos_theta = math.cos(theta)
        sin_theta = math.sin(theta)
        w = a / theta
        w_cross_pt = cross_product(w, pt)
        tmp = dot_product(w, pt) * (1.0 - cos_theta)
        return pt * cos_theta + w_cross_pt * sin_theta + w * tmp
    # First-order approximation near zero: R * pt = pt + w x pt.
    return pt + cross_product(a, pt)