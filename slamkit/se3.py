"""Rotation group SO(3) and rigid-motion group SE(3) with their Lie algebras.

Tangent vectors of SE(3) are ordered translation part first, rotation part
second: ``xi = [upsilon, omega]``.
"""

from __future__ import annotations

import math
from typing import Sequence, Union

import numpy as np

_SMALL_EPS = 1e-10


def _vec(values: Sequence[float], size: int, name: str) -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.shape != (size,):
        raise ValueError(f"{name} must have {size} elements, got shape {array.shape}")
    return array


def hat(v: Sequence[float]) -> np.ndarray:
    """Skew-symmetric matrix ``V`` with ``V @ w == cross(v, w)``."""
    w = _vec(v, 3, "v")
    return np.array(
        [
            [0.0, -w[2], w[1]],
            [w[2], 0.0, -w[0]],
            [-w[1], w[0], 0.0],
        ]
    )


def _quat_mul(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    w1, x1, y1, z1 = a
    w2, x2, y2, z2 = b
    return np.array(
        [
            w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
            w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
            w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
            w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
        ]
    )


class SO3:
    """A 3D rotation held as a unit quaternion ``[w, x, y, z]``."""

    __slots__ = ("_q",)

    def __init__(self, quaternion: Sequence[float] | None = None) -> None:
        if quaternion is None:
            self._q = np.array([1.0, 0.0, 0.0, 0.0])
            return
        q = _vec(quaternion, 4, "quaternion")
        norm = float(np.linalg.norm(q))
        if norm == 0.0 or not math.isfinite(norm):
            raise ValueError("quaternion must have a finite, non-zero norm")
        self._q = q / norm

    @classmethod
    def exp(cls, omega: Sequence[float]) -> "SO3":
        """Rotation of the rotation vector ``omega``."""
        w = _vec(omega, 3, "omega")
        theta = float(np.linalg.norm(w))
        if theta < _SMALL_EPS:
            theta_sq = theta * theta
            theta_po4 = theta_sq * theta_sq
            imag_factor = 0.5 - theta_sq / 48.0 + theta_po4 / 3840.0
            real = 1.0 - theta_sq / 8.0 + theta_po4 / 384.0
        else:
            half = 0.5 * theta
            imag_factor = math.sin(half) / theta
            real = math.cos(half)
        return cls(np.concatenate([[real], imag_factor * w]))

    @classmethod
    def from_quaternion(cls, w: float, x: float, y: float, z: float) -> "SO3":
        """Rotation of a quaternion, normalised to unit length."""
        return cls([w, x, y, z])

    def log(self) -> np.ndarray:
        """Rotation vector of this rotation."""
        w = float(self._q[0])
        vec = self._q[1:]
        n = float(np.linalg.norm(vec))
        if n < _SMALL_EPS:
            factor = 2.0 / w - 2.0 * (n * n) / (w * w * w)
        elif abs(w) < _SMALL_EPS:
            factor = math.pi / n if w > 0 else -math.pi / n
        else:
            factor = 2.0 * math.atan(n / w) / n
        return factor * vec

    def inverse(self) -> "SO3":
        q = self._q
        return SO3([q[0], -q[1], -q[2], -q[3]])

    def quaternion(self) -> np.ndarray:
        """Unit quaternion ``[w, x, y, z]``."""
        return self._q.copy()

    @property
    def matrix(self) -> np.ndarray:
        w, x, y, z = self._q
        return np.array(
            [
                [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
                [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
                [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
            ]
        )

    def __matmul__(self, other):
        if isinstance(other, SO3):
            return SO3(_quat_mul(self._q, other._q))
        if isinstance(other, (SE3,)):
            return NotImplemented
        try:
            point = _vec(other, 3, "point")
        except (ValueError, TypeError):
            return NotImplemented
        return self.matrix @ point

    def __repr__(self) -> str:
        return f"SO3(quaternion={self._q.tolist()})"


class SE3:
    """A rigid motion: a rotation followed by a translation."""

    __slots__ = ("rotation", "translation")

    def __init__(
        self,
        rotation: SO3 | None = None,
        translation: Sequence[float] | None = None,
    ) -> None:
        self.rotation = rotation if rotation is not None else SO3()
        self.translation = (
            np.zeros(3) if translation is None else _vec(translation, 3, "translation").copy()
        )

    @classmethod
    def exp(cls, xi: Sequence[float]) -> "SE3":
        """Motion of the tangent vector ``[upsilon, omega]``."""
        v = _vec(xi, 6, "xi")
        upsilon, omega = v[:3], v[3:]
        rotation = SO3.exp(omega)
        theta = float(np.linalg.norm(omega))
        big_omega = hat(omega)
        identity = np.eye(3)
        if theta < _SMALL_EPS:
            jacobian = identity + 0.5 * big_omega + (big_omega @ big_omega) / 6.0
        else:
            theta_sq = theta * theta
            jacobian = (
                identity
                + (1.0 - math.cos(theta)) / theta_sq * big_omega
                + (theta - math.sin(theta)) / (theta_sq * theta) * (big_omega @ big_omega)
            )
        return cls(rotation, jacobian @ upsilon)

    @classmethod
    def from_quaternion(
        cls, quaternion: Sequence[float], translation: Sequence[float]
    ) -> "SE3":
        """Motion from a quaternion ``[w, x, y, z]`` (normalised) and a translation."""
        return cls(SO3(quaternion), translation)

    def log(self) -> np.ndarray:
        """Tangent vector ``[upsilon, omega]`` of this motion."""
        omega = self.rotation.log()
        theta = float(np.linalg.norm(omega))
        big_omega = hat(omega)
        omega_sq = big_omega @ big_omega
        identity = np.eye(3)
        if theta < _SMALL_EPS:
            v_inv = identity - 0.5 * big_omega + omega_sq / 12.0
        else:
            half = 0.5 * theta
            v_inv = (
                identity
                - 0.5 * big_omega
                + (1.0 - half * math.cos(half) / math.sin(half)) / (theta * theta) * omega_sq
            )
        return np.concatenate([v_inv @ self.translation, omega])

    def inverse(self) -> "SE3":
        rotation = self.rotation.inverse()
        return SE3(rotation, -(rotation @ self.translation))

    def adjoint(self) -> np.ndarray:
        """6x6 adjoint matrix acting on ``[upsilon, omega]``."""
        r = self.rotation.matrix
        adj = np.zeros((6, 6))
        adj[:3, :3] = r
        adj[:3, 3:] = hat(self.translation) @ r
        adj[3:, 3:] = r
        return adj

    def unit_quaternion(self) -> np.ndarray:
        """Unit quaternion ``[w, x, y, z]`` of the rotation."""
        return self.rotation.quaternion()

    @property
    def matrix(self) -> np.ndarray:
        """4x4 homogeneous transformation matrix."""
        m = np.eye(4)
        m[:3, :3] = self.rotation.matrix
        m[:3, 3] = self.translation
        return m

    def __matmul__(self, other):
        if isinstance(other, SE3):
            return SE3(
                self.rotation @ other.rotation,
                self.rotation @ other.translation + self.translation,
            )
        try:
            point = _vec(other, 3, "point")
        except (ValueError, TypeError):
            return NotImplemented
        return self.rotation @ point + self.translation

    def __repr__(self) -> str:
        return (
            f"SE3(quaternion={self.rotation.quaternion().tolist()}, "
            f"translation={self.translation.tolist()})"
        )


def jr_inv(error: Union[SE3, Sequence[float]]) -> np.ndarray:
    """Approximate inverse right Jacobian of SE(3) at an error.

    ``error`` is a motion, or a tangent vector that is mapped through
    :meth:`SE3.exp` first.
    """
    e = error if isinstance(error, SE3) else SE3.exp(error)
    phi_hat = hat(e.rotation.log())
    j = np.zeros((6, 6))
    j[:3, :3] = phi_hat
    j[:3, 3:] = hat(e.translation)
    j[3:, 3:] = phi_hat
    return 0.5 * j + np.eye(6)