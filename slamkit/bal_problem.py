"""Bundle adjustment problems in the BAL text format."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Iterator, Sequence

import numpy as np

from slamkit.noise import NoiseSource
from slamkit.pcd import ColoredPoint, write_pcd_binary
from slamkit.rotation import (
    angle_axis_rotate_point,
    angle_axis_to_quaternion,
    quaternion_to_angle_axis,
)

Color = tuple[int, int, int]

PLY_CAMERA_COLOR: Color = (110, 110, 110)
PLY_POINT_COLOR: Color = (0, 0, 255)
PCD_CAMERA_COLOR: Color = (255, 220, 110)
PCD_POINT_COLOR: Color = (0, 0, 255)


def median(values: Sequence[float]) -> float:
    """Element at position ``n // 2`` of the sorted values (upper median)."""
    data = np.asarray(values, dtype=float).ravel()
    if data.size == 0:
        raise ValueError("median of an empty sequence")
    middle = data.size // 2
    return float(np.partition(data, middle)[middle])


class BALProblem:
    """Cameras, points and observations loaded from a BAL file.

    Each camera holds a rotation (angle-axis, or a ``[w, x, y, z]``
    quaternion when ``use_quaternions`` is set), a translation, a focal
    length and two radial distortion coefficients.
    """

    def __init__(self, filename: str | os.PathLike, use_quaternions: bool = False) -> None:
        with open(filename, encoding="utf-8") as stream:
            tokens = iter(stream.read().split())

        take = _reader(tokens, str(filename))
        self._num_cameras = take(int, "camera count")
        self._num_points = take(int, "point count")
        self._num_observations = take(int, "observation count")
        if min(self._num_cameras, self._num_points, self._num_observations) < 0:
            raise ValueError(f"Invalid BAL data file {filename}: negative count in header")

        camera_index = []
        point_index = []
        observations = []
        for _ in range(self._num_observations):
            camera_index.append(take(int, "camera index"))
            point_index.append(take(int, "point index"))
            observations.append((take(float, "observation"), take(float, "observation")))
        self.camera_index = np.array(camera_index, dtype=int)
        self.point_index = np.array(point_index, dtype=int)
        self.observations = np.array(observations, dtype=float).reshape(-1, 2)

        count = 9 * self._num_cameras + 3 * self._num_points
        parameters = np.array([take(float, "parameter") for _ in range(count)], dtype=float)

        self.use_quaternions = bool(use_quaternions)
        if self.use_quaternions:
            cameras = parameters[: 9 * self._num_cameras].reshape(self._num_cameras, 9)
            blocks = [
                np.concatenate([angle_axis_to_quaternion(camera[:3]), camera[3:]])
                for camera in cameras
            ]
            blocks.append(parameters[9 * self._num_cameras:])
            parameters = np.concatenate(blocks) if blocks else parameters
        self.parameters = parameters

    # Sizes and views -------------------------------------------------

    def camera_block_size(self) -> int:
        return 10 if self.use_quaternions else 9

    def point_block_size(self) -> int:
        return 3

    def num_cameras(self) -> int:
        return self._num_cameras

    def num_points(self) -> int:
        return self._num_points

    def num_observations(self) -> int:
        return self._num_observations

    def num_parameters(self) -> int:
        return int(self.parameters.size)

    def cameras(self) -> np.ndarray:
        """Writable view of the camera blocks, one row per camera."""
        end = self.camera_block_size() * self._num_cameras
        return self.parameters[:end].reshape(self._num_cameras, self.camera_block_size())

    def points(self) -> np.ndarray:
        """Writable view of the points, one row per point."""
        start = self.camera_block_size() * self._num_cameras
        return self.parameters[start:].reshape(self._num_points, self.point_block_size())

    def camera_for_observation(self, i: int) -> np.ndarray:
        return self.cameras()[self.camera_index[i]]

    def point_for_observation(self, i: int) -> np.ndarray:
        return self.points()[self.point_index[i]]

    # Pose conversions ------------------------------------------------

    def _translation_slice(self) -> slice:
        size = self.camera_block_size()
        return slice(size - 6, size - 3)

    def camera_to_angle_axis_and_center(
        self, camera: Sequence[float]
    ) -> tuple[np.ndarray, np.ndarray]:
        """Return the angle-axis rotation and the centre ``c = -R't`` of a camera."""
        block = np.asarray(camera, dtype=float)
        if block.shape != (self.camera_block_size(),):
            raise ValueError(
                f"camera must have {self.camera_block_size()} elements, got shape {block.shape}"
            )
        if self.use_quaternions:
            angle_axis = quaternion_to_angle_axis(block[:4])
        else:
            angle_axis = block[:3].copy()
        center = -angle_axis_rotate_point(-angle_axis, block[self._translation_slice()])
        return angle_axis, center

    def angle_axis_and_center_to_camera(
        self, angle_axis: Sequence[float], center: Sequence[float]
    ) -> tuple[np.ndarray, np.ndarray]:
        """Return the camera rotation block and the translation ``t = -R c``."""
        axis = np.asarray(angle_axis, dtype=float)
        rotation = angle_axis_to_quaternion(axis) if self.use_quaternions else axis.copy()
        translation = -angle_axis_rotate_point(axis, center)
        return rotation, translation

    def _set_pose(self, camera: np.ndarray, angle_axis: np.ndarray, center: np.ndarray) -> None:
        rotation, translation = self.angle_axis_and_center_to_camera(angle_axis, center)
        camera[: rotation.size] = rotation
        camera[self._translation_slice()] = translation

    # Output ----------------------------------------------------------

    def write_to_file(self, filename: str | os.PathLike) -> None:
        """Write the problem in BAL text form, cameras always as angle-axis."""
        lines = [
            f"{self._num_cameras} {self._num_cameras} {self._num_points} {self._num_observations}"
        ]
        for cam, pt, (x, y) in zip(self.camera_index, self.point_index, self.observations):
            lines.append(f"{cam} {pt} {'%g' % x} {'%g' % y}")
        for camera in self.cameras():
            if self.use_quaternions:
                values = np.concatenate([quaternion_to_angle_axis(camera[:4]), camera[4:]])
            else:
                values = camera
            lines.extend("%.16g" % v for v in values)
        lines.extend("%.16g" % v for v in self.points().ravel())
        Path(filename).write_text("\n".join(lines) + "\n", encoding="utf-8")

    def write_to_ply_file(
        self,
        filename: str | os.PathLike,
        camera_color: Color = PLY_CAMERA_COLOR,
        point_color: Color = PLY_POINT_COLOR,
    ) -> None:
        """Write camera centres and points as an ASCII PLY cloud."""
        header = [
            "ply",
            "format ascii 1.0",
            f"element vertex {self._num_cameras + self._num_points}",
            "property float x",
            "property float y",
            "property float z",
            "property uchar red",
            "property uchar green",
            "property uchar blue",
            "end_header",
        ]
        cam_rgb = " ".join(str(c) for c in camera_color)
        pt_rgb = " ".join(str(c) for c in point_color)
        body = []
        for camera in self.cameras():
            _, center = self.camera_to_angle_axis_and_center(camera)
            body.append(" ".join(f"{v:g}" for v in center) + " " + cam_rgb)
        for point in self.points():
            body.append("".join(f"{v:g} " for v in point) + pt_rgb)
        text = "\n".join(header) + "\n" + "".join(line + "\n" for line in body)
        Path(filename).write_text(text, encoding="utf-8")

    def write_to_pcd_file(
        self,
        filename: str | os.PathLike,
        camera_color: Color = PCD_CAMERA_COLOR,
        point_color: Color = PCD_POINT_COLOR,
    ) -> None:
        """Write camera centres and points as a binary XYZRGB PCD file."""
        cloud = []
        for camera in self.cameras():
            _, center = self.camera_to_angle_axis_and_center(camera)
            cloud.append(ColoredPoint(*(float(v) for v in center), *camera_color))
        for point in self.points():
            cloud.append(ColoredPoint(*(float(v) for v in point), *point_color))
        write_pcd_binary(filename, cloud)

    # Conditioning ----------------------------------------------------

    def normalize(self) -> None:
        """Centre the scene on its marginal median and scale its MAD to 100."""
        points = self.points()
        centre = np.array([median(points[:, axis]) for axis in range(3)])
        deviation = median(np.abs(points - centre).sum(axis=1))
        if deviation == 0.0:
            raise ValueError("points have zero median absolute deviation")
        scale = 100.0 / deviation
        points[:] = scale * (points - centre)

        for camera in self.cameras():
            angle_axis, center = self.camera_to_angle_axis_and_center(camera)
            self._set_pose(camera, angle_axis, scale * (center - centre))

    def perturb(
        self,
        rotation_sigma: float,
        translation_sigma: float,
        point_sigma: float,
        noise: NoiseSource | None = None,
    ) -> None:
        """Add Gaussian noise to points, camera rotations and translations."""
        for name, sigma in (
            ("point_sigma", point_sigma),
            ("rotation_sigma", rotation_sigma),
            ("translation_sigma", translation_sigma),
        ):
            if not sigma >= 0.0:
                raise ValueError(f"{name} must be non-negative, got {sigma}")
        source = noise if noise is not None else NoiseSource()

        points = self.points()
        if point_sigma > 0:
            for point in points:
                point[:] = source.perturb_point3(point_sigma, point)

        translation = self._translation_slice()
        for camera in self.cameras():
            angle_axis, center = self.camera_to_angle_axis_and_center(camera)
            if rotation_sigma > 0.0:
                angle_axis = source.perturb_point3(rotation_sigma, angle_axis)
            self._set_pose(camera, angle_axis, center)
            if translation_sigma > 0.0:
                camera[translation] = source.perturb_point3(translation_sigma, camera[translation])


def _reader(tokens: Iterator[str], filename: str) -> Callable:
    def take(convert: Callable[[str], float], what: str):
        try:
            token = next(tokens)
        except StopIteration:
            raise ValueError(f"Invalid BAL data file {filename}: missing {what}") from None
        try:
            return convert(token)
        except ValueError:
            raise ValueError(
                f"Invalid BAL data file {filename}: bad {what} {token!r}"
            ) from None

    return take