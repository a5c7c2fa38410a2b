"""Reading and writing SE(3) pose graphs in the g2o text format."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator

import numpy as np

from slamkit.se3 import SE3

VERTEX_TAG = "VERTEX_SE3:QUAT"
EDGE_TAG = "EDGE_SE3:QUAT"


@dataclass
class Vertex:
    """A pose node with its identifier."""

    id: int
    pose: SE3


@dataclass
class Edge:
    """A relative-pose measurement from vertex ``xi`` to vertex ``xj``."""

    xi: int
    xj: int
    measurement: SE3
    information: np.ndarray = field(default_factory=lambda: np.eye(6))

    def __post_init__(self) -> None:
        info = np.array(self.information, dtype=float)
        if info.shape != (6, 6):
            raise ValueError(f"information must be 6x6, got shape {info.shape}")
        self.information = info


@dataclass
class PoseGraph:
    """Vertices and edges of a pose graph, in file order."""

    vertices: list[Vertex] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)

    def poses(self) -> list[SE3]:
        return [vertex.pose for vertex in self.vertices]


def _taker(tokens: Iterator[str]) -> Callable:
    def take(convert, what: str):
        try:
            token = next(tokens)
        except StopIteration:
            raise ValueError(f"truncated pose graph: missing {what}") from None
        try:
            return convert(token)
        except ValueError:
            raise ValueError(f"bad {what} {token!r} in pose graph") from None

    return take


def _read_pose(take: Callable) -> SE3:
    data = [take(float, "pose value") for _ in range(7)]
    return SE3.from_quaternion([data[6], data[3], data[4], data[5]], data[:3])


def parse_pose_graph(text: str) -> PoseGraph:
    """Parse g2o text; tokens other than SE(3) vertex and edge tags are skipped."""
    tokens = iter(text.split())
    take = _taker(tokens)
    graph = PoseGraph()
    for tag in tokens:
        if tag == VERTEX_TAG:
            index = take(int, "vertex id")
            graph.vertices.append(Vertex(index, _read_pose(take)))
        elif tag == EDGE_TAG:
            first = take(int, "edge vertex id")
            second = take(int, "edge vertex id")
            measurement = _read_pose(take)
            info = np.zeros((6, 6))
            for i in range(6):
                for j in range(i, 6):
                    value = take(float, "information value")
                    info[i, j] = value
                    info[j, i] = value
            graph.edges.append(Edge(first, second, measurement, info))
    return graph


def _fmt(value: float) -> str:
    return f"{float(value):g}"


def _pose_fields(pose: SE3) -> list[str]:
    w, x, y, z = pose.unit_quaternion()
    return [_fmt(v) for v in (*pose.translation, x, y, z, w)]


def format_pose_graph(graph: PoseGraph) -> str:
    """Format a pose graph as g2o text, vertices first, then edges."""
    lines = []
    for vertex in graph.vertices:
        lines.append(" ".join([VERTEX_TAG, str(vertex.id), *_pose_fields(vertex.pose)]))
    for edge in graph.edges:
        info = edge.information
        upper = [_fmt(info[i, j]) for i in range(6) for j in range(i, 6)]
        lines.append(
            " ".join(
                [EDGE_TAG, str(edge.xi), str(edge.xj), *_pose_fields(edge.measurement), *upper]
            )
        )
    return "".join(line + "\n" for line in lines)


def read_pose_graph(path: str | os.PathLike) -> PoseGraph:
    """Read a g2o pose graph file."""
    return parse_pose_graph(Path(path).read_text(encoding="utf-8"))


def write_pose_graph(path: str | os.PathLike, graph: PoseGraph) -> None:
    """Write a pose graph as a g2o file."""
    Path(path).write_text(format_pose_graph(graph), encoding="utf-8")


def _swap_blocks(info) -> np.ndarray:
    m = np.asarray(info, dtype=float)
    if m.shape != (6, 6):
        raise ValueError(f"information must be 6x6, got shape {m.shape}")
    out = np.eye(6)
    out[:3, :3] = m[3:, 3:]
    out[3:, 3:] = m[:3, :3]
    out[:3, 3:] = m[:3, 3:]
    out[3:, :3] = m[3:, :3]
    return out


def g2o_to_gtsam_information(info) -> np.ndarray:
    """Reorder a translation-first information matrix to rotation-first."""
    return _swap_blocks(info)


def gtsam_to_g2o_information(info) -> np.ndarray:
    """Reorder a rotation-first information matrix to translation-first."""
    return _swap_blocks(info)