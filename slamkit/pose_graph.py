"""Pose-graph optimisation over SE(3) with Lie-algebra errors and Jacobians."""

from __future__ import annotations

import argparse
import math
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import numpy as np
from scipy.linalg import cho_factor, cho_solve

from slamkit.g2o_io import Edge, PoseGraph, Vertex, read_pose_graph, write_pose_graph
from slamkit.pcd import ColoredPoint, write_pcd_binary
from slamkit.se3 import SE3, SO3, jr_inv

GN_CLOUD_FILE = "my_GN.pcd"
LIE_RESULT_FILE = "result_lie.g2o"
CLOUD_COLOR = (228, 20, 224)

_LM_TAU = 1e-5
_LM_MAX_TRIALS = 10


@dataclass
class OptimizationResult:
    """Optimised poses and the history of the run."""

    poses: list[SE3]
    initial_error: float
    final_error: float
    iterations: int = 0
    errors: list[float] = field(default_factory=list)
    steps: list[float] = field(default_factory=list)
    converged: bool = False


def _check_edges(poses: Sequence[SE3], edges: Sequence[Edge]) -> None:
    count = len(poses)
    for edge in edges:
        for index in (edge.xi, edge.xj):
            if not 0 <= index < count:
                raise IndexError(
                    f"edge refers to pose {index}, but there are {count} poses"
                )


def _edge_error(xi: SE3, xj: SE3, z: SE3) -> np.ndarray:
    return (z.inverse() @ xi.inverse() @ xj).log()


def compute_error(poses: Sequence[SE3], edges: Sequence[Edge]) -> float:
    """Sum over edges of ``e' * info * e`` with ``e = log(z^-1 xi^-1 xj)``."""
    _check_edges(poses, edges)
    total = 0.0
    for edge in edges:
        e = _edge_error(poses[edge.xi], poses[edge.xj], edge.measurement)
        total += float(e @ edge.information @ e)
    return total


def calc_jacobian_and_error(
    xi: SE3, xj: SE3, z: SE3
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return the edge error and its Jacobians with respect to ``xi`` and ``xj``."""
    error = _edge_error(xi, xj, z)
    j = jr_inv(SE3.exp(error))
    adj = xj.inverse().adjoint()
    return error, -j @ adj, j @ adj


def _assemble(
    poses: Sequence[SE3], edges: Sequence[Edge], anchor: bool
) -> tuple[np.ndarray, np.ndarray]:
    _check_edges(poses, edges)
    size = 6 * len(poses)
    h = np.zeros((size, size))
    b = np.zeros(size)
    if anchor and poses:
        h[:6, :6] += np.eye(6)
    for edge in edges:
        info = edge.information
        e, a, bj = calc_jacobian_and_error(poses[edge.xi], poses[edge.xj], edge.measurement)
        si = slice(6 * edge.xi, 6 * edge.xi + 6)
        sj = slice(6 * edge.xj, 6 * edge.xj + 6)
        h[si, si] += a.T @ info @ a
        h[si, sj] += a.T @ info @ bj
        h[sj, si] += bj.T @ info @ a
        h[sj, sj] += bj.T @ info @ bj
        b[si] += a.T @ info.T @ e
        b[sj] += bj.T @ info.T @ e
    return h, b


def linearize(poses: Sequence[SE3], edges: Sequence[Edge]) -> tuple[np.ndarray, np.ndarray]:
    """Build the normal equations ``H`` and ``b``; the first pose gets an identity prior."""
    return _assemble(poses, edges, anchor=True)


def linearize_and_solve(poses: Sequence[SE3], edges: Sequence[Edge]) -> np.ndarray:
    """Solve ``H dx = -b`` by Cholesky factorisation and return ``dx``."""
    h, b = linearize(poses, edges)
    if h.size == 0:
        return np.zeros(0)
    return -cho_solve(cho_factor(h), b)


def _increment(delta: np.ndarray) -> SE3:
    rotation = (
        SO3.exp([delta[3], 0.0, 0.0])
        @ SO3.exp([0.0, delta[4], 0.0])
        @ SO3.exp([0.0, 0.0, delta[5]])
    )
    return SE3(rotation, delta[:3])


def _apply(poses: Sequence[SE3], dx: np.ndarray) -> list[SE3]:
    return [_increment(delta) @ pose for pose, delta in zip(poses, dx.reshape(-1, 6))]


def optimize_gauss_newton(
    poses: Sequence[SE3],
    edges: Sequence[Edge],
    max_iterations: int = 100,
    epsilon: float = 1e-3,
) -> OptimizationResult:
    """Gauss-Newton with left-multiplied updates; stops once ``max|dx| < epsilon``."""
    current = list(poses)
    initial = compute_error(current, edges)
    result = OptimizationResult(current, initial, initial)
    for iteration in range(max_iterations):
        dx = linearize_and_solve(current, edges)
        current = _apply(current, dx)
        step = float(np.max(np.abs(dx))) if dx.size else 0.0
        result.errors.append(compute_error(current, edges))
        result.steps.append(step)
        result.iterations = iteration + 1
        if step < epsilon:
            result.converged = True
            break
    result.poses = current
    result.final_error = compute_error(current, edges)
    return result


def optimize_levenberg(
    poses: Sequence[SE3], edges: Sequence[Edge], max_iterations: int = 30
) -> OptimizationResult:
    """Levenberg-Marquardt with the first pose held fixed."""
    current = list(poses)
    chi2 = compute_error(current, edges)
    result = OptimizationResult(current, chi2, chi2)
    if len(current) < 2:
        return result

    h, _ = _assemble(current, edges, anchor=False)
    lam = _LM_TAU * max(float(np.max(np.diag(h)[6:])), 1e-12)
    ni = 2.0
    for iteration in range(max_iterations):
        h_full, b_full = _assemble(current, edges, anchor=False)
        h, b = h_full[6:, 6:], b_full[6:]
        identity = np.eye(h.shape[0])
        accepted = False
        for _ in range(_LM_MAX_TRIALS):
            try:
                dx = np.linalg.solve(h + lam * identity, -b)
            except np.linalg.LinAlgError:
                lam *= ni
                ni *= 2.0
                continue
            candidate = [current[0], *_apply(current[1:], dx)]
            new_chi2 = compute_error(candidate, edges)
            scale = float(dx @ (lam * dx - b)) + 1e-3
            rho = (chi2 - new_chi2) / scale
            if rho > 0.0 and math.isfinite(new_chi2):
                current, chi2 = candidate, new_chi2
                lam *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                ni = 2.0
                accepted = True
                result.steps.append(float(np.max(np.abs(dx))) if dx.size else 0.0)
                break
            lam *= ni
            ni *= 2.0
        result.iterations = iteration + 1
        result.errors.append(chi2)
        if not accepted:
            result.converged = True
            break
    result.poses = current
    result.final_error = chi2
    return result


def _run_gauss_newton(graph: PoseGraph) -> None:
    poses = graph.poses()
    print(f"initError={compute_error(poses, graph.edges):g}")
    result = optimize_gauss_newton(poses, graph.edges, 100, 1e-3)
    for iteration, (error, step) in enumerate(zip(result.errors, result.steps)):
        print(f"Iterations:{iteration}")
        print(f"error_now={error:g}")
        print(f"max epilon={step:g}")
    print(f"FinalError:{result.final_error:g}")
    cloud = [
        ColoredPoint(*(float(v) for v in pose.translation), *CLOUD_COLOR)
        for pose in result.poses
    ]
    print(f"point cloud has {len(cloud)} points.")
    write_pcd_binary(GN_CLOUD_FILE, cloud)


def _run_levenberg(graph: PoseGraph) -> None:
    position = {vertex.id: index for index, vertex in enumerate(graph.vertices)}
    edges = [
        Edge(position[e.xi], position[e.xj], e.measurement, e.information)
        for e in graph.edges
    ]
    print("prepare optimizing ...")
    print("calling optimizing ...")
    result = optimize_levenberg(graph.poses(), edges, 30)
    for iteration, error in enumerate(result.errors):
        print(f"iteration= {iteration}\t chi2= {error:g}")
    print("saving optimization results ...")
    vertices = [Vertex(v.id, pose) for v, pose in zip(graph.vertices, result.poses)]
    write_pose_graph(LIE_RESULT_FILE, PoseGraph(vertices, list(graph.edges)))


def main(argv: Sequence[str] | None = None) -> int:
    """Optimise a g2o pose graph; Gauss-Newton by default, or ``--method lm``."""
    args = list(sys.argv if argv is None else argv)
    parser = argparse.ArgumentParser(prog=args[0] if args else "pose_graph")
    parser.add_argument("graph", nargs="?")
    parser.add_argument("--method", choices=("gn", "lm"), default="gn")
    options = parser.parse_args(args[1:])
    if options.graph is None:
        print("Usage: my_GN sphere.g2o")
        return 1
    path = Path(options.graph)
    if not path.is_file():
        print(f"file {options.graph} does not exist.")
        return 1
    try:
        graph = read_pose_graph(path)
        print(f"read total {len(graph.vertices)} vertices, {len(graph.edges)} edges.")
        if options.method == "gn":
            _run_gauss_newton(graph)
        else:
            _run_levenberg(graph)
    except (ValueError, KeyError, IndexError, np.linalg.LinAlgError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0