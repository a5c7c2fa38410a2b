import numpy as np
import pytest

from slamkit.g2o_io import (
    Edge,
    PoseGraph,
    Vertex,
    format_pose_graph,
    g2o_to_gtsam_information,
    gtsam_to_g2o_information,
    parse_pose_graph,
    read_pose_graph,
    write_pose_graph,
)
from slamkit.se3 import SE3

INFO_TEXT = "10000 0 0 0 0 0 10000 0 0 0 0 10000 0 0 0 40000 0 0 40000 0 40000"

SAMPLE = (
    "VERTEX_SE3:QUAT 0 0 0 0 0 0 0 1\n"
    "VERTEX_SE3:QUAT 1 1 0 0 0 0 0 2\n"
    f"EDGE_SE3:QUAT 0 1 1 0 0 0 0 0 1 {INFO_TEXT}\n"
)


def test_parse_counts_and_ids():
    graph = parse_pose_graph(SAMPLE)
    assert [v.id for v in graph.vertices] == [0, 1]
    assert [(e.xi, e.xj) for e in graph.edges] == [(0, 1)]


def test_parse_normalises_quaternion():
    graph = parse_pose_graph(SAMPLE)
    assert np.allclose(graph.vertices[1].pose.unit_quaternion(), [1.0, 0.0, 0.0, 0.0])
    assert np.allclose(graph.vertices[1].pose.translation, [1.0, 0.0, 0.0])


def test_parse_information_diagonal():
    info = parse_pose_graph(SAMPLE).edges[0].information
    assert np.allclose(np.diag(info), [10000, 10000, 10000, 40000, 40000, 40000])


def test_parse_information_symmetric():
    values = " ".join(str(v) for v in range(1, 22))
    text = f"EDGE_SE3:QUAT 0 1 0 0 0 0 0 0 1 {values}\n"
    info = parse_pose_graph(text).edges[0].information
    assert np.allclose(info, info.T)
    assert info[0, 1] == 2.0
    assert info[5, 5] == 21.0


def test_parse_skips_unknown_tokens():
    text = "FIX 0\nVERTEX_SE3:QUAT 3 1 2 3 0 0 0 1\n"
    graph = parse_pose_graph(text)
    assert [v.id for v in graph.vertices] == [3]
    assert graph.edges == []


def test_parse_truncated_raises():
    with pytest.raises(ValueError):
        parse_pose_graph("EDGE_SE3:QUAT 0 1 1 0 0")


def test_parse_bad_token_raises():
    with pytest.raises(ValueError):
        parse_pose_graph("VERTEX_SE3:QUAT x 0 0 0 0 0 0 1")


def test_format_sample_lines():
    lines = format_pose_graph(parse_pose_graph(SAMPLE)).splitlines()
    assert lines[0] == "VERTEX_SE3:QUAT 0 0 0 0 0 0 0 1"
    assert lines[1] == "VERTEX_SE3:QUAT 1 1 0 0 0 0 0 1"
    assert lines[2] == f"EDGE_SE3:QUAT 0 1 1 0 0 0 0 0 1 {INFO_TEXT}"


def test_format_round_trip():
    pose = SE3.from_quaternion([0.5, 0.5, 0.5, 0.5], [1.5, -2.0, 0.25])
    info = np.eye(6) * 3.0
    info[0, 4] = info[4, 0] = 0.5
    graph = PoseGraph([Vertex(0, SE3()), Vertex(1, pose)], [Edge(0, 1, pose, info)])
    again = parse_pose_graph(format_pose_graph(graph))
    assert np.allclose(again.vertices[1].pose.matrix, pose.matrix, atol=1e-5)
    assert np.allclose(again.edges[0].measurement.matrix, pose.matrix, atol=1e-5)
    assert np.allclose(again.edges[0].information, info)


def test_file_round_trip(tmp_path):
    path = tmp_path / "graph.g2o"
    graph = parse_pose_graph(SAMPLE)
    write_pose_graph(path, graph)
    loaded = read_pose_graph(path)
    assert len(loaded.vertices) == 2
    assert np.allclose(loaded.edges[0].information, graph.edges[0].information)
    assert np.allclose(loaded.poses()[1].translation, [1.0, 0.0, 0.0])


def test_edge_information_shape_checked():
    with pytest.raises(ValueError):
        Edge(0, 1, SE3(), np.eye(3))


def test_information_block_swap():
    m = np.arange(36, dtype=float).reshape(6, 6)
    g = g2o_to_gtsam_information(m)
    assert np.array_equal(g[:3, :3], m[3:, 3:])
    assert np.array_equal(g[3:, 3:], m[:3, :3])
    assert np.array_equal(g[:3, 3:], m[:3, 3:])
    assert np.array_equal(g[3:, :3], m[3:, :3])


def test_information_conversion_round_trip():
    m = np.arange(36, dtype=float).reshape(6, 6)
    assert np.array_equal(gtsam_to_g2o_information(g2o_to_gtsam_information(m)), m)


def test_information_conversion_shape_checked():
    with pytest.raises(ValueError):
        g2o_to_gtsam_information(np.eye(5))