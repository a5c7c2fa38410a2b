import numpy as np
import pytest

from slamkit.bal_problem import BALProblem, median
from slamkit.noise import NoiseSource
from slamkit.pcd import read_pcd_binary
from slamkit.projection import cam_projection_with_distortion

CAMERAS = [
    [0.01, -0.02, 0.03, 0.1, 0.2, -3.0, 500.0, 0.01, -0.001],
    [-0.05, 0.02, 0.01, -0.3, 0.1, -4.0, 450.0, 0.02, 0.0],
]
POINTS = [
    [0.5, 0.2, 0.1],
    [-0.4, 0.3, 0.2],
    [0.1, -0.6, -0.3],
    [0.8, 0.9, 0.4],
    [-0.7, -0.2, 0.6],
]
OBSERVATIONS = [
    (0, 0, 12.5, -3.25),
    (0, 1, -8.0, 4.5),
    (1, 2, 3.0, 7.75),
    (1, 3, -1.5, -2.0),
    (0, 4, 6.25, 1.0),
    (1, 0, 9.0, -6.5),
]


def _write_sample(path):
    lines = [f"{len(CAMERAS)} {len(POINTS)} {len(OBSERVATIONS)}"]
    lines += [f"{c} {p} {x} {y}" for c, p, x, y in OBSERVATIONS]
    lines += [repr(v) for cam in CAMERAS for v in cam]
    lines += [repr(v) for pt in POINTS for v in pt]
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def sample(tmp_path):
    return _write_sample(tmp_path / "problem.txt")


def test_reads_counts_and_values(sample):
    problem = BALProblem(sample)
    assert problem.num_cameras() == 2
    assert problem.num_points() == 5
    assert problem.num_observations() == 6
    assert problem.num_parameters() == 9 * 2 + 3 * 5
    assert problem.camera_block_size() == 9
    assert problem.point_block_size() == 3
    np.testing.assert_allclose(problem.cameras(), CAMERAS)
    np.testing.assert_allclose(problem.points(), POINTS)
    np.testing.assert_allclose(problem.observations[2], [3.0, 7.75])


def test_observation_lookup(sample):
    problem = BALProblem(sample)
    np.testing.assert_allclose(problem.camera_for_observation(2), CAMERAS[1])
    np.testing.assert_allclose(problem.point_for_observation(4), POINTS[4])


def test_views_are_writable(sample):
    problem = BALProblem(sample)
    problem.points()[0, 0] = 42.0
    assert problem.point_for_observation(0)[0] == 42.0


def test_quaternion_mode_layout(sample):
    plain = BALProblem(sample)
    quat = BALProblem(sample, use_quaternions=True)
    assert quat.camera_block_size() == 10
    assert quat.num_parameters() == 10 * 2 + 3 * 5
    np.testing.assert_allclose(quat.points(), plain.points())
    for a, b in zip(plain.cameras(), quat.cameras()):
        assert np.linalg.norm(b[:4]) == pytest.approx(1.0)
        np.testing.assert_allclose(b[4:], a[3:])
        aa_plain, c_plain = plain.camera_to_angle_axis_and_center(a)
        aa_quat, c_quat = quat.camera_to_angle_axis_and_center(b)
        np.testing.assert_allclose(aa_quat, aa_plain, atol=1e-12)
        np.testing.assert_allclose(c_quat, c_plain, atol=1e-12)


def test_pose_round_trip(sample):
    problem = BALProblem(sample)
    for camera in problem.cameras():
        angle_axis, center = problem.camera_to_angle_axis_and_center(camera)
        rotation, translation = problem.angle_axis_and_center_to_camera(angle_axis, center)
        np.testing.assert_allclose(rotation, camera[:3])
        np.testing.assert_allclose(translation, camera[3:6], atol=1e-12)


def test_camera_block_size_checked(sample):
    problem = BALProblem(sample)
    with pytest.raises(ValueError):
        problem.camera_to_angle_axis_and_center([0.0] * 4)


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        BALProblem(tmp_path / "absent.txt")


def test_truncated_file(tmp_path):
    path = tmp_path / "short.txt"
    path.write_text("1 1 1\n0 0 1.0 2.0\n0.1 0.2\n")
    with pytest.raises(ValueError):
        BALProblem(path)


def test_bad_token(tmp_path):
    path = tmp_path / "bad.txt"
    path.write_text("1 x 1\n")
    with pytest.raises(ValueError):
        BALProblem(path)


def test_write_to_file_layout(sample, tmp_path):
    problem = BALProblem(sample)
    out = tmp_path / "out.txt"
    problem.write_to_file(out)
    lines = out.read_text().splitlines()
    assert lines[0] == "2 2 5 6"
    assert lines[1] == "0 0 12.5 -3.25"
    values = [float(v) for v in lines[1 + len(OBSERVATIONS):]]
    np.testing.assert_allclose(values, problem.parameters)


def test_write_to_file_quaternion_matches_plain(sample, tmp_path):
    plain_out = tmp_path / "plain.txt"
    quat_out = tmp_path / "quat.txt"
    BALProblem(sample).write_to_file(plain_out)
    BALProblem(sample, use_quaternions=True).write_to_file(quat_out)
    plain = plain_out.read_text().splitlines()
    quat = quat_out.read_text().splitlines()
    assert len(plain) == len(quat)
    start = 1 + len(OBSERVATIONS)
    assert plain[:start] == quat[:start]
    np.testing.assert_allclose(
        [float(v) for v in quat[start:]], [float(v) for v in plain[start:]], atol=1e-12
    )


def test_write_to_ply(sample, tmp_path):
    problem = BALProblem(sample)
    out = tmp_path / "cloud.ply"
    problem.write_to_ply_file(out)
    lines = out.read_text().splitlines()
    assert lines[0] == "ply"
    assert "element vertex 7" in lines
    body = lines[lines.index("end_header") + 1:]
    assert len(body) == 7
    assert body[0].endswith(" 110 110 110")
    assert body[-1].endswith("0 0 255")
    assert [float(v) for v in body[2].split()[:3]] == pytest.approx(POINTS[0])


def test_write_to_ply_custom_colors(sample, tmp_path):
    out = tmp_path / "cloud.ply"
    BALProblem(sample).write_to_ply_file(out, (255, 0, 0), (0, 255, 0))
    body = out.read_text().splitlines()[-7:]
    assert body[0].endswith(" 255 0 0")
    assert body[-1].endswith("0 255 0")


def test_write_to_pcd(sample, tmp_path):
    problem = BALProblem(sample)
    out = tmp_path / "cloud.pcd"
    problem.write_to_pcd_file(out)
    cloud = read_pcd_binary(out)
    assert len(cloud) == 7
    assert (cloud[0].r, cloud[0].g, cloud[0].b) == (255, 220, 110)
    assert (cloud[-1].r, cloud[-1].g, cloud[-1].b) == (0, 0, 255)
    _, center = problem.camera_to_angle_axis_and_center(problem.cameras()[1])
    np.testing.assert_allclose([cloud[1].x, cloud[1].y, cloud[1].z], center, rtol=1e-6)
    np.testing.assert_allclose([cloud[2].x, cloud[2].y, cloud[2].z], POINTS[0], rtol=1e-6)


def test_median_picks_upper_middle():
    assert median([3.0, 1.0, 2.0]) == 2.0
    assert median([4.0, 1.0, 3.0, 2.0]) == 3.0


def test_median_empty():
    with pytest.raises(ValueError):
        median([])


def test_normalize_invariants(sample):
    problem = BALProblem(sample)
    problem.normalize()
    points = problem.points()
    for axis in range(3):
        assert median(points[:, axis]) == pytest.approx(0.0, abs=1e-9)
    assert median(np.abs(points).sum(axis=1)) == pytest.approx(100.0)


def test_normalize_preserves_projections(sample):
    problem = BALProblem(sample)
    before = [
        cam_projection_with_distortion(
            problem.camera_for_observation(i), problem.point_for_observation(i)
        )
        for i in range(problem.num_observations())
    ]
    problem.normalize()
    after = [
        cam_projection_with_distortion(
            problem.camera_for_observation(i), problem.point_for_observation(i)
        )
        for i in range(problem.num_observations())
    ]
    np.testing.assert_allclose(after, before, rtol=1e-9, atol=1e-9)


def test_normalize_zero_spread(tmp_path):
    path = tmp_path / "flat.txt"
    path.write_text("1 1 1\n0 0 1 2\n" + "0\n" * 9 + "1\n1\n1\n")
    problem = BALProblem(path)
    with pytest.raises(ValueError):
        problem.normalize()


def test_perturb_zero_sigma_is_identity(sample):
    problem = BALProblem(sample)
    original = problem.parameters.copy()
    problem.perturb(0.0, 0.0, 0.0, NoiseSource(5))
    np.testing.assert_allclose(problem.parameters, original, atol=1e-12)


def test_perturb_points_only(sample):
    problem = BALProblem(sample)
    cameras = problem.cameras().copy()
    points = problem.points().copy()
    problem.perturb(0.0, 0.0, 0.5, NoiseSource(7))
    np.testing.assert_allclose(problem.cameras(), cameras, atol=1e-12)
    assert not np.allclose(problem.points(), points)


def test_perturb_is_deterministic(sample):
    first = BALProblem(sample)
    second = BALProblem(sample)
    first.perturb(0.1, 0.2, 0.3, NoiseSource(38401))
    second.perturb(0.1, 0.2, 0.3, NoiseSource(38401))
    np.testing.assert_array_equal(first.parameters, second.parameters)
    assert not np.allclose(first.cameras(), CAMERAS)


def test_perturb_rejects_negative_sigma(sample):
    problem = BALProblem(sample)
    with pytest.raises(ValueError):
        problem.perturb(-1.0, 0.0, 0.0)