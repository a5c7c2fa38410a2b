# slamkit

Building blocks for visual SLAM back ends, on NumPy and SciPy:

* **Rotations and projection**: angle-axis and quaternion conversions, Rodrigues
  rotation of points, and a pinhole camera with two radial distortion terms.
* **BAL problems**: loading, normalising, perturbing and writing bundle adjustment
  problems in the BAL (Bundle Adjustment in the Large) text format.
* **Lie groups**: `SO3` and `SE3` with `exp`, `log`, inverse, composition and adjoint.
* **Pose graphs**: reading and writing SE(3) graphs in the g2o text format
  (`VERTEX_SE3:QUAT` and `EDGE_SE3:QUAT` records) and optimising them with
  Gauss-Newton or Levenberg-Marquardt.
* **Point clouds**: binary PCD files of coloured points.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Command line

```
slamkit-pose-graph sphere.g2o
slamkit-pose-graph sphere.g2o --method lm
```

With the default `--method gn` the graph is optimised by Gauss-Newton: the first pose
is anchored by an identity prior, poses are updated by left multiplication, and the run
stops once the largest update is below `1e-3` or after 100 iterations. The initial
error, the error and largest step of each iteration, and the final error are printed,
and the optimised positions are written to `my_GN.pcd` as a binary point cloud.

With `--method lm` the graph is optimised by Levenberg-Marquardt for up to 30
iterations with the first pose held fixed; the chi² of each iteration is printed and the
result is written to `result_lie.g2o`.

Without a file argument the command prints a usage line and exits with status 1; it
does the same if the file does not exist or cannot be read.

## Library use

### Rotations and projection

```python
from slamkit.rotation import angle_axis_to_quaternion, angle_axis_rotate_point
from slamkit.projection import cam_projection_with_distortion

q = angle_axis_to_quaternion([0.0, 0.0, 0.1])          # [w, x, y, z]
p = angle_axis_rotate_point([0.0, 0.0, 0.1], [1.0, 0.0, 0.0])

camera = [0.0, 0.0, 0.0, 0.0, 0.0, -5.0, 500.0, 0.0, 0.0]
uv = cam_projection_with_distortion(camera, [0.1, 0.2, 0.0])
```

A camera has nine parameters: angle-axis rotation (0–2), translation (3–5), focal
length (6) and second and fourth order radial distortion (7–8).

### BAL problems

```python
from slamkit.bal_problem import BALProblem
from slamkit.noise import NoiseSource

problem = BALProblem("problem-16-22106-pre.txt", False)
print(problem.num_cameras(), problem.num_points(), problem.num_observations())

problem.normalize()
problem.perturb(0.01, 0.1, 0.1, NoiseSource(38401))
problem.write_to_file("perturbed.txt")
problem.write_to_ply_file("scene.ply")
problem.write_to_pcd_file("scene.pcd")
```

`normalize` centres the points on their marginal median and scales them so that the
median absolute deviation is 100, moving the camera centres to match. `perturb` adds
Gaussian noise to points, camera rotations and translations. Passing
`use_quaternions=True` stores each camera rotation as a quaternion (ten parameters per
camera); `write_to_file` always writes angle-axis. `cameras()` and `points()` return
writable views of the parameters.

`NoiseSource(seed)` is a deterministic additive-feedback generator seeded like
`srand`, with `rand_double`, `rand_normal` (Marsaglia polar method) and
`perturb_point3`.

### Lie groups and pose graphs

```python
import numpy as np
from slamkit.se3 import SE3

pose = SE3.exp(np.array([0.1, 0.0, 0.0, 0.0, 0.0, 0.2]))   # [upsilon, omega]
xi = pose.log()
rel = pose.inverse() @ pose
```

```python
from slamkit.g2o_io import read_pose_graph
from slamkit.pose_graph import optimize_gauss_newton

graph = read_pose_graph("sphere.g2o")
result = optimize_gauss_newton(graph.poses(), graph.edges, 100, 1e-3)
print(result.initial_error, result.final_error, result.iterations)
```

`slamkit.g2o_io` has `read_pose_graph` and `write_pose_graph` for files, and
`parse_pose_graph` and `format_pose_graph` for strings. `g2o_to_gtsam_information`
and `gtsam_to_g2o_information` swap the rotation and translation blocks of a 6×6
information matrix between the translation-first and rotation-first conventions.

`slamkit.pose_graph` provides `compute_error`, `calc_jacobian_and_error`, `linearize`,
`linearize_and_solve`, `optimize_gauss_newton` and `optimize_levenberg`.

### Point clouds

`slamkit.pcd.write_pcd_binary` writes a list of `ColoredPoint` values as a binary PCD
file with `x y z rgb` fields, and `read_pcd_binary` reads one back.

## What this package does not do

There is no bundle adjustment solver and no command for it: `BALProblem` loads,
conditions, perturbs and exports problems, and `cam_projection_with_distortion` gives
the projection a reprojection cost would use, but nothing here minimises that cost over
cameras and points. There is also no command-line option parser for bundle adjustment
settings.