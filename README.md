# slamkit

Geometric pieces of a feature-based visual SLAM pipeline, built on NumPy.
It is a library: it has no command-line program.

## Modules

- `slamkit.epnp` – `EPnP(fu, fv, uc, vc)`, the closed-form camera pose
  from 3D–2D correspondences. `compute_pose(points3d, points2d)` returns
  `(R, t, error)` where `error` is the mean reprojection error in pixels;
  `reprojection_error(R, t, points3d, points2d)` scores any pose.
- `slamkit.linalg` – helpers used by EPnP: `qr_solve` (Householder QR
  least squares, raises `numpy.linalg.LinAlgError` on a singular matrix),
  `gauss_newton` refinement of the four EPnP betas, `mat_to_quat` and
  `relative_error` between a true and an estimated pose.
- `slamkit.pnp_ransac` – `PnPSolver`, a RANSAC loop around EPnP with
  refinement on the inlier set. `find()` and `iterate(n_iterations)` return
  a `PnPResult` holding the 4×4 world-to-camera `pose` (or `None`), one
  inlier flag per original match, `n_inliers`, `no_more` and `found`.
  `set_ransac_parameters(...)` adjusts the minimum inlier count and the
  iteration budget to the number of correspondences.
- `slamkit.sim3` – `compute_sim3(P1, P2, fix_scale)` (Horn's closed-form
  similarity from 3×N point sets, returning a `Sim3Estimate` with `R`, `t`,
  `s`, `T12` and `T21`), `project` and `camera_to_image`, and `Sim3Solver`,
  a RANSAC estimate over three-point hypotheses between two cameras whose
  `find()` / `iterate()` return a `Sim3Result`.
- `slamkit.settings` – `read_settings_file(path)` reads a YAML settings
  file (a leading `%YAML:1.0` line and `!!opencv-matrix` nodes are
  accepted) into a dict; `camera_from_settings`, `orb_from_settings` and
  `viewer_from_settings` build `CameraSettings` (with `K`, `dist_coef`,
  `max_frames`), `OrbSettings` and `ViewerSettings`; `depth_threshold` and
  `depth_map_factor` derive the stereo/RGB-D depth values. Missing keys read
  as zero; an fps of 0 becomes 30.
- `slamkit.tracking_policy` – `TrackingState`, the `KeyFrameContext`
  consumed by `need_new_keyframe`, plus `local_map_tracking_succeeded`,
  `select_close_points`, `motion_model_window` and `local_search_window`.
- `slamkit.control` – thread-safe `StopControl` (stop/release and finish
  handshake for a worker loop) and `ModeRequests` (localization-mode and
  reset requests collected by `take_pending()`, plus `map_changed`).
- `slamkit.sensor` – the `Sensor` enum (`MONOCULAR`, `STEREO`, `RGBD`),
  `sensor_label`, and `check_sensor`, which raises `SensorMismatchError`.
- `slamkit.trajectory` – `TrajectoryRecorder` stores each frame's pose
  relative to a reference keyframe and rebuilds camera-to-world poses with
  `world_poses(reference_pose, origin)`; `rotation_to_quaternion`,
  `format_tum_line`, `format_kitti_line`, `write_tum` and `write_kitti`
  export them.

## Installing

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Examples

EPnP on points already in the camera frame (identity pose):

```python
import numpy as np
from slamkit.epnp import EPnP

solver = EPnP(fu=500.0, fv=500.0, uc=320.0, vc=240.0)
points3d = np.array([[0.1, 0.2, 4.0], [-0.3, 0.1, 5.0], [0.4, -0.2, 6.0],
                     [0.0, 0.5, 4.5], [-0.2, -0.4, 5.5], [0.3, 0.3, 3.5]])
projected = points3d[:, :2] / points3d[:, 2:] * 500.0 + [320.0, 240.0]
R, t, error = solver.compute_pose(points3d, projected)
```

Robust pose with RANSAC:

```python
import numpy as np
from slamkit.pnp_ransac import PnPSolver

rng = np.random.default_rng(0)
points3d = rng.uniform([-1, -1, 4], [1, 1, 8], size=(30, 3))
points2d = points3d[:, :2] / points3d[:, 2:] * 500.0 + [320.0, 240.0]
solver = PnPSolver(points3d, points2d, np.ones(30), 500.0, 500.0, 320.0, 240.0, rng=rng)
result = solver.find()
if result.found:
    print(result.pose, result.n_inliers)
```

Writing a trajectory in TUM format:

```python
import numpy as np
from slamkit.trajectory import write_tum

write_tum("keyframes.txt", [(0.0, np.eye(4))], precision=7)
```

## What it does not do

slamkit works on points, poses and counts handed to it. It does not read
images, extract or match features, hold a map of keyframes and map points,
run bundle adjustment or loop closing, or draw anything on screen. It has
no command-line program and no dataset runners; the caller wires the
solvers, policy functions and trajectory writers into its own pipeline.