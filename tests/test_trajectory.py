import math

import numpy as np
import pytest

from slamkit.trajectory import (
    FramePoseRecord,
    TrajectoryRecorder,
    format_kitti_line,
    format_tum_line,
    rotation_to_quaternion,
    write_kitti,
    write_tum,
)


def _rot_z(angle):
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def _rot_x(angle):
    c, s = math.cos(angle), math.sin(angle)
    return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]])


def _quat_to_matrix(q):
    x, y, z, w = q
    return np.array([
        [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
        [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
        [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
    ])


def _pose(R, t):
    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = t
    return T


def test_identity_quaternion():
    assert rotation_to_quaternion(np.eye(3)) == [0.0, 0.0, 0.0, 1.0]


@pytest.mark.parametrize("R", [
    _rot_z(0.3),
    _rot_x(2.9),
    _rot_z(math.pi) @ _rot_x(0.1),
    _rot_x(math.pi),
    _rot_z(-1.2) @ _rot_x(0.7),
])
def test_quaternion_round_trip(R):
    q = rotation_to_quaternion(R)
    assert math.isclose(sum(v * v for v in q), 1.0, rel_tol=1e-9)
    np.testing.assert_allclose(_quat_to_matrix(q), R, atol=1e-9)


def test_quaternion_rejects_bad_shape():
    with pytest.raises(ValueError):
        rotation_to_quaternion(np.eye(4))


def test_format_tum_identity():
    line = format_tum_line(1.5, np.eye(4))
    assert line == ("1.500000 0.000000000 0.000000000 0.000000000 "
                    "0.000000000 0.000000000 0.000000000 1.000000000")


def test_format_tum_precision_and_fields():
    T = _pose(_rot_z(0.4), [1.0, -2.0, 3.5])
    fields = format_tum_line(12.25, T, precision=7).split()
    assert len(fields) == 8
    assert fields[0] == "12.250000"
    assert all(len(f.split(".")[1]) == 7 for f in fields[1:])
    assert [float(f) for f in fields[1:4]] == [1.0, -2.0, 3.5]


def test_format_kitti_identity():
    expected = " ".join(
        f"{v:.9f}" for v in [1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1, 0]
    )
    assert format_kitti_line(np.eye(4)) == expected


def test_format_kitti_round_trip():
    T = _pose(_rot_x(0.8), [0.5, 0.25, -4.0])
    values = np.array([float(v) for v in format_kitti_line(T).split()]).reshape(3, 4)
    np.testing.assert_allclose(values, T[:3], atol=1e-9)


def test_format_rejects_bad_pose():
    with pytest.raises(ValueError):
        format_tum_line(0.0, np.eye(3))
    with pytest.raises(ValueError):
        format_kitti_line(np.eye(2))


def test_recorder_records_and_clears():
    recorder = TrajectoryRecorder()
    entry = recorder.record(np.eye(4), "kf0", 0.1, False)
    assert isinstance(entry, FramePoseRecord)
    assert len(recorder) == 1
    assert entry.timestamp == 0.1 and entry.reference == "kf0"
    recorder.clear()
    assert len(recorder) == 0


def test_recorder_repeats_previous_when_pose_missing():
    recorder = TrajectoryRecorder()
    pose = _pose(_rot_z(0.2), [1.0, 2.0, 3.0])
    recorder.record(pose, "kf0", 2.0, False)
    repeated = recorder.record(None, "other", 3.0, True)
    np.testing.assert_allclose(repeated.relative_pose, pose)
    assert repeated.reference == "kf0"
    assert repeated.timestamp == 2.0
    assert repeated.lost is True


def test_recorder_missing_pose_without_history():
    with pytest.raises(ValueError):
        TrajectoryRecorder().record(None, "kf0", 0.0, True)


def test_recorder_rejects_bad_pose_shape():
    with pytest.raises(ValueError):
        TrajectoryRecorder().record(np.eye(3), "kf0", 0.0, False)


def test_world_poses_invert_and_skip_lost():
    recorder = TrajectoryRecorder()
    kf_poses = {"a": _pose(_rot_x(0.3), [0.1, 0.2, 0.3]), "b": np.eye(4)}
    rel = _pose(_rot_z(0.5), [1.0, 0.0, -1.0])
    recorder.record(rel, "a", 1.0, False)
    recorder.record(np.eye(4), "b", 2.0, True)

    poses = list(recorder.world_poses(kf_poses.__getitem__))
    assert [ts for ts, _ in poses] == [1.0]
    tcw = rel @ kf_poses["a"]
    np.testing.assert_allclose(poses[0][1] @ tcw, np.eye(4), atol=1e-12)

    all_poses = list(recorder.world_poses(kf_poses.__getitem__, skip_lost=False))
    assert [ts for ts, _ in all_poses] == [1.0, 2.0]


def test_world_poses_with_origin():
    recorder = TrajectoryRecorder()
    recorder.record(np.eye(4), "a", 0.0, False)
    kf = _pose(_rot_z(0.7), [2.0, 1.0, 0.0])
    origin = np.linalg.inv(kf)
    (_, twc), = recorder.world_poses(lambda ref: kf, origin=origin)
    np.testing.assert_allclose(twc, np.eye(4), atol=1e-12)


def test_write_tum_round_trip(tmp_path):
    entries = [(0.5, _pose(_rot_z(0.1), [1.0, 2.0, 3.0])),
               (1.0, _pose(_rot_x(-0.4), [0.0, -1.0, 0.5]))]
    path = tmp_path / "traj.txt"
    assert write_tum(path, entries) == 2
    lines = path.read_text().splitlines()
    assert len(lines) == 2
    for line, (ts, T) in zip(lines, entries):
        values = [float(v) for v in line.split()]
        assert values[0] == ts
        np.testing.assert_allclose(values[1:4], T[:3, 3], atol=1e-9)
        np.testing.assert_allclose(_quat_to_matrix(values[4:]), T[:3, :3], atol=1e-8)


def test_write_kitti_round_trip(tmp_path):
    poses = [np.eye(4), _pose(_rot_z(1.0), [3.0, 0.0, -2.0])]
    path = tmp_path / "kitti.txt"
    assert write_kitti(path, poses) == 2
    rows = [np.array([float(v) for v in line.split()]).reshape(3, 4)
            for line in path.read_text().splitlines()]
    for row, T in zip(rows, poses):
        np.testing.assert_allclose(row, T[:3], atol=1e-9)


def test_write_empty_file(tmp_path):
    path = tmp_path / "empty.txt"
    assert write_tum(path, []) == 0
    assert path.read_text() == ""