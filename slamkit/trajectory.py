"""Recording of per-frame poses and export of camera trajectories (TUM and KITTI formats)."""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

import numpy as np

TIMESTAMP_PRECISION = 6
FRAME_TRAJECTORY_PRECISION = 9
KEYFRAME_TRAJECTORY_PRECISION = 7
KITTI_PRECISION = 9


@dataclass(frozen=True)
class FramePoseRecord:
    """Pose of one frame relative to its reference keyframe."""

    relative_pose: np.ndarray
    reference: Any
    timestamp: float
    lost: bool


class TrajectoryRecorder:
    """Keeps, for every tracked frame, its pose relative to a reference keyframe.

    Storing relative poses lets the full trajectory be rebuilt after the
    keyframes have been moved by bundle adjustment or loop closure.
    """

    def __init__(self):
        self._records: list[FramePoseRecord] = []

    def __len__(self):
        return len(self._records)

    def __iter__(self) -> Iterator[FramePoseRecord]:
        return iter(self._records)

    @property
    def records(self):
        return list(self._records)

    def record(self, relative_pose, reference, timestamp, lost):
        """Append the pose of a frame.

        When ``relative_pose`` is ``None`` (no pose for this frame) the
        previous relative pose, reference and timestamp are repeated, with
        the given ``lost`` flag. Raises :class:`ValueError` if there is no
        previous record to repeat.
        """
        if relative_pose is None:
            if not self._records:
                raise ValueError("no previous pose to repeat for a frame without a pose")
            last = self._records[-1]
            entry = FramePoseRecord(last.relative_pose, last.reference, last.timestamp, bool(lost))
        else:
            pose = np.array(relative_pose, dtype=float)
            if pose.shape != (4, 4):
                raise ValueError("relative_pose must be a 4x4 matrix")
            entry = FramePoseRecord(pose, reference, float(timestamp), bool(lost))
        self._records.append(entry)
        return entry

    def clear(self):
        """Forget every recorded frame."""
        self._records.clear()

    def world_poses(self, reference_pose: Callable[[Any], np.ndarray], origin=None, skip_lost=True):
        """Yield ``(timestamp, Twc)`` camera-to-world poses of the recorded frames.

        ``reference_pose`` maps a reference to its current 4x4 world-to-camera
        pose. ``origin`` is the transform applied so that the trajectory starts
        at the desired origin (identity by default). Frames flagged as lost are
        left out unless ``skip_lost`` is false.
        """
        two = np.eye(4) if origin is None else np.asarray(origin, dtype=float)
        for entry in self._records:
            if skip_lost and entry.lost:
                continue
            trw = np.asarray(reference_pose(entry.reference), dtype=float) @ two
            tcw = entry.relative_pose @ trw
            yield entry.timestamp, _invert_pose(tcw)


def _invert_pose(tcw):
    rwc = tcw[:3, :3].T
    twc = -rwc @ tcw[:3, 3]
    twc_matrix = np.eye(4)
    twc_matrix[:3, :3] = rwc
    twc_matrix[:3, 3] = twc
    return twc_matrix


def rotation_to_quaternion(R):
    """Convert a 3x3 rotation matrix to a quaternion ``[qx, qy, qz, qw]``."""
    R = np.asarray(R, dtype=float)
    if R.shape != (3, 3):
        raise ValueError("R must be a 3x3 matrix")
    q = [0.0, 0.0, 0.0]
    trace = R[0, 0] + R[1, 1] + R[2, 2]
    if trace > 0:
        s = math.sqrt(trace + 1.0)
        w = 0.5 * s
        s = 0.5 / s
        q = [(R[2, 1] - R[1, 2]) * s, (R[0, 2] - R[2, 0]) * s, (R[1, 0] - R[0, 1]) * s]
    else:
        i = 0
        if R[1, 1] > R[0, 0]:
            i = 1
        if R[2, 2] > R[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        s = math.sqrt(R[i, i] - R[j, j] - R[k, k] + 1.0)
        q[i] = 0.5 * s
        s = 0.5 / s
        w = (R[k, j] - R[j, k]) * s
        q[j] = (R[j, i] + R[i, j]) * s
        q[k] = (R[k, i] + R[i, k]) * s
    return [float(q[0]), float(q[1]), float(q[2]), float(w)]


def _pose_block(Twc):
    T = np.asarray(Twc, dtype=float)
    if T.shape not in ((4, 4), (3, 4)):
        raise ValueError("pose must be a 4x4 or 3x4 matrix")
    return T[:3, :3], T[:3, 3]


def format_tum_line(timestamp, Twc, precision=FRAME_TRAJECTORY_PRECISION):
    """One TUM line: ``timestamp tx ty tz qx qy qz qw`` for a camera-to-world pose."""
    rwc, twc = _pose_block(Twc)
    quaternion = rotation_to_quaternion(rwc)
    values = " ".join(f"{v:.{precision}f}" for v in [*twc, *quaternion])
    return f"{float(timestamp):.{TIMESTAMP_PRECISION}f} {values}"


def format_kitti_line(Twc):
    """One KITTI line: the 3x4 camera-to-world matrix, row by row."""
    rwc, twc = _pose_block(Twc)
    values = np.column_stack([rwc, twc]).reshape(-1)
    return " ".join(f"{v:.{KITTI_PRECISION}f}" for v in values)


def write_tum(path, entries: Iterable, precision=FRAME_TRAJECTORY_PRECISION):
    """Write ``(timestamp, Twc)`` entries as a TUM trajectory; return the line count."""
    lines = [format_tum_line(timestamp, Twc, precision) for timestamp, Twc in entries]
    Path(path).write_text("".join(line + "\n" for line in lines), encoding="utf-8")
    return len(lines)


def write_kitti(path, poses: Iterable):
    """Write camera-to-world poses as a KITTI trajectory; return the line count."""
    lines = [format_kitti_line(Twc) for Twc in poses]
    Path(path).write_text("".join(line + "\n" for line in lines), encoding="utf-8")
    return len(lines)