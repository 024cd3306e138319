"""RANSAC camera pose estimation from 3D-2D matches, built on EPnP."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

from slamkit.epnp import EPnP


@dataclass(frozen=True)
class PnPResult:
    """Outcome of a RANSAC run.

    ``pose`` is the 4x4 world-to-camera transform, or ``None`` when no pose
    was found. ``inliers`` has one flag per original match (empty when no
    pose was found). ``no_more`` is true once the iteration budget is spent.
    """

    pose: np.ndarray | None
    inliers: list[bool] = field(default_factory=list)
    n_inliers: int = 0
    no_more: bool = False

    @property
    def found(self) -> bool:
        return self.pose is not None


def _ransac_iterations(probability, epsilon, fallback):
    try:
        return math.ceil(math.log(1 - probability) / math.log(1 - epsilon ** 3))
    except (ValueError, ZeroDivisionError, OverflowError):
        return fallback


def _pose_matrix(R, t):
    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = t
    return T


class PnPSolver:
    """Robust pose solver: P4P hypotheses by EPnP, refined on the inlier set."""

    def __init__(self, points3d, points2d, sigma2, fu, fv, uc, vc,
                 keypoint_indices=None, n_matches=None, rng=None):
        self._pws = np.asarray(points3d, dtype=float).reshape(-1, 3)
        self._us = np.asarray(points2d, dtype=float).reshape(-1, 2)
        self._sigma2 = np.asarray(sigma2, dtype=float).reshape(-1)
        n = self._pws.shape[0]
        if self._us.shape[0] != n or self._sigma2.shape[0] != n:
            raise ValueError("points3d, points2d and sigma2 must have the same length")

        if keypoint_indices is None:
            keypoint_indices = range(n)
        self._keypoint_indices = [int(i) for i in keypoint_indices]
        if len(self._keypoint_indices) != n:
            raise ValueError("keypoint_indices must have one entry per correspondence")
        if any(i < 0 for i in self._keypoint_indices):
            raise ValueError("keypoint indices must be non-negative")

        needed = max(self._keypoint_indices) + 1 if self._keypoint_indices else 0
        self.n_matches = needed if n_matches is None else int(n_matches)
        if self.n_matches < needed:
            raise ValueError("n_matches is smaller than the largest keypoint index")

        self._epnp = EPnP(fu, fv, uc, vc)
        self._rng = rng if rng is not None else np.random.default_rng()

        self._iterations = 0
        self._best_inliers = np.zeros(n, dtype=bool)
        self._n_best_inliers = 0
        self._best_pose = None

        self.set_ransac_parameters()

    @property
    def n_correspondences(self) -> int:
        return self._pws.shape[0]

    def set_ransac_parameters(self, probability=0.99, min_inliers=8, max_iterations=300,
                              min_set=4, epsilon=0.4, th2=5.991):
        """Set RANSAC parameters, adjusting them to the number of matches."""
        n = self.n_correspondences
        self.probability = probability
        self.min_set = int(min_set)

        adjusted_min = max(int(n * epsilon), int(min_inliers), self.min_set)
        self.min_inliers = adjusted_min

        if n > 0 and epsilon < adjusted_min / n:
            epsilon = adjusted_min / n
        self.epsilon = epsilon

        if adjusted_min == n:
            n_iterations = 1
        else:
            n_iterations = _ransac_iterations(probability, epsilon, int(max_iterations))
        self.max_iterations = max(1, min(n_iterations, int(max_iterations)))

        self._max_error = self._sigma2 * th2

    def find(self):
        """Run RANSAC until its iteration budget is spent or a pose is found."""
        return self.iterate(self.max_iterations)

    def iterate(self, n_iterations):
        """Run at least ``n_iterations`` more hypotheses; return a :class:`PnPResult`."""
        n = self.n_correspondences
        if n < self.min_inliers:
            return PnPResult(None, [], 0, True)

        current = 0
        while self._iterations < self.max_iterations or current < n_iterations:
            current += 1
            self._iterations += 1

            sample = self._sample()
            estimate = self._estimate(sample)
            if estimate is None:
                continue
            R, t = estimate
            inliers = self._check_inliers(R, t)
            count = int(inliers.sum())

            if count >= self.min_inliers:
                if count > self._n_best_inliers:
                    self._best_inliers = inliers
                    self._n_best_inliers = count
                    self._best_pose = _pose_matrix(R, t)

                refined = self._refine()
                if refined is not None:
                    pose, refined_inliers = refined
                    return self._result(pose, refined_inliers, no_more=False)

        no_more = self._iterations >= self.max_iterations
        if no_more and self._n_best_inliers >= self.min_inliers:
            return self._result(self._best_pose, self._best_inliers, no_more=True)
        return PnPResult(None, [], 0, no_more)

    def _sample(self):
        available = list(range(self.n_correspondences))
        chosen = []
        for _ in range(self.min_set):
            k = int(self._rng.integers(0, len(available)))
            chosen.append(available[k])
            available[k] = available[-1]
            available.pop()
        return chosen

    def _estimate(self, indices):
        try:
            with np.errstate(all="ignore"):
                R, t, _ = self._epnp.compute_pose(self._pws[indices], self._us[indices])
        except np.linalg.LinAlgError:
            return None
        return R, t

    def _check_inliers(self, R, t):
        e = self._epnp
        with np.errstate(all="ignore"):
            pc = self._pws @ R.T + t
            inv_z = 1.0 / pc[:, 2]
            ue = e.uc + e.fu * pc[:, 0] * inv_z
            ve = e.vc + e.fv * pc[:, 1] * inv_z
            error2 = (self._us[:, 0] - ue) ** 2 + (self._us[:, 1] - ve) ** 2
            return error2 < self._max_error

    def _refine(self):
        indices = np.flatnonzero(self._best_inliers)
        estimate = self._estimate(indices)
        if estimate is None:
            return None
        R, t = estimate
        inliers = self._check_inliers(R, t)
        if int(inliers.sum()) > self.min_inliers:
            return _pose_matrix(R, t), inliers
        return None

    def _result(self, pose, inliers, no_more):
        flags = [False] * self.n_matches
        for keypoint, is_inlier in zip(self._keypoint_indices, inliers):
            if is_inlier:
                flags[keypoint] = True
        return PnPResult(pose.copy(), flags, int(np.count_nonzero(inliers)), no_more)