"""RANSAC estimation of a similarity transform between two sets of camera points."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

# Chi-square value (2 DOF, 99%) scaling the per-point reprojection threshold.
_CHI2_THRESHOLD = 9.210


@dataclass(frozen=True)
class Sim3Estimate:
    """A similarity ``x1 = s * R @ x2 + t`` together with both 4x4 forms."""

    R: np.ndarray
    t: np.ndarray
    s: float
    T12: np.ndarray
    T21: np.ndarray


@dataclass(frozen=True)
class Sim3Result:
    """Outcome of a RANSAC run.

    ``pose`` is the 4x4 ``T12`` of an accepted hypothesis, or ``None``.
    ``estimate`` is the best hypothesis seen so far, accepted or not.
    ``inliers`` has one flag per original match.
    """

    pose: np.ndarray | None
    estimate: Sim3Estimate | None = None
    inliers: list[bool] = field(default_factory=list)
    n_inliers: int = 0
    no_more: bool = False

    @property
    def found(self) -> bool:
        return self.pose is not None


def _rodrigues(axis_angle):
    theta = float(np.linalg.norm(axis_angle))
    if theta == 0.0 or not math.isfinite(theta):
        return np.eye(3)
    k = axis_angle / theta
    K = np.array([[0.0, -k[2], k[1]], [k[2], 0.0, -k[0]], [-k[1], k[0], 0.0]])
    return np.eye(3) + math.sin(theta) * K + (1.0 - math.cos(theta)) * (K @ K)


def compute_sim3(P1, P2, fix_scale):
    """Closed-form similarity aligning ``P2`` onto ``P1`` (Horn, unit quaternions).

    ``P1`` and ``P2`` are 3xN arrays whose columns are corresponding points.
    With ``fix_scale`` the scale is held at 1.
    """
    P1 = np.asarray(P1, dtype=float)
    P2 = np.asarray(P2, dtype=float)
    if P1.ndim != 2 or P1.shape[0] != 3 or P1.shape != P2.shape:
        raise ValueError("P1 and P2 must both be 3xN arrays of the same shape")
    if P1.shape[1] == 0:
        raise ValueError("at least one point is required")

    O1 = P1.mean(axis=1)
    O2 = P2.mean(axis=1)
    Pr1 = P1 - O1[:, None]
    Pr2 = P2 - O2[:, None]

    M = Pr2 @ Pr1.T
    N11 = M[0, 0] + M[1, 1] + M[2, 2]
    N12 = M[1, 2] - M[2, 1]
    N13 = M[2, 0] - M[0, 2]
    N14 = M[0, 1] - M[1, 0]
    N22 = M[0, 0] - M[1, 1] - M[2, 2]
    N23 = M[0, 1] + M[1, 0]
    N24 = M[2, 0] + M[0, 2]
    N33 = -M[0, 0] + M[1, 1] - M[2, 2]
    N34 = M[1, 2] + M[2, 1]
    N44 = -M[0, 0] - M[1, 1] + M[2, 2]
    N = np.array([
        [N11, N12, N13, N14],
        [N12, N22, N23, N24],
        [N13, N23, N33, N34],
        [N14, N24, N34, N44],
    ])

    _, evecs = np.linalg.eigh(N)
    q = evecs[:, -1]  # eigenvector of the largest eigenvalue
    vec = q[1:4]
    vec_norm = float(np.linalg.norm(vec))
    if vec_norm == 0.0:
        R = np.eye(3)
    else:
        angle = math.atan2(vec_norm, q[0])
        R = _rodrigues(2.0 * angle * vec / vec_norm)

    P3 = R @ Pr2
    if fix_scale:
        s = 1.0
    else:
        with np.errstate(divide="ignore", invalid="ignore"):
            s = float(np.sum(Pr1 * P3) / np.sum(P3 ** 2))

    t = O1 - s * (R @ O2)

    T12 = np.eye(4)
    T12[:3, :3] = s * R
    T12[:3, 3] = t

    with np.errstate(divide="ignore", invalid="ignore"):
        sR_inv = (1.0 / s) * R.T
    T21 = np.eye(4)
    T21[:3, :3] = sR_inv
    T21[:3, 3] = -sR_inv @ t
    return Sim3Estimate(R=R, t=t, s=s, T12=T12, T21=T21)


def camera_to_image(points, K):
    """Project Nx3 camera-frame points to Nx2 pixel coordinates with intrinsics ``K``."""
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    K = np.asarray(K, dtype=float)
    fx, fy, cx, cy = K[0, 0], K[1, 1], K[0, 2], K[1, 2]
    with np.errstate(divide="ignore", invalid="ignore"):
        inv_z = 1.0 / pts[:, 2]
    return np.column_stack([fx * pts[:, 0] * inv_z + cx, fy * pts[:, 1] * inv_z + cy])


def project(points, T, K):
    """Transform Nx3 points by the 4x4 ``T`` and project them with ``K``."""
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    T = np.asarray(T, dtype=float)
    transformed = pts @ T[:3, :3].T + T[:3, 3]
    return camera_to_image(transformed, K)


def _ransac_iterations(probability, epsilon, fallback):
    try:
        return math.ceil(math.log(1 - probability) / math.log(1 - epsilon ** 3))
    except (ValueError, ZeroDivisionError, OverflowError):
        return fallback


class Sim3Solver:
    """RANSAC over minimal three-point similarity hypotheses between two cameras.

    ``points1`` and ``points2`` are the matched points (Nx3) expressed in the
    frames of camera 1 and camera 2. ``sigma2_1``/``sigma2_2`` are the level
    variances of the observing keypoints; ``indices1`` maps each
    correspondence back to its slot among ``n_matches`` original matches.
    """

    def __init__(self, points1, points2, K1, K2, sigma2_1, sigma2_2,
                 indices1=None, n_matches=None, fix_scale=True, rng=None):
        self._x1 = np.asarray(points1, dtype=float).reshape(-1, 3)
        self._x2 = np.asarray(points2, dtype=float).reshape(-1, 3)
        n = self._x1.shape[0]
        s1 = np.asarray(sigma2_1, dtype=float).reshape(-1)
        s2 = np.asarray(sigma2_2, dtype=float).reshape(-1)
        if self._x2.shape[0] != n or s1.shape[0] != n or s2.shape[0] != n:
            raise ValueError("points and sigma arrays must have the same length")

        if indices1 is None:
            indices1 = range(n)
        self._indices1 = [int(i) for i in indices1]
        if len(self._indices1) != n:
            raise ValueError("indices1 must have one entry per correspondence")
        if any(i < 0 for i in self._indices1):
            raise ValueError("indices must be non-negative")
        needed = max(self._indices1) + 1 if self._indices1 else 0
        self.n_matches = needed if n_matches is None else int(n_matches)
        if self.n_matches < needed:
            raise ValueError("n_matches is smaller than the largest index")

        # Thresholds are kept as whole numbers of squared pixels.
        self._max_error1 = np.floor(_CHI2_THRESHOLD * s1)
        self._max_error2 = np.floor(_CHI2_THRESHOLD * s2)

        self.K1 = np.asarray(K1, dtype=float)
        self.K2 = np.asarray(K2, dtype=float)
        self.fix_scale = bool(fix_scale)
        self._rng = rng if rng is not None else np.random.default_rng()

        self._p1_im1 = camera_to_image(self._x1, self.K1)
        self._p2_im2 = camera_to_image(self._x2, self.K2)

        self._iterations = 0
        self._n_best_inliers = 0
        self._best = None
        self._best_inliers = np.zeros(n, dtype=bool)

        self.set_ransac_parameters()

    @property
    def n_correspondences(self) -> int:
        return self._x1.shape[0]

    def set_ransac_parameters(self, probability=0.99, min_inliers=6, max_iterations=300):
        """Set RANSAC parameters and restart the iteration count."""
        n = self.n_correspondences
        self.probability = probability
        self.min_inliers = int(min_inliers)

        if self.min_inliers == n:
            n_iterations = 1
        elif n == 0:
            n_iterations = int(max_iterations)
        else:
            epsilon = self.min_inliers / n
            n_iterations = _ransac_iterations(probability, epsilon, int(max_iterations))
        self.max_iterations = max(1, min(n_iterations, int(max_iterations)))
        self._iterations = 0

    def find(self):
        """Run RANSAC until a hypothesis is accepted or the budget is spent."""
        return self.iterate(self.max_iterations)

    def iterate(self, n_iterations):
        """Run up to ``n_iterations`` more hypotheses; return a :class:`Sim3Result`."""
        n = self.n_correspondences
        empty = [False] * self.n_matches
        if n < self.min_inliers or n < 3:
            return Sim3Result(None, self._best, empty, 0, True)

        current = 0
        while self._iterations < self.max_iterations and current < n_iterations:
            current += 1
            self._iterations += 1

            sample = self._sample()
            estimate = compute_sim3(self._x1[sample].T, self._x2[sample].T, self.fix_scale)
            inliers = self._check_inliers(estimate)
            count = int(inliers.sum())

            if count >= self._n_best_inliers:
                self._best_inliers = inliers
                self._n_best_inliers = count
                self._best = estimate
                if count > self.min_inliers:
                    flags = list(empty)
                    for index, is_inlier in zip(self._indices1, inliers):
                        if is_inlier:
                            flags[index] = True
                    return Sim3Result(estimate.T12.copy(), estimate, flags, count, False)

        no_more = self._iterations >= self.max_iterations
        return Sim3Result(None, self._best, empty, 0, no_more)

    def _sample(self):
        available = list(range(self.n_correspondences))
        chosen = []
        for _ in range(3):
            k = int(self._rng.integers(0, len(available)))
            chosen.append(available[k])
            available[k] = available[-1]
            available.pop()
        return chosen

    def _check_inliers(self, estimate):
        with np.errstate(all="ignore"):
            p2_im1 = project(self._x2, estimate.T12, self.K1)
            p1_im2 = project(self._x1, estimate.T21, self.K2)
            err1 = np.sum((self._p1_im1 - p2_im1) ** 2, axis=1)
            err2 = np.sum((p1_im2 - self._p2_im2) ** 2, axis=1)
            return (err1 < self._max_error1) & (err2 < self._max_error2)