"""Closed-form camera pose from 3D-2D correspondences (EPnP)."""

from __future__ import annotations

from itertools import combinations

import numpy as np

from slamkit.linalg import gauss_newton

_PAIRS = tuple(combinations(range(4), 2))


class EPnP:
    """EPnP pose estimator for a pinhole camera with the given intrinsics."""

    def __init__(self, fu, fv, uc, vc):
        self.fu = float(fu)
        self.fv = float(fv)
        self.uc = float(uc)
        self.vc = float(vc)

    def compute_pose(self, points3d, points2d):
        """Estimate the pose mapping world points to the camera frame.

        Returns ``(R, t, error)`` where ``error`` is the mean reprojection
        error in pixels of the chosen solution.
        """
        pws, us = self._validate(points3d, points2d)

        cws = self._choose_control_points(pws)
        alphas = self._barycentric_coordinates(pws, cws)

        M = self._build_M(alphas, us)
        _, _, vt = np.linalg.svd(M.T @ M)
        ut = vt  # rows are singular vectors, largest singular value first

        L = self._compute_L_6x10(ut)
        rho = np.array([np.sum((cws[a] - cws[b]) ** 2) for a, b in _PAIRS])

        candidates = []
        with np.errstate(divide="ignore", invalid="ignore"):
            for approx in (self._betas_approx_1, self._betas_approx_2, self._betas_approx_3):
                betas = gauss_newton(L, rho, approx(L, rho))
                candidates.append(self._compute_R_and_t(ut, betas, alphas, pws, us))

        best = 0
        if candidates[1][2] < candidates[0][2]:
            best = 1
        if candidates[2][2] < candidates[best][2]:
            best = 2
        R, t, error = candidates[best]
        return R, t, float(error)

    def reprojection_error(self, R, t, points3d, points2d):
        """Mean pixel distance between observed and reprojected points."""
        pws, us = self._validate(points3d, points2d)
        return float(self._reprojection_error(np.asarray(R, float), np.asarray(t, float), pws, us))

    @staticmethod
    def _validate(points3d, points2d):
        pws = np.asarray(points3d, dtype=float).reshape(-1, 3)
        us = np.asarray(points2d, dtype=float).reshape(-1, 2)
        if pws.shape[0] != us.shape[0]:
            raise ValueError("the number of 3D and 2D points must match")
        if pws.shape[0] == 0:
            raise ValueError("at least one correspondence is required")
        return pws, us

    @staticmethod
    def _choose_control_points(pws):
        n = pws.shape[0]
        c0 = pws.mean(axis=0)
        centred = pws - c0
        u, dc, _ = np.linalg.svd(centred.T @ centred)
        uct = u.T
        cws = np.empty((4, 3))
        cws[0] = c0
        for i in range(1, 4):
            k = np.sqrt(dc[i - 1] / n)
            cws[i] = c0 + k * uct[i - 1]
        return cws

    @staticmethod
    def _barycentric_coordinates(pws, cws):
        cc = (cws[1:] - cws[0]).T
        cc_inv = np.linalg.pinv(cc)
        alphas = np.empty((pws.shape[0], 4))
        alphas[:, 1:] = (pws - cws[0]) @ cc_inv.T
        alphas[:, 0] = 1.0 - alphas[:, 1:].sum(axis=1)
        return alphas

    def _build_M(self, alphas, us):
        n = alphas.shape[0]
        M = np.zeros((2 * n, 12))
        u = us[:, 0][:, None]
        v = us[:, 1][:, None]
        M[0::2, 0::3] = alphas * self.fu
        M[0::2, 2::3] = alphas * (self.uc - u)
        M[1::2, 1::3] = alphas * self.fv
        M[1::2, 2::3] = alphas * (self.vc - v)
        return M

    @staticmethod
    def _compute_L_6x10(ut):
        vs = [ut[11 - i].reshape(4, 3) for i in range(4)]
        dv = np.array([[v[a] - v[b] for a, b in _PAIRS] for v in vs])  # (4, 6, 3)

        def dot(i, j):
            return np.einsum("rk,rk->r", dv[i], dv[j])

        return np.column_stack([
            dot(0, 0),
            2.0 * dot(0, 1),
            dot(1, 1),
            2.0 * dot(0, 2),
            2.0 * dot(1, 2),
            dot(2, 2),
            2.0 * dot(0, 3),
            2.0 * dot(1, 3),
            2.0 * dot(2, 3),
            dot(3, 3),
        ])

    @staticmethod
    def _solve(A, b):
        return np.linalg.lstsq(A, b, rcond=None)[0]

    # betas10        = [B11 B12 B22 B13 B23 B33 B14 B24 B34 B44]
    # betas_approx_1 = [B11 B12     B13         B14]
    def _betas_approx_1(self, L, rho):
        b4 = self._solve(L[:, [0, 1, 3, 6]], rho)
        if b4[0] < 0:
            b0 = np.sqrt(-b4[0])
            return np.array([b0, -b4[1] / b0, -b4[2] / b0, -b4[3] / b0])
        b0 = np.sqrt(b4[0])
        return np.array([b0, b4[1] / b0, b4[2] / b0, b4[3] / b0])

    # betas_approx_2 = [B11 B12 B22                            ]
    def _betas_approx_2(self, L, rho):
        b3 = self._solve(L[:, :3], rho)
        betas = np.zeros(4)
        if b3[0] < 0:
            betas[0] = np.sqrt(-b3[0])
            betas[1] = np.sqrt(-b3[2]) if b3[2] < 0 else 0.0
        else:
            betas[0] = np.sqrt(b3[0])
            betas[1] = np.sqrt(b3[2]) if b3[2] > 0 else 0.0
        if b3[1] < 0:
            betas[0] = -betas[0]
        return betas

    # betas_approx_3 = [B11 B12 B22 B13 B23                    ]
    def _betas_approx_3(self, L, rho):
        b5 = self._solve(L[:, :5], rho)
        betas = np.zeros(4)
        if b5[0] < 0:
            betas[0] = np.sqrt(-b5[0])
            betas[1] = np.sqrt(-b5[2]) if b5[2] < 0 else 0.0
        else:
            betas[0] = np.sqrt(b5[0])
            betas[1] = np.sqrt(b5[2]) if b5[2] > 0 else 0.0
        if b5[1] < 0:
            betas[0] = -betas[0]
        betas[2] = np.float64(b5[3]) / np.float64(betas[0])
        return betas

    def _compute_R_and_t(self, ut, betas, alphas, pws, us):
        ccs = sum(betas[i] * ut[11 - i].reshape(4, 3) for i in range(4))
        pcs = alphas @ ccs
        if pcs[0, 2] < 0.0:
            ccs = -ccs
            pcs = -pcs
        R, t = self._estimate_R_and_t(pcs, pws)
        return R, t, self._reprojection_error(R, t, pws, us)

    @staticmethod
    def _estimate_R_and_t(pcs, pws):
        pc0 = pcs.mean(axis=0)
        pw0 = pws.mean(axis=0)
        abt = (pcs - pc0).T @ (pws - pw0)
        u, _, vt = np.linalg.svd(abt)
        R = u @ vt
        if np.linalg.det(R) < 0:
            R[2] = -R[2]
        t = pc0 - R @ pw0
        return R, t

    def _reprojection_error(self, R, t, pws, us):
        pc = pws @ R.T + t
        inv_z = 1.0 / pc[:, 2]
        ue = self.uc + self.fu * pc[:, 0] * inv_z
        ve = self.vc + self.fv * pc[:, 1] * inv_z
        return np.mean(np.sqrt((us[:, 0] - ue) ** 2 + (us[:, 1] - ve) ** 2))