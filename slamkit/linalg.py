"""Small dense linear-algebra routines used by the pose solvers."""

from __future__ import annotations

import numpy as np

GAUSS_NEWTON_ITERATIONS = 5


def qr_solve(A, b):
    """Solve ``A x = b`` in the least-squares sense by Householder QR.

    ``A`` must have at least as many rows as columns. Raises
    :class:`numpy.linalg.LinAlgError` when a column turns out to be zero
    during the factorisation.
    """
    a = np.array(A, dtype=float)
    rhs = np.array(b, dtype=float).reshape(-1)
    if a.ndim != 2:
        raise ValueError("A must be a two-dimensional matrix")
    nr, nc = a.shape
    if rhs.shape[0] != nr:
        raise ValueError("b must have one entry per row of A")
    if nr < nc:
        raise ValueError("A must have at least as many rows as columns")

    a1 = np.zeros(nc)
    a2 = np.zeros(nc)

    for k in range(nc):
        column = a[k:, k]
        eta = np.max(np.abs(column))
        if eta == 0:
            raise np.linalg.LinAlgError("matrix is singular")
        a[k:, k] /= eta
        sigma = np.sqrt(np.sum(a[k:, k] ** 2))
        if a[k, k] < 0:
            sigma = -sigma
        a[k, k] += sigma
        a1[k] = sigma * a[k, k]
        a2[k] = -eta * sigma
        if k + 1 < nc:
            tau = (a[k:, k] @ a[k:, k + 1:]) / a1[k]
            a[k:, k + 1:] -= np.outer(a[k:, k], tau)

    # b <- Q^T b
    for j in range(nc):
        tau = (a[j:, j] @ rhs[j:]) / a1[j]
        rhs[j:] -= tau * a[j:, j]

    # x = R^-1 b
    x = np.zeros(nc)
    x[nc - 1] = rhs[nc - 1] / a2[nc - 1]
    for i in range(nc - 2, -1, -1):
        x[i] = (rhs[i] - a[i, i + 1:] @ x[i + 1:]) / a2[i]
    return x


def _beta_products(betas):
    b0, b1, b2, b3 = betas
    return np.array([
        b0 * b0, b0 * b1, b1 * b1, b0 * b2, b1 * b2,
        b2 * b2, b0 * b3, b1 * b3, b2 * b3, b3 * b3,
    ])


def _gauss_newton_system(L, rho, betas):
    b0, b1, b2, b3 = betas
    jacobian = np.column_stack([
        2 * L[:, 0] * b0 + L[:, 1] * b1 + L[:, 3] * b2 + L[:, 6] * b3,
        L[:, 1] * b0 + 2 * L[:, 2] * b1 + L[:, 4] * b2 + L[:, 7] * b3,
        L[:, 3] * b0 + L[:, 4] * b1 + 2 * L[:, 5] * b2 + L[:, 8] * b3,
        L[:, 6] * b0 + L[:, 7] * b1 + L[:, 8] * b2 + 2 * L[:, 9] * b3,
    ])
    residual = rho - L @ _beta_products(betas)
    return jacobian, residual


def gauss_newton(L, rho, betas):
    """Refine the four EPnP betas against the 6x10 system ``L`` and ``rho``.

    Runs a fixed number of Gauss-Newton steps and returns the refined betas
    as a new array. A step whose linearised system is singular ends the
    refinement early, leaving the betas as they were.
    """
    L = np.asarray(L, dtype=float)
    rho = np.asarray(rho, dtype=float).reshape(-1)
    refined = np.array(betas, dtype=float).reshape(-1)
    if L.shape != (6, 10) or rho.shape != (6,) or refined.shape != (4,):
        raise ValueError("expected L of shape (6, 10), rho of 6 and 4 betas")

    for _ in range(GAUSS_NEWTON_ITERATIONS):
        jacobian, residual = _gauss_newton_system(L, rho, refined)
        try:
            step = qr_solve(jacobian, residual)
        except np.linalg.LinAlgError:
            break
        refined += step
    return refined


def mat_to_quat(R):
    """Convert a 3x3 rotation matrix to a unit quaternion ``[x, y, z, w]``."""
    R = np.asarray(R, dtype=float)
    tr = R[0, 0] + R[1, 1] + R[2, 2]

    if tr > 0.0:
        q = np.array([R[1, 2] - R[2, 1], R[2, 0] - R[0, 2], R[0, 1] - R[1, 0], tr + 1.0])
        n4 = q[3]
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        q = np.array([
            1.0 + R[0, 0] - R[1, 1] - R[2, 2],
            R[1, 0] + R[0, 1],
            R[2, 0] + R[0, 2],
            R[1, 2] - R[2, 1],
        ])
        n4 = q[0]
    elif R[1, 1] > R[2, 2]:
        q = np.array([
            R[1, 0] + R[0, 1],
            1.0 + R[1, 1] - R[0, 0] - R[2, 2],
            R[2, 1] + R[1, 2],
            R[2, 0] - R[0, 2],
        ])
        n4 = q[1]
    else:
        q = np.array([
            R[2, 0] + R[0, 2],
            R[2, 1] + R[1, 2],
            1.0 + R[2, 2] - R[0, 0] - R[1, 1],
            R[0, 1] - R[1, 0],
        ])
        n4 = q[2]
    return q * (0.5 / np.sqrt(n4))


def relative_error(R_true, t_true, R_est, t_est):
    """Return ``(rotation_error, translation_error)`` relative to the true pose."""
    q_true = mat_to_quat(R_true)
    q_est = mat_to_quat(R_est)
    q_norm = np.linalg.norm(q_true)
    rot_err = min(
        np.linalg.norm(q_true - q_est) / q_norm,
        np.linalg.norm(q_true + q_est) / q_norm,
    )
    t_true = np.asarray(t_true, dtype=float)
    t_est = np.asarray(t_est, dtype=float)
    transl_err = np.linalg.norm(t_true - t_est) / np.linalg.norm(t_true)
    return float(rot_err), float(transl_err)