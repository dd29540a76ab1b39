"""SO(3) operations: skew-symmetric matrix, Rodrigues Exp, Log map and the
left Jacobian with its inverse.
"""
import numpy as np


def skew(v: np.ndarray) -> np.ndarray:
    """Skew-symmetric matrix from 3-vector.

    Args:
        v: (3,) vector

    Returns:
        (3, 3) skew-symmetric matrix such that skew(v) @ w == cross(v, w)
    """
    return np.array([
        [0.0, -v[2], v[1]],
        [v[2], 0.0, -v[0]],
        [-v[1], v[0], 0.0]
    ])


def exp_so3(ang: np.ndarray) -> np.ndarray:
    """Exponential map: so(3) -> SO(3) via Rodrigues formula.

    Args:
        ang: (3,) angle-axis vector (rotation axis * angle in radians)

    Returns:
        (3, 3) rotation matrix
    """
    ang_norm = np.linalg.norm(ang)
    if ang_norm > 1e-7:
        r_axis = ang / ang_norm
        K = skew(r_axis)
        return np.eye(3) + np.sin(ang_norm) * K + (1.0 - np.cos(ang_norm)) * (K @ K)
    else:
        return np.eye(3) + skew(ang)


def log_so3(R: np.ndarray) -> np.ndarray:
    """Logarithm map: SO(3) -> so(3).

    Clamps the trace at 3-1e-6 and falls back to the small-angle form.

    Args:
        R: (3, 3) rotation matrix

    Returns:
        (3,) angle-axis vector
    """
    trace = np.trace(R)
    theta = 0.0 if trace > 3.0 - 1e-6 else np.arccos(np.clip(0.5 * (trace - 1.0), -1.0, 1.0))
    K = np.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]])
    if abs(theta) < 0.001:
        return 0.5 * K
    else:
        return 0.5 * theta / np.sin(theta) * K


def left_jacobian_so3(phi: np.ndarray) -> np.ndarray:
    """Left Jacobian of SO(3), so that Exp(phi + d) ~= Exp(J d) Exp(phi).

    Args:
        phi: (3,) angle-axis vector

    Returns:
        (3, 3) left Jacobian
    """
    theta = np.linalg.norm(phi)
    K = skew(phi)
    if theta < 1e-5:
        return np.eye(3) + 0.5 * K + (K @ K) / 6.0
    return (np.eye(3) + (1.0 - np.cos(theta)) / (theta * theta) * K +
            (theta - np.sin(theta)) / (theta ** 3) * (K @ K))


def left_jacobian_inv_so3(phi: np.ndarray) -> np.ndarray:
    """Inverse of the SO(3) left Jacobian.

    Args:
        phi: (3,) angle-axis vector

    Returns:
        (3, 3) inverse left Jacobian
    """
    theta = np.linalg.norm(phi)
    K = skew(phi)
    if theta < 1e-5:
        return np.eye(3) - 0.5 * K + (K @ K) / 12.0
    coeff = (1.0 / (theta * theta) -
             (1.0 + np.cos(theta)) / (2.0 * theta * np.sin(theta)))
    return np.eye(3) - 0.5 * K + coeff * (K @ K)
