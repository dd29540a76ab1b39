"""SE(3) operations on 4x4 homogeneous transforms.

Twists are ordered rotation first, ``xi = [phi, rho]``, and perturbations
are applied on the left: ``T <- Exp(xi) @ T``.
"""
import numpy as np
from .so3 import (skew, exp_so3, log_so3, left_jacobian_so3,
                  left_jacobian_inv_so3)


def exp_se3(xi: np.ndarray) -> np.ndarray:
    """Exponential map se(3) -> SE(3).

    Args:
        xi: (6,) twist [phi, rho]

    Returns:
        (4, 4) homogeneous transform
    """
    T = np.eye(4)
    T[:3, :3] = exp_so3(xi[0:3])
    T[:3, 3] = left_jacobian_so3(xi[0:3]) @ xi[3:6]
    return T


def log_se3(T: np.ndarray) -> np.ndarray:
    """Logarithm map SE(3) -> se(3).

    Args:
        T: (4, 4) homogeneous transform

    Returns:
        (6,) twist [phi, rho]
    """
    phi = log_so3(T[:3, :3])
    rho = left_jacobian_inv_so3(phi) @ T[:3, 3]
    return np.concatenate([phi, rho])


def inverse(T: np.ndarray) -> np.ndarray:
    """Inverse of a rigid transform."""
    R = T[:3, :3]
    Ti = np.eye(4)
    Ti[:3, :3] = R.T
    Ti[:3, 3] = -R.T @ T[:3, 3]
    return Ti


def adjoint(T: np.ndarray) -> np.ndarray:
    """Adjoint of T, so that T Exp(xi) T^-1 == Exp(Ad(T) xi)."""
    R = T[:3, :3]
    Ad = np.zeros((6, 6))
    Ad[0:3, 0:3] = R
    Ad[3:6, 3:6] = R
    Ad[3:6, 0:3] = skew(T[:3, 3]) @ R
    return Ad


def curly_hat(xi: np.ndarray) -> np.ndarray:
    """6x6 adjoint of a twist, ``ad(xi)``."""
    phi_hat = skew(xi[0:3])
    out = np.zeros((6, 6))
    out[0:3, 0:3] = phi_hat
    out[3:6, 3:6] = phi_hat
    out[3:6, 0:3] = skew(xi[3:6])
    return out


def _q_matrix(xi: np.ndarray) -> np.ndarray:
    """Translational coupling block of the SE(3) left Jacobian."""
    phi = xi[0:3]
    P = skew(phi)
    V = skew(xi[3:6])
    theta = np.linalg.norm(phi)
    if theta < 1e-2:
        c1, c2, c3 = 1.0 / 6.0, 1.0 / 24.0, 1.0 / 120.0
    else:
        t2 = theta * theta
        s = np.sin(theta)
        c = np.cos(theta)
        c1 = (theta - s) / (t2 * theta)
        c2 = (t2 + 2.0 * c - 2.0) / (2.0 * t2 * t2)
        c3 = (2.0 * theta - 3.0 * s + theta * c) / (2.0 * t2 * t2 * theta)
    PV = P @ V
    VP = V @ P
    PVP = PV @ P
    PP = P @ P
    return (0.5 * V + c1 * (PV + VP + PVP) +
            c2 * (PP @ V + VP @ P - 3.0 * PVP) +
            c3 * (PVP @ P + P @ PVP))


def left_jacobian_se3(xi: np.ndarray) -> np.ndarray:
    """Left Jacobian of SE(3), so that Exp(xi + d) ~= Exp(J d) Exp(xi)."""
    J = left_jacobian_so3(xi[0:3])
    out = np.zeros((6, 6))
    out[0:3, 0:3] = J
    out[3:6, 3:6] = J
    out[3:6, 0:3] = _q_matrix(xi)
    return out


def left_jacobian_inv_se3(xi: np.ndarray) -> np.ndarray:
    """Inverse of the SE(3) left Jacobian."""
    J_inv = left_jacobian_inv_so3(xi[0:3])
    out = np.zeros((6, 6))
    out[0:3, 0:3] = J_inv
    out[3:6, 3:6] = J_inv
    out[3:6, 0:3] = -J_inv @ _q_matrix(xi) @ J_inv
    return out


def is_near(T_a: np.ndarray, T_b: np.ndarray, tol: float) -> bool:
    """True when the twist between two transforms is shorter than tol."""
    return np.linalg.norm(log_se3(T_a @ inverse(T_b))) < tol
