"""Residual blocks over trajectory knots and the bisquare loss.

Every block names the knots it touches in ``knots``; ``evaluate`` returns the
whitened residual and, on request, its Jacobian with columns ordered
``[pose_k, vel_k, pose_k+1, vel_k+1, ...]`` (6 each) for those knots, under
left pose perturbations.
"""
import numpy as np

from .errors import CostEvaluationFailure
from .se3 import log_se3, inverse, left_jacobian_inv_se3, curly_hat
from .so3 import skew
from .trajectory import interpolate

DEGENERATE_EPS = 1e-9


class BisquareLoss:
    """Tukey bisquare loss on the squared residual norm ``s``.

    ``rho(s) = c^2/3 (1 - (1 - s/c^2)^3)`` for ``s <= c^2``, ``c^2/3`` beyond.
    """

    def __init__(self, c: float):
        self.c2 = c * c

    def rho(self, s: float) -> float:
        if s > self.c2:
            return self.c2 / 3.0
        return self.c2 / 3.0 * (1.0 - (1.0 - s / self.c2) ** 3)

    def weight(self, s: float) -> float:
        """First derivative rho'(s), the reweighting factor."""
        if s > self.c2:
            return 0.0
        return (1.0 - s / self.c2) ** 2


class TrajectoryPrior:
    """Anchors the first knot to a prior pose and velocity."""

    def __init__(self, sqrt_info: np.ndarray, prior_pose: np.ndarray,
                 prior_vel: np.ndarray):
        self.knots = (0,)
        self.sqrt_info = sqrt_info
        self.inv_prior_pose = inverse(prior_pose)
        self.prior_vel = np.array(prior_vel, dtype=np.float64)
        self.weight = 1.0

    def evaluate(self, knots: list, jacobians: bool = False):
        knot = knots[0]
        e_pose = log_se3(knot.pose @ self.inv_prior_pose)
        e = np.concatenate([e_pose, knot.vel - self.prior_vel])
        r = self.sqrt_info @ e
        if not jacobians:
            return r, None
        J = np.zeros((12, 12))
        J[0:6, 0:6] = left_jacobian_inv_se3(e_pose)
        J[6:12, 6:12] = np.eye(6)
        return r, self.sqrt_info @ J


class MotionPrior:
    """Constant-velocity GP prior between two consecutive knots.

    ``e = [xi21 - dt w1, Jl^-1(xi21) w2 - w1]`` whitened by the Cholesky
    factor of the interval's inverse covariance.
    """

    def __init__(self, k: int, prior):
        self.knots = (k, k + 1)
        self.dt = prior.dt
        self.sqrt_info = prior.sqrt_info
        self.weight = 1.0

    def evaluate(self, knots: list, jacobians: bool = False):
        a, b = knots
        xi21 = log_se3(b.pose @ inverse(a.pose))
        J_inv = left_jacobian_inv_se3(xi21)
        e = np.concatenate([xi21 - self.dt * a.vel, J_inv @ b.vel - a.vel])
        r = self.sqrt_info @ e
        if not jacobians:
            return r, None
        Jr_inv = left_jacobian_inv_se3(-xi21)
        half_w2 = 0.5 * curly_hat(b.vel)
        J = np.zeros((12, 24))
        J[0:6, 0:6] = -Jr_inv
        J[0:6, 6:12] = -self.dt * np.eye(6)
        J[0:6, 12:18] = J_inv
        J[6:12, 0:6] = -half_w2 @ Jr_inv
        J[6:12, 6:12] = -np.eye(6)
        J[6:12, 12:18] = half_w2 @ J_inv
        J[6:12, 18:24] = J_inv
        return r, self.sqrt_info @ J


class _PointResidual:
    """Shared plumbing of the point-to-primitive residuals."""

    def __init__(self, point: np.ndarray, k: int, hat: np.ndarray,
                 candle: np.ndarray):
        self.knots = (k, k + 1)
        self.point = np.array(point, dtype=np.float64)
        self.hat = hat
        self.candle = candle

    def _transform(self, knots: list, jacobians: bool):
        pose, _, jacs = interpolate(knots[0], knots[1], self.hat, self.candle,
                                    with_jacobians=jacobians)
        q = pose[:3, :3] @ self.point + pose[:3, 3]
        if not jacobians:
            return q, None
        dq = np.hstack([-skew(q), np.eye(3)])
        d_pose_a, d_pose_b, d_vel_a, d_vel_b = jacs
        J = np.hstack([dq @ d_pose_a, dq @ d_vel_a, dq @ d_pose_b, dq @ d_vel_b])
        return q, J

    def evaluate(self, knots: list, jacobians: bool = False):
        q, Jq = self._transform(knots, jacobians)
        r = self.G @ (q - self.anchor)
        if not jacobians:
            return r, None
        return r, self.G @ Jq


class PointToLine(_PointResidual):
    """Distance from the transformed point to the line through A and B.

    The 2-vector residual is the offset projected on an orthonormal basis of
    the plane normal to the line, whitened by ``W``.
    """

    def __init__(self, point, k, hat, candle, A, B, cov_map=None):
        super().__init__(point, k, hat, candle)
        AB = np.asarray(B, dtype=np.float64) - A
        length = np.linalg.norm(AB)
        if length < DEGENERATE_EPS:
            raise CostEvaluationFailure("Line primitive has coincident points")
        u = AB / length
        helper = np.array([1.0, 0.0, 0.0]) if abs(u[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
        e1 = np.cross(u, helper)
        e1 /= np.linalg.norm(e1)
        e2 = np.cross(u, e1)
        P = np.column_stack([e1, e2])

        if cov_map is None:
            W = np.eye(2)
        else:
            try:
                W = np.linalg.cholesky(np.linalg.inv(P.T @ cov_map @ P)).T
            except np.linalg.LinAlgError as exc:
                raise CostEvaluationFailure(f"Line covariance not invertible: {exc}") from exc
        self.anchor = np.array(A, dtype=np.float64)
        self.G = W @ P.T
        self.weight = float(np.trace(W))


class PointToPlane(_PointResidual):
    """Signed distance from the transformed point to the plane through A, B, C."""

    def __init__(self, point, k, hat, candle, A, B, C, cov_map=None):
        super().__init__(point, k, hat, candle)
        A = np.asarray(A, dtype=np.float64)
        n = np.cross(np.asarray(B) - A, np.asarray(C) - A)
        norm = np.linalg.norm(n)
        if norm < DEGENERATE_EPS:
            raise CostEvaluationFailure("Plane primitive is degenerate")
        n = n / norm
        if cov_map is None:
            weight = 1.0
        else:
            var = n @ cov_map @ n
            if var <= 0.0:
                raise CostEvaluationFailure("Plane covariance is not positive")
            weight = 1.0 / np.sqrt(var)
        self.anchor = A
        self.G = weight * n.reshape(1, 3)
        self.weight = float(weight)
