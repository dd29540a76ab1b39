"""Continuous-time trajectory over discrete pose/velocity knots.

Poses between two knots are interpolated with a white-noise-on-acceleration
(constant-velocity) Gaussian-process prior. With the local states
``gamma_1 = [0, w1]`` and ``gamma_2 = [xi21, Jl^-1(xi21) w2]`` where
``xi21 = Log(T2 T1^-1)``, the state at ``tau`` is
``gamma_tau = hat @ gamma_1 + candle @ gamma_2`` and
``T_tau = Exp(gamma_tau[0:6]) T1``.
"""
import numpy as np

from .errors import ConfigurationError
from .numba_kernels import batch_transform_points_jit
from .se3 import (exp_se3, log_se3, inverse, adjoint, left_jacobian_se3,
                  left_jacobian_inv_se3)
from .state import TrajectoryKnot


class ConstantVelocityPrior:
    """GP prior between two knot times with power-spectral density Qc."""

    def __init__(self, t1: float, t2: float, qc: np.ndarray):
        if t2 <= t1:
            raise ConfigurationError("Knot timestamps must be strictly increasing")
        self.t1 = float(t1)
        self.t2 = float(t2)
        self.dt = self.t2 - self.t1
        qc = np.asarray(qc, dtype=np.float64)
        self.Qc = np.diag(qc)
        self.Qc_inv = np.diag(1.0 / qc)
        self.phi21 = self.transition(self.t2, self.t1)
        self.Q21 = self.covariance(self.dt)
        self.Q21_inv = self.inverse_covariance(self.dt)
        # upper factor: L.T @ L == Q21_inv
        self.sqrt_info = np.linalg.cholesky(self.Q21_inv).T

    @staticmethod
    def transition(t: float, s: float) -> np.ndarray:
        """State transition Phi(t, s) of the constant-velocity model."""
        phi = np.eye(12)
        phi[0:6, 6:12] = (t - s) * np.eye(6)
        return phi

    def covariance(self, d: float) -> np.ndarray:
        Q = np.zeros((12, 12))
        Q[0:6, 0:6] = d ** 3 / 3.0 * self.Qc
        Q[0:6, 6:12] = d ** 2 / 2.0 * self.Qc
        Q[6:12, 0:6] = d ** 2 / 2.0 * self.Qc
        Q[6:12, 6:12] = d * self.Qc
        return Q

    def inverse_covariance(self, d: float) -> np.ndarray:
        Qi = np.zeros((12, 12))
        Qi[0:6, 0:6] = 12.0 / d ** 3 * self.Qc_inv
        Qi[0:6, 6:12] = -6.0 / d ** 2 * self.Qc_inv
        Qi[6:12, 0:6] = -6.0 / d ** 2 * self.Qc_inv
        Qi[6:12, 6:12] = 4.0 / d * self.Qc_inv
        return Qi

    def interpolation_matrices(self, tau: float):
        """Compute the (hat, candle) matrices for query time tau.

        Args:
            tau: absolute time, expected in [t1, t2]

        Returns:
            Tuple of (hat (12, 12), candle (12, 12)).
        """
        Q_tau = self.covariance(tau - self.t1)
        candle = Q_tau @ self.transition(self.t2, tau).T @ self.Q21_inv
        hat = self.transition(tau, self.t1) - candle @ self.phi21
        return hat, candle


def make_prior(motion_model: str, t1: float, t2: float, qc: np.ndarray):
    """Build the prior kernel selected by ``motion_model``."""
    if motion_model == "constant_velocity":
        return ConstantVelocityPrior(t1, t2, qc)
    raise ConfigurationError(f"Unknown motion model '{motion_model}'")


def interpolate(knot_a: TrajectoryKnot, knot_b: TrajectoryKnot,
                hat: np.ndarray, candle: np.ndarray,
                with_jacobians: bool = False):
    """Interpolate pose and velocity between two knots.

    Jacobians are with respect to left perturbations of each pose and
    additive perturbations of each velocity. The dependence of
    ``Jl^-1(xi21) w2`` on the poses is neglected.

    Args:
        knot_a: knot at the start of the interval.
        knot_b: knot at the end of the interval.
        hat, candle: matrices from ``interpolation_matrices``.
        with_jacobians: also return the four (6, 6) Jacobians.

    Returns:
        Tuple of (pose (4, 4), velocity (6,), jacobians) where jacobians is
        (d_pose_a, d_pose_b, d_vel_a, d_vel_b) or None.
    """
    xi21 = log_se3(knot_b.pose @ inverse(knot_a.pose))
    J21_inv = left_jacobian_inv_se3(xi21)
    w2_local = J21_inv @ knot_b.vel

    xi_tau = (hat[0:6, 6:12] @ knot_a.vel + candle[0:6, 0:6] @ xi21 +
              candle[0:6, 6:12] @ w2_local)
    T_exp = exp_se3(xi_tau)
    pose = T_exp @ knot_a.pose
    J_tau = left_jacobian_se3(xi_tau)
    vel = J_tau @ (hat[6:12, 6:12] @ knot_a.vel + candle[6:12, 0:6] @ xi21 +
                   candle[6:12, 6:12] @ w2_local)

    if not with_jacobians:
        return pose, vel, None

    Jpsi = J_tau @ candle[0:6, 0:6]
    d_pose_a = adjoint(T_exp) - Jpsi @ left_jacobian_inv_se3(-xi21)
    d_pose_b = Jpsi @ J21_inv
    d_vel_a = J_tau @ hat[0:6, 6:12]
    d_vel_b = J_tau @ candle[0:6, 6:12] @ J21_inv
    return pose, vel, (d_pose_a, d_pose_b, d_vel_a, d_vel_b)


class TrajectoryModel:
    """Knot chain of one accumulation window plus the previous window's copy.

    Knot ``i`` sits at ``i * scan_period / (K - 1)``; a window tick maps
    linearly onto ``[0, scan_period]``.
    """

    def __init__(self, n_knots: int, scan_period: float, window_ticks: int,
                 qc: np.ndarray, motion_model: str = "constant_velocity"):
        if n_knots < 2:
            raise ConfigurationError("Number of trajectory states must be at least 2")
        self.n_knots = n_knots
        self.scan_period = scan_period
        self.window_ticks = window_ticks
        step = scan_period / (n_knots - 1)
        self.stamps = np.array([i * step for i in range(n_knots)])
        self.priors = [make_prior(motion_model, self.stamps[i], self.stamps[i + 1], qc)
                       for i in range(n_knots - 1)]
        self.knots = [TrajectoryKnot() for _ in range(n_knots)]
        self.prev_knots = [TrajectoryKnot() for _ in range(n_knots)]
        # final state of the finished window, anchors the first knot
        self.prior_pose = np.eye(4)
        self.prior_vel = np.zeros(6)

    def transform_indices(self, tick: int):
        """Map a window tick to (interval index, absolute time tau)."""
        k = (int(tick) * (self.n_knots - 1)) // self.window_ticks
        k = min(max(k, 0), self.n_knots - 2)
        tau = tick * self.scan_period / self.window_ticks
        return k, tau

    def pose_at(self, tick: int, with_jacobians: bool = False):
        """Interpolated (k, pose, velocity, jacobians) at a window tick."""
        k, tau = self.transform_indices(tick)
        hat, candle = self.priors[k].interpolation_matrices(tau)
        pose, vel, jacs = interpolate(self.knots[k], self.knots[k + 1], hat,
                                      candle, with_jacobians)
        return k, pose, vel, jacs

    def poses_at(self, ticks: np.ndarray):
        """Interpolated poses for many ticks.

        Returns:
            Tuple of (rotations (N, 3, 3), positions (N, 3)).
        """
        ticks = np.asarray(ticks, dtype=np.int64)
        uniq, inverse_idx = np.unique(ticks, return_inverse=True)
        rots = np.empty((len(uniq), 3, 3))
        pos = np.empty((len(uniq), 3))
        for i, tick in enumerate(uniq):
            _, T, _, _ = self.pose_at(tick)
            rots[i] = T[:3, :3]
            pos[i] = T[:3, 3]
        return rots[inverse_idx], pos[inverse_idx]

    def transform_to_map(self, points: np.ndarray, ticks: np.ndarray) -> np.ndarray:
        """Transform (N, 3) window points into the map frame at their ticks."""
        if len(points) == 0:
            return np.zeros((0, 3))
        rots, pos = self.poses_at(ticks)
        return batch_transform_points_jit(rots, pos, np.ascontiguousarray(points, dtype=np.float64))

    def reset(self):
        """Identity poses and zero velocities for every knot."""
        for knot in self.knots:
            knot.resetpose()
        self.prior_vel = np.zeros(6)

    def copy_to_previous(self):
        self.prev_knots = [k.copy() for k in self.knots]
