"""Trajectory knot state with boxplus/boxminus on SE(3).

State vector layout for boxplus/boxminus:
    [0:3]   rotation twist
    [3:6]   translation twist
    [6:12]  body velocity (angular, linear)
"""
import numpy as np
from .se3 import exp_se3, log_se3, inverse

DIM_STATE = 12


class TrajectoryKnot:
    """Pose (4x4) and twist velocity (6,) at one knot time."""

    __slots__ = ['pose', 'vel']

    def __init__(self, pose: np.ndarray = None, vel: np.ndarray = None):
        self.pose = np.eye(4) if pose is None else np.array(pose, dtype=np.float64)
        self.vel = np.zeros(6) if vel is None else np.array(vel, dtype=np.float64)

    def boxplus(self, delta: np.ndarray) -> 'TrajectoryKnot':
        """knot (+) delta -> new knot, left-perturbing the pose.

        Args:
            delta: (12,) increment [pose twist, velocity]

        Returns:
            New TrajectoryKnot with the increment applied.
        """
        return TrajectoryKnot(exp_se3(delta[0:6]) @ self.pose,
                              self.vel + delta[6:12])

    def boxplus_inplace(self, delta: np.ndarray):
        self.pose = exp_se3(delta[0:6]) @ self.pose
        self.vel = self.vel + delta[6:12]

    def boxminus(self, other: 'TrajectoryKnot') -> np.ndarray:
        """self (-) other -> (12,) delta with self == other (+) delta."""
        delta = np.zeros(DIM_STATE)
        delta[0:6] = log_se3(self.pose @ inverse(other.pose))
        delta[6:12] = self.vel - other.vel
        return delta

    def copy(self) -> 'TrajectoryKnot':
        return TrajectoryKnot(self.pose.copy(), self.vel.copy())

    def resetpose(self):
        """Reset to identity pose and zero velocity."""
        self.pose = np.eye(4)
        self.vel = np.zeros(6)

    def __repr__(self):
        return (f"TrajectoryKnot(t={self.pose[:3, 3].round(4).tolist()}, "
                f"vel={self.vel.round(4).tolist()})")
