"""Window rollover: local-map refresh, initialization and knot seeding."""
import numpy as np

from .se3 import exp_se3


class WindowAdvancer:
    """Slides the pipeline from a finished window to the next one."""

    def __init__(self, trajectory, local_map, min_features: int):
        """
        Args:
            trajectory: TrajectoryModel.
            local_map: LocalMap.
            min_features: local-map size needed before initialization.
        """
        self.trajectory = trajectory
        self.local_map = local_map
        self.min_features = min_features
        self.full_revolution = False
        self.initialized = False

    def refresh_map(self, features: list):
        """Evict and insert with the finished window's trajectory.

        Args:
            features: per feature type, a list of FeaturePoints per ring.

        Returns:
            Tuple of (removed, inserted).
        """
        traj = self.trajectory
        new_points = []
        for rings in features:
            pts = [traj.transform_to_map(fp.xyz, fp.ticks) for fp in rings if len(fp)]
            new_points.append(np.vstack(pts) if pts else np.zeros((0, 3)))
        center = traj.knots[-1].pose[:3, 3].copy()
        return self.local_map.update(center, new_points)

    def check_initialization(self):
        """The first full window only arms initialization; later windows
        initialize once the local map is populated."""
        if self.initialized:
            return
        if not self.full_revolution:
            self.full_revolution = True
            return
        if self.local_map.total_points() >= self.min_features:
            self.initialized = True
            print(f"[LaserOdom] Initialized with {self.local_map.total_points()} map features")

    def seed(self):
        """Extrapolate the next window's knots from the last velocity."""
        traj = self.trajectory
        last = traj.knots[-1]
        traj.prior_pose = last.pose.copy()
        traj.prior_vel = last.vel.copy()
        step = traj.scan_period / (traj.n_knots - 1)
        increment = exp_se3(step * traj.prior_vel)
        traj.knots[0].pose = traj.prior_pose.copy()
        traj.knots[0].vel = traj.prior_vel.copy()
        for i in range(1, traj.n_knots):
            traj.knots[i].pose = increment @ traj.knots[i - 1].pose
            traj.knots[i].vel = traj.prior_vel.copy()
        traj.copy_to_previous()

    def advance(self, features: list, allow_init: bool = True):
        """Run the full rollover for a finished window.

        Returns:
            Tuple of (removed, inserted) local-map points.
        """
        counts = self.refresh_map(features)
        if allow_init:
            self.check_initialization()
        self.seed()
        return counts
