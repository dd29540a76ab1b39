"""Laser odometry pipeline orchestration.

Points are buffered per ring until ``n_window`` scans have completed, then
features are extracted, the window's knots are solved against the local map
and the window is rolled over.
"""
import numba
import numpy as np

from .config import LaserOdomConfig, validate_config
from .correspondence import CorrespondenceFinder
from .errors import InsufficientResiduals
from .features import FeatureSelector, default_feature_definitions
from .handoff import OutputChannel
from .local_map import LocalMap
from .optimizer import WindowOptimizer
from .output import pose_entry, write_trajectory, write_correspondences
from .prefilter import Prefilter
from .preprocess import Preprocessor
from .remap import SolutionRemapper
from .se3 import inverse
from .signals import ScanBuffer, ScoreComputer, extract_signals
from .trajectory import TrajectoryModel
from .types import Signal, WindowResult
from .window import WindowAdvancer


class LaserOdom:
    """Continuous-time laser odometry over accumulation windows."""

    def __init__(self, config: LaserOdomConfig = None):
        self.config = config if config is not None else LaserOdomConfig()
        validate_config(self.config)
        sc = self.config.sensor
        fc = self.config.features
        mc = self.config.map
        cc = self.config.correspondence
        oc = self.config.optimizer

        if oc.solver_threads > 0:
            numba.set_num_threads(min(oc.solver_threads, numba.config.NUMBA_NUM_THREADS))

        self.definitions = fc.definitions if fc.definitions else default_feature_definitions(fc)
        self.window_ticks = sc.max_ticks * sc.n_window

        self.preprocessor = Preprocessor(blind=sc.blind, n_ring=sc.n_ring,
                                         min_intensity=sc.min_intensity,
                                         max_intensity=sc.max_intensity)
        self.buffer = ScanBuffer(sc.n_ring)
        self.scores = ScoreComputer(fc.variance_window)
        self.prefilter = Prefilter(sc.max_ticks, fc.occlusion_tol,
                                   fc.occlusion_tol_2, fc.parallel_tol)
        self.selector = FeatureSelector(self.definitions, self.scores,
                                        fc.angular_bins, fc.key_radius,
                                        self.window_ticks)
        self.trajectory = TrajectoryModel(oc.num_trajectory_states, sc.scan_period,
                                          self.window_ticks, oc.qc, oc.motion_model)
        self.local_map = LocalMap(self.definitions, ttl=mc.ttl,
                                  local_map_range=mc.local_map_range,
                                  edge_map_density=mc.edge_map_density,
                                  flat_map_density=mc.flat_map_density,
                                  ttl_double_decrement=mc.ttl_double_decrement)
        self.finder = CorrespondenceFinder(cc.max_correspondence_dist, cc.azimuth_tol,
                                           cc.max_extrapolation,
                                           cc.plane_extrapolation_guard)
        remapper = SolutionRemapper(oc.min_eigen) if oc.solution_remapping else None
        self.optimizer = WindowOptimizer(self.config, self.trajectory, self.local_map,
                                         self.finder, self.definitions, remapper)
        self.advancer = WindowAdvancer(self.trajectory, self.local_map,
                                       fc.n_edge + fc.n_flat)
        self.channel = OutputChannel()

        self.prv_tick = 0
        self.n_scan_in_batch = 0
        self.windows = 0
        self.features = None
        self.last_report = None
        self.last_error = None
        self.trajectory_log = []
        self._latest = None

    @property
    def initialized(self) -> bool:
        return self.advancer.initialized

    # ─── ingestion ────────────────────────────────────────────

    def add_points(self, points: np.ndarray, tick: int, stamp: float):
        """Ingest points sharing one per-revolution tick.

        A tick drop of more than ``wrap_tolerance`` starts a new scan; every
        ``n_window`` scans the buffered window is processed before these
        points are added.

        Args:
            points: (N, 5) rows [x, y, z, intensity, ring].
            tick: per-revolution tick of the rows.
            stamp: stream timestamp in seconds.

        Raises:
            OrderingViolation: a ring's ticks went backwards.
        """
        sc = self.config.sensor
        if tick - self.prv_tick < -sc.wrap_tolerance:
            self.n_scan_in_batch = (self.n_scan_in_batch + 1) % sc.n_window
            if self.n_scan_in_batch == 0:
                self.process_window(stamp)

        xyz, inten, rings = self.preprocessor.process(points)
        window_tick = int(tick) + self.n_scan_in_batch * sc.max_ticks
        for i in range(len(rings)):
            self.buffer.append(rings[i], xyz[i], inten[i], window_tick)
        self.prv_tick = tick

    def add_point(self, x: float, y: float, z: float, intensity: float,
                  ring: int, tick: int, stamp: float):
        self.add_points(np.array([[x, y, z, intensity, ring]]), tick, stamp)

    # ─── per-window processing ────────────────────────────────

    def generate_features(self) -> list:
        """Score, prefilter and select features on every buffered ring.

        Returns:
            Per feature type, a list of FeaturePoints per ring.
        """
        features = [[] for _ in self.definitions]
        for ring in range(self.config.sensor.n_ring):
            xyz, inten, ticks = self.buffer.ring(ring)
            signals = extract_signals(xyz, inten)
            scores = self.scores.compute(signals)
            valid = self.prefilter.filter_ring(xyz, signals[Signal.RANGE], ticks)
            selected = self.selector.select_ring(scores, valid, ticks)
            for f_idx, indices in enumerate(selected):
                features[f_idx].append(self.selector.gather(xyz, inten, ticks, indices))
        return features

    def process_window(self, stamp: float):
        """Extract, solve (once initialized) and roll over the current window."""
        self.features = self.generate_features()
        solved = False
        failed = False
        if self.advancer.initialized:
            try:
                self.last_report = self.optimizer.optimize(self.features)
                solved = True
            except InsufficientResiduals as exc:
                print(f"[LaserOdom] Less than expected residuals, resetting: {exc}")
                self.advancer.initialized = False
                self.last_error = exc
                failed = True

        if solved:
            self._publish(stamp)

        self.advancer.advance(self.features, allow_init=not failed)
        self.buffer.clear()
        self.windows += 1

    # ─── results ──────────────────────────────────────────────

    def undistort(self) -> np.ndarray:
        """Buffered points in the frame of the final knot, (N, 4) with intensity."""
        T_end_inv = inverse(self.trajectory.knots[-1].pose)
        clouds = []
        for ring in range(self.config.sensor.n_ring):
            xyz, inten, ticks = self.buffer.ring(ring)
            if len(xyz) == 0:
                continue
            pts = self.trajectory.transform_to_map(xyz, ticks)
            pts = pts @ T_end_inv[:3, :3].T + T_end_inv[:3, 3]
            clouds.append(np.column_stack([pts, inten]))
        return np.vstack(clouds) if clouds else np.zeros((0, 4))

    def correspondence_rows(self) -> list:
        """Per feature type: rows of raw point, map points and undistorted
        point, map and undistorted points in the final-knot frame."""
        T_end_inv = inverse(self.trajectory.knots[-1].pose)
        R, t = T_end_inv[:3, :3], T_end_inv[:3, 3]
        out = []
        for corrs in self.optimizer.correspondences:
            rows = []
            for c in corrs:
                _, pose, _, _ = self.trajectory.pose_at(c.tick)
                undistorted = R @ (pose[:3, :3] @ c.point + pose[:3, 3]) + t
                local = c.map_points @ R.T + t
                rows.append(np.concatenate([c.point, local.ravel(), undistorted]))
            out.append(rows)
        return out

    def _publish(self, stamp: float):
        oc = self.config.output
        last = self.trajectory.knots[-1]
        self.trajectory_log.append(pose_entry(stamp, last.pose))
        corr_rows = self.correspondence_rows()
        result = WindowResult(
            stamp=stamp,
            knots=[k.copy() for k in self.trajectory.knots],
            world_pose=last.pose.copy(),
            undistorted=self.undistort() if oc.undistort else None,
            correspondences=corr_rows,
            report=self.last_report,
        )
        if oc.output_correspondences:
            try:
                write_correspondences(oc.correspondence_dir, stamp, corr_rows)
            except OSError as exc:
                print(f"[Output] Could not write correspondences: {exc}")
        self._latest = result
        if self.channel.running:
            self.channel.put(result)

    def latest_result(self) -> WindowResult:
        """Most recent solved window, or None."""
        return self._latest

    def register_output(self, callback):
        """Deliver every solved window to ``callback`` on a consumer thread."""
        self.channel.start(callback)

    def shutdown(self):
        """Stop the consumer and write the trajectory if configured."""
        self.channel.stop()
        oc = self.config.output
        if oc.output_trajectory and self.trajectory_log:
            try:
                write_trajectory(oc.trajectory_path, self.trajectory_log)
                print(f"[Output] Trajectory saved to {oc.trajectory_path}")
            except OSError as exc:
                print(f"[Output] Could not write trajectory: {exc}")
