"""Window optimization: residual assembly, outlier gating and the
re-linearization loop."""
import numpy as np

from .errors import CostEvaluationFailure, InsufficientResiduals
from .numba_kernels import calc_body_cov_batch_jit
from .residuals import (BisquareLoss, TrajectoryPrior, MotionPrior,
                        PointToLine, PointToPlane)
from .se3 import is_near
from .solver import Problem, solve
from .trajectory import interpolate
from .types import ResidualType, Correspondence, OptimizationReport


class WindowOptimizer:
    """Solves the knots of one window against the local map.

    Args:
        config: LaserOdomConfig.
        trajectory: TrajectoryModel whose knots are refined in place.
        local_map: LocalMap to match against.
        finder: CorrespondenceFinder.
        definitions: list of FeatureDefinition, index-aligned with the map.
        remapper: optional SolutionRemapper.
    """

    def __init__(self, config, trajectory, local_map, finder, definitions,
                 remapper=None):
        self.opt = config.optimizer
        self.corr = config.correspondence
        self.sensor = config.sensor
        self.trajectory = trajectory
        self.local_map = local_map
        self.finder = finder
        self.definitions = definitions
        self.remapper = remapper
        self.correspondences = [[] for _ in definitions]

    def body_covariances(self, features: list) -> list:
        """Sensor-frame covariance of every feature point, per type and ring."""
        covs = []
        for rings in features:
            covs.append([calc_body_cov_batch_jit(np.ascontiguousarray(fp.xyz),
                                                 self.sensor.range_err,
                                                 self.sensor.beam_err)
                         if len(fp) else np.zeros((0, 3, 3)) for fp in rings])
        return covs

    def _point_residual(self, residual_type, point, k, hat, candle, map_pts,
                        cov_map):
        if residual_type == ResidualType.PLANE:
            return PointToPlane(point, k, hat, candle, map_pts[0], map_pts[1],
                                map_pts[2], cov_map)
        if self.corr.treat_lines_as_planes:
            origin = self.trajectory.knots[0].pose[:3, 3]
            return PointToPlane(point, k, hat, candle, map_pts[0], map_pts[1],
                                origin, cov_map)
        return PointToLine(point, k, hat, candle, map_pts[0], map_pts[1], cov_map)

    def build_problem(self, features: list, body_covs: list, report: OptimizationReport) -> Problem:
        """Assemble prior, motion and correspondence residual blocks.

        Correspondence residuals whose norm exceeds
        ``weight^2 * max_residual_val`` are left out of the problem.
        """
        traj = self.trajectory
        knots = traj.knots
        problem = Problem(traj.n_knots)
        if self.opt.motion_prior:
            problem.add_residual_block(TrajectoryPrior(traj.priors[0].sqrt_info,
                                                       traj.prior_pose, traj.prior_vel))
        for k, prior in enumerate(traj.priors):
            problem.add_residual_block(MotionPrior(k, prior))

        report.correspondences = 0
        report.rejected_outliers = 0
        report.failed_evaluations = 0
        report.rejected_extrapolations = 0
        for f_idx, definition in enumerate(self.definitions):
            fmap = self.local_map[f_idx]
            self.correspondences[f_idx] = []
            if len(fmap) == 0:
                continue
            for ring, fp in enumerate(features[f_idx]):
                for i in range(len(fp)):
                    point = fp.xyz[i]
                    tick = int(fp.ticks[i])
                    k, tau = traj.transform_indices(tick)
                    hat, candle = traj.priors[k].interpolation_matrices(tau)
                    pose, _, _ = interpolate(knots[k], knots[k + 1], hat, candle)
                    R = pose[:3, :3]
                    query = R @ point + pose[:3, 3]

                    indices = self.finder.find(fmap, query)
                    if indices is None:
                        continue
                    map_pts = fmap.points[list(indices)]
                    if self.corr.no_extrapolation and self.finder.out_of_bounds(
                            query, map_pts, definition.residual):
                        report.rejected_extrapolations += 1
                        continue

                    cov_map = R @ body_covs[f_idx][ring][i] @ R.T if self.opt.use_weighting else None
                    try:
                        block = self._point_residual(definition.residual, point, k,
                                                     hat, candle, map_pts, cov_map)
                        r, _ = block.evaluate([knots[k], knots[k + 1]])
                    except CostEvaluationFailure as exc:
                        print(f"[Optimizer] Cost function did not evaluate: {exc}")
                        report.failed_evaluations += 1
                        continue

                    rescale = block.weight * block.weight
                    if np.linalg.norm(r) > rescale * self.opt.max_residual_val:
                        report.rejected_outliers += 1
                        continue

                    problem.add_residual_block(block, BisquareLoss(rescale * self.opt.robust_param))
                    fmap.mark_corresponded(indices)
                    self.correspondences[f_idx].append(
                        Correspondence(f_idx, ring, tick, point.copy(), indices,
                                       map_pts.copy(), block))
                    report.correspondences += 1

        if self.opt.lock_first:
            problem.set_knot_constant(0)
        return problem

    def match(self, features: list, body_covs: list, report: OptimizationReport):
        """One build-and-solve cycle.

        Raises:
            InsufficientResiduals: too few residual blocks; the trajectory has
                been reset to identity poses and zero velocities.
        """
        problem = self.build_problem(features, body_covs, report)
        report.residual_blocks = problem.num_residual_blocks()
        if report.residual_blocks < self.opt.min_residuals:
            self.trajectory.reset()
            raise InsufficientResiduals(report.residual_blocks, self.opt.min_residuals)
        if self.opt.only_extract_features:
            return None

        summary = solve(problem, self.trajectory.knots, max_iterations=self.opt.max_inner_iters)
        if report.iterations == 0:
            report.initial_cost = summary.initial_cost
        report.final_cost = summary.final_cost
        if self.remapper is not None:
            self.remapper.apply(self.trajectory.knots, self.trajectory.prev_knots,
                                summary.information, summary.free_knots)
            self.trajectory.copy_to_previous()
        return summary

    def optimize(self, features: list) -> OptimizationReport:
        """Re-linearize and solve until the final pose settles.

        Args:
            features: per feature type, a list of FeaturePoints per ring.

        Returns:
            OptimizationReport of the run.
        """
        report = OptimizationReport()
        body_covs = self.body_covariances(features) if self.opt.use_weighting else None
        last = self.trajectory.knots[-1]
        for i in range(self.opt.opt_iters):
            previous = last.pose.copy()
            self.match(features, body_covs, report)
            report.iterations = i + 1
            last = self.trajectory.knots[-1]
            if i > 0 and is_near(last.pose, previous, self.opt.diff_tol):
                report.converged = True
                break
        return report
