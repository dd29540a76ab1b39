import numpy as np
import pytest

from conftest import make_room_config, sample_plane, as_features
from ct_loam.correspondence import CorrespondenceFinder
from ct_loam.errors import InsufficientResiduals
from ct_loam.local_map import LocalMap
from ct_loam.optimizer import WindowOptimizer
from ct_loam.remap import SolutionRemapper
from ct_loam.residuals import PointToPlane
from ct_loam.se3 import exp_se3, log_se3
from ct_loam.trajectory import TrajectoryModel
from ct_loam.types import (Kernel, SelectionPolicy, ResidualType, Criterion,
                           FeatureDefinition, AssociationStatus)

T_TRUE = np.array([0.1, -0.05, 0.08])


def build(cfg, definitions, remapper=None):
    sc = cfg.sensor
    oc = cfg.optimizer
    cc = cfg.correspondence
    traj = TrajectoryModel(oc.num_trajectory_states, sc.scan_period,
                           sc.max_ticks * sc.n_window, oc.qc, oc.motion_model)
    lmap = LocalMap(definitions)
    finder = CorrespondenceFinder(cc.max_correspondence_dist, cc.azimuth_tol,
                                  cc.max_extrapolation, cc.plane_extrapolation_guard)
    return WindowOptimizer(cfg, traj, lmap, finder, definitions, remapper), traj, lmap


def wall_scene(flat_definition, **overrides):
    """Map on the wall x = 3 and features on it plus one 0.8 m off it."""
    rng = np.random.default_rng(7)
    cfg = make_room_config(**{"min_residuals": 5, "max_residual_val": 0.3, **overrides})
    opt, traj, lmap = build(cfg, [flat_definition])
    lmap.update(np.zeros(3), [sample_plane(rng, 0, 3.0, [0, -1, -1], [0, 1, 1], 400)])
    feats = sample_plane(rng, 0, 3.0, [0, -0.8, -0.8], [0, 0.8, 0.8], 20)
    feats = np.vstack([feats, [3.8, 0.0, 0.0]])
    ticks = np.linspace(0, 350, len(feats)).astype(np.int64)
    return opt, traj, lmap, as_features(feats, ticks)


def box_corner_scene(rng, n_map=800, n_feat=60):
    """Three orthogonal walls; features seen from a sensor offset by T_TRUE."""
    maps = np.vstack([
        sample_plane(rng, 0, 3.0, [0, -2.5, -2.0], [0, 2.5, 2.5], n_map),
        sample_plane(rng, 1, 3.0, [-2.5, 0, -2.0], [2.5, 0, 2.5], n_map),
        sample_plane(rng, 2, -2.0, [-2.5, -2.5, 0], [2.5, 2.5, 0], n_map),
    ])
    feats = np.vstack([
        sample_plane(rng, 0, 3.0, [0, -1.5, -0.8], [0, 1.5, 1.5], n_feat),
        sample_plane(rng, 1, 3.0, [-1.5, 0, -0.8], [1.5, 0, 1.5], n_feat),
        sample_plane(rng, 2, -2.0, [-1.5, -1.5, 0], [1.5, 1.5, 0], n_feat),
    ])
    ticks = rng.integers(0, 360, size=len(feats))
    return maps, feats - T_TRUE, ticks


def test_outlier_is_gated_before_solving(flat_definition):
    opt, traj, lmap, features = wall_scene(flat_definition)
    report = opt.optimize(features)

    assert report.rejected_outliers == 1
    assert report.correspondences == 20
    assert report.residual_blocks == 20 + 1 + 2
    assert report.converged
    assert report.final_cost == pytest.approx(0.0, abs=1e-12)
    for knot in traj.knots:
        assert np.allclose(knot.pose, np.eye(4))
        assert np.allclose(knot.vel, 0.0)
    for c in opt.correspondences[0]:
        r, _ = c.residual.evaluate(traj.knots[c.residual.knots[0]:c.residual.knots[1] + 1])
        assert np.linalg.norm(r) <= 0.3
    assert np.count_nonzero(lmap[0].status == AssociationStatus.CORRESPONDED) >= 3


def test_offset_sensor_is_recovered(flat_definition):
    rng = np.random.default_rng(11)
    cfg = make_room_config(lock_first=False, motion_prior=False, max_residual_val=1.0,
                           robust_param=10.0, opt_iters=10, max_inner_iters=50)
    opt, traj, lmap = build(cfg, [flat_definition])
    maps, feats, ticks = box_corner_scene(rng)
    lmap.update(np.zeros(3), [maps])

    report = opt.optimize(as_features(feats, ticks))
    assert report.correspondences > 100
    assert report.final_cost < report.initial_cost
    for knot in traj.knots:
        assert np.allclose(knot.pose[:3, 3], T_TRUE, atol=2e-3)
        assert np.linalg.norm(log_se3(knot.pose)[0:3]) < 2e-3


def test_remapping_discards_unobserved_directions(flat_definition):
    rng = np.random.default_rng(11)
    cfg = make_room_config(lock_first=False, motion_prior=False, max_residual_val=1.0,
                           robust_param=10.0, opt_iters=3, max_inner_iters=20)
    opt, traj, lmap = build(cfg, [flat_definition], SolutionRemapper(min_eigen=1e15))
    maps, feats, ticks = box_corner_scene(rng)
    lmap.update(np.zeros(3), [maps])

    opt.optimize(as_features(feats, ticks))
    for knot, prev in zip(traj.knots, traj.prev_knots):
        assert np.allclose(knot.pose, np.eye(4), atol=1e-9)
        assert np.allclose(prev.pose, np.eye(4), atol=1e-9)


def test_too_few_residuals_resets_the_trajectory(flat_definition):
    opt, traj, lmap, features = wall_scene(flat_definition, min_residuals=1000)
    traj.knots[1].pose = exp_se3(np.full(6, 0.05))
    traj.knots[2].vel = np.ones(6)
    with pytest.raises(InsufficientResiduals) as info:
        opt.optimize(features)
    assert info.value.minimum == 1000
    assert info.value.count < 1000
    for knot in traj.knots:
        assert np.allclose(knot.pose, np.eye(4))
        assert not knot.vel.any()


def test_only_extract_features_keeps_the_knots(flat_definition):
    opt, traj, lmap, features = wall_scene(flat_definition, only_extract_features=True)
    moved = exp_se3(np.array([0.0, 0.0, 0.01, 0.02, 0.0, 0.0]))
    traj.knots[2].pose = moved.copy()
    report = opt.optimize(features)
    assert report.correspondences > 0
    assert np.allclose(traj.knots[2].pose, moved)


def test_lines_can_be_treated_as_planes():
    cfg = make_room_config()
    cfg.correspondence.treat_lines_as_planes = True
    edge = FeatureDefinition("edge", [Criterion(Kernel.LOAM, SelectionPolicy.HIGH_NEG, 1.0)],
                             ResidualType.LINE, 8)
    opt, traj, _ = build(cfg, [edge])
    hat, candle = traj.priors[0].interpolation_matrices(0.0)
    block = opt._point_residual(ResidualType.LINE, np.array([3.0, 0.5, 0.2]), 0, hat, candle,
                                np.array([[3.0, 0.0, 0.0], [3.0, 0.0, 1.0]]), None)
    assert isinstance(block, PointToPlane)
    # the plane through the line and the window origin is y = 0
    r, _ = block.evaluate(traj.knots[0:2])
    assert abs(r[0]) == pytest.approx(0.5)


def test_body_covariances_are_symmetric(flat_definition):
    cfg = make_room_config()
    opt, _, _ = build(cfg, [flat_definition])
    feats = np.array([[3.0, 0.5, 0.2], [0.0, -4.0, 1.0]])
    covs = opt.body_covariances(as_features(feats))
    assert covs[0][0].shape == (2, 3, 3)
    for cov in covs[0][0]:
        assert np.allclose(cov, cov.T)
        assert np.all(np.linalg.eigvalsh(cov) >= -1e-12)
