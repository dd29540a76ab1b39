import os

import numpy as np
import pytest

from conftest import (make_room_config, room_scan, moving_scan, tick_rows, feed_scan,
                      N_RING, MAX_TICKS)
from ct_loam import LaserOdom
from ct_loam.errors import InsufficientResiduals, OrderingViolation
from ct_loam.se3 import log_se3
from ct_loam.types import WindowResult


def run(odom, scans):
    """Feed whole scans, then the first tick of the next one to close the last window."""
    for i, scan in enumerate(scans):
        feed_scan(odom, scan, 0.1 * i)
    odom.add_points(scans[-1][0][1], 0, 0.1 * len(scans))


@pytest.fixture(scope="module")
def stationary(tmp_path_factory):
    """Four identical scans of the room with every output enabled."""
    out = tmp_path_factory.mktemp("stationary")
    cfg = make_room_config()
    cfg.output.output_correspondences = True
    cfg.output.correspondence_dir = str(out / "corr")
    cfg.output.output_trajectory = True
    cfg.output.trajectory_path = str(out / "traj.txt")
    odom = LaserOdom(cfg)
    received = []
    odom.register_output(received.append)
    scan = room_scan()
    run(odom, [scan] * 4)
    odom.shutdown()
    return odom, received, out


def test_stationary_windows_initialize_then_solve(stationary):
    odom, _, _ = stationary
    assert odom.windows == 4
    assert odom.initialized
    assert odom.last_error is None
    assert len(odom.trajectory_log) == 2
    assert len(odom.features) == len(odom.definitions)


def test_stationary_solution_is_identity(stationary):
    odom, _, _ = stationary
    result = odom.latest_result()
    assert isinstance(result, WindowResult)
    assert result.stamp == pytest.approx(0.4)
    assert np.allclose(result.world_pose, np.eye(4))
    for knot in result.knots:
        assert np.allclose(knot.pose, np.eye(4))
        assert np.allclose(knot.vel, 0.0)
    report = result.report
    assert report.correspondences >= 10
    assert report.final_cost == pytest.approx(0.0, abs=1e-12)
    assert report.converged


def test_stationary_result_payload(stationary):
    odom, _, _ = stationary
    result = odom.latest_result()
    assert result.undistorted.shape == (N_RING * MAX_TICKS, 4)
    assert np.allclose(result.undistorted[:, 3], 100.0)
    assert len(result.correspondences) == len(odom.definitions)
    for f_idx, rows in enumerate(result.correspondences):
        width = 15 if f_idx == 2 else 12
        for row in rows:
            assert row.shape == (width,)
            # at rest the undistorted point is the raw point
            assert np.allclose(row[:3], row[-3:])


def test_stationary_outputs(stationary):
    odom, received, out = stationary
    assert odom.channel.delivered + odom.channel.overwrites == 2
    assert all(isinstance(r, WindowResult) for r in received)
    assert len(os.listdir(out / "corr")) == 2 * len(odom.definitions)
    assert len((out / "traj.txt").read_text().splitlines()) == 2


def test_constant_velocity_sensor_is_tracked():
    velocity = np.array([0.3, 0.2, 0.0])
    odom = LaserOdom(make_room_config())
    still = room_scan()
    for i in range(3):
        feed_scan(odom, still, 0.1 * i)
    for k in range(5):
        feed_scan(odom, moving_scan(velocity * 0.1 * k, velocity), 0.3 + 0.1 * k)
    odom.add_points(tick_rows(velocity * 0.5, 0), 0, 0.8)

    assert odom.windows == 8
    assert odom.last_error is None
    assert len(odom.trajectory_log) == 6
    result = odom.latest_result()
    assert result.stamp == pytest.approx(0.8)
    assert np.allclose(result.world_pose[:3, 3], velocity * 0.5, atol=0.01)
    assert np.linalg.norm(log_se3(result.world_pose)[0:3]) < 0.01


def test_too_few_residuals_drops_initialization():
    cfg = make_room_config(min_residuals=100000)
    odom = LaserOdom(cfg)
    scans = [room_scan(origin=(0.05 * i, 0.0, 0.0)) for i in range(4)]
    run(odom, scans[:3])
    assert odom.windows == 3
    assert isinstance(odom.last_error, InsufficientResiduals)
    assert not odom.initialized
    assert odom.latest_result() is None
    for knot in odom.trajectory.knots:
        assert np.allclose(knot.pose, np.eye(4))
        assert not knot.vel.any()

    # the next rollover may initialize again
    feed_scan(odom, scans[3], 0.4)
    odom.add_points(scans[3][0][1], 0, 0.5)
    assert odom.windows == 4
    assert odom.initialized


def test_multi_scan_windows():
    cfg = make_room_config()
    cfg.sensor.n_window = 2
    odom = LaserOdom(cfg)
    run(odom, [room_scan()] * 4)
    assert odom.windows == 2
    assert odom.initialized
    assert odom.latest_result() is None


def test_backwards_ticks_raise():
    odom = LaserOdom(make_room_config())
    row = np.array([[3.0, 0.0, 0.0, 10.0, 0]])
    odom.add_points(row, 10, 0.0)
    with pytest.raises(OrderingViolation):
        odom.add_points(row, 5, 0.001)


def test_single_point_ingestion():
    odom = LaserOdom(make_room_config())
    odom.add_point(3.0, 0.0, 0.0, 10.0, 0, 0, 0.0)
    odom.add_point(0.1, 0.0, 0.0, 10.0, 1, 1, 0.0)
    assert len(odom.buffer) == 1
