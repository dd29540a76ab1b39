import numpy as np
import pytest

from ct_loam.config import LaserOdomConfig
from ct_loam.types import (Kernel, SelectionPolicy, ResidualType, Criterion,
                           FeatureDefinition, FeaturePoints)

# =============================================================================
# Synthetic scenes
# =============================================================================
# An axis-aligned box room, ray-cast from the sensor position with a small
# multi-ring scanner: 6 rings between -10 and +10 degrees, one point per ring
# per degree of azimuth.

ROOM_MIN = np.array([-4.0, -3.0, -1.5])
ROOM_MAX = np.array([5.0, 6.0, 2.5])
N_RING = 6
MAX_TICKS = 360


def ray_box(origin: np.ndarray, d: np.ndarray) -> float:
    """Distance along unit direction d from origin to the room walls."""
    t = np.inf
    for i in range(3):
        if d[i] > 1e-12:
            t = min(t, (ROOM_MAX[i] - origin[i]) / d[i])
        elif d[i] < -1e-12:
            t = min(t, (ROOM_MIN[i] - origin[i]) / d[i])
    return t


def tick_rows(origin, tick: int, n_ring=N_RING, max_ticks=MAX_TICKS,
              intensity=100.0) -> np.ndarray:
    """Rows (n_ring, 5) seen from ``origin`` at one tick, relative to it."""
    origin = np.asarray(origin, dtype=np.float64)
    elevations = np.radians(np.linspace(-10.0, 10.0, n_ring))
    az = 2.0 * np.pi * tick / max_ticks
    rows = np.zeros((n_ring, 5))
    for ring, el in enumerate(elevations):
        d = np.array([np.cos(el) * np.cos(az), np.cos(el) * np.sin(az), np.sin(el)])
        rows[ring, 0:3] = ray_box(origin, d) * d
        rows[ring, 3] = intensity
        rows[ring, 4] = ring
    return rows


def room_scan(origin=(0.0, 0.0, 0.0), n_ring=N_RING, max_ticks=MAX_TICKS,
              intensity=100.0):
    """One revolution as a list of (tick, rows (n_ring, 5)) in the sensor frame."""
    return [(tick, tick_rows(origin, tick, n_ring, max_ticks, intensity))
            for tick in range(max_ticks)]


def moving_scan(start, velocity, scan_period: float = 0.1, n_ring=N_RING,
                max_ticks=MAX_TICKS, intensity=100.0):
    """One revolution ray-cast per tick from an origin translating at
    ``velocity`` from ``start``."""
    start = np.asarray(start, dtype=np.float64)
    velocity = np.asarray(velocity, dtype=np.float64)
    scan = []
    for tick in range(max_ticks):
        origin = start + velocity * scan_period * tick / max_ticks
        scan.append((tick, tick_rows(origin, tick, n_ring, max_ticks, intensity)))
    return scan


def feed_scan(odom, scan, stamp: float, scan_period: float = 0.1):
    for tick, rows in scan:
        odom.add_points(rows, tick, stamp + scan_period * tick / MAX_TICKS)


def sample_plane(rng, axis: int, value: float, lo, hi, n: int) -> np.ndarray:
    """n random points on the plane ``x[axis] == value`` within a box."""
    pts = rng.uniform(lo, hi, size=(n, 3))
    pts[:, axis] = value
    return pts


# =============================================================================
# Config fixtures
# =============================================================================

def make_room_config(**optimizer_overrides) -> LaserOdomConfig:
    cfg = LaserOdomConfig()
    cfg.sensor.n_ring = N_RING
    cfg.sensor.max_ticks = MAX_TICKS
    cfg.sensor.n_window = 1
    cfg.sensor.scan_period = 0.1
    cfg.features.edge_tol = 1.0
    cfg.features.flat_tol = 0.5
    cfg.features.n_edge = 8
    cfg.features.n_flat = 48
    cfg.features.n_int_edge = 0
    cfg.features.angular_bins = 6
    cfg.features.key_radius = 2
    cfg.correspondence.max_correspondence_dist = 1.0
    cfg.optimizer.num_trajectory_states = 3
    cfg.optimizer.opt_iters = 5
    cfg.optimizer.max_inner_iters = 10
    cfg.optimizer.min_residuals = 10
    for key, value in optimizer_overrides.items():
        setattr(cfg.optimizer, key, value)
    return cfg


@pytest.fixture
def room_config() -> LaserOdomConfig:
    return make_room_config()


@pytest.fixture
def flat_definition() -> FeatureDefinition:
    return FeatureDefinition("flat", [Criterion(Kernel.LOAM, SelectionPolicy.NEAR_ZERO, 0.5)],
                             ResidualType.PLANE, 48)


def as_features(points: np.ndarray, ticks=None) -> list:
    """Wrap one point set as the features of a single type on a single ring."""
    if ticks is None:
        ticks = np.zeros(len(points), dtype=np.int64)
    return [[FeaturePoints(xyz=np.asarray(points, dtype=np.float64),
                           ticks=np.asarray(ticks, dtype=np.int64),
                           intensities=np.zeros(len(points)))]]
