"""Numba JIT-compiled kernels for the per-point inner loops.

1. calc_body_cov: single-point and parallel-batch range-sensor covariance
2. prefilter_ring: occlusion and grazing-angle invalidation along a ring
3. select_ring: angular-bin quota and key-radius suppression
4. batch_transform_points: per-point rigid transforms
"""
import math
import numpy as np
from numba import njit, prange


# ─────────────────────────────────────────────────────────────
#  Small vector helpers
# ─────────────────────────────────────────────────────────────

@njit(cache=True)
def mat3_vec3_mul(A, v):
    """3x3 @ 3-vector."""
    r = np.empty(3)
    for i in range(3):
        s = 0.0
        for j in range(3):
            s += A[i, j] * v[j]
        r[i] = s
    return r


@njit(cache=True)
def vec3_norm(a):
    """Norm of 3-vector."""
    return math.sqrt(a[0] * a[0] + a[1] * a[1] + a[2] * a[2])


@njit(cache=True)
def vec3_cross(a, b):
    """Cross product of two 3-vectors."""
    r = np.empty(3)
    r[0] = a[1] * b[2] - a[2] * b[1]
    r[1] = a[2] * b[0] - a[0] * b[2]
    r[2] = a[0] * b[1] - a[1] * b[0]
    return r


@njit(cache=True)
def dist2(a, b):
    dx = a[0] - b[0]
    dy = a[1] - b[1]
    dz = a[2] - b[2]
    return dx * dx + dy * dy + dz * dz


# ─────────────────────────────────────────────────────────────
#  Range-sensor covariance
# ─────────────────────────────────────────────────────────────

DEG2RAD = math.pi / 180.0


@njit(cache=True)
def calc_body_cov_jit(pb, range_inc, degree_inc):
    """Measurement covariance of one point in the sensor frame.

    Range noise along the beam plus beam-angle noise across it.
    """
    p = np.empty(3)
    p[0] = pb[0]
    p[1] = pb[1]
    p[2] = pb[2]
    if p[2] == 0.0:
        p[2] = 0.0001

    r = vec3_norm(p)
    range_var = range_inc * range_inc
    sin_deg = math.sin(degree_inc * DEG2RAD)
    dir_var_scalar = sin_deg * sin_deg

    direction = np.empty(3)
    for j in range(3):
        direction[j] = p[j] / r

    # Orthonormal basis across the beam
    base1 = np.empty(3)
    if abs(direction[2]) > 1e-6:
        base1[0] = 1.0
        base1[1] = 1.0
        base1[2] = -(direction[0] + direction[1]) / direction[2]
    elif abs(direction[1]) > 1e-6:
        base1[0] = 1.0
        base1[1] = -(direction[0] + direction[2]) / direction[1]
        base1[2] = 1.0
    else:
        base1[0] = -(direction[1] + direction[2]) / direction[0]
        base1[1] = 1.0
        base1[2] = 1.0
    b1_norm = vec3_norm(base1)
    for j in range(3):
        base1[j] /= b1_norm

    base2 = vec3_cross(base1, direction)
    b2_norm = vec3_norm(base2)
    for j in range(3):
        base2[j] /= b2_norm

    # A = r * skew(direction) @ [base1, base2]
    A0 = vec3_cross(direction, base1)
    A1 = vec3_cross(direction, base2)
    for j in range(3):
        A0[j] *= r
        A1[j] *= r

    cov = np.empty((3, 3))
    for i in range(3):
        for j in range(3):
            cov[i, j] = (direction[i] * direction[j] * range_var +
                         dir_var_scalar * (A0[i] * A0[j] + A1[i] * A1[j]))
    return cov


@njit(parallel=True, cache=True)
def calc_body_cov_batch_jit(pb_array, range_inc, degree_inc):
    """Parallel batch body covariance for N points."""
    N = pb_array.shape[0]
    result = np.empty((N, 3, 3))
    for i in prange(N):
        result[i] = calc_body_cov_jit(pb_array[i], range_inc, degree_inc)
    return result


# ─────────────────────────────────────────────────────────────
#  Prefilter
# ─────────────────────────────────────────────────────────────

OCCLUSION_RUN = 5


@njit(cache=True)
def prefilter_ring_jit(xyz, rng, ticks, max_ticks, occlusion_tol,
                       occlusion_tol_2, parallel_tol):
    """Validity mask of one ring.

    Args:
        xyz: (N, 3) points in scan order
        rng: (N,) ranges
        ticks: (N,) non-decreasing window ticks
        max_ticks: ticks per revolution
        occlusion_tol: maximum angular gap (fraction of a revolution)
        occlusion_tol_2: minimum range jump of an occlusion edge
        parallel_tol: grazing-angle threshold relative to range squared

    Returns:
        (N,) boolean mask, True where the point may become a feature.
    """
    n = xyz.shape[0]
    valid = np.ones(n, dtype=np.bool_)
    for j in range(1, n - 1):
        # occlusion: suppress the far side of a range discontinuity
        delta = abs(rng[j] - rng[j + 1])
        gap = (ticks[j + 1] - ticks[j]) / max_ticks
        if delta > occlusion_tol_2 and gap < occlusion_tol:
            if rng[j] > rng[j + 1]:
                for l in range(OCCLUSION_RUN + 1):
                    if j - l >= 0:
                        valid[j - l] = False
            else:
                for l in range(1, OCCLUSION_RUN + 1):
                    if j + l < n:
                        valid[j + l] = False

        # grazing angle: both neighbours far relative to range
        lim = parallel_tol * rng[j] * rng[j]
        if dist2(xyz[j], xyz[j + 1]) > lim and dist2(xyz[j], xyz[j - 1]) > lim:
            valid[j] = False
    return valid


# ─────────────────────────────────────────────────────────────
#  Feature selection
# ─────────────────────────────────────────────────────────────

@njit(cache=True)
def select_ring_jit(order, valid, ticks, window_ticks, angular_bins,
                    max_bin, key_radius):
    """Walk sorted candidates and accept under the bin quota.

    Args:
        order: (M,) candidate point indices, best first
        valid: (N,) boolean mask, modified in place by suppression
        ticks: (N,) window ticks of the ring
        window_ticks: ticks spanned by the window
        angular_bins: number of angular bins
        max_bin: capacity of each bin
        key_radius: number of neighbours suppressed on each side

    Returns:
        (K,) selected point indices in acceptance order.
    """
    n = valid.shape[0]
    counts = np.zeros(angular_bins, dtype=np.int64)
    selected = np.empty(order.shape[0], dtype=np.int64)
    n_sel = 0
    if max_bin <= 0:
        return selected[:0]
    for c in range(order.shape[0]):
        j = order[c]
        if not valid[j]:
            continue
        b = int(ticks[j] * angular_bins / window_ticks)
        if b < 0:
            b = 0
        elif b >= angular_bins:
            b = angular_bins - 1
        if counts[b] >= max_bin:
            continue
        counts[b] += 1
        selected[n_sel] = j
        n_sel += 1
        lo = max(j - key_radius, 0)
        hi = min(j + key_radius, n - 1)
        for m in range(lo, hi + 1):
            valid[m] = False
    return selected[:n_sel]


# ─────────────────────────────────────────────────────────────
#  Batch transform
# ─────────────────────────────────────────────────────────────

@njit(parallel=True, cache=True)
def batch_transform_points_jit(rots, pos, points):
    """Transform points with per-point poses: q_i = R_i p_i + t_i.

    Args:
        rots: (N, 3, 3)
        pos: (N, 3)
        points: (N, 3)

    Returns:
        (N, 3) transformed points
    """
    N = points.shape[0]
    out = np.empty((N, 3))
    for idx in prange(N):
        q = mat3_vec3_mul(rots[idx], points[idx])
        out[idx, 0] = q[0] + pos[idx, 0]
        out[idx, 1] = q[1] + pos[idx, 1]
        out[idx, 2] = q[2] + pos[idx, 2]
    return out


# ─────────────────────────────────────────────────────────────
#  Warm-up function: call once at startup to pre-compile all JIT
# ─────────────────────────────────────────────────────────────

def warmup():
    """Pre-compile all JIT functions with dummy data."""
    v = np.array([0.1, 0.2, 0.3])
    A = np.eye(3)
    mat3_vec3_mul(A, v)
    vec3_norm(v)
    vec3_cross(v, v)
    dist2(v, v)

    calc_body_cov_jit(np.array([1.0, 2.0, 3.0]), 0.02, 0.05)
    calc_body_cov_batch_jit(np.random.randn(4, 3), 0.02, 0.05)

    xyz = np.random.randn(8, 3)
    rng = np.sqrt(np.sum(xyz ** 2, axis=1))
    ticks = np.arange(8, dtype=np.int64)
    prefilter_ring_jit(xyz, rng, ticks, 360.0, 0.1, 0.1, 0.002)
    select_ring_jit(np.arange(8, dtype=np.int64), np.ones(8, dtype=np.bool_),
                    ticks, 360, 2, 1, 1)

    batch_transform_points_jit(np.random.randn(2, 3, 3), np.random.randn(2, 3),
                               np.random.randn(2, 3))
