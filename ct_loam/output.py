"""Trajectory and correspondence writers.

Supports TUM format and CSV format for odometry, and plain-text
per-window correspondence dumps.
"""
import os
import numpy as np
from scipy.spatial.transform import Rotation


def rotation_matrix_to_quaternion(R: np.ndarray) -> np.ndarray:
    """Convert 3x3 rotation matrix to quaternion [qx, qy, qz, qw]."""
    return Rotation.from_matrix(R).as_quat()


def pose_entry(stamp: float, T: np.ndarray) -> tuple:
    """(timestamp, pos(3,), quat(4,)) tuple of a 4x4 pose."""
    return stamp, T[:3, 3].copy(), rotation_matrix_to_quaternion(T[:3, :3])


def write_tum(filepath: str, trajectory: list):
    """Write trajectory in TUM format.

    Args:
        filepath: Output file path.
        trajectory: List of (timestamp, pos(3,), quat(4,)) tuples.
                   Quaternion in [qx, qy, qz, qw] order.
    """
    with open(filepath, 'w') as f:
        for ts, pos, q in trajectory:
            f.write(f"{ts:.6f} {pos[0]:.6f} {pos[1]:.6f} {pos[2]:.6f} "
                    f"{q[0]:.6f} {q[1]:.6f} {q[2]:.6f} {q[3]:.6f}\n")


def write_odometry_csv(filepath: str, trajectory: list):
    """Write trajectory as CSV with header.

    Columns: timestamp,tx,ty,tz,qx,qy,qz,qw
    """
    with open(filepath, 'w') as f:
        f.write("timestamp,tx,ty,tz,qx,qy,qz,qw\n")
        for ts, pos, q in trajectory:
            f.write(f"{ts:.6f},{pos[0]:.6f},{pos[1]:.6f},{pos[2]:.6f},"
                    f"{q[0]:.6f},{q[1]:.6f},{q[2]:.6f},{q[3]:.6f}\n")


def write_trajectory(filepath: str, trajectory: list):
    """CSV for a ``.csv`` path, TUM otherwise."""
    if filepath.endswith('.csv'):
        write_odometry_csv(filepath, trajectory)
    else:
        write_tum(filepath, trajectory)


def write_correspondences(directory: str, stamp: float, correspondences: list):
    """Write one file per feature type for a window.

    Each line holds the raw feature point, its matched map points and the
    undistorted feature point, space separated.

    Args:
        directory: Output directory, created if missing.
        stamp: Window timestamp used in the file names.
        correspondences: per feature type, a list of 1-D row arrays.

    Returns:
        List of written file paths.
    """
    os.makedirs(directory, exist_ok=True)
    paths = []
    for f_idx, rows in enumerate(correspondences):
        path = os.path.join(directory, f"{stamp:.6f}_feature_{f_idx}_cor.txt")
        with open(path, 'w') as f:
            for row in rows:
                f.write(" ".join(f"{v:.6f}" for v in row) + "\n")
        paths.append(path)
    return paths
