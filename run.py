#!/usr/bin/env python3
"""Continuous-time laser odometry replay.

Replays a recorded point log through the pipeline and writes the trajectory.

Usage:
    python run.py points.npz
    python run.py points.csv --config laser_odom.yaml
    python run.py points.npz --output-dir results/ --correspondences

Inputs:
    .npz with arrays ``points`` (N, 5) [x, y, z, intensity, ring],
    ``ticks`` (N,) and ``stamps`` (N,), or
    .csv with header x,y,z,intensity,ring,tick,stamp

Outputs (all saved to --output-dir, default: same folder as the log):
    1. odometry.csv          - 6-DOF trajectory (timestamp, tx,ty,tz, qx,qy,qz,qw)
    2. trajectory.txt        - the same trajectory in TUM format
    3. correspondences/      - per-window correspondence dumps (optional)
"""
import argparse
import os
import sys
import time

import numpy as np
from tqdm import tqdm

from ct_loam.config import LaserOdomConfig, load_config
from ct_loam.numba_kernels import warmup as numba_warmup
from ct_loam.output import write_odometry_csv, write_tum
from ct_loam.pipeline import LaserOdom


def load_point_log(path: str):
    """Load a point log.

    Returns:
        Tuple of (points (N, 5), ticks (N,), stamps (N,)).
    """
    if path.endswith('.npz'):
        data = np.load(path)
        return (np.asarray(data['points'], dtype=np.float64),
                np.asarray(data['ticks'], dtype=np.int64),
                np.asarray(data['stamps'], dtype=np.float64))
    table = np.genfromtxt(path, delimiter=',', skip_header=1)
    table = np.atleast_2d(table)
    return table[:, 0:5], table[:, 5].astype(np.int64), table[:, 6]


def tick_groups(ticks: np.ndarray, stamps: np.ndarray):
    """Slices of consecutive rows sharing one tick and stamp."""
    if len(ticks) == 0:
        return []
    change = (np.diff(ticks) != 0) | (np.diff(stamps) != 0)
    bounds = np.concatenate([[0], np.flatnonzero(change) + 1, [len(ticks)]])
    return [slice(bounds[i], bounds[i + 1]) for i in range(len(bounds) - 1)]


def replay(odom: LaserOdom, points, ticks, stamps):
    """Feed every tick group through the pipeline with a progress bar."""
    groups = tick_groups(ticks, stamps)
    solved = 0
    for sl in tqdm(groups, desc="Replaying", unit="tick"):
        before = odom.latest_result()
        odom.add_points(points[sl], int(ticks[sl.start]), float(stamps[sl.start]))
        result = odom.latest_result()
        if result is not None and result is not before:
            solved += 1
            rep = result.report
            tqdm.write(f"[Replay] window {odom.windows} at {result.stamp:.3f}s: "
                       f"{rep.correspondences} correspondences, "
                       f"{rep.iterations} iterations, cost {rep.final_cost:.4g}")
    return solved


def main():
    parser = argparse.ArgumentParser(
        description='Continuous-time laser odometry replay\n\n'
                    'Replay a point log and produce:\n'
                    '  1. Odometry CSV\n'
                    '  2. TUM trajectory\n'
                    '  3. Correspondence dumps (optional)',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('log', help='Path to a .npz or .csv point log')
    parser.add_argument('--config', default=None,
                        help='Path to YAML config file '
                             '(default: laser_odom.yaml in this folder)')
    parser.add_argument('--output-dir', default=None,
                        help='Output directory '
                             '(default: same folder as the log)')
    parser.add_argument('--correspondences', action='store_true',
                        help='Dump per-window correspondences')
    args = parser.parse_args()

    log_path = os.path.abspath(args.log)
    if not os.path.isfile(log_path):
        print(f"Error: Point log not found: {log_path}")
        sys.exit(1)

    if args.config:
        config_path = os.path.abspath(args.config)
    else:
        config_path = os.path.join(
            os.path.dirname(os.path.abspath(__file__)), 'laser_odom.yaml')
    if os.path.isfile(config_path):
        config = load_config(config_path)
    else:
        print(f"[Replay] Config not found at {config_path}, using defaults")
        config = LaserOdomConfig()

    out_dir = os.path.abspath(args.output_dir) if args.output_dir else os.path.dirname(log_path)
    os.makedirs(out_dir, exist_ok=True)
    odom_path = os.path.join(out_dir, 'odometry.csv')
    tum_path = os.path.join(out_dir, 'trajectory.txt')
    if args.correspondences:
        config.output.output_correspondences = True
        config.output.correspondence_dir = os.path.join(out_dir, 'correspondences')

    print("=" * 60)
    print("  Continuous-Time Laser Odometry")
    print("=" * 60)
    print(f"  Log:        {log_path}")
    print(f"  Config:     {config_path}")
    print(f"  Output dir: {out_dir}")
    print("=" * 60)

    t0 = time.time()
    print("[Replay] Compiling Numba JIT kernels...")
    numba_warmup()
    print("[Replay] JIT compilation complete.")

    points, ticks, stamps = load_point_log(log_path)
    print(f"[Replay] Loaded {len(points):,} points")

    odom = LaserOdom(config)
    solved = replay(odom, points, ticks, stamps)
    odom.shutdown()

    if odom.trajectory_log:
        write_odometry_csv(odom_path, odom.trajectory_log)
        write_tum(tum_path, odom.trajectory_log)
        print(f"[Replay] Saved {len(odom.trajectory_log)} poses to {odom_path}")
    else:
        print("[Replay] WARNING: No window was solved, no trajectory written")

    print(f"\n[Replay] {odom.windows} windows, {solved} solved, "
          f"complete in {time.time() - t0:.1f}s")


if __name__ == '__main__':
    main()
