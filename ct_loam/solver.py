"""Dense Levenberg-Marquardt over trajectory knot states.

Each knot contributes 12 parameters ``[pose twist, velocity]``. Pose updates
are applied on the left, ``T <- Exp(dxi) T``; velocities additively.
"""
import numpy as np
from dataclasses import dataclass

from .state import DIM_STATE


@dataclass
class SolverSummary:
    initial_cost: float = 0.0
    final_cost: float = 0.0
    iterations: int = 0
    accepted_steps: int = 0
    converged: bool = False
    information: np.ndarray = None   # J^T W J over the free knots at the solution
    free_knots: tuple = ()


class Problem:
    """Residual blocks with optional robust losses over a knot chain."""

    def __init__(self, n_knots: int):
        self.n_knots = n_knots
        self.blocks = []
        self.losses = []
        self.fixed = set()

    def add_residual_block(self, block, loss=None):
        self.blocks.append(block)
        self.losses.append(loss)

    def set_knot_constant(self, k: int):
        self.fixed.add(k)

    def num_residual_blocks(self) -> int:
        return len(self.blocks)

    def free_knots(self) -> tuple:
        return tuple(k for k in range(self.n_knots) if k not in self.fixed)

    def cost(self, knots: list) -> float:
        total = 0.0
        for block, loss in zip(self.blocks, self.losses):
            r, _ = block.evaluate([knots[k] for k in block.knots])
            s = float(r @ r)
            total += 0.5 * (loss.rho(s) if loss is not None else s)
        return total

    def linearize(self, knots: list):
        """Robustly reweighted normal equations over all knots.

        Returns:
            Tuple of (H (12K, 12K), g (12K,), cost).
        """
        dim = DIM_STATE * self.n_knots
        H = np.zeros((dim, dim))
        g = np.zeros(dim)
        cost = 0.0
        for block, loss in zip(self.blocks, self.losses):
            r, J = block.evaluate([knots[k] for k in block.knots], jacobians=True)
            s = float(r @ r)
            if loss is None:
                w = 1.0
                cost += 0.5 * s
            else:
                w = loss.weight(s)
                cost += 0.5 * loss.rho(s)
            if w == 0.0:
                continue
            cols = np.concatenate([np.arange(DIM_STATE * k, DIM_STATE * (k + 1))
                                   for k in block.knots])
            H[np.ix_(cols, cols)] += w * (J.T @ J)
            g[cols] += w * (J.T @ r)
        return H, g, cost


def _free_index(problem: Problem) -> np.ndarray:
    return np.concatenate([np.arange(DIM_STATE * k, DIM_STATE * (k + 1))
                           for k in problem.free_knots()])


def _apply(knots: list, free_knots: tuple, dx: np.ndarray) -> list:
    out = [k.copy() for k in knots]
    for i, k in enumerate(free_knots):
        out[k].boxplus_inplace(dx[DIM_STATE * i:DIM_STATE * (i + 1)])
    return out


def solve(problem: Problem, knots: list, max_iterations: int = 100,
          max_consecutive_rejections: int = 2, function_tolerance: float = 1e-6,
          gradient_tolerance: float = 1e-10, initial_lambda: float = 1e-4) -> SolverSummary:
    """Minimize the problem in place over the free knots.

    Args:
        problem: residual blocks and fixed knots.
        knots: list of TrajectoryKnot, updated in place.
        max_iterations: cap on linearizations.
        max_consecutive_rejections: stop after this many rejected steps in a row.

    Returns:
        SolverSummary with the information matrix at the solution.
    """
    summary = SolverSummary(free_knots=problem.free_knots())
    idx = _free_index(problem) if summary.free_knots else np.zeros(0, dtype=np.int64)
    lam = initial_lambda
    rejections = 0

    H, g, cost = problem.linearize(knots)
    summary.initial_cost = cost
    for it in range(max_iterations):
        if len(idx) == 0:
            break
        Hf = H[np.ix_(idx, idx)]
        gf = g[idx]
        if np.max(np.abs(gf)) < gradient_tolerance:
            summary.converged = True
            break
        summary.iterations = it + 1
        A = Hf + lam * np.diag(np.maximum(np.diag(Hf), 1e-9))
        try:
            dx = np.linalg.solve(A, -gf)
        except np.linalg.LinAlgError:
            dx = np.linalg.lstsq(A, -gf, rcond=None)[0]

        trial = _apply(knots, summary.free_knots, dx)
        new_cost = problem.cost(trial)
        if np.isfinite(new_cost) and new_cost < cost:
            for k in summary.free_knots:
                knots[k].pose = trial[k].pose
                knots[k].vel = trial[k].vel
            summary.accepted_steps += 1
            rejections = 0
            lam = max(lam / 3.0, 1e-12)
            decrease = cost - new_cost
            H, g, cost = problem.linearize(knots)
            if decrease <= function_tolerance * max(cost + decrease, 1e-300):
                summary.converged = True
                break
        else:
            rejections += 1
            lam *= 10.0
            if rejections >= max_consecutive_rejections:
                break

    summary.final_cost = cost
    summary.information = H[np.ix_(idx, idx)] if len(idx) else np.zeros((0, 0))
    return summary
