"""Solution remapping: keep only well-observed directions of a solver update."""
import numpy as np

from .se3 import exp_se3
from .state import DIM_STATE


class SolutionRemapper:
    """Projects the update between the operating point and the solution onto
    the eigenvectors of the information matrix whose eigenvalues reach
    ``min_eigen``."""

    def __init__(self, min_eigen: float):
        self.min_eigen = min_eigen

    def projection(self, information: np.ndarray):
        """Projection matrix and the number of discarded directions."""
        vals, vecs = np.linalg.eigh(information)
        mask = (vals >= self.min_eigen).astype(np.float64)
        return vecs @ np.diag(mask) @ vecs.T, int(np.count_nonzero(mask == 0.0))

    def apply(self, knots: list, prev_knots: list, information: np.ndarray,
              free_knots: tuple) -> int:
        """Replace the free knots by ``prev (+) P (cur (-) prev)`` in place.

        Returns:
            Number of discarded directions.
        """
        if len(free_knots) == 0:
            return 0
        diff = np.concatenate([knots[k].boxminus(prev_knots[k]) for k in free_knots])
        proj, n_zeroed = self.projection(information)
        mapped = proj @ diff
        for i, k in enumerate(free_knots):
            step = mapped[DIM_STATE * i:DIM_STATE * (i + 1)]
            knots[k].pose = exp_se3(step[0:6]) @ prev_knots[k].pose
            knots[k].vel = prev_knots[k].vel + step[6:12]
        return n_zeroed
