"""Structural validity of ring points: occlusion edges, grazing surfaces
and tick ordering."""
import numpy as np

from .errors import OrderingViolation
from .numba_kernels import prefilter_ring_jit


class Prefilter:
    """Marks ring points that must never become features."""

    def __init__(self, max_ticks: int, occlusion_tol: float = 0.1,
                 occlusion_tol_2: float = 0.1, parallel_tol: float = 0.002):
        """
        Args:
            max_ticks: ticks per revolution.
            occlusion_tol: maximum angular gap, as a fraction of a revolution,
                between two points forming an occlusion edge.
            occlusion_tol_2: minimum range jump of an occlusion edge.
            parallel_tol: grazing-angle threshold relative to range squared.
        """
        self.max_ticks = max_ticks
        self.occlusion_tol = occlusion_tol
        self.occlusion_tol_2 = occlusion_tol_2
        self.parallel_tol = parallel_tol

    def filter_ring(self, xyz: np.ndarray, rng: np.ndarray,
                    ticks: np.ndarray) -> np.ndarray:
        """Validity mask of one ring.

        Raises:
            OrderingViolation: ticks decrease somewhere along the ring.
        """
        ticks = np.asarray(ticks, dtype=np.int64)
        if len(ticks) > 1:
            back = np.nonzero(np.diff(ticks) < 0)[0]
            if len(back):
                j = back[0]
                raise OrderingViolation(
                    f"Tick {ticks[j + 1]} at index {j + 1} follows tick {ticks[j]}")
        if len(ticks) < 3:
            return np.ones(len(ticks), dtype=bool)
        return prefilter_ring_jit(np.ascontiguousarray(xyz, dtype=np.float64),
                                  np.ascontiguousarray(rng, dtype=np.float64),
                                  ticks, float(self.max_ticks),
                                  self.occlusion_tol, self.occlusion_tol_2,
                                  self.parallel_tol)
