"""Point preprocessing: blind zone and non-finite filter, intensity clamp.

All operations are vectorized with NumPy.
"""
import numpy as np


class Preprocessor:
    """Clean raw ``[x, y, z, intensity, ring]`` rows before buffering."""

    def __init__(self, blind: float = 0.3, n_ring: int = 32,
                 min_intensity: float = 0.0, max_intensity: float = 255.0):
        """
        Args:
            blind: Minimum range in meters. Points closer are removed.
            n_ring: Number of rings; rows with other ring ids are removed.
            min_intensity, max_intensity: intensity clamp range.
        """
        self.blind_sqr = blind * blind
        self.n_ring = n_ring
        self.min_intensity = min_intensity
        self.max_intensity = max_intensity

    def process(self, points: np.ndarray):
        """Filter one batch of rows sharing a tick.

        Args:
            points: (N, 5) rows [x, y, z, intensity, ring].

        Returns:
            Tuple of (xyz (M, 3), intensities (M,), rings (M,)).
        """
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        if len(points) == 0:
            return np.zeros((0, 3)), np.zeros(0), np.zeros(0, dtype=np.int64)
        xyz = points[:, 0:3]
        r2 = np.sum(xyz ** 2, axis=1)
        rings = points[:, 4]

        valid_mask = np.all(np.isfinite(points), axis=1)
        valid_mask &= r2 >= self.blind_sqr
        valid_mask &= (rings >= 0) & (rings < self.n_ring)

        inten = np.clip(points[valid_mask, 3], self.min_intensity, self.max_intensity)
        return xyz[valid_mask], inten, rings[valid_mask].astype(np.int64)
