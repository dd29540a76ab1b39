"""Map-primitive search with azimuth diversity and extrapolation guards."""
import math
import numpy as np

from .types import ResidualType


def required_points(residual: ResidualType) -> int:
    """Map points defining a primitive: 2 for a line, 3 for a plane."""
    return 2 if residual == ResidualType.LINE else 3


def _azimuth(p: np.ndarray) -> float:
    return math.atan2(p[2], math.sqrt(p[0] * p[0] + p[1] * p[1]))


def _bin(t: float) -> int:
    """Round half away from zero."""
    return int(t + 0.5) if t > 0 else int(t - 0.5)


class CorrespondenceFinder:
    """Matches a map-frame query point to 2 or 3 local-map points."""

    def __init__(self, max_correspondence_dist: float = 1.0,
                 azimuth_tol: float = 0.0087, max_extrapolation: float = 0.0,
                 plane_extrapolation_guard: bool = False):
        self.radius = max_correspondence_dist
        self.azimuth_tol = azimuth_tol
        self.max_extrapolation = max_extrapolation
        self.plane_extrapolation_guard = plane_extrapolation_guard

    def find(self, fmap, query: np.ndarray):
        """Pick the map points for one query.

        Candidates inside the search radius are visited nearest first. The
        last required pick is accepted only once some candidate after the
        nearest fell in a different azimuth bin than the nearest one.

        Args:
            fmap: FeatureMap to search.
            query: (3,) point in the map frame.

        Returns:
            Tuple of map indices, or None when no valid set exists.
        """
        knn = required_points(fmap.residual)
        idx, _ = fmap.radius_search(query, self.radius)
        if len(idx) < knn:
            return None

        picked = []
        reference = 0.0
        non_zero_bin = False
        for counter, i in enumerate(idx):
            if counter == 0:
                reference = _azimuth(fmap.points[i])
            elif _bin((_azimuth(fmap.points[i]) - reference) / self.azimuth_tol) != 0:
                non_zero_bin = True
            if len(picked) + 1 != knn or non_zero_bin:
                picked.append(int(i))
            if len(picked) == knn:
                return tuple(picked)
        return None

    def out_of_bounds(self, query: np.ndarray, map_points: np.ndarray,
                      residual: ResidualType) -> bool:
        """True when the query projects outside the matched primitive.

        Lines use the projection parameter along AB. The barycentric plane
        test only runs with ``plane_extrapolation_guard`` enabled.
        """
        ext = self.max_extrapolation
        A = map_points[0]
        B = map_points[1]
        if residual == ResidualType.PLANE:
            if not self.plane_extrapolation_guard:
                return False
            C = map_points[2]
            v0 = C - A
            v1 = B - A
            v2 = query - A
            dot00 = v0 @ v0
            dot01 = v0 @ v1
            dot02 = v0 @ v2
            dot11 = v1 @ v1
            dot12 = v1 @ v2
            denom = dot00 * dot11 - dot01 * dot01
            if denom == 0.0:
                return True
            u = (dot11 * dot02 - dot01 * dot12) / denom
            v = (dot00 * dot12 - dot01 * dot02) / denom
            return u < -ext or v < -ext or u + v > 1.0 + ext
        AB = B - A
        ab2 = AB @ AB
        if ab2 == 0.0:
            return True
        eta = ((query - A) @ AB) / ab2
        return eta < -ext or eta > 1.0 + ext
