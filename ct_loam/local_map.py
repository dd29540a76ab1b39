"""TTL-aged, density-filtered local map with a KD-tree per feature type."""
import numpy as np
from scipy.spatial import cKDTree

from .types import AssociationStatus, ResidualType


class FeatureMap:
    """Map points of one feature type.

    ``points``, ``ttl`` and ``status`` are index-aligned; every mutation
    filters or extends all three together.
    """

    def __init__(self, residual: ResidualType):
        self.residual = residual
        self.points = np.zeros((0, 3))
        self.ttl = np.zeros(0, dtype=np.int64)
        self.status = np.zeros(0, dtype=np.uint8)
        self.tree = None

    def __len__(self):
        return len(self.points)

    def rebuild(self):
        """Rebuild the spatial index after a mutation batch."""
        self.tree = cKDTree(self.points) if len(self.points) else None

    def evict(self, center: np.ndarray, local_map_range: float, ttl: int,
              double_decrement: bool = True) -> int:
        """Age the map and drop expired or out-of-range points.

        A point with TTL > 0 inside ``local_map_range`` of ``center`` survives:
        a corresponded point gets its TTL refreshed and becomes uncorresponded,
        an idle point loses one. With ``double_decrement`` every surviving
        point loses one more. TTL never goes below zero.

        Returns:
            Number of removed points.
        """
        if len(self.points) == 0:
            return 0
        dist = np.linalg.norm(self.points - center, axis=1)
        keep = (self.ttl > 0) & (dist < local_map_range)

        corresponded = self.status == AssociationStatus.CORRESPONDED
        new_ttl = np.where(corresponded, ttl, self.ttl - 1)
        if double_decrement:
            new_ttl -= 1
        self.ttl = np.maximum(new_ttl, 0)
        self.status = np.full(len(self.points), AssociationStatus.UNCORRESPONDED,
                              dtype=np.uint8)

        removed = int(np.count_nonzero(~keep))
        self.points = self.points[keep]
        self.ttl = self.ttl[keep]
        self.status = self.status[keep]
        return removed

    def insert(self, points: np.ndarray, density: float, ttl: int) -> int:
        """Insert points whose nearest existing map point is farther than
        ``sqrt(density)``. The nearest-neighbour test runs against the
        index as it was before this batch.

        Returns:
            Number of inserted points.
        """
        if len(points) == 0:
            return 0
        if self.tree is None:
            new = points
        else:
            d, _ = self.tree.query(points, k=1)
            new = points[d * d > density]
        if len(new) == 0:
            return 0
        self.points = np.vstack([self.points, new])
        self.ttl = np.concatenate([self.ttl, np.full(len(new), ttl, dtype=np.int64)])
        self.status = np.concatenate([
            self.status,
            np.full(len(new), AssociationStatus.UNCORRESPONDED, dtype=np.uint8)])
        return len(new)

    def radius_search(self, query: np.ndarray, radius: float):
        """Indices and distances of map points within ``radius``, nearest first."""
        if self.tree is None:
            return np.zeros(0, dtype=np.int64), np.zeros(0)
        idx = np.asarray(self.tree.query_ball_point(query, radius), dtype=np.int64)
        if len(idx) == 0:
            return idx, np.zeros(0)
        d = np.linalg.norm(self.points[idx] - query, axis=1)
        order = np.argsort(d, kind='stable')
        return idx[order], d[order]

    def mark_corresponded(self, indices):
        self.status[list(indices)] = AssociationStatus.CORRESPONDED


class LocalMap:
    """One FeatureMap per feature definition."""

    def __init__(self, definitions: list, ttl: int = 5,
                 local_map_range: float = 100.0, edge_map_density: float = 0.01,
                 flat_map_density: float = 0.01, ttl_double_decrement: bool = True):
        self.maps = [FeatureMap(d.residual) for d in definitions]
        self.ttl = ttl
        self.local_map_range = local_map_range
        self.edge_map_density = edge_map_density
        self.flat_map_density = flat_map_density
        self.ttl_double_decrement = ttl_double_decrement

    def __getitem__(self, f_idx: int) -> FeatureMap:
        return self.maps[f_idx]

    def __len__(self):
        return len(self.maps)

    def total_points(self) -> int:
        return sum(len(m) for m in self.maps)

    def density(self, f_idx: int) -> float:
        if self.maps[f_idx].residual == ResidualType.LINE:
            return self.edge_map_density
        return self.flat_map_density

    def update(self, center: np.ndarray, new_points: list):
        """Evict, rebuild, insert and rebuild every feature map.

        Args:
            center: (3,) sensor position the local-map range is measured from.
            new_points: per feature type, (M, 3) points in the map frame.

        Returns:
            Tuple of (removed, inserted) totals.
        """
        removed = inserted = 0
        for f_idx, fmap in enumerate(self.maps):
            removed += fmap.evict(center, self.local_map_range, self.ttl,
                                  self.ttl_double_decrement)
            fmap.rebuild()
            inserted += fmap.insert(new_points[f_idx], self.density(f_idx), self.ttl)
            fmap.rebuild()
        return removed, inserted
