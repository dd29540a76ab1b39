"""Feature definitions and per-ring feature selection."""
import numpy as np

from .numba_kernels import select_ring_jit
from .types import (Kernel, SelectionPolicy, ResidualType, Criterion,
                    FeatureDefinition, FeaturePoints)


def default_feature_definitions(fc) -> list:
    """The five built-in feature types.

    Args:
        fc: FeatureConfig with thresholds and quotas.
    """
    LOAM, FOG, RNG_VAR = Kernel.LOAM, Kernel.FOG, Kernel.RNG_VAR
    NEAR_ZERO = SelectionPolicy.NEAR_ZERO
    HIGH_POS = SelectionPolicy.HIGH_POS
    HIGH_NEG = SelectionPolicy.HIGH_NEG

    def intensity_edge(policy):
        return [Criterion(FOG, policy, fc.int_edge_tol),
                Criterion(LOAM, NEAR_ZERO, fc.int_flat_tol),
                Criterion(RNG_VAR, NEAR_ZERO, fc.variance_limit_rng)]

    return [
        FeatureDefinition("edge_high", [Criterion(LOAM, HIGH_POS, fc.edge_tol)],
                          ResidualType.LINE, fc.n_edge),
        FeatureDefinition("edge_low", [Criterion(LOAM, HIGH_NEG, fc.edge_tol)],
                          ResidualType.LINE, fc.n_edge),
        FeatureDefinition("flat", [Criterion(LOAM, NEAR_ZERO, fc.flat_tol)],
                          ResidualType.PLANE, fc.n_flat),
        FeatureDefinition("int_edge_high", intensity_edge(HIGH_POS),
                          ResidualType.LINE, fc.n_int_edge),
        FeatureDefinition("int_edge_low", intensity_edge(HIGH_NEG),
                          ResidualType.LINE, fc.n_int_edge),
    ]


def passes(policy: SelectionPolicy, score: np.ndarray, threshold: float) -> np.ndarray:
    """Elementwise selection test of one criterion."""
    if policy == SelectionPolicy.NEAR_ZERO:
        return np.abs(score) < threshold
    if policy == SelectionPolicy.HIGH_POS:
        return score > threshold
    return score < -threshold


def sort_key(policy: SelectionPolicy, score: np.ndarray) -> np.ndarray:
    """Ascending key that visits the best candidates first."""
    if policy == SelectionPolicy.NEAR_ZERO:
        return np.abs(score)
    if policy == SelectionPolicy.HIGH_POS:
        return -score
    return score


class FeatureSelector:
    """Sorted, bin-limited, key-radius-suppressed selection per feature type."""

    def __init__(self, definitions: list, score_computer, angular_bins: int,
                 key_radius: int, window_ticks: int):
        self.definitions = definitions
        self.scores = score_computer
        self.angular_bins = angular_bins
        self.key_radius = key_radius
        self.window_ticks = window_ticks

    def candidates(self, definition: FeatureDefinition, scores: dict,
                   valid: np.ndarray) -> np.ndarray:
        """Indices that satisfy every criterion, best first.

        Points within the widest criterion's half-width of either end of
        the ring never qualify.
        """
        n = len(valid)
        offset = max(self.scores.half_width(c.kernel) for c in definition.criteria)
        if n <= 2 * offset:
            return np.zeros(0, dtype=np.int64)
        idx = np.arange(offset, n - offset)
        mask = valid[idx].copy()
        for c in definition.criteria:
            s = scores.get(c.kernel)
            if s is None:
                return np.zeros(0, dtype=np.int64)
            mask &= passes(c.policy, s[idx - self.scores.half_width(c.kernel)], c.threshold)
        idx = idx[mask]
        primary = definition.criteria[0]
        key = sort_key(primary.policy,
                       scores[primary.kernel][idx - self.scores.half_width(primary.kernel)])
        return idx[np.argsort(key, kind='stable')].astype(np.int64)

    def select_ring(self, scores: dict, valid: np.ndarray, ticks: np.ndarray) -> list:
        """Selected point indices of one ring for every feature type."""
        ticks = np.asarray(ticks, dtype=np.int64)
        selected = []
        for definition in self.definitions:
            order = self.candidates(definition, scores, valid)
            max_bin = definition.quota // self.angular_bins
            own_valid = valid.copy()
            selected.append(select_ring_jit(order, own_valid, ticks,
                                            self.window_ticks, self.angular_bins,
                                            max_bin, self.key_radius))
        return selected

    @staticmethod
    def gather(xyz: np.ndarray, intensity: np.ndarray, ticks: np.ndarray,
               indices: np.ndarray) -> FeaturePoints:
        return FeaturePoints(xyz=xyz[indices].copy(), ticks=ticks[indices].copy(),
                             intensities=intensity[indices].copy())
