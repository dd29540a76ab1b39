import numpy as np

from ct_loam.config import FeatureConfig
from ct_loam.features import FeatureSelector, default_feature_definitions
from ct_loam.signals import ScoreComputer
from ct_loam.types import (Kernel, SelectionPolicy, ResidualType, Criterion,
                           FeatureDefinition)


def selector(definitions, angular_bins=2, key_radius=2, window_ticks=40):
    return FeatureSelector(definitions, ScoreComputer(), angular_bins,
                           key_radius, window_ticks)


def loam_definition(policy, threshold, quota):
    return FeatureDefinition("f", [Criterion(Kernel.LOAM, policy, threshold)],
                             ResidualType.LINE, quota)


def test_default_definitions():
    fc = FeatureConfig()
    defs = default_feature_definitions(fc)
    assert [d.name for d in defs] == ["edge_high", "edge_low", "flat",
                                      "int_edge_high", "int_edge_low"]
    assert defs[2].residual == ResidualType.PLANE
    assert defs[2].quota == fc.n_flat
    assert all(d.residual == ResidualType.LINE for i, d in enumerate(defs) if i != 2)
    assert len(defs[3].criteria) == 3


def test_selection_respects_bins_key_radius_and_order():
    rng = np.random.default_rng(0)
    n = 40
    s = rng.uniform(1.0, 2.0, size=n - 10)
    scores = {Kernel.LOAM: s}
    sel = selector([loam_definition(SelectionPolicy.HIGH_POS, 0.5, 6)])
    chosen = sel.select_ring(scores, np.ones(n, dtype=bool), np.arange(n))[0]

    assert len(chosen) <= 6
    assert np.all(chosen >= 5) and np.all(chosen < n - 5)
    # at most quota // bins per bin
    bins = chosen * 2 // n
    assert np.bincount(bins, minlength=2).max() <= 3
    # no two picks within the key radius
    srt = np.sort(chosen)
    assert np.all(np.diff(srt) > 2)
    # best candidate first, acceptance in score order
    assert chosen[0] == np.argmax(s) + 5
    picked = s[chosen - 5]
    assert np.all(np.diff(picked) <= 0)


def test_near_zero_prefers_smallest_magnitude():
    n = 30
    s = np.full(n - 10, 0.4)
    s[7] = -0.01
    s[12] = 0.05
    sel = selector([loam_definition(SelectionPolicy.NEAR_ZERO, 0.5, 2)], angular_bins=1,
                   window_ticks=n)
    chosen = sel.select_ring({Kernel.LOAM: s}, np.ones(n, dtype=bool), np.arange(n))[0]
    assert chosen.tolist() == [12, 17]


def test_invalid_points_and_thresholds_exclude_candidates():
    n = 30
    s = np.zeros(n - 10)
    s[3] = 5.0
    s[10] = 5.0
    valid = np.ones(n, dtype=bool)
    valid[15] = False
    sel = selector([loam_definition(SelectionPolicy.HIGH_POS, 1.0, 10)], angular_bins=1,
                   window_ticks=n)
    chosen = sel.select_ring({Kernel.LOAM: s}, valid, np.arange(n))[0]
    assert chosen.tolist() == [8]


def test_each_feature_type_suppresses_only_its_own_picks():
    n = 30
    s = np.zeros(n - 10)
    s[9] = 5.0
    d = loam_definition(SelectionPolicy.HIGH_POS, 1.0, 4)
    sel = selector([d, d], angular_bins=1, window_ticks=n)
    valid = np.ones(n, dtype=bool)
    first, second = sel.select_ring({Kernel.LOAM: s}, valid, np.arange(n))
    assert first.tolist() == [14]
    assert second.tolist() == [14]
    assert valid.all()


def test_missing_score_yields_no_candidates():
    sel = selector([loam_definition(SelectionPolicy.HIGH_POS, 1.0, 4)])
    chosen = sel.select_ring({Kernel.LOAM: None}, np.ones(8, dtype=bool), np.arange(8))[0]
    assert len(chosen) == 0


def test_zero_quota_per_bin_selects_nothing():
    n = 30
    sel = selector([loam_definition(SelectionPolicy.HIGH_POS, 0.0, 1)], angular_bins=2,
                   window_ticks=n)
    chosen = sel.select_ring({Kernel.LOAM: np.ones(n - 10)}, np.ones(n, dtype=bool),
                             np.arange(n))[0]
    assert len(chosen) == 0


def test_gather_copies_selected_points():
    xyz = np.arange(15, dtype=np.float64).reshape(5, 3)
    fp = FeatureSelector.gather(xyz, np.arange(5.0), np.arange(5) * 10, np.array([3, 1]))
    assert len(fp) == 2
    assert fp.ticks.tolist() == [30, 10]
    assert np.array_equal(fp.xyz[0], xyz[3])
