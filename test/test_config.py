import os

import numpy as np
import pytest

from ct_loam import LaserOdom
from ct_loam.config import LaserOdomConfig, load_config, validate_config
from ct_loam.errors import ConfigurationError, UnrecognizedKernel
from ct_loam.types import Kernel, SelectionPolicy, ResidualType

REPO_CONFIG = os.path.join(os.path.dirname(__file__), '..', 'laser_odom.yaml')


def write(tmp_path, text):
    path = tmp_path / "odom.yaml"
    path.write_text(text)
    return str(path)


def test_shipped_config_matches_defaults():
    cfg = load_config(REPO_CONFIG)
    defaults = LaserOdomConfig()
    assert cfg.sensor == defaults.sensor
    assert cfg.map == defaults.map
    assert cfg.correspondence == defaults.correspondence
    assert cfg.optimizer.num_trajectory_states == defaults.optimizer.num_trajectory_states
    assert np.allclose(cfg.optimizer.qc, defaults.optimizer.qc)


def test_sections_override_defaults(tmp_path, capsys):
    cfg = load_config(write(tmp_path, """
sensor:
  n_ring: 16
  max_ticks: 1800
optimizer:
  num_trajectory_states: 5
  qc: [1, 2, 3, 4, 5, 6]
  bogus_key: 1
"""))
    assert cfg.sensor.n_ring == 16
    assert cfg.sensor.max_ticks == 1800
    assert cfg.sensor.n_window == 1
    assert cfg.optimizer.num_trajectory_states == 5
    assert cfg.optimizer.qc.tolist() == [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
    assert "Ignoring unknown key 'bogus_key'" in capsys.readouterr().out


def test_empty_file_gives_defaults(tmp_path):
    cfg = load_config(write(tmp_path, ""))
    assert cfg.features.n_flat == LaserOdomConfig().features.n_flat


def test_custom_feature_definitions(tmp_path):
    cfg = load_config(write(tmp_path, """
features:
  definitions:
    - name: corner
      residual: line
      quota: 24
      criteria:
        - {kernel: loam, policy: high_neg, threshold: 5.0}
    - name: smooth_bright
      residual: plane
      quota: 48
      criteria:
        - {kernel: LOAM, policy: near_zero, threshold: 0.2}
        - {kernel: int_var, policy: near_zero, threshold: 3.0}
"""))
    defs = cfg.features.definitions
    assert [d.name for d in defs] == ["corner", "smooth_bright"]
    assert defs[0].residual == ResidualType.LINE
    assert defs[0].criteria[0].policy == SelectionPolicy.HIGH_NEG
    assert defs[1].criteria[1].kernel == Kernel.INT_VAR
    assert defs[1].quota == 48
    odom = LaserOdom(cfg)
    assert len(odom.local_map) == 2


def test_unknown_kernel(tmp_path):
    with pytest.raises(UnrecognizedKernel):
        load_config(write(tmp_path, """
features:
  definitions:
    - {name: x, residual: line, quota: 4,
       criteria: [{kernel: sobel, policy: high_pos, threshold: 1.0}]}
"""))


@pytest.mark.parametrize("entry", [
    "{name: x, residual: line, quota: 4, criteria: [{kernel: loam, policy: highest, threshold: 1}]}",
    "{name: x, residual: curve, quota: 4, criteria: [{kernel: loam, policy: high_pos, threshold: 1}]}",
    "{name: x, residual: line, quota: 4, criteria: []}",
])
def test_bad_feature_definitions(tmp_path, entry):
    with pytest.raises(ConfigurationError):
        load_config(write(tmp_path, f"features:\n  definitions:\n    - {entry}\n"))


def test_invalid_settings_are_rejected():
    cfg = LaserOdomConfig()
    cfg.optimizer.num_trajectory_states = 1
    with pytest.raises(ConfigurationError):
        validate_config(cfg)
    with pytest.raises(ConfigurationError):
        LaserOdom(cfg)

    cfg = LaserOdomConfig()
    cfg.optimizer.motion_model = "constant_acceleration"
    with pytest.raises(ConfigurationError):
        validate_config(cfg)

    cfg = LaserOdomConfig()
    cfg.optimizer.qc = np.array([1.0, 1.0, 0.0, 1.0, 1.0, 1.0])
    with pytest.raises(ConfigurationError):
        validate_config(cfg)
