"""Configuration loader for the laser odometry pipeline.

Reads a YAML file with the sections ``sensor``, ``features``, ``map``,
``correspondence``, ``optimizer`` and ``output``. Missing keys keep their
defaults.
"""
import yaml
import numpy as np
from dataclasses import dataclass, field

from .errors import ConfigurationError, UnrecognizedKernel
from .types import (Kernel, SelectionPolicy, ResidualType, Criterion,
                    FeatureDefinition)

MOTION_MODELS = ("constant_velocity",)


@dataclass
class SensorConfig:
    """Scan geometry and range-sensor noise."""
    n_ring: int = 32
    max_ticks: int = 36000        # ticks per revolution
    n_window: int = 1             # scans per accumulation window
    scan_period: float = 0.1      # seconds per window
    wrap_tolerance: int = 200     # tick drop that marks a new scan
    min_intensity: float = 0.0
    max_intensity: float = 255.0
    blind: float = 0.3
    range_err: float = 0.02       # metres
    beam_err: float = 0.05        # degrees


@dataclass
class FeatureConfig:
    """Score thresholds, quotas and selection parameters."""
    edge_tol: float = 10.0
    flat_tol: float = 0.1
    int_edge_tol: float = 2.0
    int_flat_tol: float = 0.1
    variance_window: int = 11
    variance_limit_rng: float = 1.0
    n_edge: int = 40
    n_flat: int = 100
    n_int_edge: int = 0
    angular_bins: int = 12
    key_radius: int = 5
    occlusion_tol: float = 0.1
    occlusion_tol_2: float = 0.1
    parallel_tol: float = 0.002
    definitions: list = None      # overrides the built-in feature types


@dataclass
class MapConfig:
    """Local map retention."""
    ttl: int = 5
    local_map_range: float = 100.0
    edge_map_density: float = 0.01
    flat_map_density: float = 0.01
    ttl_double_decrement: bool = True


@dataclass
class CorrespondenceConfig:
    max_correspondence_dist: float = 1.0
    azimuth_tol: float = 0.0087
    no_extrapolation: bool = True
    max_extrapolation: float = 0.0
    plane_extrapolation_guard: bool = False
    treat_lines_as_planes: bool = False


@dataclass
class OptimizerConfig:
    """Window optimization and motion prior parameters."""
    num_trajectory_states: int = 3
    opt_iters: int = 25
    max_inner_iters: int = 100
    diff_tol: float = 1e-5
    min_residuals: int = 30
    max_residual_val: float = 0.1
    robust_param: float = 0.2
    use_weighting: bool = False
    lock_first: bool = True
    motion_prior: bool = True
    solver_threads: int = 0       # 0 = numba default
    only_extract_features: bool = False
    solution_remapping: bool = False
    min_eigen: float = 100.0
    motion_model: str = "constant_velocity"
    qc: np.ndarray = field(default_factory=lambda: np.full(6, 1e4))


@dataclass
class OutputConfig:
    undistort: bool = True
    output_trajectory: bool = False
    trajectory_path: str = "trajectory.txt"
    output_correspondences: bool = False
    correspondence_dir: str = "correspondences"


@dataclass
class LaserOdomConfig:
    """Full pipeline configuration."""
    sensor: SensorConfig = field(default_factory=SensorConfig)
    features: FeatureConfig = field(default_factory=FeatureConfig)
    map: MapConfig = field(default_factory=MapConfig)
    correspondence: CorrespondenceConfig = field(default_factory=CorrespondenceConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    output: OutputConfig = field(default_factory=OutputConfig)


def parse_kernel(tag) -> Kernel:
    try:
        return Kernel(str(tag).lower())
    except ValueError:
        raise UnrecognizedKernel(f"Unknown kernel '{tag}'") from None


def parse_feature_definitions(entries: list) -> list:
    """Build FeatureDefinitions from plain YAML entries.

    Args:
        entries: list of dicts ``{name, criteria: [{kernel, policy,
                 threshold}], residual, quota}``.

    Returns:
        List of FeatureDefinition.
    """
    definitions = []
    for i, entry in enumerate(entries):
        criteria = []
        for c in entry.get('criteria', []):
            kernel = parse_kernel(c.get('kernel'))
            try:
                policy = SelectionPolicy(str(c.get('policy')).lower())
            except ValueError:
                raise ConfigurationError(
                    f"Unknown selection policy '{c.get('policy')}'") from None
            criteria.append(Criterion(kernel, policy, float(c.get('threshold', 0.0))))
        if not criteria:
            raise ConfigurationError(f"Feature definition {i} has no criteria")
        try:
            residual = ResidualType(str(entry.get('residual')).lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown residual type '{entry.get('residual')}'") from None
        definitions.append(FeatureDefinition(
            name=entry.get('name', f"feature_{i}"),
            criteria=criteria,
            residual=residual,
            quota=int(entry.get('quota', 0)),
        ))
    return definitions


def validate_config(cfg: LaserOdomConfig):
    """Raise ConfigurationError on settings the pipeline cannot run with."""
    if cfg.optimizer.num_trajectory_states < 2:
        raise ConfigurationError("Number of trajectory states must be at least 2")
    if cfg.optimizer.motion_model not in MOTION_MODELS:
        raise ConfigurationError(
            f"Unknown motion model '{cfg.optimizer.motion_model}'")
    qc = np.asarray(cfg.optimizer.qc, dtype=np.float64).flatten()
    if qc.shape != (6,) or np.any(qc <= 0.0):
        raise ConfigurationError("optimizer.qc must be six positive values")
    if cfg.sensor.n_window < 1 or cfg.sensor.max_ticks < 1:
        raise ConfigurationError("n_window and max_ticks must be positive")
    if cfg.features.angular_bins < 1:
        raise ConfigurationError("angular_bins must be positive")
    if cfg.correspondence.azimuth_tol <= 0.0:
        raise ConfigurationError("azimuth_tol must be positive")


def _update(obj, section: dict):
    for key, value in section.items():
        if not hasattr(obj, key):
            print(f"[Config] Ignoring unknown key '{key}'")
            continue
        setattr(obj, key, value)


def load_config(yaml_path: str) -> LaserOdomConfig:
    """Load configuration from a YAML file."""
    with open(yaml_path, 'r') as f:
        cfg = yaml.safe_load(f) or {}

    lc = LaserOdomConfig()
    _update(lc.sensor, cfg.get('sensor', {}))
    _update(lc.map, cfg.get('map', {}))
    _update(lc.correspondence, cfg.get('correspondence', {}))
    _update(lc.output, cfg.get('output', {}))

    features = dict(cfg.get('features', {}))
    definitions = features.pop('definitions', None)
    _update(lc.features, features)
    if definitions is not None:
        lc.features.definitions = parse_feature_definitions(definitions)

    opt = dict(cfg.get('optimizer', {}))
    qc = opt.pop('qc', None)
    _update(lc.optimizer, opt)
    if qc is not None:
        lc.optimizer.qc = np.array(qc, dtype=np.float64).flatten()

    validate_config(lc)
    return lc
