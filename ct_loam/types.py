"""Data structures used throughout the odometry pipeline."""
import numpy as np
from dataclasses import dataclass, field
from enum import Enum, IntEnum


class Kernel(Enum):
    """Score kernels. The value is the signal the kernel runs over."""
    LOAM = "loam"
    LOG = "log"
    FOG = "fog"
    RNG_VAR = "rng_var"
    INT_VAR = "int_var"


class Signal(IntEnum):
    RANGE = 0
    INTENSITY = 1


class SelectionPolicy(Enum):
    NEAR_ZERO = "near_zero"
    HIGH_POS = "high_pos"
    HIGH_NEG = "high_neg"


class ResidualType(Enum):
    LINE = "line"
    PLANE = "plane"


class AssociationStatus(IntEnum):
    UNCORRESPONDED = 0
    CORRESPONDED = 1


@dataclass
class Criterion:
    """One AND-combined test of a feature definition."""
    kernel: Kernel
    policy: SelectionPolicy
    threshold: float


@dataclass
class FeatureDefinition:
    """Criteria, residual type and per-ring quota of one feature type."""
    name: str
    criteria: list
    residual: ResidualType
    quota: int


@dataclass
class FeaturePoints:
    """Selected feature points of one feature type on one ring."""
    xyz: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    ticks: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    intensities: np.ndarray = field(default_factory=lambda: np.zeros(0))

    def __len__(self):
        return len(self.ticks)


@dataclass
class Correspondence:
    """A feature point matched against local-map points."""
    feature: int
    ring: int
    tick: int
    point: np.ndarray
    map_indices: tuple
    map_points: np.ndarray
    residual: object = None


@dataclass
class OptimizationReport:
    """Outcome of one window optimization."""
    iterations: int = 0
    converged: bool = False
    residual_blocks: int = 0
    correspondences: int = 0
    rejected_outliers: int = 0
    failed_evaluations: int = 0
    rejected_extrapolations: int = 0
    initial_cost: float = 0.0
    final_cost: float = 0.0


@dataclass
class WindowResult:
    """Snapshot handed to the result consumer after a successful solve."""
    stamp: float
    knots: list
    world_pose: np.ndarray
    undistorted: np.ndarray = None  # (N, 4) xyz + intensity in final-knot frame
    correspondences: list = None    # per feature type: list of (M, 3) stacks
    report: OptimizationReport = None
