"""Continuous-time LOAM-style laser odometry.

Per-ring signal scoring, feature extraction, a TTL-managed local map and
windowed nonlinear refinement over Gaussian-process trajectory knots.
"""
from .config import LaserOdomConfig, load_config
from .errors import (LaserOdomError, ConfigurationError, OrderingViolation,
                     UnrecognizedKernel, InsufficientResiduals,
                     CostEvaluationFailure)
from .pipeline import LaserOdom

__version__ = "0.1.0"
