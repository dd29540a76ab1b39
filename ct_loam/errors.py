"""Exceptions raised by the odometry pipeline."""


class LaserOdomError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(LaserOdomError):
    """Invalid configuration, e.g. fewer than two trajectory knots."""


class OrderingViolation(LaserOdomError):
    """Ticks within a ring went backwards."""


class UnrecognizedKernel(LaserOdomError):
    """A feature criterion names a kernel that does not exist."""


class InsufficientResiduals(LaserOdomError):
    """Too few residual blocks survived to solve the window."""

    def __init__(self, count: int, minimum: int):
        super().__init__(f"{count} residuals, threshold is {minimum}")
        self.count = count
        self.minimum = minimum


class CostEvaluationFailure(LaserOdomError):
    """A residual could not be built or evaluated."""
