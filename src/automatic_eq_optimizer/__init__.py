"""Parametric EQ optimization against a target frequency response."""

from .core.curve import Curve
from .core.params import LossType, OptimizationConfig, PeqModel, validate_params
from .core.progress import CancellationToken, ProgressUpdate
from .core.auto_eq import OptimizationResult, optimize
from .optimization.filters import FilterParameter, FilterType

__version__ = "1.0.0"

__all__ = [
    "CancellationToken",
    "Curve",
    "FilterParameter",
    "FilterType",
    "LossType",
    "OptimizationConfig",
    "OptimizationResult",
    "PeqModel",
    "ProgressUpdate",
    "optimize",
    "validate_params",
]
